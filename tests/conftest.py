import asyncio
import logging

import pytest

from gammamca.port import Transport
from gammamca.shared import TransportError, logger


class FakeTransport(Transport):
    """In-memory link that replays queued chunks, then idles until closed."""

    def __init__(self, chunks=(), fail_after=None):
        self.chunks = list(chunks)
        self.fail_after = fail_after
        self.written = []
        self.opened = 0
        self.closed = 0
        self.reads = 0
        self._open = False

    @property
    def is_open(self):
        return self._open

    async def open(self, baud_rate):
        self.baud_rate = baud_rate
        self.opened += 1
        self._open = True

    async def close(self):
        if self._open:
            self.closed += 1
        self._open = False

    async def read(self):
        self.reads += 1
        if self.fail_after is not None and self.reads > self.fail_after:
            raise TransportError("device unplugged")
        await asyncio.sleep(0)
        if self.chunks:
            return self.chunks.pop(0)
        await asyncio.sleep(0.001)
        return b""

    async def write(self, data):
        self.written.append(data)

    def get_info(self):
        return "fake"

    def is_this_port(self, handle):
        return handle == "fake"


@pytest.fixture
def make_transport():
    return FakeTransport


@pytest.fixture(autouse=True)
def detach_log_file():
    yield
    for h in list(logger.handlers):
        if isinstance(h, logging.FileHandler):
            logger.removeHandler(h)
            h.close()
