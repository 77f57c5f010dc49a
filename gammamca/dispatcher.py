# dispatcher.py
"""Acquisition session: the read loop between one transport and the spectrum.

The read task runs continuously while recording and only pushes samples into
a pending buffer. The caller drains that buffer on its own timer through
refresh(), so a slow consumer never blocks the link.
"""

import asyncio
import time

from gammamca.framer import StreamFramer
from gammamca.functions import cps_stats
from gammamca.shared import Settings, TransportError, logger


class SerialManager:

    def __init__(self, transport, settings=None):
        self.transport = transport
        self.settings  = settings if settings is not None else Settings()

        self.framer = StreamFramer(
            adc_channels=self.settings.adc_channels,
            eol_char=self.settings.eol_char,
            max_length=self.settings.max_length,
        )

        self.recording        = False
        self.only_console     = True
        self.disconnected     = False
        self.saturated        = False
        self.start_time       = 0.0
        self.time_done        = 0.0
        self.raw_console_data = ""
        self.buffer_data      = []
        self.cps_values       = []
        self.last_update      = 0.0

        self._closed = None

    def __repr__(self):
        return f"SerialManager({self.transport!r}, recording={self.recording})"

    @property
    def order_type(self):
        return self.settings.order_type

    def is_this_port(self, handle):
        return self.transport.is_this_port(handle)

    async def send_string(self, value):
        await self.transport.send_string(value)

    # ---------------------------------------------------------------
    # Session control
    # ---------------------------------------------------------------

    async def show_console(self):
        """Open the link only to capture the raw text for the console."""
        if self.recording:
            return
        await self.transport.open(self.settings.baud_rate)
        self.disconnected = False
        self.recording    = True
        self.only_console = True
        self._closed = asyncio.create_task(self._read_until_closed())

    async def hide_console(self):
        if not self.recording or not self.only_console:
            return
        self.only_console = False
        self.recording    = False
        if self._closed is not None:
            await self._closed
        await self.transport.close()

    async def start_record(self, resume=False):
        if self.recording:
            return
        await self.transport.open(self.settings.baud_rate)

        if not resume:
            # Settings may have changed since the last recording
            self.framer.adc_channels = self.settings.adc_channels
            self.framer.eol_char     = self.settings.eol_char
            self.framer.max_length   = self.settings.max_length
            self.flush_data()
            self.clear_base_hist()
            self.time_done   = 0.0
            self.last_update = 0.0
            self.cps_values  = []
        else:
            # Bytes sent during the pause are gone, never join across the gap
            self.framer.flush()

        self.disconnected = False
        self.start_time   = time.monotonic()
        self.recording    = True
        self.only_console = False
        self._closed = asyncio.create_task(self._read_until_closed())
        logger.info(f"   ✅ Recording started on {self.transport.get_info()} (resume={resume})")

    async def stop_record(self):
        if not self.recording:
            return
        self.recording = False
        self.time_done += time.monotonic() - self.start_time

        # The read loop closes the link on its way out
        if self._closed is not None:
            await self._closed
        await self.transport.close()
        logger.info(f"   ✅ Recording stopped after {self.get_time() / 1000:.1f} s")

    async def _read_until_closed(self):
        try:
            while self.transport.is_open and self.recording:
                self.add_raw(await self.transport.read())

        except (TransportError, OSError) as e:
            if self.recording:
                logger.error(f"❌ Device disconnected: {e}")
                if not self.only_console:
                    self.time_done += time.monotonic() - self.start_time
                self.disconnected = True
                self.recording    = False

        finally:
            await self.transport.close()

    # ---------------------------------------------------------------
    # Incoming data
    # ---------------------------------------------------------------

    def add_raw(self, chunk):
        text = self.framer.decode(chunk)

        self.raw_console_data += text
        memory = self.settings.console_memory
        if len(self.raw_console_data) > memory:
            self.raw_console_data = self.raw_console_data[-memory:]

        if self.only_console or not text:
            return

        if self.order_type == "chron":
            if len(self.buffer_data) > self.settings.max_size:
                if not self.saturated:
                    logger.warning("👆 Serial buffer is saturating!")
                    self.saturated = True
                # The dropped text leaves a gap, the partial frame before it is lost too
                self.framer.flush()
                return
            self.saturated = False
            self.buffer_data.extend(self.framer.feed_chron(text))
            return

        had_baseline = self.framer.baseline_established
        deltas = self.framer.feed_hist(text)

        if not had_baseline and self.framer.baseline_established:
            # Live time counts from the first full snapshot
            self.start_time = time.monotonic()

        for delta in deltas:
            if not self.buffer_data:
                self.buffer_data = [0] * len(delta)
            for index, value in enumerate(delta):
                self.buffer_data[index] += value

    def get_data(self):
        data, self.buffer_data = self.buffer_data, []
        return data

    def get_time(self):
        """Live time in ms, paused intervals excluded."""
        if self.recording:
            return (time.monotonic() - self.start_time + self.time_done) * 1000
        return self.time_done * 1000

    def flush_data(self):
        self.framer.flush()
        self.buffer_data = []
        self.saturated   = False

    def clear_base_hist(self):
        self.framer.clear_base_hist()

    def flush_raw_data(self):
        self.raw_console_data = ""

    def get_raw_data(self):
        return self.raw_console_data

    # ---------------------------------------------------------------
    # Timer hooks for the caller
    # ---------------------------------------------------------------

    def refresh(self, spectrum, data_type="data"):
        """Move pending data into spectrum and return the count rate since the last call."""
        new_data  = self.get_data()
        meas_time = self.get_time()

        if self.order_type == "hist":
            if new_data:
                spectrum.add_hist(data_type, new_data)
            counts = sum(new_data)
        else:
            spectrum.add_pulse_data(data_type, new_data, self.settings.adc_channels)
            counts = len(new_data)

        spectrum.set_time(data_type, meas_time if meas_time > 0 else 1000)
        spectrum.update_cps(data_type)

        delta = meas_time - self.last_update
        self.last_update = meas_time

        cps = counts / delta * 1000 if delta > 0 else 0.0
        self.cps_values.append(cps)
        return cps

    def cps_stats(self):
        return cps_stats(self.cps_values)

    def max_time_reached(self, max_rec_time_ms=None):
        if max_rec_time_ms is None:
            if not self.settings.max_rec_time_enabled:
                return False
            max_rec_time_ms = self.settings.max_rec_time * 1000
        return self.get_time() >= max_rec_time_ms
