# framer.py
"""Turns the raw character stream of the detector into samples or histogram rows.

The link is lossy: reads stop mid-frame, bytes get corrupted and the device
may change its configuration while sending. Every malformed token or row is
dropped (and counted) instead of raising, a frame is never stitched onto the
wrong channel.
"""

import codecs
import re

from gammamca.shared import logger

MAX_LENGTH = 20
MAX_HIST_LENGTH = 2 ** 18 * 2 * 10

_INT_RE = re.compile(r"[+-]?[0-9]+")


def _parse_int(token):
    token = token.strip()
    if not _INT_RE.fullmatch(token):
        return None
    return int(token)


class StreamFramer:

    def __init__(self, adc_channels=4096, eol_char=";", max_length=MAX_LENGTH,
                 max_hist_length=MAX_HIST_LENGTH, line_break="\r\n"):
        self.adc_channels    = adc_channels
        self.eol_char        = eol_char
        self.max_length      = max_length
        self.max_hist_length = max_hist_length
        self.line_break      = line_break

        self.raw_data  = ""
        self.base_hist = []
        self.accepted  = 0
        self.dropped   = 0

        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def decode(self, chunk):
        """Bytes to text. A multi-byte character cut by a read waits for its tail."""
        return self._decoder.decode(bytes(chunk))

    @property
    def baseline_established(self):
        return bool(self.base_hist)

    # ---------------------------------------------------------------
    # Chronological mode: one pulse height per token
    # ---------------------------------------------------------------

    def parse_sample(self, segment):
        trim = segment.strip()

        if not trim or len(trim) >= self.max_length:
            return None

        value = _parse_int(trim)
        if value is None or value < 0 or value > self.adc_channels:
            return None

        return value

    def feed_chron(self, text):
        self.raw_data += text

        segments = self.raw_data.split(self.eol_char)
        samples  = []

        # First segment is a frame cut by the read that started the stream,
        # last one is still being transmitted.
        if len(segments) > 2:
            for segment in segments[1:-1]:
                value = self.parse_sample(segment)
                if value is None:
                    self.dropped += 1
                else:
                    samples.append(value)

            # Keep an empty head so the next pass discards nothing real
            self.raw_data = self.eol_char + segments[-1]

        tail = segments[-1]
        if len(tail) > self.max_length:
            # No valid frame can be that long, throw away and resync
            logger.debug(f"  🐞 Framer discarding {len(self.raw_data)} chars of noise")
            self.raw_data = ""

        self.accepted += len(samples)
        return samples

    # ---------------------------------------------------------------
    # Histogram mode: one cumulative snapshot of all channels per line
    # ---------------------------------------------------------------

    def parse_row(self, line):
        trim = line.strip()

        if not trim or len(trim) >= self.max_hist_length:
            return None

        tokens = trim.split(self.eol_char)
        if tokens[-1].strip() == "":
            tokens.pop()  # trailing delimiter

        if len(tokens) != self.adc_channels:
            return None

        # A single glitched channel must not cost the whole row
        return [_parse_int(token) or 0 for token in tokens]

    def feed_hist(self, text):
        self.raw_data += text

        lines = self.raw_data.split(self.line_break)
        self.raw_data = lines.pop()

        deltas = []
        for line in lines:
            if not line.strip():
                continue

            row = self.parse_row(line)
            if row is None:
                self.dropped += 1
                continue

            self.accepted += 1

            if not self.base_hist:
                self.base_hist = row
                logger.info("   ✅ Histogram baseline established")
                continue

            deltas.append([new - old for new, old in zip(row, self.base_hist)])
            self.base_hist = row

        if len(self.raw_data) > self.max_hist_length:
            logger.debug("  🐞 Framer discarding oversized histogram line")
            self.raw_data = ""

        return deltas

    def flush(self):
        """Forget any partial frame. The next pass discards its cut head as at stream start."""
        self.raw_data = ""
        self._decoder.reset()

    def clear_base_hist(self):
        self.base_hist = []
