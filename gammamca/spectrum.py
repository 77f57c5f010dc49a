# spectrum.py
"""In-memory histograms of the running acquisition.

Holds the measured spectrum ("data") and the background spectrum, their live
times in milliseconds and the derived counts-per-second views.
"""

import numpy as np

from gammamca.shared import DATA_TYPES


def _check_type(data_type):
    if data_type not in DATA_TYPES:
        raise ValueError(f"data_type must be one of {DATA_TYPES}, got {data_type!r}")


class SpectrumData:

    def __init__(self):
        self.data            = []
        self.background      = []
        self.data_cps        = []
        self.background_cps  = []
        self.data_time       = 1000  # ms
        self.background_time = 1000  # ms

    def get_total_counts(self, data_type):
        _check_type(data_type)
        return int(sum(getattr(self, data_type)))

    def add_pulse_data(self, data_type, new_data, adc_channels):
        """Count one event per sample. Samples are already range checked by the framer."""
        _check_type(data_type)
        target = getattr(self, data_type)

        if not target:
            target = [0] * adc_channels
            setattr(self, data_type, target)

        for value in new_data:
            if value >= len(target):
                # the framer's range is inclusive of adc_channels
                target.extend([0] * (value + 1 - len(target)))
            target[value] += 1

        return target

    def add_hist(self, data_type, new_hist):
        """Add per-channel increments from histogram mode."""
        _check_type(data_type)
        target = getattr(self, data_type)

        if not target:
            target = [0] * len(new_hist)
            setattr(self, data_type, target)

        for index, value in enumerate(new_hist[:len(target)]):
            target[index] += value

        return target

    def get_time(self, data_type):
        _check_type(data_type)
        return getattr(self, f"{data_type}_time")

    def set_time(self, data_type, time_ms):
        _check_type(data_type)
        setattr(self, f"{data_type}_time", time_ms)

    def get_cps(self, data_type):
        counts  = np.asarray(getattr(self, data_type), dtype=float)
        seconds = self.get_time(data_type) / 1000

        if seconds <= 0:
            return [0.0] * len(counts)

        return (counts / seconds).tolist()

    def update_cps(self, data_type):
        cps = self.get_cps(data_type)
        setattr(self, f"{data_type}_cps", cps)
        return cps

    def get_corrected(self, cps=False):
        """Spectrum minus background, bin by bin."""
        data       = self.data_cps if cps else self.data
        background = self.background_cps if cps else self.background

        y  = np.asarray(data, dtype=float)
        bg = np.zeros_like(y)
        n  = min(len(y), len(background))
        bg[:n] = background[:n]

        return (y - bg).tolist()

    def clear(self, data_type):
        _check_type(data_type)
        setattr(self, data_type, [])
        setattr(self, f"{data_type}_cps", [])
        self.set_time(data_type, 1000)
