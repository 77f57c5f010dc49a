# peaks.py
"""Peak detection on the rendered spectrum trace.

A channel is a peak candidate when the trace rises above its own long moving
average by a fraction of the trace maximum. Neighbouring candidates are
merged into one region, which is then labelled by its energy or by the
closest isotope line.
"""

import warnings

from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from scipy.signal import peak_widths

from gammamca.functions import gaussian_correl, moving_average, seek_closest
from gammamca.shared import logger

PEAK_MODES = ("energy", "isotopes")


@dataclass
class PeakRegion:
    x: float
    tolerance: float
    members: List[float] = field(default_factory=list)
    lo: int = 0
    hi: int = 0
    peak_index: int = 0
    fwhm: float = float("nan")
    energy: Optional[float] = None
    label: str = ""


class PeakFinder:

    def __init__(self, thres=0.025, lag=150, width=2, seek_width=2, mode="energy", gauss_sigma=0):
        self.enabled     = False
        self.mode        = mode
        self.thres       = thres
        self.lag         = lag
        self.width       = width
        self.seek_width  = seek_width
        self.gauss_sigma = gauss_sigma
        self.lines       = []
        self.last_x      = []
        self.last_y      = []

    def clear(self, markers=None):
        """Remove every marker this finder has drawn."""
        if markers is not None:
            for line in self.lines:
                markers.toggle_line(line, "", False)
        self.lines = []

    def _group(self, x, crossings):
        groups = []
        current = []
        for i in crossings:
            if current and abs(x[i] - x[current[-1]]) > self.width:
                groups.append(current)
                current = []
            current.append(i)
        if current:
            groups.append(current)
        return groups

    def _fwhm(self, x, y, peak_index):
        with warnings.catch_warnings():
            # flat tops have no prominence and yield a zero width
            warnings.simplefilter("ignore", RuntimeWarning)
            width = peak_widths(y, [peak_index], rel_height=0.5)[0][0]

        left  = max(peak_index - 1, 0)
        right = min(peak_index + 1, len(x) - 1)
        if right == left:
            return float(width)
        step = abs(x[right] - x[left]) / (right - left)
        return float(width * step)

    def find(self, x=None, y=None, markers=None, iso_list=None):
        """Detect peaks on (x, y), or on the last trace when none is given.

        Markers drawn by a previous run are removed first, so repeated calls
        never stack duplicates.
        """
        if y is not None:
            x = list(range(len(y))) if x is None else x
            if len(x) != len(y):
                raise ValueError("x and y must have the same length")
            self.last_x = list(x)
            self.last_y = list(y)

        self.clear(markers)

        x = self.last_x
        if not self.last_y:
            return []

        short = np.asarray(self.last_y, dtype=float)
        if self.gauss_sigma > 0:
            short = np.asarray(gaussian_correl(short, self.gauss_sigma), dtype=float)

        long_avg = np.asarray(moving_average(short, self.lag))
        max_val = short.max()

        crossings = np.flatnonzero(short - long_avg > self.thres * max_val)

        regions = []
        for group in self._group(x, crossings):
            members = [x[i] for i in group]

            if len(members) == 1:
                result = members[0]
                size = self.seek_width
            else:
                result = sum(members) / len(members)
                size = self.seek_width * (max(members) - min(members))

            lo, hi = int(group[0]), int(group[-1])
            peak_index = lo + int(np.argmax(short[lo:hi + 1]))

            region = PeakRegion(
                x=result,
                tolerance=size,
                members=members,
                lo=lo,
                hi=hi,
                peak_index=peak_index,
                fwhm=self._fwhm(x, short, peak_index),
            )

            if self.mode == "isotopes":
                match = seek_closest(iso_list or {}, result, size)
                if match is None:
                    continue
                region.energy, region.label = match
            else:
                region.energy, region.label = result, f"{result:.2f}"

            if markers is not None:
                markers.toggle_line(region.energy, region.label)
            self.lines.append(region.energy)
            regions.append(region)

        logger.debug(f"  🐞 Peak finder: {len(crossings)} crossings, {len(regions)} peaks")
        return regions
