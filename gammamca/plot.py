# plot.py
"""Everything the chart widget needs, minus the drawing itself.

Traces are plain dicts with name, x and y. Markers are kept as shapes and
annotations in the layout format of the charting component.
"""

from dataclasses import dataclass, field
from typing import List

from gammamca.calibration import Calibration
from gammamca.functions import moving_average, seek_closest
from gammamca.peaks import PeakFinder


@dataclass
class PlotData:
    traces: List[dict] = field(default_factory=list)
    shapes: List[dict] = field(default_factory=list)
    annotations: List[dict] = field(default_factory=list)
    calibrated: bool = False
    cps: bool = False

    @property
    def main_trace(self):
        return self.traces[-1] if self.traces else None


class Markers:

    def __init__(self):
        self.shapes      = []
        self.annotations = []

    def toggle_line(self, energy, name, enabled=True):
        """Add a vertical marker with a label at energy, or remove the one there."""
        name = name.replace("-", "")

        if not enabled:
            self.shapes = [s for s in self.shapes if s["x0"] != energy]
            self.annotations = [a for a in self.annotations if a["x"] != round(energy, 2)]
            return

        new_line = {
            "type": "line",
            "xref": "x",
            "yref": "paper",
            "x0": energy,
            "y0": 0,
            "x1": energy,
            "y1": 1,
            "line": {"color": "blue", "width": 0.5, "dash": "solid"},
        }
        new_anno = {
            "x": round(energy, 2),
            "y": 1,
            "xref": "x",
            "yref": "paper",
            "text": name,
            "showarrow": True,
            "arrowhead": 7,
            "ax": 0,
            "ay": -20,
            "hovertext": f"{energy:.2f}",
            "font": {"size": 11},
        }

        if new_line in self.shapes or new_anno in self.annotations:
            return

        self.shapes.append(new_line)
        self.annotations.append(new_anno)

    def clear(self):
        self.shapes      = []
        self.annotations = []


class SpectrumPlot:

    def __init__(self, calibration=None, peak_config=None, iso_list=None):
        self.calibration = calibration if calibration is not None else Calibration()
        self.peak_config = peak_config if peak_config is not None else PeakFinder()
        self.markers     = Markers()
        self.iso_list    = iso_list or {}
        self.cps         = False
        self.sma         = False
        self.sma_length  = 8
        self.max_iso_dist = 100
        self._prev_iso   = None

    @classmethod
    def from_settings(cls, settings, **kwargs):
        plot = cls(**kwargs)
        plot.sma_length = settings.sma_length
        plot.max_iso_dist = settings.max_iso_dist

        peaks = plot.peak_config
        peaks.thres       = settings.peak_thres
        peaks.lag         = settings.peak_lag
        peaks.width       = settings.peak_width
        peaks.seek_width  = settings.seek_width
        peaks.gauss_sigma = settings.gauss_sigma
        return plot

    def get_x_axis(self, length):
        if self.calibration.enabled:
            return self.calibration.get_cal_axis(length)
        return list(range(length))

    def plot_data(self, spectrum):
        """Build the traces for the current spectrum and refresh the peak markers.

        With a background present the main trace is the background corrected
        spectrum and the background is returned as its own trace in front of it.
        """
        y = spectrum.data_cps if self.cps else spectrum.data
        main = {"name": "Clean Spectrum", "x": self.get_x_axis(len(y)), "y": list(y)}
        traces = [main]

        if spectrum.background:
            bg_y = spectrum.background_cps if self.cps else spectrum.background
            bg = {"name": "Background", "x": self.get_x_axis(len(bg_y)), "y": list(bg_y)}
            main["y"] = spectrum.get_corrected(cps=self.cps)
            traces.insert(0, bg)

        if self.sma:
            for trace in traces:
                trace["y"] = moving_average(trace["y"], self.sma_length) if trace["y"] else []

        if self.peak_config.enabled:
            self.peak_config.find(main["x"], main["y"], self.markers, self.iso_list)

        return PlotData(
            traces=traces,
            shapes=[dict(s) for s in self.markers.shapes],
            annotations=[dict(a) for a in self.markers.annotations],
            calibrated=self.calibration.enabled,
            cps=self.cps,
        )

    def closest_iso(self, value, max_dist=None):
        """Highlight the isotope line nearest to value, replacing the previous highlight."""
        if max_dist is None:
            max_dist = self.max_iso_dist

        if self._prev_iso is not None:
            energy, name = self._prev_iso
            self.markers.toggle_line(energy, name, False)
            self._prev_iso = None

        match = seek_closest(self.iso_list, value, max_dist)
        if match is not None:
            self.markers.toggle_line(*match)
            self._prev_iso = match
        return match
