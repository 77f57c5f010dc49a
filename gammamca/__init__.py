"""
GammaMCA - gamma spectrum acquisition core

Building blocks for recording pulse-height spectra from a serial MCA:
- Serial and USB-bridge transports for the detector link
- Framing of the chronological and histogram wire formats
- Spectrum accumulation with live time and count rates
- Channel to energy calibration
- Peak detection and isotope labelling

Run `python -m gammamca --help` for the command-line recorder.
"""

from .shared import (
    __version__,
    GammaMcaError,
    TransportError,
    CalibrationError,
    SettingsError,
    Settings,
    init_logging,
    load_settings,
)
from .port import Transport, SerialTransport, list_transports
from .framer import StreamFramer
from .spectrum import SpectrumData
from .calibration import Calibration, fit_coefficients
from .functions import seek_closest, moving_average
from .peaks import PeakFinder, PeakRegion
from .plot import Markers, PlotData, SpectrumPlot
from .dispatcher import SerialManager

__all__ = [
    "__version__",
    "GammaMcaError",
    "TransportError",
    "CalibrationError",
    "SettingsError",
    "Settings",
    "init_logging",
    "load_settings",
    "Transport",
    "SerialTransport",
    "list_transports",
    "StreamFramer",
    "SpectrumData",
    "Calibration",
    "fit_coefficients",
    "seek_closest",
    "moving_average",
    "PeakFinder",
    "PeakRegion",
    "Markers",
    "PlotData",
    "SpectrumPlot",
    "SerialManager",
]
