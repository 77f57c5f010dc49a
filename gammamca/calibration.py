# calibration.py
"""Channel to energy calibration.

E = c1 * ch^2 + c2 * ch + c3, fitted exactly through 2 (linear) or 3
(quadratic) reference points.
"""

import math

import numpy as np

from gammamca.shared import CalibrationError, logger

POINT_NAMES = ("a", "b", "c")


def fit_coefficients(points):
    """Return (c1, c2, c3) of the polynomial through 2 or 3 (channel, energy) points."""
    try:
        pts = [(float(ch), float(energy)) for ch, energy in points]
    except (TypeError, ValueError) as e:
        raise CalibrationError(f"Calibration points must be numbers: {e}") from None

    if len(pts) not in (2, 3):
        raise CalibrationError(f"Calibration needs 2 or 3 points, got {len(pts)}")

    if not all(math.isfinite(v) for pair in pts for v in pair):
        raise CalibrationError("Calibration points must be finite")

    if len(pts) == 3:
        (a_from, a_to), (b_from, b_to), (c_from, c_to) = pts

        denom = (a_from - b_from) * (a_from - c_from) * (b_from - c_from)
        if denom == 0:
            raise CalibrationError("Calibration channels must all be different")

        a = (c_from * (b_to - a_to) + b_from * (a_to - c_to) + a_from * (c_to - b_to)) / denom
        k = (c_from ** 2 * (a_to - b_to) + a_from ** 2 * (b_to - c_to) + b_from ** 2 * (c_to - a_to)) / denom
        d = (b_from * (b_from - c_from) * c_from * a_to
             + a_from * c_from * (c_from - a_from) * b_to
             + a_from * (a_from - b_from) * b_from * c_to) / denom
        coeffs = (a, k, d)

    else:
        (a_from, a_to), (b_from, b_to) = pts

        if a_from == b_from:
            raise CalibrationError("Calibration channels must all be different")

        k = (a_to - b_to) / (a_from - b_from)
        d = a_to - k * a_from
        coeffs = (0.0, k, d)

    if not all(math.isfinite(c) for c in coeffs):
        raise CalibrationError("Calibration produced non-finite coefficients")

    return coeffs


class Calibration:

    def __init__(self):
        self.enabled  = False
        self.imported = False
        self.points   = []
        self.coeff    = {"c1": 0.0, "c2": 0.0, "c3": 0.0}

    def __repr__(self):
        c = self.coeff
        return f"Calibration(E = {c['c1']:.6f}x² + {c['c2']:.6f}x + {c['c3']:.6f}, enabled={self.enabled})"

    @property
    def coefficients(self):
        return [self.coeff["c1"], self.coeff["c2"], self.coeff["c3"]]

    @property
    def has_coefficients(self):
        return any(self.coefficients)

    def apply(self, pairs):
        """Fit from raw (channel, energy) inputs and enable.

        Unparseable pairs are skipped; exactly 2 or 3 must remain. A declined
        calibration leaves the previous one untouched and returns False.
        """
        valid = []
        for pair in pairs:
            try:
                ch, energy = float(pair[0]), float(pair[1])
            except (TypeError, ValueError, IndexError):
                continue
            if math.isfinite(ch) and math.isfinite(energy):
                valid.append((ch, energy))

        try:
            c1, c2, c3 = fit_coefficients(valid)
        except CalibrationError as e:
            logger.warning(f"👆 Calibration declined: {e}")
            return False

        self.points   = valid
        self.coeff    = {"c1": c1, "c2": c2, "c3": c3}
        self.imported = False
        self.enabled  = True

        logger.info(f"   ✅ Calibration applied {self!r}")
        return True

    def enable(self):
        """Re-enable with the stored coefficients."""
        if not self.has_coefficients:
            logger.warning("👆 No calibration coefficients to enable")
            return False
        self.enabled = True
        return True

    def disable(self):
        self.enabled = False

    def clear(self):
        self.enabled  = False
        self.imported = False
        self.points   = []
        self.coeff    = {"c1": 0.0, "c2": 0.0, "c3": 0.0}

    def map(self, channel):
        return float(np.polyval(self.coefficients, channel))

    def get_cal_axis(self, length):
        channels = np.arange(length, dtype=float)
        return np.round(np.polyval(self.coefficients, channels), 2).tolist()

    def inverse(self, energy, n_channels):
        """Channel that maps onto energy, or None when no root lies in [0, n_channels)."""
        c1, c2, c3 = self.coefficients
        roots = np.roots([c1, c2, c3 - energy])
        real_roots = roots[np.isreal(roots)].real
        valid = [float(r) for r in real_roots if 0 <= r < n_channels]
        if not valid:
            return None
        return valid[0]

    # ---------------------------------------------------------------
    # Calibration file contents
    # ---------------------------------------------------------------

    def to_dict(self):
        points = {}
        for name, (ch, energy) in zip(POINT_NAMES, self.points):
            points[f"{name}From"] = ch
            points[f"{name}To"] = energy

        return {
            "enabled": self.enabled,
            "imported": self.imported,
            "points": points,
            "coeff": dict(self.coeff),
        }

    @classmethod
    def from_dict(cls, obj):
        cal = cls()

        if not isinstance(obj, dict):
            raise CalibrationError("Calibration data must be an object")

        if obj.get("imported"):
            try:
                coeff = {key: float(obj["coeff"][key]) for key in ("c1", "c2", "c3")}
            except (KeyError, TypeError, ValueError) as e:
                raise CalibrationError(f"Invalid imported coefficients: {e}") from None

            if not all(math.isfinite(v) for v in coeff.values()) or not any(coeff.values()):
                raise CalibrationError("Imported coefficients are not usable")

            cal.coeff    = coeff
            cal.imported = True
            cal.enabled  = bool(obj.get("enabled", False))
            return cal

        # Older files keep the points at top level
        points = obj.get("points")
        if not isinstance(points, dict):
            points = obj

        pairs = []
        for name in POINT_NAMES:
            ch, energy = points.get(f"{name}From"), points.get(f"{name}To")
            if ch is None or energy is None or ch == "" or energy == "":
                continue
            pairs.append((ch, energy))

        c1, c2, c3 = fit_coefficients(pairs)

        cal.points  = [(float(ch), float(energy)) for ch, energy in pairs]
        cal.coeff   = {"c1": c1, "c2": c2, "c3": c3}
        cal.enabled = bool(obj.get("enabled", False))
        return cal
