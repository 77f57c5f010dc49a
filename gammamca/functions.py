# functions.py

import math
import time

import numpy as np


def moving_average(data, length):
    """Centered moving average, one sample further right for even lengths.

    Windows hanging over either end are cut off and averaged over the samples
    that remain.
    """
    if length <= 0:
        raise ValueError("moving average length must be positive")

    y = np.asarray(data, dtype=float)
    n = len(y)
    if n == 0:
        return []

    half = (length + 1) // 2
    index = np.arange(n)
    lo = np.maximum(index - half + 1, 0)
    hi = np.minimum(index + length - half, n - 1)

    cumsum = np.concatenate(([0.0], np.cumsum(y)))
    return ((cumsum[hi + 1] - cumsum[lo]) / (hi - lo + 1)).tolist()


def seek_closest(iso_list, value, max_dist=100):
    """Nearest isotope line to value, as (energy, name), or None if none is within max_dist."""
    close_vals = []
    for energy in iso_list:
        try:
            e = float(energy)
        except (TypeError, ValueError):
            continue
        if not math.isnan(e) and abs(e - value) <= max_dist:
            close_vals.append((e, energy))

    if not close_vals:
        return None

    closest, key = min(close_vals, key=lambda pair: abs(pair[0] - value))
    return closest, iso_list[key]


def gaussian_correl(data, sigma):
    """Correlate the spectrum with a zero-mean Gaussian to emphasise peak shapes."""
    y = np.asarray(data, dtype=float)
    data_len = len(y)
    if data_len == 0:
        return []

    std = math.sqrt(data_len)
    x_max = round(sigma * std)
    if x_max <= 0:
        return [int(v) for v in y]

    k = np.arange(-x_max, x_max)
    gauss_values = np.exp(-(k ** 2) / (2 * std ** 2))
    kernel = gauss_values - gauss_values.mean()

    padded = np.concatenate((np.zeros(x_max), y, np.zeros(x_max)))
    correl_values = np.correlate(padded, kernel, mode="valid")[:data_len]
    correl_values = np.maximum(0, np.trunc(correl_values))

    max_data = y.max()
    max_correl_value = correl_values.max()
    scaling_factor = 0.8 * max_data / max_correl_value if max_correl_value != 0 else 1
    return [int(value * scaling_factor) for value in correl_values]


def cps_stats(cps_values):
    """Mean and sample standard deviation of the count rate history."""
    if not cps_values:
        return 0.0, 0.0

    values = np.asarray(cps_values, dtype=float)
    mean = float(values.mean())
    std = float(values.std(ddof=1)) if len(values) > 1 else 0.0
    return mean, std


def get_record_timestamp(time_ms):
    return time.strftime("%H:%M:%S", time.gmtime(time_ms / 1000))
