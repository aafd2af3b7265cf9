"""
Numeric primitives shared by the detectors
Signal vector magnitude, sample variance, windowing, DFT and haversine distance
"""

import numpy as np
from scipy.signal import get_window

from .config import EARTH_RADIUS_M

DFT_METHODS = ("direct", "fft")


def signal_vector_magnitude(x, y, z):
    """
    Euclidean norm of a triaxial accelerometer reading.

    At rest ~9.81 m/s^2 (gravity), free fall ~0, impact > 20.
    """
    return float(np.sqrt(x * x + y * y + z * z))


def sample_variance(values):
    """Unbiased (n-1) variance; 0.0 for fewer than two values."""
    if len(values) < 2:
        return 0.0
    return float(np.var(np.asarray(values, dtype=np.float64), ddof=1))


def hann_window(size):
    """
    Symmetric Hann window: w[n] = 0.5 * (1 - cos(2*pi*n / (size - 1)))
    """
    return get_window("hann", size, fftbins=False).astype(np.float32)


def dft_magnitude(frames, method="direct"):
    """
    Magnitude spectrum at the n/2 + 1 non-negative frequency bins.

    Args:
        frames: array of shape (num_frames, n) of windowed samples
        method: "direct" for explicit Fourier summation (O(n^2) per frame),
                "fft" for numpy's real FFT

    Returns:
        numpy array of shape (num_frames, n // 2 + 1)
    """
    frames = np.atleast_2d(np.asarray(frames, dtype=np.float64))
    n = frames.shape[-1]

    if method == "fft":
        return np.abs(np.fft.rfft(frames, n=n, axis=-1))
    if method != "direct":
        raise ValueError(f"Unknown DFT method: {method!r} (expected one of {DFT_METHODS})")

    k = np.arange(n // 2 + 1)[:, np.newaxis]
    t = np.arange(n)[np.newaxis, :]
    # Reduce k*t mod n first so the angle stays in [0, 2*pi)
    angle = 2.0 * np.pi * ((k * t) % n) / n

    real = frames @ np.cos(angle).T
    imag = -(frames @ np.sin(angle).T)
    return np.sqrt(real * real + imag * imag)


def haversine_m(lat1, lng1, lat2, lng2):
    """
    Great-circle distance in meters between two lat/lng points.
    Any argument may be a numpy array; the result broadcasts.
    """
    lat1 = np.radians(lat1)
    lat2 = np.radians(lat2)
    d_lat = lat2 - lat1
    d_lng = np.radians(np.asarray(lng2) - np.asarray(lng1))

    a = np.sin(d_lat / 2.0) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(d_lng / 2.0) ** 2
    c = 2.0 * np.arcsin(np.sqrt(np.clip(a, 0.0, 1.0)))
    return EARTH_RADIUS_M * c
