from __future__ import annotations

"""
Frame compositor: background, normalized peaks and noise summed into a buffer.

Order of operations for one frame:
  1. zero the buffer unless integrating (or a reset is pending)
  2. add the per-axis background
  3. add every enabled peak, scaled so its centre value equals its amplitude,
     inside its bin-range restriction
  4. add noise

Each stage is narrowed into the buffer's element type as it is accumulated.
Integer buffers wrap around on overflow; there is no saturation.
"""

from typing import Optional, Tuple
import numpy as np

from .descriptors import BackgroundDescriptor, BackgroundKind, FrameConfig, NoiseDescriptor, NoiseKind, PeakDescriptor
from .kernels import Shape1D, Shape2D, evaluate_1d, evaluate_2d, resolve_shape_1d, resolve_shape_2d, zero_check


def narrow(values: np.ndarray, dtype: np.dtype) -> np.ndarray:
    """Convert float values to dtype. Integers truncate toward zero then wrap."""
    dtype = np.dtype(dtype)
    with np.errstate(all="ignore"):
        if dtype.kind == "f":
            return np.asarray(values).astype(dtype)
        values = np.asarray(values, dtype=np.float64)
        out = values.astype(np.int64).astype(dtype)
        if dtype == np.uint64:
            # int64 cannot hold the upper half of the uint64 range
            big = values >= 2.0 ** 63
            out[big] = values[big].astype(np.uint64)
        return out


def _accumulate(target: np.ndarray, values) -> None:
    with np.errstate(all="ignore"):
        total = target.astype(np.float64) + values
    target[...] = narrow(total, target.dtype)


def background_profile(bg: BackgroundDescriptor, coords: np.ndarray) -> np.ndarray:
    """Evaluate one axis of the background at the given bin coordinates."""
    coords = np.asarray(coords, dtype=np.float64)
    t = coords - bg.shift
    with np.errstate(all="ignore"):
        if bg.kind == BackgroundKind.POLYNOMIAL:
            return bg.c0 + bg.c1 * t + bg.c2 * t ** 2 + bg.c3 * t ** 3
        if bg.kind == BackgroundKind.EXPONENTIAL:
            return bg.c0 + bg.c1 * np.exp(bg.c2 * t)
    return np.zeros_like(coords)


def _axis_range(lo: int, hi: int, size: int) -> Optional[Tuple[int, int]]:
    lo = max(0, int(lo))
    hi = int(hi)
    hi = size - 1 if hi <= 0 else min(hi, size - 1)
    if lo > hi:
        return None
    return lo, hi


def peak_region(peak: PeakDescriptor, shape: Tuple[int, ...]):
    """Inclusive bin limits ((x0, x1), (y0, y1) or None) a peak is drawn into, or None if empty."""
    if len(shape) == 1:
        rx = _axis_range(peak.min_x, peak.max_x, shape[0])
        return None if rx is None else (rx, None)
    rx = _axis_range(peak.min_x, peak.max_x, shape[1])
    ry = _axis_range(peak.min_y, peak.max_y, shape[0])
    if rx is None or ry is None:
        return None
    return rx, ry


def _add_background(buffer: np.ndarray, config: FrameConfig) -> None:
    if buffer.ndim == 1:
        values = background_profile(config.background_x, np.arange(buffer.shape[0]))
    else:
        bx = background_profile(config.background_x, np.arange(buffer.shape[1]))
        by = background_profile(config.background_y, np.arange(buffer.shape[0]))
        values = by[:, None] + bx[None, :]
    _accumulate(buffer, values)


def _add_peak(buffer: np.ndarray, peak: PeakDescriptor) -> bool:
    region = peak_region(peak, buffer.shape)
    if region is None:
        return False
    (x0, x1), ry = region
    if buffer.ndim == 1:
        if resolve_shape_1d(peak.shape) == Shape1D.NONE:
            return False
        center = evaluate_1d(peak, peak.pos_x)
        scale = peak.amplitude / zero_check(center)
        xs = np.arange(x0, x1 + 1)
        with np.errstate(all="ignore"):
            values = evaluate_1d(peak, xs) * scale
        _accumulate(buffer[x0:x1 + 1], values)
        return True
    if resolve_shape_2d(peak.shape) == Shape2D.NONE:
        return False
    y0, y1 = ry
    center = evaluate_2d(peak, peak.pos_x, peak.pos_y)
    scale = peak.amplitude / zero_check(center)
    yy, xx = np.mgrid[y0:y1 + 1, x0:x1 + 1]
    with np.errstate(all="ignore"):
        values = evaluate_2d(peak, xx, yy) * scale
    _accumulate(buffer[y0:y1 + 1, x0:x1 + 1], values)
    return True


def noise_sample(noise: NoiseDescriptor, shape: Tuple[int, ...], rng: np.random.RandomState) -> np.ndarray:
    if noise.kind == NoiseKind.UNIFORM:
        sample = rng.uniform(-1.0, 1.0, size=shape)
    elif noise.kind == NoiseKind.GAUSSIAN:
        sample = rng.standard_normal(size=shape)
    else:
        return np.zeros(shape)
    sample = sample * noise.level
    if noise.clamp:
        sample = np.clip(sample, noise.lower, max(noise.lower, noise.upper))
    return sample


def compose_frame(buffer: np.ndarray, config: FrameConfig, reset: bool = False,
                  rng: Optional[np.random.RandomState] = None) -> np.ndarray:
    """
    Write one frame of config into buffer in place and return it.

    buffer must already have config.shape; the caller owns it exclusively for
    the duration of the call. rng is only consulted when noise is enabled.
    """
    if buffer is None:
        raise ValueError("compose_frame needs an allocated buffer")
    if tuple(buffer.shape) != tuple(config.shape):
        raise ValueError(f"Buffer shape {buffer.shape} does not match frame shape {config.shape}")

    if reset or not config.integrate:
        buffer[...] = 0

    _add_background(buffer, config)

    for peak in config.peaks:
        _add_peak(buffer, peak)

    if config.noise.kind != NoiseKind.NONE:
        if rng is None:
            rng = np.random.RandomState()
        _accumulate(buffer, noise_sample(config.noise, buffer.shape, rng))

    return buffer
