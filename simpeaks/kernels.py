from __future__ import annotations

"""
Closed-form peak shapes used to build synthetic detector frames.

Every kernel is a pure function of a peak descriptor and a coordinate (1D) or a
coordinate pair (2D). Coordinates may be Python scalars or numpy arrays; the
math is written with numpy so that a whole bin grid can be evaluated at once.

1D shapes: square, triangle, gaussian, lorentz, pseudo-voigt, laplace, moffat,
smoothstep. 2D shapes: square, pyramid, cone, gaussian, lorentz, pseudo-voigt,
laplace, moffat, smoothstep.

Widths are always clamped to at least one bin, and none of the kernels raise on
finite input: floating point exceptions are silenced and show up as inf/nan
instead of raising.
"""

from enum import IntEnum
from typing import Any, Callable, Dict, Union
import math
import numpy as np

# Near-zero threshold used by zero_check
ZERO_CHECK = 1e-12
# 2*sqrt(2*ln(2)), converts a gaussian FWHM to sigma
TWO_SQRT_2LN2 = 2.3548200450309493
# sqrt(2*pi)
SQRT_2PI = 2.5066282746310002
# 2*ln(2), converts a laplace FWHM to the scale factor b
TWO_LN2 = 1.3862943611198906
# Thompson-Cox-Hastings pseudo-Voigt coefficients
PV_P1 = 2.69269
PV_P2 = 2.42843
PV_P3 = 4.47163
PV_P4 = 0.07842
PV_E1 = 1.36603
PV_E2 = 0.47719
PV_E3 = 0.11116
# |rho| == 1 makes the bivariate forms singular
RHO_LIMIT = 1.0 - 1e-12

Coord = Union[float, np.ndarray]


class Shape1D(IntEnum):
    NONE = 0
    SQUARE = 1
    TRIANGLE = 2
    GAUSSIAN = 3
    LORENTZ = 4
    PSEUDO_VOIGT = 5
    LAPLACE = 6
    MOFFAT = 7
    SMOOTHSTEP = 8


class Shape2D(IntEnum):
    NONE = 0
    SQUARE = 1
    PYRAMID = 2
    CONE = 3
    GAUSSIAN = 4
    LORENTZ = 5
    PSEUDO_VOIGT = 6
    LAPLACE = 7
    MOFFAT = 8
    SMOOTHSTEP = 9


_DISPLAY_NAMES = {
    "NONE": "None",
    "SQUARE": "Square",
    "TRIANGLE": "Triangle",
    "GAUSSIAN": "Gaussian",
    "LORENTZ": "Lorentz",
    "PSEUDO_VOIGT": "Pseudo-Voigt",
    "LAPLACE": "Laplace",
    "MOFFAT": "Moffat",
    "SMOOTHSTEP": "SmoothStep",
    "PYRAMID": "Pyramid",
    "CONE": "Cone",
}


def shape_name(shape: Union[Shape1D, Shape2D]) -> str:
    return _DISPLAY_NAMES.get(shape.name, "None")


def _normalize_tag(tag: str) -> str:
    return "".join(ch for ch in tag.upper() if ch not in "-_ ")


def _resolve(enum_cls, tag: Any):
    if isinstance(tag, enum_cls):
        return tag
    if isinstance(tag, IntEnum):
        # Member of the other family: match by name, so triangle never leaks into 2D
        tag = tag.name
    if isinstance(tag, str):
        key = _normalize_tag(tag)
        if key.lstrip("+-").isdigit():
            tag = int(key)
        else:
            for member in enum_cls:
                if _normalize_tag(member.name) == key:
                    return member
            return enum_cls.NONE
    try:
        return enum_cls(int(tag))
    except (TypeError, ValueError, OverflowError):
        return enum_cls.NONE


def resolve_shape_1d(tag: Any) -> Shape1D:
    """Map a name, integer or enum member onto Shape1D. Unknown tags become NONE."""
    return _resolve(Shape1D, tag)


def resolve_shape_2d(tag: Any) -> Shape2D:
    """Map a name, integer or enum member onto Shape2D. Unknown tags become NONE."""
    return _resolve(Shape2D, tag)


def zero_check(value: float) -> float:
    """Return 1.0 when value is within 1e-12 of zero, otherwise value unchanged."""
    if -ZERO_CHECK < value < ZERO_CHECK:
        return 1.0
    return value


def _width(fwhm: float) -> float:
    return max(1.0, float(fwhm))


def _rho(correlation: float) -> float:
    return min(RHO_LIMIT, max(-RHO_LIMIT, float(correlation)))


def _trunc(value: float) -> float:
    # truncate toward zero, like int() but safe for inf/nan
    return float(np.trunc(value))


def pseudo_voigt_eta(fwhm_g: float, fwhm_l: float) -> float:
    """Thompson-Cox-Hastings mixing fraction. Not clamped to [0, 1]."""
    # numpy scalars overflow to inf instead of raising
    fwhm_g = np.float64(fwhm_g)
    fwhm_l = np.float64(fwhm_l)
    fwhm_sum = (fwhm_g ** 5
                + PV_P1 * fwhm_g ** 4 * fwhm_l
                + PV_P2 * fwhm_g ** 3 * fwhm_l ** 2
                + PV_P3 * fwhm_g ** 2 * fwhm_l ** 3
                + PV_P4 * fwhm_g * fwhm_l ** 4
                + fwhm_l ** 5)
    fwhm_tot = fwhm_sum ** 0.2
    ratio = fwhm_l / fwhm_tot
    return float(PV_E1 * ratio - PV_E2 * ratio ** 2 + PV_E3 * ratio ** 3)


# ---------------------------------------------------------------------------
# 1D profiles

def gaussian_1d(peak, x: Coord) -> np.ndarray:
    fwhm = _width(peak.fwhm_x)
    sigma = fwhm / TWO_SQRT_2LN2
    dx = x - peak.pos_x
    return (1.0 / (sigma * SQRT_2PI)) * np.exp(-(dx * dx) / (2.0 * sigma * sigma))


def lorentz_1d(peak, x: Coord) -> np.ndarray:
    gamma = _width(peak.fwhm_x) / 2.0
    dx = x - peak.pos_x
    return (1.0 / (math.pi * gamma)) * ((gamma * gamma) / (dx * dx + gamma * gamma))


def pseudo_voigt_1d(peak, x: Coord) -> np.ndarray:
    # Gaussian and Lorentz share one FWHM; eta still uses the full blend so the
    # two widths could be split later
    fwhm = _width(peak.fwhm_x)
    eta = pseudo_voigt_eta(fwhm, fwhm)
    return (1.0 - eta) * gaussian_1d(peak, x) + eta * lorentz_1d(peak, x)


def laplace_1d(peak, x: Coord) -> np.ndarray:
    b = _width(peak.fwhm_x) / TWO_LN2
    return (1.0 / (2.0 * b)) * np.exp(-np.abs(x - peak.pos_x) / b)


def triangle_1d(peak, x: Coord) -> np.ndarray:
    fwhm = _width(peak.fwhm_x)
    slope = np.where(x <= _trunc(peak.pos_x), 1.0, -1.0) / fwhm
    return np.maximum(0.0, 1.0 + slope * (x - peak.pos_x))


def square_1d(peak, x: Coord) -> np.ndarray:
    half = _width(peak.fwhm_x) / 2.0
    lo = _trunc(peak.pos_x - half)
    hi = _trunc(peak.pos_x + half)
    return np.where((x > lo) & (x <= hi), 1.0, 0.0)


def _moffat_alpha2(fwhm: float, beta: float) -> float:
    # numpy scalars so that a negative radicand gives nan instead of raising
    alpha = fwhm / (2.0 * np.sqrt(np.power(2.0, 1.0 / beta) - 1.0))
    return alpha * alpha


def moffat_1d(peak, x: Coord) -> np.ndarray:
    fwhm = _width(peak.fwhm_x)
    beta = zero_check(float(peak.p1))
    alpha2 = _moffat_alpha2(fwhm, beta)
    dx = x - peak.pos_x
    return ((beta - 1.0) / (math.pi * alpha2)) * np.power(1.0 + (dx * dx) / alpha2, -beta)


def _ramp(coord: Coord, pos: float, fwhm: float) -> np.ndarray:
    low_edge = pos - fwhm / 2.0
    return np.clip((coord - low_edge) / fwhm, 0.0, 1.0)


def _smooth(t: np.ndarray) -> np.ndarray:
    return 6.0 * t ** 5 - 15.0 * t ** 4 + 10.0 * t ** 3


def smoothstep_1d(peak, x: Coord) -> np.ndarray:
    return _smooth(_ramp(x, peak.pos_x, _width(peak.fwhm_x)))


# ---------------------------------------------------------------------------
# 2D profiles

def gaussian_2d(peak, x: Coord, y: Coord) -> np.ndarray:
    sig_x = _width(peak.fwhm_x) / TWO_SQRT_2LN2
    sig_y = _width(peak.fwhm_y) / TWO_SQRT_2LN2
    rho = _rho(peak.correlation)
    one_m_rho2 = 1.0 - rho * rho
    amp = 1.0 / (2.0 * math.pi * sig_x * sig_y * math.sqrt(one_m_rho2))
    u = (x - peak.pos_x) / sig_x
    v = (y - peak.pos_y) / sig_y
    q = u * u - 2.0 * rho * u * v + v * v
    return amp * np.exp(-q / (2.0 * one_m_rho2))


def lorentz_2d(peak, x: Coord, y: Coord) -> np.ndarray:
    # Symmetric bivariate Cauchy, X FWHM only
    gamma = _width(peak.fwhm_x) / 2.0
    dx = x - peak.pos_x
    dy = y - peak.pos_y
    return (1.0 / (2.0 * math.pi)) * (gamma / np.power(dx * dx + dy * dy + gamma * gamma, 1.5))


def pseudo_voigt_2d(peak, x: Coord, y: Coord) -> np.ndarray:
    fwhm_av = (_width(peak.fwhm_x) + _width(peak.fwhm_y)) / 2.0
    eta = pseudo_voigt_eta(fwhm_av, fwhm_av)
    return (1.0 - eta) * gaussian_2d(peak, x, y) + eta * lorentz_2d(peak, x, y)


def laplace_2d(peak, x: Coord, y: Coord) -> np.ndarray:
    # Decaying exponential in the Mahalanobis distance; the exact bivariate
    # Laplace needs a modified Bessel function of the second kind
    sig_x = math.sqrt(2.0) * (_width(peak.fwhm_x) / TWO_LN2)
    sig_y = math.sqrt(2.0) * (_width(peak.fwhm_y) / TWO_LN2)
    rho = _rho(peak.correlation)
    one_m_rho2 = 1.0 - rho * rho
    amp = 1.0 / (math.pi * sig_x * sig_y * math.sqrt(one_m_rho2))
    u = (x - peak.pos_x) / sig_x
    v = (y - peak.pos_y) / sig_y
    q = u * u - 2.0 * rho * u * v + v * v
    return amp * np.exp(-np.sqrt(np.maximum(0.0, 2.0 * q / one_m_rho2)))


def pyramid_2d(peak, x: Coord, y: Coord) -> np.ndarray:
    fx = _width(peak.fwhm_x)
    fy = _width(peak.fwhm_y)
    b = np.where(x <= _trunc(peak.pos_x), 1.0, -1.0) / fx
    c = np.where(y <= _trunc(peak.pos_y), 1.0, -1.0) / fy
    return np.maximum(0.0, 1.0 + b * (x - peak.pos_x) + c * (y - peak.pos_y))


def cone_2d(peak, x: Coord, y: Coord) -> np.ndarray:
    fx = _width(peak.fwhm_x)
    fy = _width(peak.fwhm_y)
    height = fx + fy
    dx = x - peak.pos_x
    dy = y - peak.pos_y
    d = np.sqrt(dx * dx + dy * dy)
    at_center = d == 0
    d_safe = np.where(at_center, 1.0, d)
    theta = np.arcsin(np.clip(dy / d_safe, -1.0, 1.0))
    # Radius of the base ellipse along the same angle
    r = (fx * fy) / np.sqrt((fy * np.cos(theta)) ** 2 + (fx * np.sin(theta)) ** 2)
    inside = (r - d_safe) * (height / r)
    return np.maximum(0.0, np.where(at_center, height, inside))


def square_2d(peak, x: Coord, y: Coord) -> np.ndarray:
    hx = _width(peak.fwhm_x) / 2.0
    hy = _width(peak.fwhm_y) / 2.0
    in_x = (x > _trunc(peak.pos_x - hx)) & (x <= _trunc(peak.pos_x + hx))
    in_y = (y > _trunc(peak.pos_y - hy)) & (y <= _trunc(peak.pos_y + hy))
    return np.where(in_x & in_y, 1.0, 0.0)


def moffat_2d(peak, x: Coord, y: Coord) -> np.ndarray:
    fwhm = _width(peak.fwhm_x)
    beta = zero_check(float(peak.p1))
    alpha2 = _moffat_alpha2(fwhm, beta)
    dx = x - peak.pos_x
    dy = y - peak.pos_y
    return ((beta - 1.0) / (math.pi * alpha2)) * np.power(1.0 + (dx * dx + dy * dy) / alpha2, -beta)


def smoothstep_2d(peak, x: Coord, y: Coord) -> np.ndarray:
    t = (_ramp(x, peak.pos_x, _width(peak.fwhm_x)) + _ramp(y, peak.pos_y, _width(peak.fwhm_y))) / 2.0
    return _smooth(t)


KERNELS_1D: Dict[Shape1D, Callable[..., np.ndarray]] = {
    Shape1D.SQUARE: square_1d,
    Shape1D.TRIANGLE: triangle_1d,
    Shape1D.GAUSSIAN: gaussian_1d,
    Shape1D.LORENTZ: lorentz_1d,
    Shape1D.PSEUDO_VOIGT: pseudo_voigt_1d,
    Shape1D.LAPLACE: laplace_1d,
    Shape1D.MOFFAT: moffat_1d,
    Shape1D.SMOOTHSTEP: smoothstep_1d,
}

KERNELS_2D: Dict[Shape2D, Callable[..., np.ndarray]] = {
    Shape2D.SQUARE: square_2d,
    Shape2D.PYRAMID: pyramid_2d,
    Shape2D.CONE: cone_2d,
    Shape2D.GAUSSIAN: gaussian_2d,
    Shape2D.LORENTZ: lorentz_2d,
    Shape2D.PSEUDO_VOIGT: pseudo_voigt_2d,
    Shape2D.LAPLACE: laplace_2d,
    Shape2D.MOFFAT: moffat_2d,
    Shape2D.SMOOTHSTEP: smoothstep_2d,
}


def _finish(result, *coords):
    if all(np.ndim(c) == 0 for c in coords):
        return float(result)
    return np.broadcast_to(result, np.broadcast(*coords).shape).astype(np.float64)


def evaluate_1d(peak, x: Coord):
    """Evaluate the peak's 1D shape at x. Returns a float for scalar x, else an array."""
    x = np.asarray(x, dtype=np.float64)
    kernel = KERNELS_1D.get(resolve_shape_1d(peak.shape))
    if kernel is None:
        return _finish(np.zeros_like(x), x)
    with np.errstate(all="ignore"):
        return _finish(kernel(peak, x), x)


def evaluate_2d(peak, x: Coord, y: Coord):
    """Evaluate the peak's 2D shape at (x, y). Returns a float for scalar input, else an array."""
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    kernel = KERNELS_2D.get(resolve_shape_2d(peak.shape))
    if kernel is None:
        return _finish(np.zeros(np.broadcast(x, y).shape), x, y)
    with np.errstate(all="ignore"):
        return _finish(kernel(peak, x, y), x, y)
