from typing import Dict, Optional
import numpy as np


def _num(value) -> Optional[float]:
    # JSON responses cannot carry nan/inf
    value = float(value)
    return value if np.isfinite(value) else None


def compute_frame_stats(frame: np.ndarray) -> Dict:
    a = np.asarray(frame)
    count = int(a.size)
    if count == 0:
        return {
            "count": 0,
            "min": 0.0,
            "max": 0.0,
            "mean": 0.0,
            "std": 0.0,
            "sum": 0.0,
            "argmax": None,
            "dtype": str(a.dtype),
        }

    values = a.astype(np.float64)
    finite = np.isfinite(values)
    if not finite.all():
        # Statistics over the finite bins only
        masked = np.where(finite, values, np.nan)
        with np.errstate(all="ignore"):
            lo, hi = np.nanmin(masked), np.nanmax(masked)
            mean, std, total = np.nanmean(masked), np.nanstd(masked), np.nansum(masked)
        peak_idx = int(np.nanargmax(masked)) if finite.any() else 0
    else:
        lo, hi = values.min(), values.max()
        mean, std, total = values.mean(), values.std(), values.sum()
        peak_idx = int(np.argmax(values))

    pos = np.unravel_index(peak_idx, a.shape)
    argmax = {"x": int(pos[0])} if a.ndim == 1 else {"x": int(pos[-1]), "y": int(pos[-2])}
    return {
        "count": count,
        "min": _num(lo),
        "max": _num(hi),
        "mean": _num(mean),
        "std": _num(std),
        "sum": _num(total),
        "argmax": argmax,
        "dtype": str(a.dtype),
    }
