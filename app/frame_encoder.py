from pathlib import Path
from typing import Optional
import base64
import cv2
import numpy as np

# 1D frames are drawn as a horizontal strip of this many rows
STRIP_HEIGHT = 32

COLORMAPS = {
    "gray": None,
    "viridis": cv2.COLORMAP_VIRIDIS,
    "inferno": cv2.COLORMAP_INFERNO,
    "magma": cv2.COLORMAP_MAGMA,
    "jet": cv2.COLORMAP_JET,
}


def to_uint8(frame: np.ndarray, low_pct: float = 1.0, high_pct: float = 99.0) -> np.ndarray:
    """Percentile-stretch any numeric frame to 8 bit. Non-finite bins map to 0."""
    a = np.asarray(frame, dtype=np.float64)
    if a.ndim == 1:
        a = a[None, :]
    finite = np.isfinite(a)
    if not finite.any():
        return np.zeros(a.shape, dtype=np.uint8)
    lo, hi = np.percentile(a[finite], [low_pct, high_pct])
    span = hi - lo
    if span <= 0:
        # flat frame: everything at or above the level is white
        out = np.where(a >= hi, 255.0, 0.0) if hi > 0 else np.zeros(a.shape)
    else:
        out = np.clip((a - lo) / span * 255.0, 0.0, 255.0)
    out[~finite] = 0.0
    return out.astype(np.uint8)


def render_preview(frame: np.ndarray, colormap: Optional[str] = "gray") -> np.ndarray:
    img = to_uint8(frame)
    if np.asarray(frame).ndim == 1:
        img = np.repeat(img, STRIP_HEIGHT, axis=0)
    cmap = COLORMAPS.get(str(colormap or "gray").lower())
    if cmap is not None:
        img = cv2.applyColorMap(img, cmap)
    return img


def encode_png_b64(frame: np.ndarray, colormap: Optional[str] = "gray") -> str:
    img = render_preview(frame, colormap)
    ok, buf = cv2.imencode(".png", img)
    if not ok:
        raise ValueError("Failed to encode preview")
    return f"data:image/png;base64,{base64.b64encode(buf.tobytes()).decode('ascii')}"


def save_png(path: str, frame: np.ndarray, colormap: Optional[str] = "gray") -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    if not cv2.imwrite(str(path), render_preview(frame, colormap)):
        raise OSError(f"Could not write preview: {path}")


def save_npy(path: str, frame: np.ndarray) -> None:
    """Raw frame in its native element type."""
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    np.save(str(path), np.asarray(frame))
