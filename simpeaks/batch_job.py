from __future__ import annotations

"""
CLI module to write a batch of simulated detector frames to disk.

Runs an AcquisitionController in MULTIPLE mode and records every published frame:
    frames/NNNNNNNN.npy     raw frame in its native element type
    previews/NNNNNNNN.png   8-bit percentile-stretched preview (unless --no-previews)
    frames.json             per-frame stamps and statistics

The config file is either a plain frame config (as saved by the web host presets)
or {"config": {...}, "settings": {...}}.
"""

import argparse
from pathlib import Path
import json
import logging
import time
from typing import Any, Dict, List, Optional

from app.frame_encoder import save_npy, save_png
from app.postprocess import compute_frame_stats
from .acquisition import AcquisitionController, DetectorState
from .buffers import BufferPool, FrameBuffer
from .config import EngineSettings
from .descriptors import AcquisitionSettings, FrameConfig, ImageMode
from .logging_config import setup_logging

logger = logging.getLogger(__name__)


class FrameWriter:
    """Frame consumer that writes each published frame and collects its record."""

    def __init__(self, out_dir: Path, previews: bool = True, colormap: str = "gray"):
        self.out_dir = Path(out_dir)
        self.frames_dir = self.out_dir / "frames"
        self.previews_dir = self.out_dir / "previews"
        self.previews = previews
        self.colormap = colormap
        self.records: List[Dict[str, Any]] = []
        self.frames_dir.mkdir(parents=True, exist_ok=True)
        if previews:
            self.previews_dir.mkdir(parents=True, exist_ok=True)

    def __call__(self, frame: FrameBuffer) -> None:
        stem = f"{frame.image_number - 1:08d}"
        npy_path = self.frames_dir / f"{stem}.npy"
        save_npy(str(npy_path), frame.data)
        record = {**frame.summary(), "file": str(npy_path.relative_to(self.out_dir))}
        if self.previews:
            png_path = self.previews_dir / f"{stem}.png"
            save_png(str(png_path), frame.data, self.colormap)
            record["preview"] = str(png_path.relative_to(self.out_dir))
        record["stats"] = compute_frame_stats(frame.data)
        self.records.append(record)

    def write_index(self, extra: Optional[Dict[str, Any]] = None) -> Path:
        path = self.out_dir / "frames.json"
        payload = {**(extra or {}), "n_frames": len(self.records), "frames": self.records}
        with open(path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        return path


def load_config_file(path: str) -> FrameConfig:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict) and isinstance(data.get("config"), dict):
        data = data["config"]
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object")
    return FrameConfig.from_dict(data)


def run_batch(config: FrameConfig, n_frames: int, out_dir: Path, seed: Optional[int] = None,
              period: float = 0.0, previews: bool = True, settings: Optional[EngineSettings] = None,
              timeout: Optional[float] = None) -> Dict[str, Any]:
    """Acquire n_frames of config and write them under out_dir. Returns the run summary."""
    settings = settings or EngineSettings()
    out_dir = Path(out_dir)
    controller = AcquisitionController(
        max_size_x=max(settings.max_size_x, config.size_x),
        max_size_y=max(settings.max_size_y, config.size_y),
        max_peaks=max(settings.max_peaks, len(config.peaks)),
        data_type=config.data_type,
        pool=BufferPool(settings.max_buffers, settings.max_memory),
        seed=seed if seed is not None else settings.seed,
    )
    writer = FrameWriter(out_dir, previews=previews)
    controller.add_consumer(writer)
    try:
        controller.configure(config, AcquisitionSettings(
            image_mode=ImageMode.MULTIPLE, num_images=n_frames, acquire_period=period, array_callbacks=True))
        t0 = time.perf_counter()
        controller.start()
        if not controller.wait_until_idle(timeout):
            logger.warning("[batch_job] timed out after %ss, stopping", timeout)
            controller.stop()
            controller.wait_until_idle(5.0)
        elapsed = time.perf_counter() - t0
        state = controller.state
    finally:
        controller.shutdown()

    summary = {
        "state": state.name,
        "requested": int(n_frames),
        "written": len(writer.records),
        "seed": seed,
        "elapsed_s": elapsed,
        "config": config.to_dict(),
    }
    writer.write_index(summary)
    logger.info("[TIMING][batch_job] %d frames in %.3fs -> %s", len(writer.records), elapsed, out_dir)
    return summary


def main(argv=None):
    ap = argparse.ArgumentParser(description="Write a batch of simulated detector frames")
    ap.add_argument("--n-frames", type=int, default=100)
    ap.add_argument("--out-dir", type=str, required=True)
    ap.add_argument("--config-file", type=str, required=True)
    ap.add_argument("--seed", type=int, default=None)
    ap.add_argument("--period", type=float, default=0.0, help="Seconds between frames")
    ap.add_argument("--no-previews", action="store_true", help="Skip PNG previews")
    args = ap.parse_args(argv)

    settings = EngineSettings.from_env()
    setup_logging(settings.log_level, settings.log_format)

    config = load_config_file(args.config_file)
    logger.info("[batch_job] n_frames=%d size=%dx%d type=%s -> %s", args.n_frames, config.size_x,
                config.size_y, config.data_type.name, args.out_dir)
    summary = run_batch(config, max(1, args.n_frames), Path(args.out_dir), seed=args.seed,
                        period=max(0.0, args.period), previews=not args.no_previews, settings=settings)
    return 0 if summary["state"] == DetectorState.IDLE.name else 1


if __name__ == "__main__":
    raise SystemExit(main())
