from __future__ import annotations

"""
Acquisition controller: the producer loop of the simulated peak detector.

One daemon worker thread per controller. It holds the parameter store lock while
it reads a frame's parameters and composes the frame, and drops it only while
blocked on the start signal or on the inter-frame stop wait. Writers on other
threads (web host, CLI, tests) take the same lock through ParameterStore.set, so
they never race the compositor.

    Idle --start--> Acquiring --done/stop--> Idle
                              --stop during a bounded run--> Aborted
"""

from contextlib import contextmanager
from enum import IntEnum
from typing import Any, Callable, Dict, List, Optional, Union
import logging
import threading
import time
import numpy as np

from .buffers import BufferPool, DataType, FrameBuffer
from .compositor import compose_frame
from .descriptors import AcquisitionSettings, FrameConfig, ImageMode
from .errors import BufferAllocationError
from .kernels import resolve_shape_1d, resolve_shape_2d, shape_name, Shape1D, Shape2D
from .params import (ParameterStore, create_engine_params, read_acquisition_settings, read_frame_config,
                     write_acquisition_settings, write_frame_config)

logger = logging.getLogger(__name__)


class DetectorState(IntEnum):
    # areaDetector ADStatus codes
    IDLE = 0
    ACQUIRE = 1
    ABORTED = 10


FrameConsumer = Callable[[FrameBuffer], Any]


class AcquisitionController:
    def __init__(self, max_size_x: int = 1024, max_size_y: int = 1024, max_peaks: int = 10,
                 data_type: Any = DataType.FLOAT64, pool: Optional[BufferPool] = None,
                 seed: Optional[int] = None, autostart: bool = True):
        self.params = ParameterStore()
        create_engine_params(self.params, max(1, int(max_size_x)), max(1, int(max_size_y)),
                             max(1, int(max_peaks)), data_type)
        self.pool = pool if pool is not None else BufferPool()
        self._rng = np.random.RandomState(seed)

        self._start_event = threading.Event()
        self._stop_event = threading.Event()
        self._idle_event = threading.Event()
        self._idle_event.set()
        self._shutdown_event = threading.Event()

        self._acquiring = False
        self._pending_reset = False
        self._run_start = 0.0
        self._buffer: Optional[FrameBuffer] = None
        self._latest: Optional[FrameBuffer] = None
        self._consumers: List[FrameConsumer] = []

        p = self.params
        p.add_write_hook("size_x", lambda v, i: min(max(1, v), p.get("max_size_x")))
        p.add_write_hook("size_y", lambda v, i: min(max(1, v), p.get("max_size_y")))
        p.add_write_hook("num_images", lambda v, i: max(1, v))
        p.add_write_hook("acquire_period", lambda v, i: max(0.0, v))
        p.add_write_hook("acquire", self._on_acquire)
        p.add_write_hook("reset", self._on_reset)

        self._thread = threading.Thread(target=self._run, name="simpeaks-acquisition", daemon=True)
        if autostart:
            self._thread.start()

    # =================== Host-facing API ===================

    @property
    def state(self) -> DetectorState:
        return DetectorState(self.params.get("status"))

    @property
    def acquiring(self) -> bool:
        return self._acquiring

    def start(self) -> None:
        if not self._thread.is_alive() and not self._shutdown_event.is_set():
            self._thread.start()
        self.params.set("acquire", 1)

    def stop(self) -> None:
        self.params.set("acquire", 0)

    def configure(self, config: Union[FrameConfig, Dict[str, Any], None] = None,
                  settings: Union[AcquisitionSettings, Dict[str, Any], None] = None) -> None:
        if isinstance(config, dict):
            config = FrameConfig.from_dict(config)
        if isinstance(settings, dict):
            settings = AcquisitionSettings.from_dict(settings)
        with self.params.lock:
            if config is not None:
                write_frame_config(self.params, config)
            if settings is not None:
                write_acquisition_settings(self.params, settings)

    def frame_config(self) -> FrameConfig:
        return read_frame_config(self.params)

    def settings(self) -> AcquisitionSettings:
        return read_acquisition_settings(self.params)

    def set_param(self, name: str, value: Any, index: int = 0) -> Any:
        return self.params.set(name, value, index)

    def get_param(self, name: str, index: int = 0) -> Any:
        return self.params.get(name, index)

    def add_consumer(self, consumer: FrameConsumer) -> None:
        with self.params.lock:
            self._consumers.append(consumer)

    def remove_consumer(self, consumer: FrameConsumer) -> None:
        with self.params.lock:
            if consumer in self._consumers:
                self._consumers.remove(consumer)

    def latest_frame(self) -> Optional[FrameBuffer]:
        """Copy of the most recently composed frame, or None before the first frame."""
        with self.params.lock:
            return self._latest.copy() if self._latest is not None else None

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        return self._idle_event.wait(timeout)

    def report_status(self, details: int = 1) -> str:
        """Human readable dump of the detector state, current descriptors and counters."""
        with self.params.lock:
            p = self.params
            lines = [
                f"Simulated peak detector (max {p.get('max_size_x')}x{p.get('max_size_y')}, "
                f"{p.get('max_peaks')} peak slots)",
                f"  status: {self.state.name} ({p.get('status_message')})",
                f"  array_counter: {p.get('array_counter')}  num_images_counter: {p.get('num_images_counter')}",
            ]
            if details > 0:
                cfg = read_frame_config(p)
                st = read_acquisition_settings(p)
                lines.append(f"  frame: {cfg.size_x}x{cfg.size_y} {cfg.data_type.name} integrate={cfg.integrate}")
                lines.append(f"  mode: {st.image_mode.name} num_images={st.num_images} "
                             f"period={st.acquire_period}s callbacks={st.array_callbacks}")
                for axis, bg in (("x", cfg.background_x), ("y", cfg.background_y)):
                    lines.append(f"  background {axis}: {bg.kind.value} c=({bg.c0}, {bg.c1}, {bg.c2}, {bg.c3}) "
                                 f"shift={bg.shift}")
                n = cfg.noise
                lines.append(f"  noise: {n.kind.value} level={n.level} clamp={n.clamp} [{n.lower}, {n.upper}]")
                for slot, peak in enumerate(cfg.peaks):
                    if cfg.is_2d:
                        family = resolve_shape_2d(peak.shape)
                        enabled = family != Shape2D.NONE
                    else:
                        family = resolve_shape_1d(peak.shape)
                        enabled = family != Shape1D.NONE
                    if not enabled and details < 2:
                        continue
                    lines.append(f"  peak[{slot}]: {shape_name(family)} pos=({peak.pos_x}, {peak.pos_y}) "
                                 f"fwhm=({peak.fwhm_x}, {peak.fwhm_y}) amp={peak.amplitude} "
                                 f"rho={peak.correlation} p1={peak.p1} p2={peak.p2}")
            if details > 1:
                lines.append(f"  {self.pool.report()}")
                if self._buffer is not None:
                    lines.append(f"  buffer: {self._buffer.dims} {self._buffer.data_type.name}")
        return "\n".join(lines)

    def shutdown(self, timeout: Optional[float] = 5.0) -> None:
        """Stop the worker thread and return the frame buffer to the pool."""
        with self.params.lock:
            self._shutdown_event.set()
            if self._acquiring:
                self._stop_event.set()
            self._start_event.set()
        if self._thread.is_alive():
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Acquisition thread did not exit within %ss", timeout)
        with self.params.lock:
            if self._buffer is not None:
                self.pool.release(self._buffer)
                self._buffer = None

    # =================== Write hooks (called with the store lock held) ===================

    def _on_acquire(self, value: int, index: int) -> int:
        if value and not self._acquiring:
            self._acquiring = True
            self._pending_reset = True
            self._run_start = time.time()
            self._stop_event.clear()
            self._idle_event.clear()
            self.params.set("num_images_counter", 0)
            self._set_status(DetectorState.ACQUIRE, "Acquiring")
            self._start_event.set()
        elif not value and self._acquiring:
            self._stop_event.set()
        return value

    def _on_reset(self, value: int, index: int) -> int:
        if value:
            self._pending_reset = True
        # momentary
        return 0

    def _set_status(self, state: DetectorState, message: str) -> None:
        self.params.set("status", int(state))
        self.params.set("status_message", message)

    # =================== Worker ===================

    @contextmanager
    def _unlocked(self):
        self.params.lock.release()
        try:
            yield
        finally:
            self.params.lock.acquire()

    def _run(self) -> None:
        with self.params.lock:
            while not self._shutdown_event.is_set():
                if not self._acquiring:
                    with self._unlocked():
                        self._start_event.wait()
                    self._start_event.clear()
                    if self._acquiring:
                        logger.info("Acquisition started (mode=%s)",
                                    ImageMode(self.params.get("image_mode")).name)
                    continue

                frame = self._acquire_frame()
                if frame is not None and self.params.get("array_callbacks"):
                    consumers = list(self._consumers)
                    with self._unlocked():
                        self._publish(frame, consumers)

                mode = ImageMode(self.params.get("image_mode"))
                produced = self.params.get("num_images_counter")
                if (mode == ImageMode.SINGLE and produced >= 1) or \
                        (mode == ImageMode.MULTIPLE and produced >= self.params.get("num_images")):
                    self._finish(DetectorState.IDLE, "Idle")
                    continue

                period = self.params.get("acquire_period")
                with self._unlocked():
                    stopped = self._stop_event.wait(period)
                if stopped or self._stop_event.is_set():
                    if ImageMode(self.params.get("image_mode")) == ImageMode.CONTINUOUS:
                        self._finish(DetectorState.IDLE, "Idle")
                    else:
                        self._finish(DetectorState.ABORTED, "Aborted")
        logger.debug("Acquisition thread exiting")

    def _acquire_frame(self) -> Optional[FrameBuffer]:
        config = read_frame_config(self.params)
        buf = self._ensure_buffer(config)
        if buf is None:
            return None

        reset = self._pending_reset
        self._pending_reset = False
        t0 = time.perf_counter()
        compose_frame(buf.data, config, reset=reset, rng=self._rng)
        compose_s = time.perf_counter() - t0

        unique_id = self.params.get("array_counter") + 1
        image_number = self.params.get("num_images_counter") + 1
        now = time.time()
        buf.unique_id = unique_id
        buf.image_number = image_number
        buf.timestamp = now
        buf.elapsed = now - self._run_start
        buf.attributes["compose_s"] = compose_s
        self.params.set("array_counter", unique_id)
        self.params.set("num_images_counter", image_number)
        logger.debug("Frame %d composed in %.4fs (%s %s)", unique_id, compose_s, buf.dims, buf.data_type.name)

        self._latest = buf.copy()
        return self._latest

    def _ensure_buffer(self, config: FrameConfig) -> Optional[FrameBuffer]:
        """Reuse the current buffer unless the frame shape or element type changed."""
        buf = self._buffer
        if buf is not None and buf.dims == tuple(config.shape) and buf.data_type == config.data_type:
            return buf
        if buf is not None:
            self.pool.release(buf)
            self._buffer = None
        try:
            self._buffer = self.pool.alloc(config.shape, config.data_type)
        except BufferAllocationError as e:
            logger.error("Frame skipped, buffer allocation failed: %s", e)
            return None
        # fresh buffer, nothing to integrate onto
        self._pending_reset = True
        return self._buffer

    def _publish(self, frame: FrameBuffer, consumers: List[FrameConsumer]) -> None:
        for consumer in consumers:
            try:
                consumer(frame.copy())
            except Exception:
                logger.exception("Frame consumer %r failed on frame %d", consumer, frame.unique_id)

    def _finish(self, state: DetectorState, message: str) -> None:
        produced = self.params.get("num_images_counter")
        self._acquiring = False
        self._stop_event.clear()
        self.params.set("acquire", 0)
        self._set_status(state, message)
        logger.info("Acquisition %s after %d frame(s)", message.lower(), produced)
        self._idle_event.set()
