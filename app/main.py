from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi import WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pathlib import Path
from typing import Optional
import asyncio
import json
import logging
import random
import re
import threading
import time
import numpy as np

from simpeaks import AcquisitionController, BufferPool, FrameConfig, ParameterError, compose_frame, default_config
from simpeaks.buffers import FrameBuffer, numpy_dtype
from simpeaks.config import EngineSettings
from simpeaks.logging_config import setup_logging
from . import frame_encoder, postprocess


BASE_DIR = Path(__file__).resolve().parent.parent
SETTINGS = EngineSettings.from_env()
setup_logging(SETTINGS.log_level, SETTINGS.log_format)
logger = logging.getLogger(__name__)

PRESETS_DIR = Path(SETTINGS.presets_dir)
PRESETS_DIR.mkdir(parents=True, exist_ok=True)

# How often /ws/live looks for a newly published frame
WS_POLL_S = 0.05


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _controller
    yield
    # Stop the worker; the next request builds a fresh controller
    with _controller_lock:
        ctrl, _controller = _controller, None
    if ctrl is not None:
        ctrl.shutdown()


app = FastAPI(title="Simulated Peak Detector", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# In-memory live state for the last published frame
LIVE_STATE = {"last": None, "frame": None}
_live_lock = threading.Lock()

# Controller is created on first use
_controller: Optional[AcquisitionController] = None
_controller_lock = threading.Lock()


def _on_frame(frame: FrameBuffer) -> None:
    # Runs on the acquisition thread
    stats = postprocess.compute_frame_stats(frame.data)
    with _live_lock:
        LIVE_STATE["frame"] = frame
        LIVE_STATE["last"] = {**frame.summary(), "stats": stats}


def get_controller() -> AcquisitionController:
    global _controller
    with _controller_lock:
        if _controller is None:
            _controller = AcquisitionController(
                max_size_x=SETTINGS.max_size_x,
                max_size_y=SETTINGS.max_size_y,
                max_peaks=SETTINGS.max_peaks,
                data_type=SETTINGS.data_type,
                pool=BufferPool(SETTINGS.max_buffers, SETTINGS.max_memory),
                seed=SETTINGS.seed,
            )
            _controller.add_consumer(_on_frame)
            logger.info("Controller ready (max %dx%d, %d peak slots)",
                        SETTINGS.max_size_x, SETTINGS.max_size_y, SETTINGS.max_peaks)
        return _controller


def _live_last():
    with _live_lock:
        return LIVE_STATE["last"]


def _safe_name(name) -> str:
    # sanitize name for filesystem
    return re.sub(r"[^\w\-_.]", "_", str(name).strip())


async def _json_body(request: Request):
    try:
        data = await request.json()
    except Exception:
        return None
    return data if isinstance(data, dict) else None


@app.get("/")
async def index():
    ctrl = get_controller()
    return {
        "ok": True,
        "name": "Simulated Peak Detector",
        "settings": SETTINGS.to_dict(),
        "state": ctrl.state.name,
    }


@app.get("/params")
async def get_params():
    return {"ok": True, "params": get_controller().params.snapshot()}


@app.post("/params")
async def set_param(request: Request):
    """Write one parameter. Body: {name, value, index}."""
    data = await _json_body(request)
    if data is None:
        return {"ok": False, "error": "Expected JSON body"}
    name = str(data.get("name", "")).strip()
    if not name:
        return {"ok": False, "error": "Parameter name required"}
    if "value" not in data:
        return {"ok": False, "error": "Missing value"}
    try:
        index = int(data.get("index") or 0)
        stored = get_controller().set_param(name, data["value"], index)
    except (ParameterError, ValueError, TypeError) as e:
        return {"ok": False, "error": str(e)}
    return {"ok": True, "name": name, "index": index, "value": stored}


@app.get("/default_config")
async def get_default_config():
    """Return the saved standard preset if there is one, otherwise the library default."""
    try:
        std_path = PRESETS_DIR / "standard.json"
        if std_path.exists():
            with std_path.open("r", encoding="utf-8") as f:
                cfg = json.load(f)
            return {"ok": True, "config": cfg, "source": "standard"}
        return {"ok": True, "config": default_config(), "source": "library_default"}
    except Exception as e:
        return {"ok": False, "error": str(e)}


@app.post("/configure")
async def configure(request: Request):
    """Apply a frame config and/or acquisition settings. Body: {config, settings}."""
    data = await _json_body(request)
    if data is None:
        return {"ok": False, "error": "Expected JSON body"}
    config = data.get("config")
    settings = data.get("settings")
    if config is None and settings is None:
        return {"ok": False, "error": "Missing config"}
    if (config is not None and not isinstance(config, dict)) or \
            (settings is not None and not isinstance(settings, dict)):
        return {"ok": False, "error": "config and settings must be objects"}
    ctrl = get_controller()
    try:
        ctrl.configure(config, settings)
    except (ValueError, TypeError) as e:
        return {"ok": False, "error": str(e)}
    return {"ok": True, "config": ctrl.frame_config().to_dict(), "settings": ctrl.settings().to_dict()}


@app.post("/acquire")
async def acquire(request: Request):
    """Start (acquire=1) or stop (acquire=0) acquisition."""
    data = await _json_body(request)
    if data is None or "acquire" not in data:
        return {"ok": False, "error": "Expected JSON body with 'acquire'"}
    ctrl = get_controller()
    try:
        if int(data["acquire"]):
            ctrl.start()
        else:
            ctrl.stop()
    except (ValueError, TypeError) as e:
        return {"ok": False, "error": str(e)}
    return {"ok": True, "acquiring": ctrl.acquiring, "state": ctrl.state.name}


@app.get("/status")
async def status(details: int = 1):
    ctrl = get_controller()
    return {
        "ok": True,
        "state": ctrl.state.name,
        "message": ctrl.get_param("status_message"),
        "acquiring": ctrl.acquiring,
        "array_counter": ctrl.get_param("array_counter"),
        "num_images_counter": ctrl.get_param("num_images_counter"),
        "report": ctrl.report_status(details),
    }


@app.get("/live_frame")
async def live_frame(colormap: str = "gray"):
    """Last published frame: stamps, stats and a base64 PNG preview."""
    with _live_lock:
        frame = LIVE_STATE["frame"]
        last = LIVE_STATE["last"]
    if frame is None:
        return {"ok": True, "last": None}
    try:
        t0 = time.perf_counter()
        b64 = frame_encoder.encode_png_b64(frame.data, colormap)
        enc_time = time.perf_counter() - t0
    except Exception as e:
        return {"ok": False, "error": str(e)}
    return {"ok": True, "last": last, "image_b64": b64, "timings": {"encode_s": enc_time}}


@app.post("/preview")
async def preview(request: Request):
    """Compose one frame synchronously from a posted config. Body: {config, seed, colormap}."""
    data = await _json_body(request)
    if data is None:
        return {"ok": False, "error": "Expected JSON body"}
    cfg = data.get("config", {})
    if not isinstance(cfg, dict):
        return {"ok": False, "error": "Missing config"}
    seed_in = data.get("seed", None)
    try:
        config = FrameConfig.from_dict(cfg)
        config.size_x = min(config.size_x, SETTINGS.max_size_x)
        config.size_y = min(config.size_y, SETTINGS.max_size_y)
        if seed_in is None:
            seed_used = random.SystemRandom().randint(0, 2**31 - 1)
        else:
            seed_used = int(seed_in)
        t0 = time.perf_counter()
        buf = np.zeros(config.shape, dtype=numpy_dtype(config.data_type))
        compose_frame(buf, config, reset=True, rng=np.random.RandomState(seed_used))
        gen_time = time.perf_counter() - t0
        t1 = time.perf_counter()
        b64 = frame_encoder.encode_png_b64(buf, data.get("colormap", "gray"))
        enc_time = time.perf_counter() - t1
    except Exception as e:
        return {"ok": False, "error": str(e)}
    stats = postprocess.compute_frame_stats(buf)
    logger.info("[TIMING][preview] compose=%.3fs, encode=%.3fs, total=%.3fs, size=%dx%d",
                gen_time, enc_time, gen_time + enc_time, config.size_x, config.size_y)
    return {
        "ok": True,
        "image_b64": b64,
        "width": config.size_x,
        "height": config.size_y,
        "stats": stats,
        "seed_used": seed_used,
        "timings": {"generate_s": gen_time, "encode_s": enc_time, "total_s": gen_time + enc_time},
    }


@app.post("/save_preset")
async def save_preset(request: Request):
    """Save provided config under a given preset name ('standard' becomes the default)."""
    data = await _json_body(request)
    if data is None:
        return {"ok": False, "error": "Expected JSON body"}
    name = str(data.get("name", "")).strip()
    cfg = data.get("config")
    if not name:
        return {"ok": False, "error": "Preset name required"}
    if not isinstance(cfg, dict):
        return {"ok": False, "error": "Missing config"}
    safe = _safe_name(name)
    try:
        # normalize through FrameConfig so stored presets always load
        normalized = FrameConfig.from_dict(cfg).to_dict()
        path = PRESETS_DIR / f"{safe}.json"
        with path.open("w", encoding="utf-8") as f:
            json.dump(normalized, f, indent=2)
        return {"ok": True, "saved": str(path), "name": safe}
    except Exception as e:
        return {"ok": False, "error": str(e)}


@app.get("/presets")
async def presets():
    """List available presets (including 'standard' if present)."""
    try:
        return {"ok": True, "presets": sorted(p.stem for p in PRESETS_DIR.glob("*.json"))}
    except Exception as e:
        return {"ok": False, "error": str(e)}


@app.get("/get_preset")
async def get_preset(name: str):
    safe = _safe_name(name)
    path = PRESETS_DIR / f"{safe}.json"
    if not path.exists():
        return {"ok": False, "error": "Preset not found"}
    try:
        with path.open("r", encoding="utf-8") as f:
            cfg = json.load(f)
        return {"ok": True, "config": cfg, "name": safe}
    except Exception as e:
        return {"ok": False, "error": str(e)}


@app.websocket("/ws/live")
async def ws_live(websocket: WebSocket):
    await websocket.accept()
    sent_id = None
    try:
        while True:
            last = _live_last()
            if last is not None and last["unique_id"] != sent_id:
                await websocket.send_text(json.dumps({"ok": True, "last": last}))
                sent_id = last["unique_id"]
            await asyncio.sleep(WS_POLL_S)
    except WebSocketDisconnect:
        pass
