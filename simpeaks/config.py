"""
Engine settings read from the environment.

An optional .env file next to the project root (or the path given to
EngineSettings.from_env) is loaded with python-dotenv first; variables already
set in the process environment win.
"""

from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, Optional
import os

import dotenv

from .buffers import DataType, resolve_data_type

BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_PRESETS_DIR = BASE_DIR / "data" / "presets"


def _to_int(x, default=0):
    try:
        return int(x)
    except (TypeError, ValueError):
        return default


def _to_data_type(x, default=DataType.FLOAT64) -> DataType:
    if x is None or str(x).strip() == "":
        return default
    try:
        return resolve_data_type(x)
    except (TypeError, ValueError, KeyError):
        return default


@dataclass
class EngineSettings:
    max_size_x: int = 1024
    max_size_y: int = 1024
    max_peaks: int = 10
    data_type: DataType = DataType.FLOAT64
    # 0 means unlimited
    max_buffers: int = 0
    max_memory: int = 0
    seed: Optional[int] = None
    log_level: str = "INFO"
    log_format: str = "human"
    presets_dir: Path = DEFAULT_PRESETS_DIR

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "EngineSettings":
        dotenv.load_dotenv(dotenv_path=env_file or str(BASE_DIR / ".env"), override=False)
        env = os.environ
        seed_raw = env.get("SIMPEAKS_SEED", "").strip()
        log_format = env.get("SIMPEAKS_LOG_FORMAT", "human").strip().lower()
        return cls(
            max_size_x=max(1, _to_int(env.get("SIMPEAKS_MAX_SIZE_X"), 1024)),
            max_size_y=max(1, _to_int(env.get("SIMPEAKS_MAX_SIZE_Y"), 1024)),
            max_peaks=max(1, _to_int(env.get("SIMPEAKS_MAX_PEAKS"), 10)),
            data_type=_to_data_type(env.get("SIMPEAKS_DATA_TYPE")),
            max_buffers=max(0, _to_int(env.get("SIMPEAKS_MAX_BUFFERS"), 0)),
            max_memory=max(0, _to_int(env.get("SIMPEAKS_MAX_MEMORY"), 0)),
            seed=_to_int(seed_raw, None) if seed_raw else None,
            log_level=env.get("SIMPEAKS_LOG_LEVEL", "INFO").strip().upper() or "INFO",
            log_format=log_format if log_format in ("human", "json") else "human",
            presets_dir=Path(env.get("SIMPEAKS_PRESETS_DIR") or DEFAULT_PRESETS_DIR),
        )

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["data_type"] = self.data_type.name
        d["presets_dir"] = str(self.presets_dir)
        return d
