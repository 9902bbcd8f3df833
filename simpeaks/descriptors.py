from __future__ import annotations

"""
Parameter records consumed by the compositor.

A FrameConfig is a plain snapshot of everything needed to build one frame: the
buffer geometry, one background per axis, the ordered peak slots and the noise
model. It round-trips through plain dicts so it can be stored as JSON presets
and posted by the web host.
"""

from dataclasses import dataclass, field, asdict, fields
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional

from .buffers import DataType, resolve_data_type


class BackgroundKind(str, Enum):
    NONE = "none"
    POLYNOMIAL = "polynomial"
    EXPONENTIAL = "exponential"


class NoiseKind(str, Enum):
    NONE = "none"
    UNIFORM = "uniform"
    GAUSSIAN = "gaussian"


class ImageMode(IntEnum):
    SINGLE = 0
    MULTIPLE = 1
    CONTINUOUS = 2


def _enum_value(enum_cls, value, default):
    """Accept an enum member, its value, its name or its index in declaration order."""
    if isinstance(value, enum_cls):
        return value
    members = list(enum_cls)
    if isinstance(value, str):
        key = value.strip().lower()
        for m in members:
            if key in (str(m.value).lower(), m.name.lower()):
                return m
        if key.isdigit():
            value = int(key)
        else:
            return default
    try:
        idx = int(value)
    except (TypeError, ValueError, OverflowError):
        return default
    if isinstance(enum_cls, type) and issubclass(enum_cls, IntEnum):
        try:
            return enum_cls(idx)
        except ValueError:
            return default
    return members[idx] if 0 <= idx < len(members) else default


def _pick(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


@dataclass
class PeakDescriptor:
    # family tag: name ("gaussian"), or index into the 1D/2D shape list
    shape: Any = "none"
    pos_x: float = 0.0
    pos_y: float = 0.0
    fwhm_x: float = 1.0
    fwhm_y: float = 1.0
    amplitude: float = 1.0
    correlation: float = 0.0
    # p1 is the Moffat beta exponent
    p1: float = 0.0
    p2: float = 0.0
    # Inclusive bin limits, 0 means unbounded
    min_x: int = 0
    max_x: int = 0
    min_y: int = 0
    max_y: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PeakDescriptor":
        return cls(**_pick(cls, data))


@dataclass
class BackgroundDescriptor:
    kind: BackgroundKind = BackgroundKind.NONE
    c0: float = 0.0
    c1: float = 0.0
    c2: float = 0.0
    c3: float = 0.0
    shift: float = 0.0

    def __post_init__(self):
        self.kind = _enum_value(BackgroundKind, self.kind, BackgroundKind.NONE)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackgroundDescriptor":
        return cls(**_pick(cls, data))


@dataclass
class NoiseDescriptor:
    kind: NoiseKind = NoiseKind.NONE
    level: float = 1.0
    clamp: bool = False
    lower: float = 0.0
    upper: float = 0.0

    def __post_init__(self):
        self.kind = _enum_value(NoiseKind, self.kind, NoiseKind.NONE)
        self.clamp = bool(self.clamp)
        # Inverted bounds collapse onto the lower one
        if self.upper < self.lower:
            self.upper = self.lower

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NoiseDescriptor":
        return cls(**_pick(cls, data))


@dataclass
class FrameConfig:
    # canvas (size_y == 1 gives a 1D frame)
    size_x: int = 1024
    size_y: int = 1
    data_type: DataType = DataType.FLOAT64

    # Accumulate frames instead of resetting each cycle
    integrate: bool = False

    background_x: BackgroundDescriptor = field(default_factory=BackgroundDescriptor)
    background_y: BackgroundDescriptor = field(default_factory=BackgroundDescriptor)
    peaks: List[PeakDescriptor] = field(default_factory=list)
    noise: NoiseDescriptor = field(default_factory=NoiseDescriptor)

    def __post_init__(self):
        self.size_x = max(1, int(self.size_x))
        self.size_y = max(1, int(self.size_y))
        self.data_type = resolve_data_type(self.data_type)
        self.integrate = bool(self.integrate)
        if isinstance(self.background_x, dict):
            self.background_x = BackgroundDescriptor.from_dict(self.background_x)
        if isinstance(self.background_y, dict):
            self.background_y = BackgroundDescriptor.from_dict(self.background_y)
        if isinstance(self.noise, dict):
            self.noise = NoiseDescriptor.from_dict(self.noise)
        self.peaks = [PeakDescriptor.from_dict(p) if isinstance(p, dict) else p for p in self.peaks]

    @property
    def is_2d(self) -> bool:
        return self.size_y > 1

    @property
    def shape(self):
        """numpy shape of the frame: (size_x,) or (size_y, size_x)."""
        if self.is_2d:
            return (self.size_y, self.size_x)
        return (self.size_x,)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["data_type"] = self.data_type.name
        d["background_x"]["kind"] = self.background_x.kind.value
        d["background_y"]["kind"] = self.background_y.kind.value
        d["noise"]["kind"] = self.noise.kind.value
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FrameConfig":
        return cls(**_pick(cls, data))


@dataclass
class AcquisitionSettings:
    image_mode: ImageMode = ImageMode.CONTINUOUS
    num_images: int = 1
    # seconds between frames
    acquire_period: float = 1.0
    # publish frames to consumers
    array_callbacks: bool = True

    def __post_init__(self):
        self.image_mode = _enum_value(ImageMode, self.image_mode, ImageMode.CONTINUOUS)
        self.num_images = max(1, int(self.num_images))
        self.acquire_period = max(0.0, float(self.acquire_period))
        self.array_callbacks = bool(self.array_callbacks)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "image_mode": self.image_mode.name.lower(),
            "num_images": self.num_images,
            "acquire_period": self.acquire_period,
            "array_callbacks": self.array_callbacks,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AcquisitionSettings":
        return cls(**_pick(cls, data or {}))


def default_config() -> Dict[str, Any]:
    return FrameConfig().to_dict()
