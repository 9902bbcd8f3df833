"""
Typed key/value parameter store shared by the acquisition thread and its hosts.

Every engine setting lives here under a fixed name. Peak settings are arrays
indexed by peak slot. Writers on any thread go through ParameterStore.set, which
takes the store lock, runs the write hooks (clamping, start/stop signalling) and
then notifies listeners. The acquisition thread holds the same lock while it
reads a frame's worth of parameters and composes the frame.
"""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Callable, Dict, List, Optional
import logging
import threading

from .buffers import resolve_data_type
from .descriptors import (AcquisitionSettings, BackgroundDescriptor, BackgroundKind, FrameConfig, ImageMode,
                          NoiseDescriptor, NoiseKind, PeakDescriptor, _enum_value)
from .errors import ParameterError

logger = logging.getLogger(__name__)


class ParamType(Enum):
    INT = "int"
    FLOAT = "float"
    STRING = "string"


_CASTS = {ParamType.INT: int, ParamType.FLOAT: float, ParamType.STRING: str}


@dataclass
class ParamSpec:
    name: str
    kind: ParamType
    default: Any
    count: int = 1
    # optional pre-cast conversion (enum names to codes and the like)
    parse: Optional[Callable[[Any], Any]] = None


Listener = Callable[[str, int, Any], None]
WriteHook = Callable[[Any, int], Any]


class ParameterStore:
    def __init__(self):
        # Reentrant: listeners and hooks may read parameters while a write is in progress
        self.lock = threading.RLock()
        self._specs: Dict[str, ParamSpec] = {}
        self._values: Dict[str, List[Any]] = {}
        self._hooks: Dict[str, List[WriteHook]] = {}
        self._listeners: List[Listener] = []

    def create(self, name: str, kind: ParamType, default: Any, count: int = 1,
               parse: Optional[Callable[[Any], Any]] = None) -> None:
        spec = ParamSpec(name=name, kind=kind, default=default, count=max(1, int(count)), parse=parse)
        with self.lock:
            if name in self._specs:
                raise ParameterError(f"Parameter {name!r} already exists")
            self._specs[name] = spec
            self._values[name] = [self._coerce(spec, default)] * spec.count

    def names(self) -> List[str]:
        with self.lock:
            return list(self._specs)

    def spec(self, name: str) -> ParamSpec:
        try:
            return self._specs[name]
        except KeyError:
            raise ParameterError(f"Unknown parameter {name!r}") from None

    def _check_index(self, spec: ParamSpec, index: int) -> int:
        index = int(index)
        if not 0 <= index < spec.count:
            raise ParameterError(f"Index {index} out of range for {spec.name!r} (count={spec.count})")
        return index

    @staticmethod
    def _coerce(spec: ParamSpec, value: Any) -> Any:
        try:
            if spec.parse is not None:
                value = spec.parse(value)
            return _CASTS[spec.kind](value)
        except (TypeError, ValueError, OverflowError) as e:
            raise ValueError(f"Invalid value {value!r} for {spec.name!r}: {e}") from e

    def get(self, name: str, index: int = 0) -> Any:
        with self.lock:
            spec = self.spec(name)
            return self._values[name][self._check_index(spec, index)]

    def get_all(self, name: str) -> List[Any]:
        with self.lock:
            self.spec(name)
            return list(self._values[name])

    def set(self, name: str, value: Any, index: int = 0) -> Any:
        """Store value (after coercion and write hooks) and notify listeners. Returns the stored value."""
        with self.lock:
            spec = self.spec(name)
            index = self._check_index(spec, index)
            value = self._coerce(spec, value)
            for hook in self._hooks.get(name, []):
                value = self._coerce(spec, hook(value, index))
            self._values[name][index] = value
            for listener in list(self._listeners):
                try:
                    listener(name, index, value)
                except Exception:
                    logger.exception("Parameter listener failed for %s[%d]", name, index)
            return value

    def add_write_hook(self, name: str, hook: WriteHook) -> None:
        with self.lock:
            self.spec(name)
            self._hooks.setdefault(name, []).append(hook)

    def add_listener(self, listener: Listener) -> None:
        with self.lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        with self.lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def snapshot(self) -> Dict[str, Any]:
        with self.lock:
            return {name: (vals[0] if self._specs[name].count == 1 else list(vals))
                    for name, vals in self._values.items()}


# =================== Engine parameter vocabulary ===================

PEAK_PARAMS = {
    "shape": "peak_shape",
    "pos_x": "peak_pos_x",
    "pos_y": "peak_pos_y",
    "fwhm_x": "peak_fwhm_x",
    "fwhm_y": "peak_fwhm_y",
    "amplitude": "peak_amplitude",
    "correlation": "peak_correlation",
    "p1": "peak_p1",
    "p2": "peak_p2",
    "min_x": "peak_min_x",
    "max_x": "peak_max_x",
    "min_y": "peak_min_y",
    "max_y": "peak_max_y",
}

BACKGROUND_FIELDS = ("c0", "c1", "c2", "c3", "shift")


def _parse_shape(value: Any) -> str:
    if isinstance(value, IntEnum):
        return value.name.lower()
    return value


def _parse_flag(value: Any) -> int:
    if isinstance(value, str):
        return 1 if value.strip().lower() in ("1", "true", "yes", "on") else 0
    return 1 if value else 0


def _parse_enum(enum_cls, default):
    return lambda v: _enum_value(enum_cls, v, default).value


def create_engine_params(store: ParameterStore, max_size_x: int, max_size_y: int, max_peaks: int,
                         data_type: Any) -> None:
    """Declare every parameter the acquisition controller reads or reports."""
    INT, FLOAT, STRING = ParamType.INT, ParamType.FLOAT, ParamType.STRING
    flag = _parse_flag

    # Frame geometry
    store.create("max_size_x", INT, max_size_x)
    store.create("max_size_y", INT, max_size_y)
    store.create("max_peaks", INT, max_peaks)
    store.create("size_x", INT, max_size_x)
    store.create("size_y", INT, max_size_y)
    store.create("data_type", INT, resolve_data_type(data_type), parse=lambda v: int(resolve_data_type(v)))

    # Acquisition control
    store.create("acquire", INT, 0, parse=flag)
    store.create("image_mode", INT, ImageMode.CONTINUOUS, parse=_parse_enum(ImageMode, ImageMode.CONTINUOUS))
    store.create("num_images", INT, 1)
    store.create("acquire_period", FLOAT, 1.0)
    store.create("array_callbacks", INT, 1, parse=flag)
    store.create("integrate", INT, 0, parse=flag)
    store.create("reset", INT, 0, parse=flag)

    # Status read-backs
    store.create("status", INT, 0)
    store.create("status_message", STRING, "Idle")
    store.create("array_counter", INT, 0)
    store.create("num_images_counter", INT, 0)

    # Background, one set per axis
    for axis in ("x", "y"):
        store.create(f"bg_{axis}_type", STRING, BackgroundKind.NONE.value,
                     parse=_parse_enum(BackgroundKind, BackgroundKind.NONE))
        for name in BACKGROUND_FIELDS:
            store.create(f"bg_{axis}_{name}", FLOAT, 0.0)

    # Noise
    store.create("noise_type", STRING, NoiseKind.NONE.value, parse=_parse_enum(NoiseKind, NoiseKind.NONE))
    store.create("noise_level", FLOAT, 1.0)
    store.create("noise_clamp", INT, 0, parse=flag)
    store.create("noise_lower", FLOAT, 0.0)
    store.create("noise_upper", FLOAT, 0.0)

    # Peaks, one entry per slot
    defaults = PeakDescriptor()
    for field_name, param in PEAK_PARAMS.items():
        default = getattr(defaults, field_name)
        if field_name == "shape":
            store.create(param, STRING, default, count=max_peaks, parse=_parse_shape)
        elif isinstance(default, int):
            store.create(param, INT, default, count=max_peaks)
        else:
            store.create(param, FLOAT, default, count=max_peaks)


def read_frame_config(store: ParameterStore) -> FrameConfig:
    """Snapshot the store into a FrameConfig. Callers hold store.lock for a consistent read."""
    with store.lock:
        backgrounds = {}
        for axis in ("x", "y"):
            backgrounds[axis] = BackgroundDescriptor(
                kind=store.get(f"bg_{axis}_type"),
                **{name: store.get(f"bg_{axis}_{name}") for name in BACKGROUND_FIELDS})
        columns = {field_name: store.get_all(param) for field_name, param in PEAK_PARAMS.items()}
        n_peaks = store.spec("peak_shape").count
        peaks = [PeakDescriptor(**{k: v[i] for k, v in columns.items()}) for i in range(n_peaks)]
        return FrameConfig(
            size_x=store.get("size_x"),
            size_y=store.get("size_y"),
            data_type=store.get("data_type"),
            integrate=bool(store.get("integrate")),
            background_x=backgrounds["x"],
            background_y=backgrounds["y"],
            peaks=peaks,
            noise=NoiseDescriptor(
                kind=store.get("noise_type"),
                level=store.get("noise_level"),
                clamp=bool(store.get("noise_clamp")),
                lower=store.get("noise_lower"),
                upper=store.get("noise_upper"),
            ),
        )


def read_acquisition_settings(store: ParameterStore) -> AcquisitionSettings:
    with store.lock:
        return AcquisitionSettings(
            image_mode=store.get("image_mode"),
            num_images=store.get("num_images"),
            acquire_period=store.get("acquire_period"),
            array_callbacks=bool(store.get("array_callbacks")),
        )


def write_frame_config(store: ParameterStore, config: FrameConfig) -> None:
    """Write every field of config into the store. Unused peak slots are switched off."""
    with store.lock:
        store.set("size_x", config.size_x)
        store.set("size_y", config.size_y)
        store.set("data_type", config.data_type)
        store.set("integrate", config.integrate)
        for axis, bg in (("x", config.background_x), ("y", config.background_y)):
            store.set(f"bg_{axis}_type", bg.kind)
            for name in BACKGROUND_FIELDS:
                store.set(f"bg_{axis}_{name}", getattr(bg, name))
        store.set("noise_type", config.noise.kind)
        store.set("noise_level", config.noise.level)
        store.set("noise_clamp", config.noise.clamp)
        store.set("noise_lower", config.noise.lower)
        store.set("noise_upper", config.noise.upper)

        n_slots = store.spec("peak_shape").count
        if len(config.peaks) > n_slots:
            logger.warning("Config has %d peaks, only the first %d slots are used", len(config.peaks), n_slots)
        for slot in range(n_slots):
            if slot < len(config.peaks):
                peak = config.peaks[slot]
                for field_name, param in PEAK_PARAMS.items():
                    store.set(param, getattr(peak, field_name), index=slot)
            else:
                store.set("peak_shape", "none", index=slot)


def write_acquisition_settings(store: ParameterStore, settings: AcquisitionSettings) -> None:
    with store.lock:
        store.set("image_mode", settings.image_mode)
        store.set("num_images", settings.num_images)
        store.set("acquire_period", settings.acquire_period)
        store.set("array_callbacks", settings.array_callbacks)
