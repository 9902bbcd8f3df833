from __future__ import annotations

"""
Typed frame buffers and the pool that hands them out.

The pool enforces optional limits on the number of outstanding buffers and on
the total number of bytes they hold, mirroring the maxBuffers / maxMemory
arguments of an areaDetector array pool.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Tuple
import logging
import threading
import numpy as np

from .errors import BufferAllocationError

logger = logging.getLogger(__name__)


class DataType(IntEnum):
    INT8 = 0
    UINT8 = 1
    INT16 = 2
    UINT16 = 3
    INT32 = 4
    UINT32 = 5
    INT64 = 6
    UINT64 = 7
    FLOAT32 = 8
    FLOAT64 = 9


_NUMPY_TYPES = {
    DataType.INT8: np.int8,
    DataType.UINT8: np.uint8,
    DataType.INT16: np.int16,
    DataType.UINT16: np.uint16,
    DataType.INT32: np.int32,
    DataType.UINT32: np.uint32,
    DataType.INT64: np.int64,
    DataType.UINT64: np.uint64,
    DataType.FLOAT32: np.float32,
    DataType.FLOAT64: np.float64,
}


def resolve_data_type(value: Any) -> DataType:
    """Accept a DataType, its integer code, a name ("UInt16", "float32") or a numpy dtype."""
    if isinstance(value, DataType):
        return value
    if isinstance(value, str):
        key = value.strip().upper()
        if key.isdigit():
            return DataType(int(key))
        if key in DataType.__members__:
            return DataType[key]
        value = np.dtype(value.strip().lower())
    if isinstance(value, (np.dtype, type)):
        dt = np.dtype(value)
        for code, np_type in _NUMPY_TYPES.items():
            if np.dtype(np_type) == dt:
                return code
        raise ValueError(f"Unsupported element type: {dt}")
    return DataType(int(value))


def numpy_dtype(data_type: Any) -> np.dtype:
    return np.dtype(_NUMPY_TYPES[resolve_data_type(data_type)])


@dataclass
class FrameBuffer:
    data: np.ndarray
    data_type: DataType
    unique_id: int = 0
    image_number: int = 0
    # wall clock seconds, and seconds since the run started
    timestamp: float = 0.0
    elapsed: float = 0.0
    attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def dims(self) -> Tuple[int, ...]:
        return tuple(self.data.shape)

    @property
    def nbytes(self) -> int:
        return int(self.data.nbytes)

    def copy(self) -> "FrameBuffer":
        return FrameBuffer(
            data=self.data.copy(),
            data_type=self.data_type,
            unique_id=self.unique_id,
            image_number=self.image_number,
            timestamp=self.timestamp,
            elapsed=self.elapsed,
            attributes=dict(self.attributes),
        )

    def summary(self) -> Dict[str, Any]:
        return {
            "unique_id": self.unique_id,
            "image_number": self.image_number,
            "timestamp": self.timestamp,
            "elapsed": self.elapsed,
            "dims": list(self.dims),
            "data_type": self.data_type.name,
        }


class BufferPool:
    """Allocates zeroed numpy frame buffers and tracks what is outstanding.

    max_buffers / max_memory of 0 mean unlimited.
    """

    def __init__(self, max_buffers: int = 0, max_memory: int = 0):
        self.max_buffers = max(0, int(max_buffers))
        self.max_memory = max(0, int(max_memory))
        self._lock = threading.Lock()
        self._outstanding: Dict[int, int] = {}
        self.total_allocs = 0

    @property
    def num_allocated(self) -> int:
        with self._lock:
            return len(self._outstanding)

    @property
    def memory_used(self) -> int:
        with self._lock:
            return sum(self._outstanding.values())

    def alloc(self, dims: Tuple[int, ...], data_type: Any) -> FrameBuffer:
        data_type = resolve_data_type(data_type)
        dtype = numpy_dtype(data_type)
        dims = tuple(int(d) for d in dims)
        if not dims or any(d <= 0 for d in dims):
            raise BufferAllocationError(f"Invalid buffer dimensions {dims}")
        nbytes = int(np.prod(dims)) * dtype.itemsize
        with self._lock:
            if self.max_buffers and len(self._outstanding) >= self.max_buffers:
                raise BufferAllocationError(
                    f"Buffer limit reached ({self.max_buffers} outstanding)")
            used = sum(self._outstanding.values())
            if self.max_memory and used + nbytes > self.max_memory:
                raise BufferAllocationError(
                    f"Memory limit reached: {used} + {nbytes} > {self.max_memory} bytes")
            try:
                data = np.zeros(dims, dtype=dtype)
            except MemoryError as e:
                raise BufferAllocationError(f"Out of memory allocating {dims} {data_type.name}") from e
            buf = FrameBuffer(data=data, data_type=data_type)
            self._outstanding[id(buf)] = nbytes
            self.total_allocs += 1
        logger.debug("Allocated %s %s buffer (%d bytes)", dims, data_type.name, nbytes)
        return buf

    def release(self, buf: FrameBuffer) -> None:
        with self._lock:
            if self._outstanding.pop(id(buf), None) is None:
                logger.warning("Release of a buffer not owned by this pool ignored")
                return
        logger.debug("Released %s %s buffer", buf.dims, buf.data_type.name)

    def report(self) -> str:
        return (f"BufferPool: allocated={self.num_allocated} memory={self.memory_used} bytes "
                f"max_buffers={self.max_buffers or 'unlimited'} "
                f"max_memory={self.max_memory or 'unlimited'} total_allocs={self.total_allocs}")
