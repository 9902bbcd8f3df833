"""
Simulated peak detector: synthetic 1D/2D frames built from closed-form peak shapes,
per-axis backgrounds and noise, produced by a threaded acquisition loop.

Used by the FastAPI host (app/) and the batch frame generator (simpeaks.batch_job).
"""

from .acquisition import AcquisitionController, DetectorState
from .buffers import BufferPool, DataType, FrameBuffer
from .compositor import compose_frame
from .descriptors import (AcquisitionSettings, BackgroundDescriptor, FrameConfig, ImageMode, NoiseDescriptor,
                          PeakDescriptor, default_config)
from .errors import BufferAllocationError, ParameterError, SimPeaksError
from .kernels import Shape1D, Shape2D, evaluate_1d, evaluate_2d, zero_check

__all__ = [
    "AcquisitionController",
    "DetectorState",
    "BufferPool",
    "DataType",
    "FrameBuffer",
    "compose_frame",
    "AcquisitionSettings",
    "BackgroundDescriptor",
    "FrameConfig",
    "ImageMode",
    "NoiseDescriptor",
    "PeakDescriptor",
    "default_config",
    "BufferAllocationError",
    "ParameterError",
    "SimPeaksError",
    "Shape1D",
    "Shape2D",
    "evaluate_1d",
    "evaluate_2d",
    "zero_check",
]
