class SimPeaksError(Exception):
    """Base class for errors raised by the simpeaks engine."""


class ParameterError(SimPeaksError, KeyError):
    """Unknown parameter name or slot index outside the declared range."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep plain messages for API responses
        return str(self.args[0]) if self.args else ""


class BufferAllocationError(SimPeaksError):
    """The buffer pool could not provide a frame buffer."""
