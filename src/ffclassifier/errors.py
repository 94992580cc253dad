from __future__ import annotations


class TrainingError(RuntimeError):
    """Base class for fatal errors raised while building or training a classifier."""


class StreamNotFoundError(TrainingError):
    def __init__(self, name: str, available: tuple[str, ...] = ()):
        self.name = name
        self.available = tuple(available)
        super().__init__(f"stream {name!r} not found (available: {', '.join(self.available) or 'none'})")


class ShapeMismatchError(TrainingError, ValueError):
    pass


class UnboundInputError(TrainingError):
    pass


class DeviceUnavailableError(TrainingError):
    pass


class DataFormatError(TrainingError, ValueError):
    pass


class TrainerStateError(TrainingError):
    pass
