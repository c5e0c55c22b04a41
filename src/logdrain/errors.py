from __future__ import annotations


class LogDrainError(Exception):
    """Base class for drain errors."""


class ConfigError(LogDrainError):
    pass


class QueueClosedError(LogDrainError):
    """Raised by enqueue once the consumer side has shut down."""


class SinkInitError(LogDrainError):
    def __init__(self, sink: str, cause: BaseException):
        super().__init__(f"sink {sink!r} failed to initialize: {cause}")
        self.sink = sink
        self.cause = cause


class SinkDeliveryError(LogDrainError):
    """
    ``records`` is how many records were lost with this failure. ``counted``
    means the sink already added them to its failure counter.
    """
    def __init__(self, sink: str, message: str, *, records: int = 1, counted: bool = False):
        super().__init__(f"{sink}: {message}")
        self.sink = sink
        self.records = records
        self.counted = counted
