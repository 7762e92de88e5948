"""Typed failures raised along the turn pipeline.

Quota denial is deliberately absent: it is handled as a conversational
decline, not an exception.
"""


class TurnEngineError(Exception):
    """Base class for all engine errors."""


class RequestValidationError(TurnEngineError):
    """The inbound turn request is malformed or missing required fields."""

    def __init__(self, message: str, fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.fields = fields or []


class UpstreamError(TurnEngineError):
    """The inference backend or a dependent service failed."""


class UpstreamTimeout(UpstreamError):
    """The inference backend did not answer before the hard timeout."""


class ToolResolutionError(TurnEngineError):
    """An entity store could not return the referenced entities."""

    def __init__(self, message: str, store: str = "") -> None:
        super().__init__(message)
        self.store = store


class PersistenceError(TurnEngineError):
    """A store write failed."""
