"""Error taxonomy shared by the alerting and continuity services."""

from typing import Any


class AlertEngineError(Exception):
    """Base class for errors raised by the engine.

    ``context`` carries identifiers (instance id, dedupe key, attempted
    transition) so callers can render an actionable message.
    """

    _PLAIN_TYPES = (str, int, float, bool, list, dict, type(None))

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        context = {
            key: value if isinstance(value, self._PLAIN_TYPES) else str(value)
            for key, value in self.context.items()
        }
        return {"error": type(self).__name__, "message": self.message, **context}


class ValidationError(AlertEngineError):
    """Malformed rule definition, missing close reason or unknown enum value."""


class NotFoundError(AlertEngineError):
    """Unknown rule id or alert instance id."""


class InvalidTransitionError(AlertEngineError):
    """Disallowed status change, including concurrent-conflict rejections."""


class StoreError(AlertEngineError):
    """Underlying persistence or observation-store failure."""
