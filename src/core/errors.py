"""Error taxonomy for the reaction pipeline.

Only ``SinkFailure`` escapes ``ReactionProcessor.handle``; the rest are raised
and caught inside the pipeline or reported as outcomes.
"""

from __future__ import annotations


class ReactBridgeError(Exception):
    """Base class for all engine errors."""


class ConfigError(ReactBridgeError):
    """Configuration could not be loaded or is invalid."""


class MalformedInput(ReactBridgeError):
    """An event cannot be mapped or carries an unusable identity."""


class SinkError(ReactBridgeError):
    """Raised by sink adapters when task/event creation is rejected."""

    def __init__(self, message: str, transient: bool = True) -> None:
        super().__init__(message)
        self.transient = transient


class SinkFailure(ReactBridgeError):
    """The side effect failed and the ledger record was marked failed."""

    def __init__(self, delivery_id: str, reason: str) -> None:
        super().__init__(f"Action for delivery {delivery_id} failed: {reason}")
        self.delivery_id = delivery_id
        self.reason = reason
