"""
core/exceptions.py
Typed failures surfaced by the decision pipeline.

Gate and sizer rejections are NOT exceptions; they come back as values.
"""


class EngineError(Exception):
    """Base class for all pipeline failures."""


class InvalidMarketState(EngineError):
    """Operation requested on a market (or position) in the wrong state."""


class PositionNotFound(InvalidMarketState):
    """Resolve/expire requested for a position id the ledger does not hold."""

    def __init__(self, position_id: str) -> None:
        super().__init__(f"Position {position_id} not found")
        self.position_id = position_id


class InvalidPayload(EngineError):
    """An external record failed validation on ingress."""


class SignalRejected(EngineError):
    """A signal is not eligible to move a belief."""


class SourceUnavailable(EngineError):
    """Transient failure of an external call; retry on the next cycle."""
