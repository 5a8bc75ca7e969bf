"""
Application-level exceptions.

Every failure maps to a stable ``kind`` plus a human-readable message so the
API and workers can report it without exposing internal stack detail.
"""

from __future__ import annotations

from typing import Any


class RiskEngineError(Exception):
    """Base class for engine errors; ``kind`` is stable across releases."""

    kind = "internal_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class UnsupportedChain(RiskEngineError):
    """No adapter registered for the requested chain id."""

    kind = "unsupported_chain"

    def __init__(self, chain: str) -> None:
        super().__init__(f"Unsupported chain: {chain!r}", chain=chain)
        self.chain = chain


class MalformedPayload(RiskEngineError):
    """Raw payload could not be parsed; ``field`` names the offending field."""

    kind = "malformed_payload"

    def __init__(self, chain: str, field: str, reason: str) -> None:
        super().__init__(f"Malformed {chain} payload at {field!r}: {reason}", chain=chain, field=field)
        self.chain = chain
        self.field = field
        self.reason = reason


class NotFound(RiskEngineError):
    """Transaction or address absent from the source."""

    kind = "not_found"


class SourceUnavailable(RiskEngineError):
    """External source temporarily unreachable; retryable."""

    kind = "source_unavailable"


class SimulationUnavailable(SourceUnavailable):
    """Simulation environment unreachable; surfaces as a degraded result."""

    kind = "simulation_unavailable"


class Timeout(RiskEngineError):
    """Deadline exceeded on a suspending call; partial work is discarded."""

    kind = "timeout"


class DepthExceeded(RiskEngineError):
    """Informational truncation marker for trace results; never raised to callers."""

    kind = "depth_exceeded"

    def __init__(self, max_depth: int) -> None:
        super().__init__(f"Trace truncated at max_depth={max_depth}", max_depth=max_depth)
        self.max_depth = max_depth


class InconsistentEvidence(RiskEngineError):
    """Evidence conflicts with a prior sanctions listing/removal; logged, not rejected."""

    kind = "inconsistent_evidence"
