"""
Core utilities: error taxonomy, retry policy, and deadlines.

Cross-cutting concerns shared by adapters, sources, the analysis engine,
and the API server.
"""

from backend_riskengine.core.exceptions import (
    DepthExceeded,
    InconsistentEvidence,
    MalformedPayload,
    NotFound,
    RiskEngineError,
    SimulationUnavailable,
    SourceUnavailable,
    Timeout,
    UnsupportedChain,
)
from backend_riskengine.core.retry import RetryPolicy, retry_async, with_deadline

__all__ = [
    "DepthExceeded",
    "InconsistentEvidence",
    "MalformedPayload",
    "NotFound",
    "RiskEngineError",
    "SimulationUnavailable",
    "SourceUnavailable",
    "Timeout",
    "UnsupportedChain",
    "RetryPolicy",
    "retry_async",
    "with_deadline",
]
