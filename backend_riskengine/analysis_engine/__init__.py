"""
Analysis engine package: transaction intelligence and risk.

Decodes and simulates normalized transactions, flags MEV and laundering
patterns, keeps address reputations, scores transactions, and correlates
addresses across chains.
"""

from backend_riskengine.analysis_engine.models import (
    DecodedInteraction,
    Evidence,
    LinkageType,
    MevFlag,
    MevKind,
    PatternFlag,
    PatternKind,
    PipelineResult,
    ReputationClass,
    ReputationRecord,
    RiskFactor,
    RiskScore,
    SimulationResult,
    TraceEdge,
    TraceGraph,
)
from backend_riskengine.analysis_engine.decoder import SignatureRegistry
from backend_riskengine.analysis_engine.simulation import (
    InMemorySimulationBackend,
    SimulationBackend,
    SimulationConfig,
    StateSnapshot,
    TransactionSimulator,
)
from backend_riskengine.analysis_engine.mev import MevConfig, MevDetector
from backend_riskengine.analysis_engine.patterns import PatternConfig, PatternDetector
from backend_riskengine.analysis_engine.pipeline import AnalysisContext, TransactionPipeline
from backend_riskengine.analysis_engine.reputation import (
    ReputationConfig,
    ReputationStore,
    sanctions_listing,
    sanctions_removal,
)
from backend_riskengine.analysis_engine.scorer import RiskScorer, ScoringConfig
from backend_riskengine.analysis_engine.correlator import CorrelatorConfig, CrossChainCorrelator

__all__ = [
    "AnalysisContext",
    "CorrelatorConfig",
    "CrossChainCorrelator",
    "DecodedInteraction",
    "Evidence",
    "InMemorySimulationBackend",
    "LinkageType",
    "MevConfig",
    "MevDetector",
    "MevFlag",
    "MevKind",
    "PatternConfig",
    "PatternDetector",
    "PatternFlag",
    "PatternKind",
    "PipelineResult",
    "ReputationClass",
    "ReputationConfig",
    "ReputationRecord",
    "ReputationStore",
    "RiskFactor",
    "RiskScore",
    "RiskScorer",
    "ScoringConfig",
    "SignatureRegistry",
    "SimulationBackend",
    "SimulationConfig",
    "SimulationResult",
    "StateSnapshot",
    "TraceEdge",
    "TraceGraph",
    "TransactionPipeline",
    "TransactionSimulator",
    "sanctions_listing",
    "sanctions_removal",
]
