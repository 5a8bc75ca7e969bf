"""
Data models for analysis engine input and output.

Pipeline results, reputation records and evidence, risk scores, and trace
graph edges. Used by the engine, the database layer, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# --- Reputation ---

SOURCE_SANCTIONS_LIST = "sanctions_list"
SOURCE_SANCTIONS_REMOVAL = "sanctions_removal"


class ReputationClass(str, Enum):
    UNKNOWN = "unknown"
    NEUTRAL = "neutral"
    TRUSTED = "trusted"
    SUSPICIOUS = "suspicious"
    SANCTIONED = "sanctioned"


@dataclass(frozen=True)
class Evidence:
    """
    One entry in an address's audit trail.

    weight > 0 is negative (risk) evidence, weight < 0 is positive evidence.
    detail carries the list name for sanctions entries, or a short reason.
    """

    source: str
    weight: float
    timestamp: int
    detail: str = ""

    @property
    def is_sanctions_listing(self) -> bool:
        return self.source == SOURCE_SANCTIONS_LIST

    @property
    def is_sanctions_removal(self) -> bool:
        return self.source == SOURCE_SANCTIONS_REMOVAL

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "weight": self.weight,
            "timestamp": self.timestamp,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class ReputationRecord:
    """Immutable snapshot of an address's reputation; class/confidence derive from evidence."""

    chain: str
    address: str
    reputation_class: ReputationClass
    confidence: float
    evidence: tuple[Evidence, ...] = ()
    first_seen: int | None = None
    last_updated: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "chain": self.chain,
            "address": self.address,
            "reputation_class": self.reputation_class.value,
            "confidence": self.confidence,
            "evidence": [e.to_dict() for e in self.evidence],
            "first_seen": self.first_seen,
            "last_updated": self.last_updated,
        }


# --- Pipeline ---


@dataclass(frozen=True)
class DecodedInteraction:
    """Human-readable contract interaction from the signature registry."""

    contract: str
    selector: str
    method_name: str
    signature: str
    category: str
    arguments: tuple[tuple[str, Any], ...] = ()

    @property
    def description(self) -> str:
        args = ", ".join(f"{name}={value}" for name, value in self.arguments)
        return f"{self.method_name}({args}) on {self.contract}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "contract": self.contract,
            "selector": self.selector,
            "method_name": self.method_name,
            "signature": self.signature,
            "category": self.category,
            "arguments": [[name, _jsonable(value)] for name, value in self.arguments],
            "description": self.description,
        }


@dataclass(frozen=True)
class SimulationResult:
    """
    Predicted outcome of executing a pending transaction on a virtual snapshot.

    predicted_success is None when the simulation is degraded (environment
    unreachable after retries).
    """

    predicted_success: bool | None
    failure_reason: str | None = None
    balance_deltas: tuple[tuple[str, int], ...] = ()
    resulting_balances: tuple[tuple[str, int], ...] = ()
    degraded: bool = False
    attempts: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "predicted_success": self.predicted_success,
            "failure_reason": self.failure_reason,
            "balance_deltas": dict(self.balance_deltas),
            "resulting_balances": dict(self.resulting_balances),
            "degraded": self.degraded,
            "attempts": self.attempts,
        }


class MevKind(str, Enum):
    SANDWICH = "sandwich"
    FRONT_RUNNING = "front_running"


@dataclass(frozen=True)
class MevFlag:
    """Boolean-plus-evidence flag; informational, never a rejection."""

    kind: MevKind
    attacker: str
    evidence: dict[str, Any] = field(default_factory=dict, hash=False, compare=True)
    detected: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "detected": self.detected,
            "attacker": self.attacker,
            "evidence": self.evidence,
        }


class PatternKind(str, Enum):
    STRUCTURING = "structuring"
    MIXER_INTERACTION = "mixer_interaction"


@dataclass(frozen=True)
class PatternFlag:
    kind: PatternKind
    address: str
    severity: float
    """0–1; consumed by the scorer as the pattern factor's raw value."""
    message: str
    evidence: dict[str, Any] = field(default_factory=dict, hash=False, compare=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "address": self.address,
            "severity": self.severity,
            "message": self.message,
            "evidence": self.evidence,
        }


@dataclass(frozen=True)
class PipelineResult:
    """Output of analyze(): decoding, simulation, MEV and pattern flags, sender profile."""

    chain: str
    tx_hash: str
    decoded_interaction: DecodedInteraction | None
    raw_call_data: str | None
    simulation: SimulationResult | None
    mev_flags: tuple[MevFlag, ...]
    pattern_flags: tuple[PatternFlag, ...]
    value_percentile: float | None
    novel_contract_interaction: bool
    as_of: int
    """Reference time for age-based factors: block time, or analysis time when pending."""
    degraded: tuple[str, ...] = ()

    @property
    def mev_detected(self) -> bool:
        return any(f.detected for f in self.mev_flags)

    def to_dict(self) -> dict[str, Any]:
        return {
            "chain": self.chain,
            "tx_hash": self.tx_hash,
            "decoded_interaction": self.decoded_interaction.to_dict() if self.decoded_interaction else None,
            "raw_call_data": self.raw_call_data,
            "simulation": self.simulation.to_dict() if self.simulation else None,
            "mev_detected": self.mev_detected,
            "mev_flags": [f.to_dict() for f in self.mev_flags],
            "pattern_flags": [f.to_dict() for f in self.pattern_flags],
            "value_percentile": self.value_percentile,
            "novel_contract_interaction": self.novel_contract_interaction,
            "as_of": self.as_of,
            "degraded": list(self.degraded),
        }


# --- Scoring ---


@dataclass(frozen=True)
class RiskFactor:
    name: str
    weight: float
    raw_value: float

    @property
    def contribution(self) -> float:
        return self.weight * self.raw_value

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "weight": self.weight,
            "raw_value": self.raw_value,
            "contribution": round(self.contribution, 4),
        }


@dataclass(frozen=True)
class RiskScore:
    """Deterministic score; computed_at is metadata and excluded from equality."""

    chain: str
    tx_hash: str
    score: float
    risk_level: str
    factors: tuple[RiskFactor, ...]
    model_version: str
    computed_at: int | None = field(default=None, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "chain": self.chain,
            "tx_hash": self.tx_hash,
            "score": self.score,
            "risk_level": self.risk_level,
            "factors": [f.to_dict() for f in self.factors],
            "model_version": self.model_version,
            "computed_at": self.computed_at,
        }


# --- Cross-chain trace ---


class LinkageType(str, Enum):
    BRIDGE_TRANSFER = "bridge_transfer"
    WRAPPED_ASSET = "wrapped_asset"
    SHARED_COUNTERPARTY = "shared_counterparty"

    @property
    def directed(self) -> bool:
        return self is not LinkageType.SHARED_COUNTERPARTY


NodeKey = tuple[str, str]
"""(chain, address)"""


@dataclass(frozen=True)
class TraceEdge:
    chain_a: str
    address_a: str
    chain_b: str
    address_b: str
    linkage: LinkageType
    confidence: float
    evidence_ref: str = ""
    """Bridge tx hash or entity label that produced the edge."""

    @property
    def directed(self) -> bool:
        return self.linkage.directed

    @property
    def node_a(self) -> NodeKey:
        return (self.chain_a, self.address_a)

    @property
    def node_b(self) -> NodeKey:
        return (self.chain_b, self.address_b)

    @property
    def edge_key(self) -> str:
        """Edge identity: ordered endpoints for directed linkages, sorted for undirected."""
        a, b = self.node_a, self.node_b
        if not self.directed and b < a:
            a, b = b, a
        return f"{self.linkage.value}|{a[0]}:{a[1]}|{b[0]}:{b[1]}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "chain_a": self.chain_a,
            "address_a": self.address_a,
            "chain_b": self.chain_b,
            "address_b": self.address_b,
            "linkage": self.linkage.value,
            "directed": self.directed,
            "confidence": self.confidence,
            "evidence_ref": self.evidence_ref,
        }


@dataclass(frozen=True)
class TraceGraph:
    """Subgraph reachable from root within max_depth; truncated marks a depth cut-off."""

    root: NodeKey
    nodes: tuple[NodeKey, ...]
    edges: tuple[TraceEdge, ...]
    max_depth: int
    depth_reached: int
    truncated: bool = False
    truncation: Any = None
    """DepthExceeded marker when truncated; informational only."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "root": {"chain": self.root[0], "address": self.root[1]},
            "nodes": [{"chain": c, "address": a} for c, a in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "max_depth": self.max_depth,
            "depth_reached": self.depth_reached,
            "truncated": self.truncated,
            "truncation": self.truncation.to_dict() if self.truncation is not None else None,
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, bytes):
        return "0x" + value.hex()
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value
