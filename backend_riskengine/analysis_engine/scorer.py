"""
Risk score computation: weighted factors over pipeline output and reputations.

score = clamp(sum(weight * raw_value), 0, 100), rounded to 4 decimals.
Every raw value is in [0, 1]. No clock or randomness: identical inputs give
an identical score and factor list. computed_at is caller-supplied metadata.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping

from backend_riskengine.analysis_engine.models import (
    PipelineResult,
    ReputationClass,
    ReputationRecord,
    RiskFactor,
    RiskScore,
)
from backend_riskengine.chains.models import NormalizedTransaction
from backend_riskengine.riskengine_logging import get_logger

logger = get_logger(__name__)

SECONDS_PER_DAY = 86400

MODEL_VERSION = "weighted-sum/1.0"

FACTOR_COUNTERPARTY = "counterparty_reputation"
FACTOR_MEV = "mev_activity"
FACTOR_PATTERNS = "pattern_activity"
FACTOR_VALUE = "value_percentile"
FACTOR_NOVELTY = "contract_novelty"
FACTOR_FRESHNESS = "address_freshness"

# Factor order is part of the output contract
DEFAULT_WEIGHTS: dict[str, float] = {
    FACTOR_COUNTERPARTY: 85.0,
    FACTOR_MEV: 15.0,
    FACTOR_PATTERNS: 30.0,
    FACTOR_VALUE: 10.0,
    FACTOR_NOVELTY: 15.0,
    FACTOR_FRESHNESS: 10.0,
}

# Counterparty raw value per reputation class (worst counterparty wins)
CLASS_RISK: dict[ReputationClass, float] = {
    ReputationClass.SANCTIONED: 1.0,
    ReputationClass.SUSPICIOUS: 0.5,
    ReputationClass.UNKNOWN: 0.05,
    ReputationClass.NEUTRAL: 0.0,
    ReputationClass.TRUSTED: 0.0,
}

RISK_LOW = "LOW"
RISK_MEDIUM = "MEDIUM"
RISK_HIGH = "HIGH"
RISK_CRITICAL = "CRITICAL"


@dataclass
class ScoringConfig:
    """
    weights: Factor name -> weight; iteration order is the factor order.
    high_risk_threshold: Scores at or above are HIGH.
    medium_threshold: Scores at or above are MEDIUM.
    critical_threshold: Scores at or above are CRITICAL.
    freshness_maturity_days: Sender age at which freshness reaches 0.
    unknown_percentile: Raw value for value_percentile when the sender has no history.
    """

    weights: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    high_risk_threshold: float = 80.0
    medium_threshold: float = 40.0
    critical_threshold: float = 95.0
    freshness_maturity_days: float = 180.0
    unknown_percentile: float = 0.5
    model_version: str = MODEL_VERSION

    def weight(self, name: str) -> float:
        return float(self.weights.get(name, 0.0))


def risk_level(score: float, config: ScoringConfig) -> str:
    if score >= config.critical_threshold:
        return RISK_CRITICAL
    if score >= config.high_risk_threshold:
        return RISK_HIGH
    if score >= config.medium_threshold:
        return RISK_MEDIUM
    return RISK_LOW


def _counterparty_raw(
    tx: NormalizedTransaction,
    snapshots: Mapping[tuple[str, str], ReputationRecord],
) -> float:
    worst = 0.0
    for address in tx.addresses():
        record = snapshots.get((tx.chain, address))
        klass = record.reputation_class if record is not None else ReputationClass.UNKNOWN
        worst = max(worst, CLASS_RISK[klass])
    return worst


def _freshness_raw(
    tx: NormalizedTransaction,
    as_of: int,
    snapshots: Mapping[tuple[str, str], ReputationRecord],
    maturity_days: float,
) -> float:
    """1.0 for a brand-new (or never seen) sender, falling linearly to 0 at maturity."""
    sender = tx.sender
    record = snapshots.get((tx.chain, sender)) if sender else None
    if record is None or record.first_seen is None or maturity_days <= 0:
        return 1.0
    age_days = max(0, as_of - record.first_seen) / SECONDS_PER_DAY
    return 1.0 - min(age_days / maturity_days, 1.0)


class RiskScorer:
    def __init__(self, config: ScoringConfig | None = None) -> None:
        self.config = config or ScoringConfig()

    def factors(
        self,
        tx: NormalizedTransaction,
        result: PipelineResult,
        snapshots: Mapping[tuple[str, str], ReputationRecord],
    ) -> tuple[RiskFactor, ...]:
        cfg = self.config
        raw = {
            FACTOR_COUNTERPARTY: _counterparty_raw(tx, snapshots),
            FACTOR_MEV: 1.0 if result.mev_detected else 0.0,
            FACTOR_PATTERNS: max((f.severity for f in result.pattern_flags), default=0.0),
            FACTOR_VALUE: (
                result.value_percentile if result.value_percentile is not None else cfg.unknown_percentile
            ),
            FACTOR_NOVELTY: 1.0 if result.novel_contract_interaction else 0.0,
            FACTOR_FRESHNESS: _freshness_raw(tx, result.as_of, snapshots, cfg.freshness_maturity_days),
        }
        return tuple(
            RiskFactor(name=name, weight=cfg.weight(name), raw_value=round(min(1.0, max(0.0, value)), 6))
            for name, value in raw.items()
        )

    def score(
        self,
        tx: NormalizedTransaction,
        result: PipelineResult,
        snapshots: Mapping[tuple[str, str], ReputationRecord],
        *,
        computed_at: int | None = None,
    ) -> RiskScore:
        factors = self.factors(tx, result, snapshots)
        total = 0.0
        for f in factors:
            total += f.contribution
        value = round(max(0.0, min(100.0, total)), 4)
        level = risk_level(value, self.config)
        logger.info(
            "risk_scored",
            chain=tx.chain,
            tx_hash=tx.tx_hash,
            score=value,
            risk_level=level,
        )
        return RiskScore(
            chain=tx.chain,
            tx_hash=tx.tx_hash,
            score=value,
            risk_level=level,
            factors=factors,
            model_version=self.config.model_version,
            computed_at=computed_at,
        )
