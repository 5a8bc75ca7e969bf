"""
Row models for stored score history and trace edge revisions.

Evidence and trace edges reuse the analysis engine's frozen dataclasses; no
ORM coupling so backends stay swappable.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any


@dataclass
class RiskScoreRecord:
    """One entry in a transaction's score history (append-only)."""

    id: int | None
    chain: str
    tx_hash: str
    score: float
    risk_level: str
    model_version: str
    computed_at: int
    """Unix timestamp (seconds) when the score was computed."""
    factors_json: str | None = None

    @property
    def factors(self) -> list[dict[str, Any]]:
        return json.loads(self.factors_json) if self.factors_json else []


@dataclass
class EdgeRevisionRecord:
    """Confidence change for one trace edge; the edge itself keeps only its latest confidence."""

    id: int | None
    edge_key: str
    confidence: float
    reason: str
    revised_at: int
