"""
Reference labels: known mixers, verified contracts, labeled entities, sanctions.

Loaded from JSON and canonicalized through the chain adapters so lookups match
normalized transactions exactly. Rows with unknown chains or invalid addresses
are skipped with a warning.

File layout:
    {
      "mixers": [{"chain": "...", "address": "...", "name": "..."}],
      "verified_contracts": [{"chain": "...", "address": "...", "name": "..."}],
      "entities": [{"chain": "...", "address": "...", "entity": "..."}],
      "sanctions": [{"chain": "...", "address": "...", "list": "...", "effective_date": 0}]
    }
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from backend_riskengine.chains.registry import AdapterRegistry, default_registry
from backend_riskengine.core.exceptions import RiskEngineError
from backend_riskengine.riskengine_logging import get_logger
from backend_riskengine.sources.base import StaticSanctionsList

logger = get_logger(__name__)


@dataclass
class ReferenceData:
    mixers: frozenset[tuple[str, str]] = frozenset()
    verified_contracts: frozenset[tuple[str, str]] = frozenset()
    entities: dict[tuple[str, str], str] = field(default_factory=dict)
    sanctions: StaticSanctionsList = field(default_factory=StaticSanctionsList)


def _canonical_rows(
    rows: list[dict[str, Any]],
    section: str,
    registry: AdapterRegistry,
) -> list[tuple[str, str, dict[str, Any]]]:
    out = []
    for row in rows or []:
        chain = str(row.get("chain") or "").strip().lower()
        try:
            adapter = registry.get(chain)
            address = adapter.canonicalize_address(row.get("address"), f"{section}.address")
        except RiskEngineError as e:
            logger.warning("reference_row_skipped", section=section, chain=chain, error=e.message)
            continue
        out.append((adapter.chain_id, address, row))
    return out


def parse_reference_data(data: dict[str, Any], registry: AdapterRegistry | None = None) -> ReferenceData:
    registry = registry or default_registry()
    mixers = frozenset((c, a) for c, a, _ in _canonical_rows(data.get("mixers", []), "mixers", registry))
    verified = frozenset(
        (c, a) for c, a, _ in _canonical_rows(data.get("verified_contracts", []), "verified_contracts", registry)
    )
    entities = {
        (c, a): str(row.get("entity") or row.get("name") or "unlabeled")
        for c, a, row in _canonical_rows(data.get("entities", []), "entities", registry)
    }
    sanctions = StaticSanctionsList.from_entries(
        [
            {**row, "chain": c, "address": a}
            for c, a, row in _canonical_rows(data.get("sanctions", []), "sanctions", registry)
        ]
    )
    return ReferenceData(mixers=mixers, verified_contracts=verified, entities=entities, sanctions=sanctions)


def load_reference_data(path: str | Path, registry: AdapterRegistry | None = None) -> ReferenceData:
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    ref = parse_reference_data(data, registry)
    logger.info(
        "reference_data_loaded",
        path=str(path),
        mixers=len(ref.mixers),
        verified_contracts=len(ref.verified_contracts),
        entities=len(ref.entities),
        sanctions=len(ref.sanctions),
    )
    return ref
