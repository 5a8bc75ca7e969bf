"""
Address reputation store: append-only evidence, folded into a class.

The fold is pure and order-independent: sums use math.fsum and ages use max
timestamps, so any permutation of the same evidence gives the same record.

Classes, in precedence order:
1. sanctioned: some list's latest listing is newer than its latest removal.
   Sticky; only an explicit sanctions_removal entry revokes it.
2. suspicious: weighted sum of non-sanctions evidence exceeds the threshold.
3. trusted: address is at least trusted_maturity_days old and carries no
   risk (positive-weight) evidence.
4. neutral otherwise; unknown when there is no evidence at all.

Appends for one (chain, address) are serialized by a per-key lock; different
keys never contend.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Iterable

from backend_riskengine.analysis_engine.models import (
    SOURCE_SANCTIONS_LIST,
    SOURCE_SANCTIONS_REMOVAL,
    Evidence,
    ReputationClass,
    ReputationRecord,
)
from backend_riskengine.chains.models import NormalizedAddress
from backend_riskengine.core.exceptions import InconsistentEvidence
from backend_riskengine.riskengine_logging import get_logger

if TYPE_CHECKING:
    from backend_riskengine.database import Database
    from backend_riskengine.sources.base import SanctionsListSource

logger = get_logger(__name__)

SECONDS_PER_DAY = 86400

SANCTIONS_LISTING_WEIGHT = 1.0
SANCTIONS_REMOVAL_WEIGHT = -1.0

AddressKey = tuple[str, str]


@dataclass
class ReputationConfig:
    """
    suspicious_threshold: Non-sanctions weight sum above which an address is suspicious.
    trusted_maturity_days: Minimum age (days) for the trusted class.
    confidence_normalizer: Sum of |weight| that maps to confidence 1.0.
    """

    suspicious_threshold: float = 1.0
    trusted_maturity_days: float = 180.0
    confidence_normalizer: float = 2.0

    @property
    def trusted_maturity_sec(self) -> float:
        return self.trusted_maturity_days * SECONDS_PER_DAY


def _evidence_sort_key(e: Evidence) -> tuple[Any, ...]:
    return (e.timestamp, e.source, e.detail, e.weight)


def active_sanctions(evidence: Iterable[Evidence]) -> list[str]:
    """List names whose latest listing is newer than their latest removal."""
    listed: dict[str, int] = {}
    removed: dict[str, int] = {}
    for e in evidence:
        if e.is_sanctions_listing:
            listed[e.detail] = max(listed.get(e.detail, e.timestamp), e.timestamp)
        elif e.is_sanctions_removal:
            removed[e.detail] = max(removed.get(e.detail, e.timestamp), e.timestamp)
    return sorted(name for name, ts in listed.items() if ts > removed.get(name, -1))


def fold(
    chain: str,
    address: str,
    evidence: Iterable[Evidence],
    first_seen: int | None,
    config: ReputationConfig,
) -> ReputationRecord:
    """Derive class and confidence from evidence. Pure; independent of evidence order."""
    items = tuple(sorted(evidence, key=_evidence_sort_key))
    if not items:
        return ReputationRecord(
            chain=chain,
            address=address,
            reputation_class=ReputationClass.UNKNOWN,
            confidence=0.0,
            evidence=(),
            first_seen=first_seen,
            last_updated=None,
        )

    last_updated = max(e.timestamp for e in items)
    confidence = min(1.0, math.fsum(abs(e.weight) for e in items) / config.confidence_normalizer)
    behavioral = math.fsum(
        e.weight for e in items if not (e.is_sanctions_listing or e.is_sanctions_removal)
    )

    if active_sanctions(items):
        klass = ReputationClass.SANCTIONED
    elif behavioral > config.suspicious_threshold:
        klass = ReputationClass.SUSPICIOUS
    elif (
        first_seen is not None
        and last_updated - first_seen >= config.trusted_maturity_sec
        and not any(e.weight > 0 for e in items)
    ):
        klass = ReputationClass.TRUSTED
    else:
        klass = ReputationClass.NEUTRAL

    return ReputationRecord(
        chain=chain,
        address=address,
        reputation_class=klass,
        confidence=round(confidence, 6),
        evidence=items,
        first_seen=first_seen,
        last_updated=last_updated,
    )


class ReputationStore:
    """
    Owns evidence per (chain, address). Optional Database for durable, append-only storage;
    evidence is loaded lazily on first access to a key.
    """

    def __init__(
        self,
        config: ReputationConfig | None = None,
        database: "Database | None" = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or ReputationConfig()
        self._db = database
        self._clock = clock
        self._evidence: dict[AddressKey, list[Evidence]] = {}
        self._first_seen: dict[AddressKey, int] = {}
        self._locks: dict[AddressKey, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: AddressKey) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def _load(self, key: AddressKey) -> list[Evidence]:
        """Return the evidence list for key; caller holds the key lock."""
        items = self._evidence.get(key)
        if items is None:
            items = []
            if self._db is not None:
                items = list(self._db.get_evidence(*key))
                first_seen = self._db.get_first_seen(*key)
                if first_seen is not None:
                    self._first_seen[key] = first_seen
            self._evidence[key] = items
        return items

    def get_reputation(self, chain: str, address: str) -> ReputationRecord:
        key = (chain, address)
        with self._lock_for(key):
            items = list(self._load(key))
            first_seen = self._first_seen.get(key)
        return fold(chain, address, items, first_seen, self.config)

    def snapshot(self, keys: Iterable[AddressKey]) -> dict[AddressKey, ReputationRecord]:
        """Point-in-time records for keys; later appends do not affect the returned values."""
        return {key: self.get_reputation(*key) for key in dict.fromkeys(keys)}

    def observe_address(self, summary: NormalizedAddress) -> None:
        """Record first-seen time from an address summary (keeps the earliest)."""
        if summary.first_seen is None:
            return
        self.observe_first_seen(summary.chain, summary.address, summary.first_seen)

    def observe_first_seen(self, chain: str, address: str, timestamp: int) -> None:
        key = (chain, address)
        with self._lock_for(key):
            self._load(key)
            current = self._first_seen.get(key)
            if current is not None and current <= timestamp:
                return
            self._first_seen[key] = timestamp
            if self._db is not None:
                self._db.upsert_first_seen(chain, address, timestamp)

    def record_evidence(
        self,
        chain: str,
        address: str,
        evidence: Evidence,
        *,
        unique: bool = False,
    ) -> ReputationRecord:
        """
        Append evidence and return the updated record. Inconsistent sanctions entries
        are logged, not rejected. With unique=True an identical entry is not appended twice.
        """
        key = (chain, address)
        with self._lock_for(key):
            items = self._load(key)
            if unique and evidence in items:
                return fold(chain, address, list(items), self._first_seen.get(key), self.config)
            problem = self._inconsistency(items, evidence)
            if problem is not None:
                err = InconsistentEvidence(problem, chain=chain, address=address)
                logger.warning(
                    "inconsistent_evidence",
                    chain=chain,
                    address=address,
                    source=evidence.source,
                    list_name=evidence.detail,
                    error=err.message,
                )
            items.append(evidence)
            if self._db is not None:
                self._db.append_evidence(chain, address, evidence)
            first_seen = self._first_seen.get(key)
            snapshot = list(items)
        record = fold(chain, address, snapshot, first_seen, self.config)
        logger.info(
            "evidence_recorded",
            chain=chain,
            address=address,
            source=evidence.source,
            weight=evidence.weight,
            reputation_class=record.reputation_class.value,
        )
        return record

    @staticmethod
    def _inconsistency(existing: list[Evidence], new: Evidence) -> str | None:
        if new.is_sanctions_removal:
            if not any(e.is_sanctions_listing and e.detail == new.detail for e in existing):
                return f"removal from {new.detail!r} without a prior listing"
        elif new.is_sanctions_listing:
            removals = [e.timestamp for e in existing if e.is_sanctions_removal and e.detail == new.detail]
            if removals and new.timestamp < max(removals):
                return f"listing on {new.detail!r} older than an existing removal"
        return None

    async def refresh_sanctions(
        self,
        chain: str,
        address: str,
        source: "SanctionsListSource",
    ) -> ReputationRecord:
        """
        Query a sanctions source and append a listing if the address is newly listed.
        A listing already on record is not appended again.
        A not-listed answer never revokes an existing listing; removals are explicit
        sanctions_removal entries.
        """
        status = await source.is_listed(chain, address)
        if not status.listed:
            return self.get_reputation(chain, address)
        list_name = status.list_name or "unspecified"
        current = self.get_reputation(chain, address)
        if list_name in active_sanctions(current.evidence):
            return current
        listed_at = status.effective_date if status.effective_date is not None else int(self._clock())
        return self.record_evidence(chain, address, sanctions_listing(list_name, listed_at), unique=True)


def sanctions_listing(list_name: str, timestamp: int) -> Evidence:
    return Evidence(
        source=SOURCE_SANCTIONS_LIST,
        weight=SANCTIONS_LISTING_WEIGHT,
        timestamp=timestamp,
        detail=list_name,
    )


def sanctions_removal(list_name: str, timestamp: int) -> Evidence:
    return Evidence(
        source=SOURCE_SANCTIONS_REMOVAL,
        weight=SANCTIONS_REMOVAL_WEIGHT,
        timestamp=timestamp,
        detail=list_name,
    )
