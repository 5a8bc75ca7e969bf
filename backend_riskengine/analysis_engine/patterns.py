"""
Pattern detection: structuring and mixer interaction.

Structuring: many sub-threshold transfers in or out of one address within a
time window. Mixer interaction: an address funded by a known mixer within a
bounded number of hops (BFS over funders with a visited set, so funding
cycles terminate).
"""

from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Iterable

from backend_riskengine.analysis_engine.models import PatternFlag, PatternKind
from backend_riskengine.chains.models import NormalizedTransaction
from backend_riskengine.riskengine_logging import get_logger

logger = get_logger(__name__)

STRUCTURING_SEVERITY = 0.6
MIXER_SEVERITY = 1.0
MIXER_HOP_DECAY = 0.8
"""Severity multiplier per hop beyond the first."""

DEFAULT_STRUCTURING_THRESHOLDS: dict[str, int] = {
    "bitcoin": 1_000_000,  # 0.01 BTC
    "ethereum": 10**17,  # 0.1 ETH
    "polygon": 10**17,
}


@dataclass
class PatternConfig:
    structuring_thresholds: dict[str, int] = field(
        default_factory=lambda: dict(DEFAULT_STRUCTURING_THRESHOLDS)
    )
    structuring_min_count: int = 10
    structuring_window_seconds: int = 3600
    mixer_max_hops: int = 2
    mixers: frozenset[tuple[str, str]] = frozenset()
    """Known mixer addresses as (chain, canonical address)."""

    def threshold_for(self, chain: str) -> int | None:
        return self.structuring_thresholds.get(chain)

    def is_mixer(self, chain: str, address: str | None) -> bool:
        return address is not None and (chain, address) in self.mixers


class FundingIndex:
    """recipient -> funders, built from transactions (every input funds every output)."""

    def __init__(self, transactions: Iterable[NormalizedTransaction] = ()) -> None:
        self._funders: defaultdict[str, set[str]] = defaultdict(set)
        for tx in transactions:
            self.add(tx)

    def add(self, tx: NormalizedTransaction) -> None:
        senders = {leg.address for leg in tx.inputs if leg.address}
        for leg in tx.outputs:
            if leg.address:
                self._funders[leg.address].update(senders - {leg.address})

    def funders_of(self, address: str) -> list[str]:
        return sorted(self._funders.get(address, ()))


class PatternDetector:
    def __init__(self, config: PatternConfig | None = None) -> None:
        self.config = config or PatternConfig()

    def detect(
        self,
        tx: NormalizedTransaction,
        history: Iterable[NormalizedTransaction],
        as_of: int,
        funding: Iterable[NormalizedTransaction] = (),
    ) -> tuple[PatternFlag, ...]:
        """funding: extra transactions used only to walk funders back toward a mixer."""
        history = [h for h in history if h.tx_hash != tx.tx_hash]
        flags: list[PatternFlag] = []
        flags.extend(self.structuring(tx, history, as_of))
        flags.extend(self.mixer_interaction(tx, history, funding))
        for f in flags:
            logger.info(
                "pattern_detected",
                chain=tx.chain,
                tx_hash=tx.tx_hash,
                kind=f.kind.value,
                address=f.address,
                severity=f.severity,
            )
        return tuple(flags)

    def structuring(
        self,
        tx: NormalizedTransaction,
        history: list[NormalizedTransaction],
        as_of: int,
    ) -> list[PatternFlag]:
        threshold = self.config.threshold_for(tx.chain)
        if threshold is None:
            return []
        window_start = as_of - self.config.structuring_window_seconds
        in_window = [tx] + [
            h for h in history
            if h.chain == tx.chain and h.block_time is not None and window_start <= h.block_time <= as_of
        ]

        flags: list[PatternFlag] = []
        for address in tx.addresses():
            incoming = outgoing = 0
            for t in in_window:
                incoming += sum(
                    1 for leg in t.outputs if leg.address == address and 0 < leg.amount < threshold
                )
                outgoing += sum(
                    1 for leg in t.inputs if leg.address == address and 0 < leg.amount < threshold
                )
            count = max(incoming, outgoing)
            if count < self.config.structuring_min_count:
                continue
            direction = "in" if incoming >= outgoing else "out"
            flags.append(
                PatternFlag(
                    kind=PatternKind.STRUCTURING,
                    address=address,
                    severity=STRUCTURING_SEVERITY,
                    message=(
                        f"{count} transfers {direction} below {threshold} within "
                        f"{self.config.structuring_window_seconds}s"
                    ),
                    evidence={
                        "count": count,
                        "direction": direction,
                        "threshold": threshold,
                        "window_seconds": self.config.structuring_window_seconds,
                    },
                )
            )
        return flags

    def mixer_interaction(
        self,
        tx: NormalizedTransaction,
        history: list[NormalizedTransaction],
        funding: Iterable[NormalizedTransaction] = (),
    ) -> list[PatternFlag]:
        chain = tx.chain
        if not self.config.mixers:
            return []

        direct = self._direct_mixer_flags(tx)
        if direct is not None:
            return direct

        sender = tx.sender
        if sender is None:
            return []
        index = FundingIndex(
            h for h in [*history, *funding] if h.chain == chain and h.tx_hash != tx.tx_hash
        )
        found = self._funded_by_mixer(chain, sender, index)
        if found is None:
            return []
        mixer, hops, path = found
        severity = round(MIXER_SEVERITY * (MIXER_HOP_DECAY ** (hops - 1)), 4)
        return [
            PatternFlag(
                kind=PatternKind.MIXER_INTERACTION,
                address=sender,
                severity=severity,
                message=f"funded by known mixer {mixer} within {hops} hop(s)",
                evidence={"mixer": mixer, "hops": hops, "path": path},
            )
        ]

    def _direct_mixer_flags(self, tx: NormalizedTransaction) -> list[PatternFlag] | None:
        """
        Flags for a transaction touching a mixer directly, or None if it does not.

        A mixer paying out flags each non-mixer recipient; paying into a mixer
        flags the sender. The mixer itself is never flagged.
        """
        chain = tx.chain
        inputs = list(dict.fromkeys(leg.address for leg in tx.inputs if leg.address))
        paying_mixers = [a for a in inputs if self.config.is_mixer(chain, a)]
        receiving_mixers = [
            a for a in tx.addresses() if a not in inputs and self.config.is_mixer(chain, a)
        ]
        if not paying_mixers and not receiving_mixers:
            return None

        flags: list[PatternFlag] = []
        if paying_mixers:
            mixer = paying_mixers[0]
            recipients = dict.fromkeys(leg.address for leg in tx.outputs if leg.address)
            for recipient in recipients:
                if recipient in inputs or self.config.is_mixer(chain, recipient):
                    continue
                flags.append(
                    PatternFlag(
                        kind=PatternKind.MIXER_INTERACTION,
                        address=recipient,
                        severity=MIXER_SEVERITY,
                        message=f"paid directly by known mixer {mixer}",
                        evidence={"mixer": mixer, "hops": 0, "path": [mixer, recipient]},
                    )
                )
        sender = tx.sender
        if receiving_mixers and sender is not None and not self.config.is_mixer(chain, sender):
            mixer = receiving_mixers[0]
            flags.append(
                PatternFlag(
                    kind=PatternKind.MIXER_INTERACTION,
                    address=sender,
                    severity=MIXER_SEVERITY,
                    message=f"direct interaction with known mixer {mixer}",
                    evidence={"mixer": mixer, "hops": 0, "path": [sender, mixer]},
                )
            )
        return flags

    def _funded_by_mixer(
        self,
        chain: str,
        address: str,
        index: FundingIndex,
    ) -> tuple[str, int, list[str]] | None:
        """BFS backwards over funders up to mixer_max_hops; returns (mixer, hops, path) or None."""
        max_hops = self.config.mixer_max_hops
        if max_hops < 1:
            return None
        queue: deque[tuple[str, int, list[str]]] = deque([(address, 0, [address])])
        seen = {address}
        while queue:
            current, depth, path = queue.popleft()
            if depth >= max_hops:
                continue
            for funder in index.funders_of(current):
                if funder in seen:
                    continue
                seen.add(funder)
                hop_path = path + [funder]
                if self.config.is_mixer(chain, funder):
                    return funder, depth + 1, hop_path
                queue.append((funder, depth + 1, hop_path))
        return None
