"""
Transaction intelligence pipeline.

analyze(tx, context) runs decoding, simulation (pending only), MEV detection,
pattern detection and the sender profile. Each stage result is cached under
("pipeline", chain, tx_hash, stage); when a pending transaction is superseded
by its confirmed or failed version, every stage for that hash is invalidated.
Stages computed from a degraded history or block are returned but not stored.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from backend_riskengine.analysis_engine.decoder import SignatureRegistry
from backend_riskengine.analysis_engine.mev import MevDetector
from backend_riskengine.analysis_engine.models import PipelineResult, SimulationResult
from backend_riskengine.analysis_engine.patterns import PatternDetector
from backend_riskengine.analysis_engine.simulation import TransactionSimulator
from backend_riskengine.cache import CacheTtls, SingleFlightCache
from backend_riskengine.chains.models import NormalizedTransaction, TxStatus
from backend_riskengine.riskengine_logging import get_logger

logger = get_logger(__name__)

STAGE_DECODE = "decode"
STAGE_SIMULATE = "simulate"
STAGE_MEV = "mev"
STAGE_PATTERNS = "patterns"
STAGE_PROFILE = "profile"

STAGES = (STAGE_DECODE, STAGE_SIMULATE, STAGE_MEV, STAGE_PATTERNS, STAGE_PROFILE)

INPUT_HISTORY = "history"
INPUT_BLOCK = "block"

MAX_TRACKED_PENDING = 10_000
"""Pending hashes remembered for supersede detection; oldest forgotten first."""


@dataclass(frozen=True)
class AnalysisContext:
    """
    Inputs gathered by the caller.

    history: the sender's prior transactions (any order).
    block_transactions: other transactions in the same block, for MEV.
    funding: prior transactions of the sender's funders, for multi-hop mixer exposure.
    now: analysis time; used as the age reference for pending transactions.
    degraded: inputs that could not be fully loaded (INPUT_HISTORY, INPUT_BLOCK).
        Stages that read them still run, but their results are not cached.
    """

    history: tuple[NormalizedTransaction, ...] = ()
    block_transactions: tuple[NormalizedTransaction, ...] = ()
    funding: tuple[NormalizedTransaction, ...] = ()
    now: int | None = None
    degraded: tuple[str, ...] = ()


def value_percentile(tx: NormalizedTransaction, history: tuple[NormalizedTransaction, ...]) -> float | None:
    """Percentile rank (0-1) of tx's transferred value among the sender's prior transfers."""
    sender = tx.sender
    values = [
        h.total_output for h in history
        if h.tx_hash != tx.tx_hash and h.sender is not None and h.sender == sender
    ]
    if not values:
        return None
    value = tx.total_output
    below = sum(1 for v in values if v < value)
    equal = sum(1 for v in values if v == value)
    return round((below + 0.5 * equal) / len(values), 4)


def is_novel_contract(
    tx: NormalizedTransaction,
    history: tuple[NormalizedTransaction, ...],
    verified_contracts: frozenset[tuple[str, str]],
) -> bool:
    """First-time call from the sender to a contract that is not verified."""
    if tx.call is None:
        return False
    contract = tx.call.contract
    if (tx.chain, contract) in verified_contracts:
        return False
    return not any(
        h.call is not None and h.call.contract == contract and h.sender == tx.sender
        for h in history
        if h.tx_hash != tx.tx_hash
    )


class TransactionPipeline:
    def __init__(
        self,
        cache: SingleFlightCache,
        registry: SignatureRegistry,
        simulator: TransactionSimulator,
        mev: MevDetector,
        patterns: PatternDetector,
        *,
        verified_contracts: frozenset[tuple[str, str]] = frozenset(),
        ttls: CacheTtls | None = None,
        clock: Callable[[], float] = time.time,
        max_tracked_pending: int = MAX_TRACKED_PENDING,
    ) -> None:
        self.cache = cache
        self.registry = registry
        self.simulator = simulator
        self.mev = mev
        self.patterns = patterns
        self.verified_contracts = verified_contracts
        self.ttls = ttls or CacheTtls()
        self._clock = clock
        self.max_tracked_pending = max_tracked_pending
        self._pending: dict[tuple[str, str], None] = {}

    def _observe_status(self, tx: NormalizedTransaction) -> None:
        key = (tx.chain, tx.tx_hash)
        if tx.status == TxStatus.PENDING:
            self._pending.pop(key, None)
            self._pending[key] = None
            while len(self._pending) > self.max_tracked_pending:
                del self._pending[next(iter(self._pending))]
            return
        if key in self._pending:
            del self._pending[key]
            dropped = self.cache.invalidate_prefix(("pipeline", tx.chain, tx.tx_hash))
            logger.info(
                "pending_superseded",
                chain=tx.chain,
                tx_hash=tx.tx_hash,
                status=tx.status.value,
                stages_dropped=dropped,
            )

    async def _stage(
        self,
        tx: NormalizedTransaction,
        stage: str,
        compute: Callable[[], Awaitable[Any]],
        *,
        keep: Callable[[Any], bool] | None = None,
    ) -> Any:
        """Run a stage through the cache; values failing ``keep`` are returned but not stored."""
        seconds = self.ttls.for_status(tx.status == TxStatus.PENDING)

        def ttl(value: Any) -> float:
            return seconds if keep is None or keep(value) else 0

        return await self.cache.get_or_compute(("pipeline", tx.chain, tx.tx_hash, stage), ttl, compute)

    async def analyze(self, tx: NormalizedTransaction, context: AnalysisContext | None = None) -> PipelineResult:
        context = context or AnalysisContext()
        self._observe_status(tx)
        if tx.block_time is not None:
            as_of = tx.block_time
        elif context.now is not None:
            as_of = context.now
        else:
            as_of = int(self._clock())

        async def _decode() -> Any:
            return self.registry.decode(tx.call)

        async def _simulate() -> SimulationResult:
            return await self.simulator.simulate(tx)

        async def _mev() -> Any:
            return self.mev.detect(tx, context.block_transactions)

        async def _patterns() -> Any:
            return self.patterns.detect(tx, context.history, as_of, funding=context.funding)

        async def _profile() -> Any:
            return (
                value_percentile(tx, context.history),
                is_novel_contract(tx, context.history, self.verified_contracts),
            )

        decoded = await self._stage(tx, STAGE_DECODE, _decode)
        if decoded is None and tx.call is not None:
            logger.debug("unknown_selector", chain=tx.chain, tx_hash=tx.tx_hash, selector=tx.call.selector)

        simulation: SimulationResult | None = None
        degraded: list[str] = []
        if tx.status == TxStatus.PENDING:
            simulation = await self._stage(tx, STAGE_SIMULATE, _simulate, keep=lambda r: not r.degraded)
            if simulation.degraded:
                degraded.append(STAGE_SIMULATE)

        block_complete = INPUT_BLOCK not in context.degraded
        history_complete = INPUT_HISTORY not in context.degraded
        mev_flags = await self._stage(tx, STAGE_MEV, _mev, keep=lambda _: block_complete)
        pattern_flags = await self._stage(tx, STAGE_PATTERNS, _patterns, keep=lambda _: history_complete)
        percentile, novel = await self._stage(tx, STAGE_PROFILE, _profile, keep=lambda _: history_complete)

        result = PipelineResult(
            chain=tx.chain,
            tx_hash=tx.tx_hash,
            decoded_interaction=decoded,
            raw_call_data=tx.call.call_data if tx.call is not None else None,
            simulation=simulation,
            mev_flags=mev_flags,
            pattern_flags=pattern_flags,
            value_percentile=percentile,
            novel_contract_interaction=novel,
            as_of=as_of,
            degraded=tuple(degraded),
        )
        logger.debug(
            "pipeline_done",
            chain=tx.chain,
            tx_hash=tx.tx_hash,
            mev_detected=result.mev_detected,
            patterns=len(pattern_flags),
            degraded=list(result.degraded),
        )
        return result
