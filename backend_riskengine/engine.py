"""
Risk engine: the request-facing façade over adapters, pipeline, reputation,
scoring, and the cross-chain correlator.

Every operation returns an EngineResponse {success, data, cached, timestamp,
error}. Results are memoized in the single-flight cache so concurrent
requests for the same key share one computation; pending transactions get a
short TTL. Transient source failures are retried under the RetryPolicy and,
for auxiliary inputs (history, block, sanctions), degrade instead of failing.
A degraded result is returned but never cached.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Iterable

from backend_riskengine.analysis_engine.correlator import CrossChainCorrelator
from backend_riskengine.analysis_engine.decoder import SignatureRegistry
from backend_riskengine.analysis_engine.mev import MevDetector
from backend_riskengine.analysis_engine.models import (
    Evidence,
    MevFlag,
    PatternFlag,
    PatternKind,
    ReputationRecord,
    TraceEdge,
)
from backend_riskengine.analysis_engine.patterns import FundingIndex, PatternDetector
from backend_riskengine.analysis_engine.pipeline import (
    INPUT_BLOCK,
    INPUT_HISTORY,
    AnalysisContext,
    TransactionPipeline,
)
from backend_riskengine.analysis_engine.reputation import ReputationStore
from backend_riskengine.analysis_engine.scorer import RiskScorer
from backend_riskengine.analysis_engine.simulation import (
    InMemorySimulationBackend,
    SimulationBackend,
    TransactionSimulator,
)
from backend_riskengine.cache import SingleFlightCache
from backend_riskengine.chains.base import ChainAdapter
from backend_riskengine.chains.models import FAMILY_ACCOUNT, NormalizedTransaction, TxStatus
from backend_riskengine.chains.registry import AdapterRegistry, default_registry
from backend_riskengine.config.reference import ReferenceData, load_reference_data
from backend_riskengine.config.settings import EngineSettings
from backend_riskengine.core.exceptions import MalformedPayload, NotFound, RiskEngineError
from backend_riskengine.core.retry import retry_async
from backend_riskengine.database import Database, get_database
from backend_riskengine.riskengine_logging import bind_address, get_logger
from backend_riskengine.sources.base import ChainNodeSource, SanctionsListSource

logger = get_logger(__name__)

# Evidence appended from a transaction's analysis (weight > 0 is risk)
EVIDENCE_MIXER = "mixer_interaction"
EVIDENCE_STRUCTURING = "structuring"
EVIDENCE_MEV_ATTACKER = "mev_attacker"

EVIDENCE_WEIGHTS = {
    EVIDENCE_MIXER: 0.6,
    EVIDENCE_STRUCTURING: 0.5,
    EVIDENCE_MEV_ATTACKER: 0.3,
}

DEGRADED_HISTORY = INPUT_HISTORY
DEGRADED_BLOCK = INPUT_BLOCK
DEGRADED_SANCTIONS = "sanctions"
DEGRADED_ADDRESS = "address_summary"

INTERNAL_ERROR_MESSAGE = "Internal error while processing the request"


@dataclass
class EngineResponse:
    success: bool
    data: Any = None
    cached: bool = False
    timestamp: int = 0
    error: dict[str, str] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "success": self.success,
            "data": self.data,
            "cached": self.cached,
            "timestamp": self.timestamp,
        }
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass(frozen=True)
class BatchRequest:
    """One entry for analyze_batch: score a transaction."""

    chain: str
    tx_hash: str


@dataclass
class _Degraded:
    parts: list[str] = field(default_factory=list)

    def add(self, part: str) -> None:
        if part not in self.parts:
            self.parts.append(part)


class RiskEngine:
    def __init__(
        self,
        source: ChainNodeSource,
        *,
        settings: EngineSettings | None = None,
        reference: ReferenceData | None = None,
        sanctions: SanctionsListSource | None = None,
        simulation_backend: SimulationBackend | None = None,
        registry: AdapterRegistry | None = None,
        database: Database | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.reference = reference or ReferenceData()
        self.source = source
        self.sanctions = sanctions if sanctions is not None else self.reference.sanctions
        self.registry = registry or default_registry()
        self.database = database
        self._clock = clock
        self._sleep = sleep

        self.cache = SingleFlightCache()
        self.signatures = SignatureRegistry()
        patterns_config = replace(
            self.settings.patterns,
            mixers=self.settings.patterns.mixers | self.reference.mixers,
        )
        self.pipeline = TransactionPipeline(
            self.cache,
            self.signatures,
            TransactionSimulator(
                simulation_backend or InMemorySimulationBackend(),
                self.settings.simulation,
                sleep=sleep,
            ),
            MevDetector(self.signatures, self.settings.mev),
            PatternDetector(patterns_config),
            verified_contracts=self.reference.verified_contracts,
            ttls=self.settings.cache_ttls,
            clock=clock,
        )
        self.reputation = ReputationStore(self.settings.reputation, database, clock=clock)
        self.scorer = RiskScorer(self.settings.scoring)
        self.correlator = CrossChainCorrelator(
            self.settings.correlator,
            entities=self.reference.entities,
            database=database,
            clock=clock,
        )

    # --- helpers ---

    def _now(self) -> int:
        return int(self._clock())

    def _adapter(self, chain: str) -> ChainAdapter:
        return self.registry.get(chain)

    async def _fetch(self, operation: str, fn: Callable[[], Awaitable[Any]], **log_fields: Any) -> Any:
        return await retry_async(
            fn,
            self.settings.retry,
            operation=operation,
            deadline_sec=self.settings.source_deadline_sec,
            sleep=self._sleep,
            **log_fields,
        )

    async def _respond(self, operation: str, work: Callable[[], Awaitable[tuple[Any, bool]]]) -> EngineResponse:
        try:
            data, cached = await work()
        except RiskEngineError as e:
            logger.warning("request_failed", operation=operation, kind=e.kind, error=e.message)
            return EngineResponse(success=False, timestamp=self._now(), error=e.to_dict())
        except Exception as e:
            logger.exception("request_internal_error", operation=operation, error=str(e))
            return EngineResponse(
                success=False,
                timestamp=self._now(),
                error={"kind": RiskEngineError.kind, "message": INTERNAL_ERROR_MESSAGE},
            )
        return EngineResponse(success=True, data=data, cached=cached, timestamp=self._now())

    @staticmethod
    def _normalize_hash(tx_hash: str) -> str:
        return (tx_hash or "").strip().lower()

    # --- gathering ---

    async def _load_transaction(self, adapter: ChainAdapter, tx_hash: str) -> NormalizedTransaction:
        return await self._fetch(
            "fetch_transaction",
            lambda: adapter.fetch_transaction(self.source, tx_hash),
            chain=adapter.chain_id,
            tx_hash=tx_hash,
        )

    async def _load_history(
        self,
        adapter: ChainAdapter,
        address: str,
        degraded: _Degraded,
        *,
        max_pages: int | None = None,
    ) -> tuple[NormalizedTransaction, ...]:
        pages = self.settings.history_max_pages if max_pages is None else max_pages
        txs: list[NormalizedTransaction] = []
        cursor: str | None = None
        try:
            for _ in range(max(1, pages)):
                page, cursor = await self._fetch(
                    "fetch_address_history",
                    lambda c=cursor: adapter.fetch_address_history(self.source, address, c),
                    chain=adapter.chain_id,
                    address=address,
                )
                txs.extend(page)
                if cursor is None:
                    break
        except NotFound:
            return tuple(txs)
        except RiskEngineError as e:
            logger.warning("history_degraded", chain=adapter.chain_id, address=address, error=e.message)
            degraded.add(DEGRADED_HISTORY)
        return tuple(txs)

    async def _load_funder_history(
        self,
        adapter: ChainAdapter,
        address: str,
        degraded: _Degraded,
    ) -> tuple[NormalizedTransaction, ...]:
        """A funder's recent history, cached per address; partial loads are not stored."""

        async def compute() -> tuple[tuple[NormalizedTransaction, ...], bool]:
            local = _Degraded()
            txs = await self._load_history(
                adapter, address, local, max_pages=self.settings.funder_history_max_pages
            )
            return txs, bool(local.parts)

        reputation_ttl = self.settings.cache_ttls.reputation_sec
        txs, partial = await self.cache.get_or_compute(
            ("history", adapter.chain_id, address),
            lambda loaded: 0 if loaded[1] else reputation_ttl,
            compute,
        )
        if partial:
            degraded.add(DEGRADED_HISTORY)
        return txs

    async def _load_funding(
        self,
        adapter: ChainAdapter,
        sender: str,
        history: tuple[NormalizedTransaction, ...],
        degraded: _Degraded,
    ) -> tuple[NormalizedTransaction, ...]:
        """
        Histories of the sender's funders, walked back breadth-first so the mixer
        check can see mixer_max_hops levels. Stops at the first level holding a
        mixer or after funder_max_addresses fetches.
        """
        config = self.pipeline.patterns.config
        chain = adapter.chain_id
        if not config.mixers or config.mixer_max_hops < 2:
            return ()
        seen = {sender}
        frontier = FundingIndex(h for h in history if h.chain == chain).funders_of(sender)
        funding: list[NormalizedTransaction] = []
        budget = max(0, self.settings.funder_max_addresses)
        for _ in range(config.mixer_max_hops - 1):
            if any(config.is_mixer(chain, f) for f in frontier):
                break
            next_frontier: list[str] = []
            for funder in frontier:
                if funder in seen:
                    continue
                seen.add(funder)
                if budget == 0:
                    logger.info("funder_walk_capped", chain=chain, sender=sender, fetched=len(seen) - 2)
                    return tuple(funding)
                budget -= 1
                txs = await self._load_funder_history(adapter, funder, degraded)
                funding.extend(txs)
                next_frontier.extend(FundingIndex(t for t in txs if t.chain == chain).funders_of(funder))
            frontier = next_frontier
        return tuple(funding)

    async def _load_block(
        self,
        adapter: ChainAdapter,
        tx: NormalizedTransaction,
        degraded: _Degraded,
    ) -> tuple[NormalizedTransaction, ...]:
        if tx.block_height is None or tx.call is None or tx.family != FAMILY_ACCOUNT:
            return ()
        try:
            raws = await self._fetch(
                "fetch_block_transactions",
                lambda: self.source.fetch_raw_block_transactions(adapter.chain_id, tx.block_height),
                chain=adapter.chain_id,
                block_height=tx.block_height,
            )
        except RiskEngineError as e:
            logger.warning("block_degraded", chain=adapter.chain_id, block_height=tx.block_height, error=e.message)
            degraded.add(DEGRADED_BLOCK)
            return ()
        out = []
        for raw in raws:
            try:
                out.append(adapter.normalize_transaction(raw))
            except MalformedPayload as e:
                logger.debug("block_tx_skipped", chain=adapter.chain_id, field=e.field, error=e.message)
        return tuple(out)

    async def _refresh_sanctions(self, chain: str, addresses: Iterable[str], degraded: _Degraded) -> None:
        if self.sanctions is None:
            return
        for address in addresses:
            try:
                await self._fetch(
                    "sanctions_lookup",
                    lambda a=address: self.reputation.refresh_sanctions(chain, a, self.sanctions),
                    chain=chain,
                    address=address,
                )
            except RiskEngineError as e:
                logger.warning("sanctions_degraded", chain=chain, address=address, error=e.message)
                degraded.add(DEGRADED_SANCTIONS)
                return

    def _observe_first_seen(self, tx: NormalizedTransaction, history: tuple[NormalizedTransaction, ...]) -> None:
        sender = tx.sender
        if sender is None:
            return
        times = [h.block_time for h in history if h.block_time is not None]
        if tx.block_time is not None:
            times.append(tx.block_time)
        if times:
            self.reputation.observe_first_seen(tx.chain, sender, min(times))

    def _derived_evidence(
        self,
        tx: NormalizedTransaction,
        as_of: int,
        patterns: Iterable[PatternFlag],
        mev_flags: Iterable[MevFlag],
    ) -> list[tuple[str, Evidence]]:
        out: list[tuple[str, Evidence]] = []
        for flag in patterns:
            source = EVIDENCE_MIXER if flag.kind == PatternKind.MIXER_INTERACTION else EVIDENCE_STRUCTURING
            out.append(
                (
                    flag.address,
                    Evidence(
                        source=source,
                        weight=round(EVIDENCE_WEIGHTS[source] * flag.severity, 6),
                        timestamp=as_of,
                        detail=tx.tx_hash,
                    ),
                )
            )
        for mev in mev_flags:
            if mev.attacker:
                out.append(
                    (
                        mev.attacker,
                        Evidence(
                            source=EVIDENCE_MEV_ATTACKER,
                            weight=EVIDENCE_WEIGHTS[EVIDENCE_MEV_ATTACKER],
                            timestamp=as_of,
                            detail=f"{mev.kind.value}:{tx.tx_hash}",
                        ),
                    )
                )
        return out

    # --- operations ---

    async def _compute_transaction_risk(self, adapter: ChainAdapter, tx_hash: str) -> dict[str, Any]:
        tx = await self._load_transaction(adapter, tx_hash)
        log = bind_address(tx.chain, tx.sender or "")
        degraded = _Degraded()

        history: tuple[NormalizedTransaction, ...] = ()
        funding: tuple[NormalizedTransaction, ...] = ()
        if tx.sender is not None:
            history = await self._load_history(adapter, tx.sender, degraded)
            funding = await self._load_funding(adapter, tx.sender, history, degraded)
        block = await self._load_block(adapter, tx, degraded)
        self._observe_first_seen(tx, history)
        await self._refresh_sanctions(tx.chain, tx.addresses(), degraded)

        result = await self.pipeline.analyze(
            tx,
            AnalysisContext(
                history=history,
                block_transactions=block,
                funding=funding,
                now=self._now(),
                degraded=tuple(degraded.parts),
            ),
        )
        # Reputations are read before this analysis adds any evidence
        snapshots = self.reputation.snapshot((tx.chain, a) for a in tx.addresses())
        score = self.scorer.score(tx, result, snapshots, computed_at=self._now())

        for address, evidence in self._derived_evidence(tx, result.as_of, result.pattern_flags, result.mev_flags):
            self.reputation.record_evidence(tx.chain, address, evidence, unique=True)
            self.cache.invalidate(("reputation", tx.chain, address))
        if tx.sender is not None:
            for counterparty in tx.addresses():
                if counterparty != tx.sender:
                    self._observe_edges(self.correlator.observe_activity(tx.chain, tx.sender, counterparty, result.as_of))

        if self.database is not None:
            self.database.insert_risk_score(score)

        all_degraded = list(degraded.parts) + [d for d in result.degraded if d not in degraded.parts]
        log.info(
            "transaction_risk_computed",
            tx_hash=tx.tx_hash,
            score=score.score,
            risk_level=score.risk_level,
            degraded=all_degraded,
        )
        return {
            "transaction": tx.to_dict(),
            "analysis": result.to_dict(),
            "risk": score.to_dict(),
            "counterparties": {addr: rec.to_dict() for (_, addr), rec in snapshots.items()},
            "degraded": all_degraded,
            "status": tx.status.value,
        }

    async def transaction_risk(self, chain: str, tx_hash: str) -> EngineResponse:
        async def work() -> tuple[Any, bool]:
            adapter = self._adapter(chain)
            key_hash = self._normalize_hash(tx_hash)
            if not key_hash:
                raise MalformedPayload(adapter.chain_id, "tx_hash", "missing")
            ttls = self.settings.cache_ttls
            return await self.cache.get_or_compute_with_status(
                ("risk", adapter.chain_id, key_hash),
                lambda data: 0 if data["degraded"] else ttls.for_status(data["status"] == TxStatus.PENDING.value),
                lambda: self._compute_transaction_risk(adapter, key_hash),
            )

        return await self._respond("transaction_risk", work)

    async def _compute_reputation(self, adapter: ChainAdapter, address: str) -> dict[str, Any]:
        degraded = _Degraded()
        try:
            raw = await self._fetch(
                "fetch_address",
                lambda: self.source.fetch_raw_address(adapter.chain_id, address),
                chain=adapter.chain_id,
                address=address,
            )
            self.reputation.observe_address(adapter.normalize_address(raw))
        except NotFound:
            logger.debug("address_summary_missing", chain=adapter.chain_id, address=address)
        except RiskEngineError as e:
            logger.warning("address_summary_degraded", chain=adapter.chain_id, address=address, error=e.message)
            degraded.add(DEGRADED_ADDRESS)
        await self._refresh_sanctions(adapter.chain_id, [address], degraded)
        record: ReputationRecord = self.reputation.get_reputation(adapter.chain_id, address)
        return {**record.to_dict(), "degraded": list(degraded.parts)}

    async def address_reputation(self, chain: str, address: str) -> EngineResponse:
        async def work() -> tuple[Any, bool]:
            adapter = self._adapter(chain)
            canonical = adapter.canonicalize_address(address)
            return await self.cache.get_or_compute_with_status(
                ("reputation", adapter.chain_id, canonical),
                self.settings.cache_ttls.reputation_sec,
                lambda: self._compute_reputation(adapter, canonical),
            )

        return await self._respond("address_reputation", work)

    async def simulate(self, chain: str, raw_transaction: dict[str, Any]) -> EngineResponse:
        """Simulate a raw (typically pending) transaction payload without broadcasting it."""

        async def work() -> tuple[Any, bool]:
            adapter = self._adapter(chain)
            if not isinstance(raw_transaction, dict):
                raise MalformedPayload(adapter.chain_id, "<root>", "expected object")
            tx = adapter.normalize_transaction(raw_transaction)
            pending_ttl = self.settings.cache_ttls.pending_tx_sec
            result, cached = await self.cache.get_or_compute_with_status(
                ("simulate", tx.chain, tx.tx_hash),
                lambda r: 0 if r.degraded else pending_ttl,
                lambda: self.pipeline.simulator.simulate(tx),
            )
            return {"transaction": tx.to_dict(), "simulation": result.to_dict()}, cached

        return await self._respond("simulate", work)

    async def cross_chain_trace(self, chain: str, address: str, max_depth: int | None = None) -> EngineResponse:
        async def work() -> tuple[Any, bool]:
            adapter = self._adapter(chain)
            canonical = adapter.canonicalize_address(address)
            cfg = self.settings.correlator
            depth = cfg.default_max_depth if max_depth is None else max_depth
            if depth < 0:
                raise MalformedPayload(adapter.chain_id, "max_depth", "must be >= 0")
            depth = min(depth, cfg.max_depth_limit)

            async def compute() -> dict[str, Any]:
                return self.correlator.trace(adapter.chain_id, canonical, depth).to_dict()

            return await self.cache.get_or_compute_with_status(
                ("trace", adapter.chain_id, canonical, depth),
                self.settings.cache_ttls.trace_sec,
                compute,
            )

        return await self._respond("cross_chain_trace", work)

    async def analyze_batch(
        self,
        requests: Iterable[BatchRequest | tuple[str, str]],
        concurrency: int | None = None,
    ) -> list[EngineResponse]:
        """Score many transactions with bounded concurrency; one failure never affects the others."""
        items = [r if isinstance(r, BatchRequest) else BatchRequest(*r) for r in requests]
        semaphore = asyncio.Semaphore(max(1, concurrency or self.settings.batch_concurrency))

        async def one(req: BatchRequest) -> EngineResponse:
            async with semaphore:
                return await self.transaction_risk(req.chain, req.tx_hash)

        responses = await asyncio.gather(*(one(r) for r in items))
        failed = sum(1 for r in responses if not r.success)
        logger.info("batch_done", requests=len(items), failed=failed)
        return list(responses)

    # --- evidence entrypoints ---

    def record_evidence(self, chain: str, address: str, evidence: Evidence) -> ReputationRecord:
        adapter = self._adapter(chain)
        canonical = adapter.canonicalize_address(address)
        record = self.reputation.record_evidence(adapter.chain_id, canonical, evidence)
        self.cache.invalidate(("reputation", adapter.chain_id, canonical))
        return record

    def record_bridge_transfer(
        self,
        source_chain: str,
        source_address: str,
        dest_chain: str,
        dest_address: str,
        bridge_tx: str,
    ) -> TraceEdge:
        src = self._adapter(source_chain)
        dst = self._adapter(dest_chain)
        edge = self.correlator.record_bridge_transfer(
            src.chain_id,
            src.canonicalize_address(source_address),
            dst.chain_id,
            dst.canonicalize_address(dest_address),
            bridge_tx,
        )
        self._observe_edges([edge])
        return edge

    def _observe_edges(self, edges: list[TraceEdge]) -> None:
        if edges:
            self.cache.invalidate_prefix(("trace",))

    async def aclose(self) -> None:
        close = getattr(self.source, "aclose", None)
        if close is not None:
            await close()


def build_engine(settings: EngineSettings) -> RiskEngine:
    """Engine wired to HTTP node sources, bundled reference labels, and optional SQLite."""
    from backend_riskengine.sources.remote import HttpChainNodeSource, NodeSimulationBackend

    source = HttpChainNodeSource(
        esplora_urls=settings.esplora_urls,
        rpc_urls=settings.rpc_urls,
        history_urls=settings.history_urls,
        history_api_key=settings.history_api_key,
        timeout=settings.source_deadline_sec,
    )
    reference = load_reference_data(settings.reference_data_path)
    database = get_database(settings.db_path) if settings.db_path is not None else None
    return RiskEngine(
        source,
        settings=settings,
        reference=reference,
        simulation_backend=NodeSimulationBackend(source),
        database=database,
    )
