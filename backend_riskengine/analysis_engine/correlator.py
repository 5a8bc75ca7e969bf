"""
Cross-chain correlator: links addresses across chains and traces them.

Nodes are (chain, address) pairs kept in an arena (list) with an index
(node -> slot); edges are keyed by their identity and referenced from each
endpoint's adjacency set. trace() is a BFS with a visited set, so cycles
terminate, bounded by max_depth.

Evidence:
- bridge transfers: directed, high confidence.
- wrapped assets: directed, high confidence.
- shared counterparty: the same labeled entity seen on two chains within a
  time window; undirected, lower confidence.
Conflicting evidence lowers an edge's confidence; edges are never removed.
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Callable

from backend_riskengine.analysis_engine.models import LinkageType, NodeKey, TraceEdge, TraceGraph
from backend_riskengine.core.exceptions import DepthExceeded
from backend_riskengine.riskengine_logging import get_logger

if TYPE_CHECKING:
    from backend_riskengine.database import Database

logger = get_logger(__name__)


@dataclass
class CorrelatorConfig:
    bridge_confidence: float = 0.9
    wrapped_confidence: float = 0.85
    shared_counterparty_confidence: float = 0.4
    shared_window_seconds: int = 86400
    conflict_penalty: float = 0.5
    """Multiplier applied to an edge's confidence per conflicting observation."""
    default_max_depth: int = 3
    max_depth_limit: int = 10
    max_activity_per_entity: int = 1000


class CrossChainCorrelator:
    def __init__(
        self,
        config: CorrelatorConfig | None = None,
        *,
        entities: dict[NodeKey, str] | None = None,
        database: "Database | None" = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or CorrelatorConfig()
        self._entities = dict(entities or {})
        self._db = database
        self._clock = clock

        self._nodes: list[NodeKey] = []
        self._index: dict[NodeKey, int] = {}
        self._adjacency: defaultdict[int, set[str]] = defaultdict(set)
        self._edges: dict[str, TraceEdge] = {}
        self._activity: defaultdict[str, dict[NodeKey, int]] = defaultdict(dict)
        self._activity_newest: dict[str, int] = {}

        self._graph_lock = threading.Lock()
        self._edge_locks: dict[str, threading.Lock] = {}

        if database is not None:
            for edge in database.load_trace_edges():
                self._attach(edge)

    # --- arena ---

    def _node(self, key: NodeKey) -> int:
        slot = self._index.get(key)
        if slot is None:
            slot = len(self._nodes)
            self._nodes.append(key)
            self._index[key] = slot
        return slot

    def _attach(self, edge: TraceEdge) -> None:
        with self._graph_lock:
            a = self._node(edge.node_a)
            b = self._node(edge.node_b)
            self._edges[edge.edge_key] = edge
            self._adjacency[a].add(edge.edge_key)
            self._adjacency[b].add(edge.edge_key)

    def _edge_lock(self, edge_key: str) -> threading.Lock:
        with self._graph_lock:
            lock = self._edge_locks.get(edge_key)
            if lock is None:
                lock = self._edge_locks[edge_key] = threading.Lock()
            return lock

    def __len__(self) -> int:
        return len(self._edges)

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    def get_edge(self, edge_key: str) -> TraceEdge | None:
        return self._edges.get(edge_key)

    # --- evidence ---

    def add_edge(self, edge: TraceEdge) -> TraceEdge:
        """Insert an edge. Re-adding the same identity keeps the higher confidence; never duplicates."""
        if edge.node_a == edge.node_b:
            raise ValueError("edge endpoints must differ")
        key = edge.edge_key
        with self._edge_lock(key):
            existing = self._edges.get(key)
            if existing is not None and existing.confidence >= edge.confidence:
                return existing
            if existing is not None:
                edge = replace(existing, confidence=edge.confidence, evidence_ref=edge.evidence_ref)
            self._attach(edge)
            if self._db is not None:
                self._db.upsert_trace_edge(edge)
                self._db.append_edge_revision(key, edge.confidence, "observed", int(self._clock()))
        logger.info(
            "trace_edge_added",
            edge=key,
            linkage=edge.linkage.value,
            confidence=edge.confidence,
        )
        return edge

    def record_bridge_transfer(
        self,
        source_chain: str,
        source_address: str,
        dest_chain: str,
        dest_address: str,
        bridge_tx: str,
    ) -> TraceEdge:
        return self.add_edge(
            TraceEdge(
                chain_a=source_chain,
                address_a=source_address,
                chain_b=dest_chain,
                address_b=dest_address,
                linkage=LinkageType.BRIDGE_TRANSFER,
                confidence=self.config.bridge_confidence,
                evidence_ref=bridge_tx,
            )
        )

    def record_wrapped_asset(
        self,
        source_chain: str,
        source_address: str,
        dest_chain: str,
        dest_address: str,
        evidence_ref: str = "",
    ) -> TraceEdge:
        return self.add_edge(
            TraceEdge(
                chain_a=source_chain,
                address_a=source_address,
                chain_b=dest_chain,
                address_b=dest_address,
                linkage=LinkageType.WRAPPED_ASSET,
                confidence=self.config.wrapped_confidence,
                evidence_ref=evidence_ref,
            )
        )

    def observe_activity(self, chain: str, address: str, counterparty: str, timestamp: int) -> list[TraceEdge]:
        """
        Note that address transacted with counterparty. If counterparty is a labeled
        entity also seen on another chain within the window, link the two addresses.

        Only the latest sighting per address is kept for each entity, and sightings
        older than the window (relative to the entity's newest) are dropped.
        """
        entity = self._entities.get((chain, counterparty))
        if entity is None:
            return []
        window = self.config.shared_window_seconds
        node: NodeKey = (chain, address)
        with self._graph_lock:
            recent = self._activity[entity]
            newest = max(timestamp, self._activity_newest.get(entity, timestamp))
            self._activity_newest[entity] = newest
            for stale in [k for k, ts in recent.items() if ts < newest - window]:
                del recent[stale]
            prior = [(k, ts) for k, ts in recent.items() if k[0] != chain and abs(ts - timestamp) <= window]
            if timestamp >= newest - window and recent.get(node, timestamp) <= timestamp:
                recent[node] = timestamp
            while len(recent) > self.config.max_activity_per_entity:
                del recent[min(recent, key=recent.__getitem__)]

        added: list[TraceEdge] = []
        for (other_chain, other_address), _ in prior:
            added.append(
                self.add_edge(
                    TraceEdge(
                        chain_a=other_chain,
                        address_a=other_address,
                        chain_b=chain,
                        address_b=address,
                        linkage=LinkageType.SHARED_COUNTERPARTY,
                        confidence=self.config.shared_counterparty_confidence,
                        evidence_ref=entity,
                    )
                )
            )
        return added

    def record_conflict(self, edge_key: str, reason: str = "") -> TraceEdge | None:
        """Lower an edge's confidence after contradicting evidence; returns the revised edge."""
        with self._edge_lock(edge_key):
            existing = self._edges.get(edge_key)
            if existing is None:
                return None
            revised = replace(existing, confidence=round(existing.confidence * self.config.conflict_penalty, 6))
            self._attach(revised)
            if self._db is not None:
                self._db.upsert_trace_edge(revised)
                self._db.append_edge_revision(edge_key, revised.confidence, reason or "conflict", int(self._clock()))
        logger.warning(
            "trace_edge_conflict",
            edge=edge_key,
            confidence_before=existing.confidence,
            confidence_after=revised.confidence,
            reason=reason,
        )
        return revised

    # --- query ---

    def trace(
        self,
        chain: str,
        address: str,
        max_depth: int | None = None,
        *,
        min_confidence: float = 0.0,
    ) -> TraceGraph:
        """
        BFS from (chain, address) over edges in either direction, up to max_depth hops.

        truncated is True when nodes beyond max_depth were reachable; the result
        then carries a DepthExceeded marker.
        """
        depth_limit = self.config.default_max_depth if max_depth is None else max_depth
        if depth_limit < 0:
            raise ValueError("max_depth must be >= 0")
        root: NodeKey = (chain, address)

        with self._graph_lock:
            nodes = list(self._nodes)
            index = dict(self._index)
            adjacency = {slot: set(keys) for slot, keys in self._adjacency.items()}
            edges = dict(self._edges)

        order: list[NodeKey] = [root]
        collected: dict[str, TraceEdge] = {}
        depth_reached = 0
        truncated = False

        start = index.get(root)
        if start is not None:
            seen = {start}
            queue: deque[tuple[int, int]] = deque([(start, 0)])
            while queue:
                slot, depth = queue.popleft()
                depth_reached = max(depth_reached, depth)
                for key in sorted(adjacency.get(slot, ())):
                    edge = edges[key]
                    if edge.confidence < min_confidence:
                        continue
                    other = index[edge.node_b] if index[edge.node_a] == slot else index[edge.node_a]
                    if other in seen:
                        collected[key] = edge
                        continue
                    if depth >= depth_limit:
                        truncated = True
                        continue
                    seen.add(other)
                    collected[key] = edge
                    order.append(nodes[other])
                    queue.append((other, depth + 1))

        graph = TraceGraph(
            root=root,
            nodes=tuple(order),
            edges=tuple(collected[k] for k in sorted(collected)),
            max_depth=depth_limit,
            depth_reached=depth_reached,
            truncated=truncated,
            truncation=DepthExceeded(depth_limit) if truncated else None,
        )
        logger.debug(
            "trace_done",
            chain=chain,
            address=address,
            nodes=len(graph.nodes),
            edges=len(graph.edges),
            truncated=truncated,
        )
        return graph
