"""
Tests for the cross-chain correlator: edge evidence, bounded BFS tracing,
cycle termination, truncation and conflicting evidence.
"""

from __future__ import annotations

import pytest

from backend_riskengine.analysis_engine import CorrelatorConfig, CrossChainCorrelator, LinkageType
from backend_riskengine.core.exceptions import DepthExceeded
from conftest import BTC_ADDR_1, NOW, eth_address, tx_hash

A = ("ethereum", eth_address(1))
B = ("polygon", eth_address(1))
C = ("bitcoin", BTC_ADDR_1)


def _bridge(correlator, src, dst, n):
    return correlator.record_bridge_transfer(src[0], src[1], dst[0], dst[1], tx_hash(n))


def test_cycle_terminates():
    correlator = CrossChainCorrelator(clock=lambda: NOW)
    _bridge(correlator, A, B, 1)
    _bridge(correlator, B, C, 2)
    _bridge(correlator, C, A, 3)

    graph = correlator.trace(*A, max_depth=3)
    assert set(graph.nodes) == {A, B, C}
    assert graph.nodes[0] == A
    assert len(graph.edges) == 3
    assert graph.truncated is False
    assert graph.truncation is None


def test_trace_follows_edges_in_both_directions():
    correlator = CrossChainCorrelator()
    _bridge(correlator, A, B, 1)
    graph = correlator.trace(*B, max_depth=1)
    assert graph.nodes == (B, A)


def test_truncation_at_max_depth():
    correlator = CrossChainCorrelator()
    chain = [("ethereum", eth_address(i)) for i in range(1, 6)]
    for i, (src, dst) in enumerate(zip(chain, chain[1:])):
        correlator.record_wrapped_asset(src[0], src[1], dst[0], dst[1], f"wrap-{i}")

    graph = correlator.trace(*chain[0], max_depth=2)
    assert graph.nodes == tuple(chain[:3])
    assert len(graph.edges) == 2
    assert graph.depth_reached == 2
    assert graph.truncated is True
    assert isinstance(graph.truncation, DepthExceeded)
    assert graph.to_dict()["truncation"]["kind"] == "depth_exceeded"


def test_zero_depth_and_unknown_root():
    correlator = CrossChainCorrelator()
    _bridge(correlator, A, B, 1)
    root_only = correlator.trace(*A, max_depth=0)
    assert root_only.nodes == (A,)
    assert root_only.truncated is True

    unknown = correlator.trace("ethereum", eth_address(9))
    assert unknown.nodes == (("ethereum", eth_address(9)),)
    assert unknown.edges == ()

    with pytest.raises(ValueError):
        correlator.trace(*A, max_depth=-1)


def test_re_adding_edge_is_idempotent():
    correlator = CrossChainCorrelator()
    first = _bridge(correlator, A, B, 1)
    second = _bridge(correlator, A, B, 1)
    assert first == second
    assert len(correlator) == 1
    assert correlator.node_count == 2


def test_self_edge_rejected():
    with pytest.raises(ValueError):
        _bridge(CrossChainCorrelator(), A, A, 1)


def test_shared_counterparty_within_window():
    exchange_eth = eth_address(500)
    exchange_poly = eth_address(501)
    correlator = CrossChainCorrelator(
        CorrelatorConfig(shared_window_seconds=3600),
        entities={("ethereum", exchange_eth): "binance", ("polygon", exchange_poly): "binance"},
    )
    assert correlator.observe_activity("ethereum", eth_address(1), exchange_eth, NOW) == []
    added = correlator.observe_activity("polygon", eth_address(2), exchange_poly, NOW + 600)
    assert len(added) == 1
    edge = added[0]
    assert edge.linkage == LinkageType.SHARED_COUNTERPARTY
    assert edge.directed is False
    assert edge.confidence == 0.4
    assert edge.evidence_ref == "binance"

    late = correlator.observe_activity("polygon", eth_address(3), exchange_poly, NOW + 7200)
    assert late == []


def test_conflict_lowers_confidence_and_min_confidence_filters():
    correlator = CrossChainCorrelator()
    edge = _bridge(correlator, A, B, 1)
    revised = correlator.record_conflict(edge.edge_key, "amount mismatch")
    assert revised.confidence == 0.45
    assert correlator.get_edge(edge.edge_key).confidence == 0.45
    assert correlator.record_conflict("missing") is None

    assert correlator.trace(*A, min_confidence=0.5).nodes == (A,)


def test_edges_persist_across_restart(database):
    correlator = CrossChainCorrelator(database=database, clock=lambda: NOW)
    edge = _bridge(correlator, A, B, 1)
    correlator.record_conflict(edge.edge_key, "amount mismatch")

    reloaded = CrossChainCorrelator(database=database)
    assert reloaded.get_edge(edge.edge_key).confidence == 0.45
    revisions = database.get_edge_revisions(edge.edge_key)
    assert [r.reason for r in revisions] == ["observed", "amount mismatch"]
    assert revisions[0].revised_at == NOW


def test_activity_keeps_latest_sighting_within_window():
    exchange = eth_address(500)
    correlator = CrossChainCorrelator(
        CorrelatorConfig(shared_window_seconds=3600, max_activity_per_entity=3),
        entities={("ethereum", exchange): "binance"},
    )
    for _ in range(20):
        correlator.observe_activity("ethereum", eth_address(1), exchange, NOW)
    assert len(correlator._activity["binance"]) == 1

    for i in range(5):
        correlator.observe_activity("ethereum", eth_address(10 + i), exchange, NOW + i)
    assert list(correlator._activity["binance"]) == [
        ("ethereum", eth_address(12)),
        ("ethereum", eth_address(13)),
        ("ethereum", eth_address(14)),
    ]

    correlator.observe_activity("ethereum", eth_address(20), exchange, NOW + 7200)
    assert list(correlator._activity["binance"]) == [("ethereum", eth_address(20))]
