"""
Tests for the weighted risk scorer: determinism, factor contract and
risk levels.
"""

from __future__ import annotations

import asyncio

from backend_riskengine.analysis_engine import (
    Evidence,
    PipelineResult,
    ReputationClass,
    ReputationRecord,
    RiskScorer,
    ScoringConfig,
)
from backend_riskengine.analysis_engine.scorer import DEFAULT_WEIGHTS, risk_level
from backend_riskengine.chains import normalize
from conftest import BTC_ADDR_1, BTC_ADDR_2, DAY, NOW, btc_raw, eth_address, eth_raw, tx_hash

CHAIN = "bitcoin"


def _tx():
    return normalize(btc_raw(1, [(BTC_ADDR_1, 60_000)], [(BTC_ADDR_2, 50_000)]), CHAIN)


def _result(tx, **overrides):
    fields = dict(
        chain=tx.chain,
        tx_hash=tx.tx_hash,
        decoded_interaction=None,
        raw_call_data=None,
        simulation=None,
        mev_flags=(),
        pattern_flags=(),
        value_percentile=None,
        novel_contract_interaction=False,
        as_of=NOW,
    )
    fields.update(overrides)
    return PipelineResult(**fields)


def _record(address, klass, first_seen=None):
    return ReputationRecord(
        chain=CHAIN,
        address=address,
        reputation_class=klass,
        confidence=0.5,
        evidence=(Evidence("test", 0.0, NOW),),
        first_seen=first_seen,
        last_updated=NOW,
    )


def _snapshots(sender_class=ReputationClass.NEUTRAL, sender_first_seen=None, recipient_class=ReputationClass.NEUTRAL):
    return {
        (CHAIN, BTC_ADDR_1): _record(BTC_ADDR_1, sender_class, sender_first_seen),
        (CHAIN, BTC_ADDR_2): _record(BTC_ADDR_2, recipient_class),
    }


def test_score_is_deterministic():
    tx = _tx()
    scorer = RiskScorer()
    snapshots = _snapshots(sender_first_seen=NOW - 30 * DAY)
    first = scorer.score(tx, _result(tx), snapshots, computed_at=1)
    second = scorer.score(tx, _result(tx), snapshots, computed_at=2)
    assert first == second
    assert first.to_dict()["factors"] == second.to_dict()["factors"]


def test_factor_order_and_bounds():
    tx = _tx()
    factors = RiskScorer().factors(tx, _result(tx), _snapshots())
    assert [f.name for f in factors] == list(DEFAULT_WEIGHTS)
    assert all(0.0 <= f.raw_value <= 1.0 for f in factors)


def test_sanctioned_input_is_high_risk():
    tx = _tx()
    score = RiskScorer().score(
        tx, _result(tx), _snapshots(sender_class=ReputationClass.SANCTIONED, sender_first_seen=NOW - 800 * DAY)
    )
    assert score.score >= 80
    assert score.risk_level in ("HIGH", "CRITICAL")


def test_fresh_sender_scores_higher_than_mature_sender():
    tx = _tx()
    scorer = RiskScorer()
    fresh = scorer.score(tx, _result(tx), _snapshots(sender_first_seen=NOW - DAY))
    mature = scorer.score(tx, _result(tx), _snapshots(sender_first_seen=NOW - 730 * DAY))
    assert fresh.score > mature.score


def test_missing_snapshot_counts_as_unknown():
    tx = _tx()
    factors = {f.name: f for f in RiskScorer().factors(tx, _result(tx), {})}
    assert factors["counterparty_reputation"].raw_value == 0.05
    assert factors["address_freshness"].raw_value == 1.0
    assert factors["value_percentile"].raw_value == 0.5


def test_score_is_clamped():
    tx = _tx()
    config = ScoringConfig(weights={name: 1000.0 for name in DEFAULT_WEIGHTS})
    score = RiskScorer(config).score(tx, _result(tx), _snapshots(sender_class=ReputationClass.SANCTIONED))
    assert score.score == 100.0
    assert score.risk_level == "CRITICAL"


def test_risk_levels():
    config = ScoringConfig()
    assert risk_level(10, config) == "LOW"
    assert risk_level(40, config) == "MEDIUM"
    assert risk_level(80, config) == "HIGH"
    assert risk_level(95, config) == "CRITICAL"


def test_first_call_to_unverified_contract_fresh_vs_two_year_old_sender(make_engine, node_source):
    contract = eth_address(77)
    call_data = "0xa9059cbb" + "00" * 64
    fresh_sender, mature_sender = eth_address(1), eth_address(2)
    node_source.add_transaction(
        "ethereum", tx_hash(40), eth_raw(40, fresh_sender, contract, 10**18, data=call_data)
    )
    node_source.add_transaction(
        "ethereum", tx_hash(41), eth_raw(41, mature_sender, contract, 10**18, data=call_data)
    )
    node_source.add_history(
        "ethereum",
        mature_sender,
        [eth_raw(42, mature_sender, eth_address(3), 10**18, timestamp=NOW - 730 * DAY)],
    )
    engine = make_engine()

    async def run():
        fresh = await engine.transaction_risk("ethereum", tx_hash(40))
        mature = await engine.transaction_risk("ethereum", tx_hash(41))
        return fresh, mature

    fresh, mature = asyncio.run(run())
    fresh_factors = {f["name"]: f["raw_value"] for f in fresh.data["risk"]["factors"]}
    mature_factors = {f["name"]: f["raw_value"] for f in mature.data["risk"]["factors"]}
    assert fresh.data["analysis"]["novel_contract_interaction"] is True
    assert mature.data["analysis"]["novel_contract_interaction"] is True
    assert fresh_factors["contract_novelty"] == mature_factors["contract_novelty"] == 1.0
    assert fresh_factors["address_freshness"] == 1.0
    assert mature_factors["address_freshness"] == 0.0
    assert fresh.data["risk"]["score"] > mature.data["risk"]["score"]
