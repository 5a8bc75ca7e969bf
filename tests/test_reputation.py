"""
Tests for the address reputation store: evidence folding, class precedence,
sanctions stickiness and durable storage.
"""

from __future__ import annotations

import asyncio
import itertools

from backend_riskengine.analysis_engine import (
    Evidence,
    ReputationClass,
    ReputationConfig,
    ReputationStore,
    sanctions_listing,
    sanctions_removal,
)
from backend_riskengine.analysis_engine.reputation import active_sanctions, fold
from backend_riskengine.chains import NormalizedAddress
from conftest import BTC_ADDR_1, DAY, NOW

CHAIN = "bitcoin"


def _store(database=None):
    return ReputationStore(ReputationConfig(), database, clock=lambda: NOW)


def test_no_evidence_is_unknown():
    record = _store().get_reputation(CHAIN, BTC_ADDR_1)
    assert record.reputation_class == ReputationClass.UNKNOWN
    assert record.confidence == 0.0
    assert record.evidence == ()


def test_fold_is_order_independent():
    evidence = [
        Evidence("mixer_interaction", 0.6, NOW - 30, "tx a"),
        Evidence("manual_review", -0.2, NOW - 20, "ok"),
        Evidence("structuring", 0.5, NOW - 10, "tx b"),
        sanctions_listing("ofac_sdn", NOW - 5),
    ]
    config = ReputationConfig()
    records = {
        fold(CHAIN, BTC_ADDR_1, list(order), NOW - 400 * DAY, config)
        for order in itertools.permutations(evidence)
    }
    assert len(records) == 1


def test_suspicious_when_weight_exceeds_threshold():
    store = _store()
    store.record_evidence(CHAIN, BTC_ADDR_1, Evidence("mixer_interaction", 0.6, NOW, "tx a"))
    assert store.get_reputation(CHAIN, BTC_ADDR_1).reputation_class == ReputationClass.NEUTRAL
    record = store.record_evidence(CHAIN, BTC_ADDR_1, Evidence("structuring", 0.5, NOW + 1, "tx b"))
    assert record.reputation_class == ReputationClass.SUSPICIOUS
    assert record.confidence == 0.55


def test_trusted_requires_age_and_no_risk_evidence():
    store = _store()
    store.observe_first_seen(CHAIN, BTC_ADDR_1, NOW - 365 * DAY)
    record = store.record_evidence(CHAIN, BTC_ADDR_1, Evidence("exchange_label", -0.5, NOW, "binance"))
    assert record.reputation_class == ReputationClass.TRUSTED

    record = store.record_evidence(CHAIN, BTC_ADDR_1, Evidence("mev_attacker", 0.3, NOW, "tx c"))
    assert record.reputation_class == ReputationClass.NEUTRAL


def test_sanctions_are_sticky_until_explicit_removal():
    store = _store()
    store.record_evidence(CHAIN, BTC_ADDR_1, sanctions_listing("ofac_sdn", NOW - 100))
    # overwhelming positive evidence does not revoke a listing
    record = store.record_evidence(CHAIN, BTC_ADDR_1, Evidence("manual_review", -5.0, NOW, "cleared"))
    assert record.reputation_class == ReputationClass.SANCTIONED

    record = store.record_evidence(CHAIN, BTC_ADDR_1, sanctions_removal("ofac_sdn", NOW + 10))
    assert record.reputation_class != ReputationClass.SANCTIONED
    assert active_sanctions(record.evidence) == []


def test_relisting_after_removal():
    evidence = [
        sanctions_listing("ofac_sdn", NOW),
        sanctions_removal("ofac_sdn", NOW + 10),
        sanctions_listing("ofac_sdn", NOW + 20),
    ]
    assert active_sanctions(evidence) == ["ofac_sdn"]


def test_inconsistent_evidence_is_appended_not_rejected():
    store = _store()
    record = store.record_evidence(CHAIN, BTC_ADDR_1, sanctions_removal("ofac_sdn", NOW))
    assert len(record.evidence) == 1
    assert record.reputation_class == ReputationClass.NEUTRAL


def test_unique_evidence_is_not_duplicated():
    store = _store()
    entry = Evidence("mixer_interaction", 0.6, NOW, "tx a")
    store.record_evidence(CHAIN, BTC_ADDR_1, entry, unique=True)
    record = store.record_evidence(CHAIN, BTC_ADDR_1, entry, unique=True)
    assert len(record.evidence) == 1


def test_snapshot_is_point_in_time():
    store = _store()
    store.record_evidence(CHAIN, BTC_ADDR_1, Evidence("structuring", 0.5, NOW, "tx b"))
    snapshot = store.snapshot([(CHAIN, BTC_ADDR_1)])
    store.record_evidence(CHAIN, BTC_ADDR_1, Evidence("mixer_interaction", 0.6, NOW + 1, "tx a"))
    assert len(snapshot[(CHAIN, BTC_ADDR_1)].evidence) == 1


def test_first_seen_keeps_earliest():
    store = _store()
    store.observe_address(NormalizedAddress(CHAIN, BTC_ADDR_1, NOW - 10, 1, 0))
    store.observe_first_seen(CHAIN, BTC_ADDR_1, NOW)
    store.observe_first_seen(CHAIN, BTC_ADDR_1, NOW - 50)
    assert store.get_reputation(CHAIN, BTC_ADDR_1).first_seen == NOW - 50


def test_refresh_sanctions_appends_once(sanctions_list):
    store = _store()
    sanctions_list.add(CHAIN, BTC_ADDR_1, "ofac_sdn", NOW - 3600)

    async def run():
        await store.refresh_sanctions(CHAIN, BTC_ADDR_1, sanctions_list)
        return await store.refresh_sanctions(CHAIN, BTC_ADDR_1, sanctions_list)

    record = asyncio.run(run())
    assert record.reputation_class == ReputationClass.SANCTIONED
    assert len(record.evidence) == 1
    assert record.evidence[0].timestamp == NOW - 3600


def test_refresh_sanctions_never_revokes(sanctions_list):
    store = _store()
    store.record_evidence(CHAIN, BTC_ADDR_1, sanctions_listing("ofac_sdn", NOW - 100))
    record = asyncio.run(store.refresh_sanctions(CHAIN, BTC_ADDR_1, sanctions_list))
    assert record.reputation_class == ReputationClass.SANCTIONED



def test_refresh_after_removal_does_not_repeat_stale_listing(sanctions_list):
    store = _store()
    sanctions_list.add(CHAIN, BTC_ADDR_1, "ofac_sdn", NOW - 200)
    asyncio.run(store.refresh_sanctions(CHAIN, BTC_ADDR_1, sanctions_list))
    store.record_evidence(CHAIN, BTC_ADDR_1, sanctions_removal("ofac_sdn", NOW - 100))

    async def run():
        record = None
        for _ in range(5):
            record = await store.refresh_sanctions(CHAIN, BTC_ADDR_1, sanctions_list)
        return record

    record = asyncio.run(run())
    assert len(record.evidence) == 2
    assert record.reputation_class != ReputationClass.SANCTIONED


def test_evidence_survives_restart(database):
    store = _store(database)
    store.observe_first_seen(CHAIN, BTC_ADDR_1, NOW - DAY)
    store.record_evidence(CHAIN, BTC_ADDR_1, sanctions_listing("ofac_sdn", NOW))

    reloaded = _store(database).get_reputation(CHAIN, BTC_ADDR_1)
    assert reloaded.reputation_class == ReputationClass.SANCTIONED
    assert reloaded.first_seen == NOW - DAY
