"""
Tests for reference label loading: canonicalization and skipped rows.
"""

from __future__ import annotations

import asyncio
import json

from backend_riskengine.config import load_reference_data, parse_reference_data
from conftest import BTC_ADDR_1, NOW, eth_address

MIXER = eth_address(42)


def _data():
    return {
        "mixers": [{"chain": "ethereum", "address": MIXER.lower(), "name": "mixer"}],
        "verified_contracts": [{"chain": "Ethereum", "address": eth_address(7)}],
        "entities": [
            {"chain": "bitcoin", "address": BTC_ADDR_1, "entity": "exchange"},
            {"chain": "dogecoin", "address": BTC_ADDR_1, "entity": "unknown chain"},
        ],
        "sanctions": [
            {"chain": "bitcoin", "address": BTC_ADDR_1, "list": "OFAC", "effective_date": NOW},
            {"chain": "ethereum", "address": "not-an-address", "list": "OFAC"},
        ],
    }


def test_rows_are_canonicalized_and_invalid_rows_skipped():
    ref = parse_reference_data(_data())
    assert ref.mixers == frozenset({("ethereum", MIXER)})
    assert ref.verified_contracts == frozenset({("ethereum", eth_address(7))})
    assert ref.entities == {("bitcoin", BTC_ADDR_1): "exchange"}
    assert len(ref.sanctions) == 1

    status = asyncio.run(ref.sanctions.is_listed("bitcoin", BTC_ADDR_1))
    assert status.listed
    assert status.list_name == "OFAC"
    assert status.effective_date == NOW


def test_load_from_file(tmp_path):
    path = tmp_path / "reference.json"
    path.write_text(json.dumps(_data()), encoding="utf-8")
    ref = load_reference_data(path)
    assert ("ethereum", MIXER) in ref.mixers
    assert not asyncio.run(ref.sanctions.is_listed("ethereum", MIXER)).listed
