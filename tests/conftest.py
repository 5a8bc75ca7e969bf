"""
Pytest fixtures for risk engine tests: raw payload builders, in-memory sources,
and an engine wired with a fixed clock and no-op backoff.
"""

from __future__ import annotations

from typing import Any

import pytest
from eth_utils import to_checksum_address

NOW = 1_700_000_000
DAY = 86400

BTC_ADDR_1 = "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa"
BTC_ADDR_2 = "1BvBMSEYstWetqTFn5Au4m4GFg7xJaNVN2"
BTC_ADDR_3 = "3J98t1WpEZ73CNmQviecrnyiWrnqRhWNLy"
BTC_BECH32 = "bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq"


def eth_address(n: int) -> str:
    """Deterministic checksummed EVM address for test index n."""
    return to_checksum_address("0x" + f"{n:040x}")


def tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


def txid(n: int) -> str:
    return f"{n:064x}"


async def no_sleep(_delay: float) -> None:
    return None


def btc_raw(
    n: int,
    inputs: list[tuple[str, int]],
    outputs: list[tuple[str | None, int]],
    *,
    confirmed: bool = True,
    block_time: int = NOW,
    block_height: int = 800_000,
    fee: int | None = None,
) -> dict[str, Any]:
    """Esplora-style transaction JSON."""
    raw: dict[str, Any] = {
        "txid": txid(n),
        "vin": [{"prevout": {"scriptpubkey_address": a, "value": v}} for a, v in inputs],
        "vout": [
            {"scriptpubkey_address": a, "value": v} if a is not None else {"value": v}
            for a, v in outputs
        ],
        "status": (
            {"confirmed": True, "block_height": block_height, "block_time": block_time}
            if confirmed
            else {"confirmed": False}
        ),
    }
    if fee is not None:
        raw["fee"] = fee
    return raw


def eth_raw(
    n: int,
    sender: str,
    to: str | None,
    value: int = 0,
    *,
    data: str = "0x",
    block_number: int | None = 18_000_000,
    position: int | None = 0,
    gas_price: int = 20 * 10**9,
    gas: int = 21_000,
    timestamp: int | None = NOW,
    receipt_status: str | None = "0x1",
) -> dict[str, Any]:
    """JSON-RPC transaction object with merged receipt and block timestamp."""
    raw: dict[str, Any] = {
        "hash": tx_hash(n),
        "from": sender,
        "to": to,
        "value": hex(value),
        "input": data,
        "gas": hex(gas),
        "gasPrice": hex(gas_price),
    }
    if block_number is not None:
        raw["blockNumber"] = hex(block_number)
        raw["transactionIndex"] = hex(position or 0)
        if timestamp is not None:
            raw["blockTimestamp"] = hex(timestamp)
        if receipt_status is not None:
            raw["receipt"] = {
                "status": receipt_status,
                "gasUsed": hex(gas),
                "effectiveGasPrice": hex(gas_price),
            }
    return raw


@pytest.fixture
def node_source():
    from backend_riskengine.sources import StaticChainNodeSource

    return StaticChainNodeSource(page_size=10)


@pytest.fixture
def sanctions_list():
    from backend_riskengine.sources import StaticSanctionsList

    return StaticSanctionsList()


@pytest.fixture
def simulation_backend():
    from backend_riskengine.analysis_engine import InMemorySimulationBackend

    return InMemorySimulationBackend()


@pytest.fixture
def make_engine(node_source, sanctions_list, simulation_backend):
    """Factory for a RiskEngine over in-memory sources with clock fixed at NOW."""
    from backend_riskengine.config.reference import ReferenceData
    from backend_riskengine.config.settings import EngineSettings
    from backend_riskengine.engine import RiskEngine

    def _make(*, settings=None, reference=None, database=None, clock=None):
        return RiskEngine(
            node_source,
            settings=settings or EngineSettings(),
            reference=reference or ReferenceData(),
            sanctions=sanctions_list,
            simulation_backend=simulation_backend,
            database=database,
            clock=clock or (lambda: NOW),
            sleep=no_sleep,
        )

    return _make


@pytest.fixture
def database(tmp_path):
    from backend_riskengine.database import get_database

    return get_database(tmp_path / "riskengine.db")
