"""
Tests for pre-broadcast simulation: virtual balance execution and the
degraded path when the simulation backend is unreachable.
"""

from __future__ import annotations

import asyncio

from backend_riskengine.analysis_engine import (
    InMemorySimulationBackend,
    SimulationConfig,
    StateSnapshot,
    TransactionSimulator,
)
from backend_riskengine.analysis_engine.simulation import balance_deltas, execute
from backend_riskengine.chains import normalize
from conftest import BTC_ADDR_1, BTC_ADDR_2, btc_raw, eth_address, eth_raw, no_sleep


def _pending_eth(value: int, gas_price: int = 10):
    raw = eth_raw(1, eth_address(1), eth_address(2), value, block_number=None, gas_price=gas_price)
    return normalize(raw, "ethereum")


def test_balance_deltas_include_sender_fee():
    tx = _pending_eth(1_000, gas_price=10)
    deltas = balance_deltas(tx)
    assert deltas[eth_address(1)] == -(1_000 + 21_000 * 10)
    assert deltas[eth_address(2)] == 1_000


def test_execute_insufficient_balance():
    tx = _pending_eth(1_000)
    snapshot = StateSnapshot(chain="ethereum", balances={eth_address(1): 500})
    result = execute(tx, snapshot)
    assert result.predicted_success is False
    assert result.failure_reason.startswith("insufficient_balance")
    assert eth_address(1) in result.failure_reason


def test_execute_does_not_mutate_snapshot():
    tx = _pending_eth(1_000)
    balances = {eth_address(1): 10**18}
    snapshot = StateSnapshot(chain="ethereum", balances=balances)
    result = execute(tx, snapshot)
    assert result.predicted_success is True
    assert balances == {eth_address(1): 10**18}
    assert dict(result.resulting_balances)[eth_address(2)] == 1_000


def test_execute_utxo_outputs_exceed_inputs():
    raw = btc_raw(2, [(BTC_ADDR_1, 1_000)], [(BTC_ADDR_2, 900)], confirmed=False, fee=200)
    tx = normalize(raw, "bitcoin")
    result = execute(tx, StateSnapshot(chain="bitcoin", balances={BTC_ADDR_1: 10_000}))
    assert result.predicted_success is False
    assert result.failure_reason.startswith("outputs_exceed_inputs")


def test_simulator_success():
    backend = InMemorySimulationBackend()
    backend.set_balance("ethereum", eth_address(1), 10**18)
    simulator = TransactionSimulator(backend, sleep=no_sleep)
    result = asyncio.run(simulator.simulate(_pending_eth(1_000)))
    assert result.predicted_success is True
    assert result.degraded is False
    assert result.attempts == 1


def test_simulator_degrades_when_backend_offline():
    backend = InMemorySimulationBackend(available=False)
    simulator = TransactionSimulator(backend, SimulationConfig(), sleep=no_sleep)
    result = asyncio.run(simulator.simulate(_pending_eth(1_000)))
    assert result.degraded is True
    assert result.predicted_success is None
    assert result.failure_reason == "simulation_unavailable"
    assert result.attempts == 3
    assert backend.calls == 3
