"""
Pre-broadcast simulation of pending transactions.

Loads a virtual state snapshot (balances) for the involved addresses from a
SimulationBackend, applies the transaction's balance deltas to a copy, and
predicts success. Persisted state is never touched. When the backend cannot
be reached the call is retried under the RetryPolicy and then returned as a
degraded (non-fatal) result.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

from backend_riskengine.analysis_engine.models import SimulationResult
from backend_riskengine.chains.models import FAMILY_ACCOUNT, NormalizedTransaction
from backend_riskengine.core.exceptions import SimulationUnavailable, Timeout
from backend_riskengine.core.retry import RetryPolicy, retry_async
from backend_riskengine.riskengine_logging import get_logger

logger = get_logger(__name__)

FAILURE_INSUFFICIENT_BALANCE = "insufficient_balance"
FAILURE_OUTPUTS_EXCEED_INPUTS = "outputs_exceed_inputs"
FAILURE_SIMULATION_UNAVAILABLE = "simulation_unavailable"

DEFAULT_SIMULATION_DEADLINE_SEC = 5.0


@dataclass(frozen=True)
class StateSnapshot:
    """Point-in-time balances for a set of addresses; read-only for the simulator."""

    chain: str
    balances: dict[str, int] = field(default_factory=dict)
    block_height: int | None = None

    def balance_of(self, address: str) -> int:
        return self.balances.get(address, 0)


class SimulationBackend(Protocol):
    async def load_snapshot(self, chain: str, addresses: list[str]) -> StateSnapshot:
        """Return balances for addresses; raise SimulationUnavailable if unreachable."""
        ...


class InMemorySimulationBackend:
    """Snapshot source backed by a dict {(chain, address): balance}; for local runs and tests."""

    def __init__(self, balances: dict[tuple[str, str], int] | None = None, *, available: bool = True) -> None:
        self._balances = dict(balances or {})
        self.available = available
        self.calls = 0

    def set_balance(self, chain: str, address: str, amount: int) -> None:
        self._balances[(chain, address)] = amount

    async def load_snapshot(self, chain: str, addresses: list[str]) -> StateSnapshot:
        self.calls += 1
        if not self.available:
            raise SimulationUnavailable("simulation backend offline", chain=chain)
        return StateSnapshot(
            chain=chain,
            balances={a: self._balances.get((chain, a), 0) for a in addresses},
        )


@dataclass
class SimulationConfig:
    deadline_sec: float = DEFAULT_SIMULATION_DEADLINE_SEC
    retry_policy: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(retry_on=(SimulationUnavailable, Timeout))
    )


def balance_deltas(tx: NormalizedTransaction) -> dict[str, int]:
    """
    Net balance change per address.

    UTXO: the fee is implicit (inputs - outputs). Account: the sender also pays
    the fee on top of the transferred value.
    """
    deltas: defaultdict[str, int] = defaultdict(int)
    for leg in tx.inputs:
        if leg.address:
            deltas[leg.address] -= leg.amount
    for leg in tx.outputs:
        if leg.address:
            deltas[leg.address] += leg.amount
    if tx.family == FAMILY_ACCOUNT and tx.sender:
        deltas[tx.sender] -= tx.fee
    return dict(deltas)


def execute(tx: NormalizedTransaction, snapshot: StateSnapshot) -> SimulationResult:
    """Apply tx to a copy of snapshot balances and predict success. Pure."""
    deltas = balance_deltas(tx)
    resulting = {addr: snapshot.balance_of(addr) + delta for addr, delta in deltas.items()}
    ordered_deltas = tuple(sorted(deltas.items()))
    ordered_balances = tuple(sorted(resulting.items()))

    if tx.family != FAMILY_ACCOUNT and tx.total_output + tx.fee > tx.total_input:
        return SimulationResult(
            predicted_success=False,
            failure_reason=(
                f"{FAILURE_OUTPUTS_EXCEED_INPUTS}: outputs+fee {tx.total_output + tx.fee} "
                f"> inputs {tx.total_input}"
            ),
            balance_deltas=ordered_deltas,
            resulting_balances=ordered_balances,
        )

    for addr, balance in ordered_balances:
        if balance < 0:
            return SimulationResult(
                predicted_success=False,
                failure_reason=f"{FAILURE_INSUFFICIENT_BALANCE}: {addr} short by {-balance}",
                balance_deltas=ordered_deltas,
                resulting_balances=ordered_balances,
            )

    return SimulationResult(
        predicted_success=True,
        failure_reason=None,
        balance_deltas=ordered_deltas,
        resulting_balances=ordered_balances,
    )


class TransactionSimulator:
    """Loads a snapshot with retry + deadline, then executes the transaction virtually."""

    def __init__(
        self,
        backend: SimulationBackend,
        config: SimulationConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._backend = backend
        self._config = config or SimulationConfig()
        self._sleep = sleep

    async def simulate(self, tx: NormalizedTransaction) -> SimulationResult:
        addresses = sorted(set(balance_deltas(tx)))
        attempts = 0

        async def _load() -> StateSnapshot:
            nonlocal attempts
            attempts += 1
            return await self._backend.load_snapshot(tx.chain, addresses)

        try:
            snapshot = await retry_async(
                _load,
                self._config.retry_policy,
                operation="simulation_snapshot",
                deadline_sec=self._config.deadline_sec,
                sleep=self._sleep,
                chain=tx.chain,
                tx_hash=tx.tx_hash,
            )
        except (SimulationUnavailable, Timeout) as e:
            logger.warning(
                "simulation_degraded",
                chain=tx.chain,
                tx_hash=tx.tx_hash,
                attempts=attempts,
                error=str(e),
            )
            return SimulationResult(
                predicted_success=None,
                failure_reason=FAILURE_SIMULATION_UNAVAILABLE,
                degraded=True,
                attempts=attempts,
            )

        result = execute(tx, snapshot)
        logger.debug(
            "simulation_done",
            chain=tx.chain,
            tx_hash=tx.tx_hash,
            predicted_success=result.predicted_success,
            failure_reason=result.failure_reason,
        )
        return SimulationResult(
            predicted_success=result.predicted_success,
            failure_reason=result.failure_reason,
            balance_deltas=result.balance_deltas,
            resulting_balances=result.resulting_balances,
            degraded=False,
            attempts=attempts,
        )
