"""
MEV detection within a single block (account-family chains).

Heuristics:
- Sandwich: one address swaps on the same contract immediately before and
  after a victim swap, buying ahead of the victim in its direction and
  selling back after it (the front and back legs move the pair's price in
  opposite directions around the victim's trade).
- Front-running: a different sender calls the same contract method with a
  higher gas price within a few positions before the victim; for swaps the
  front leg must trade the victim's pair in the victim's direction.

Either role (victim or attacker leg) flags the analyzed transaction. Flags are
informational and carry evidence; detection never rejects a transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from backend_riskengine.analysis_engine.decoder import CATEGORY_SWAP, SignatureRegistry
from backend_riskengine.analysis_engine.models import MevFlag, MevKind
from backend_riskengine.chains.models import FAMILY_ACCOUNT, NormalizedTransaction
from backend_riskengine.riskengine_logging import get_logger

logger = get_logger(__name__)

FRONT_RUN_MAX_POSITIONS = 3
"""Max block-position distance between a front-runner and its victim."""


@dataclass
class MevConfig:
    front_run_max_positions: int = FRONT_RUN_MAX_POSITIONS
    require_swap_victim: bool = True
    """Sandwich victims must be decodable swaps, so the price impact of each leg can be compared."""


@dataclass(frozen=True)
class SwapLeg:
    """Direction and size of a decoded swap."""

    token_in: str
    token_out: str
    amount_in: int
    amount_out_min: int | None

    @property
    def pair(self) -> tuple[str, str]:
        return (self.token_in, self.token_out)

    def to_dict(self) -> dict[str, Any]:
        return {
            "token_in": self.token_in,
            "token_out": self.token_out,
            "amount_in": self.amount_in,
            "amount_out_min": self.amount_out_min,
        }


def _same_contract(a: NormalizedTransaction, b: NormalizedTransaction) -> bool:
    return a.call is not None and b.call is not None and a.call.contract == b.call.contract


def _ordered(block_transactions: Iterable[NormalizedTransaction]) -> list[NormalizedTransaction]:
    return sorted(
        (t for t in block_transactions if t.position is not None),
        key=lambda t: t.position,  # type: ignore[arg-type,return-value]
    )


def _brackets(front: SwapLeg, victim: SwapLeg, back: SwapLeg) -> bool:
    """Front buys ahead in the victim's direction and back sells the same pair in reverse."""
    return (
        front.pair == victim.pair
        and back.pair == (victim.token_out, victim.token_in)
        and front.amount_in > 0
        and back.amount_in > 0
    )


class MevDetector:
    def __init__(self, registry: SignatureRegistry, config: MevConfig | None = None) -> None:
        self._registry = registry
        self.config = config or MevConfig()

    def detect(
        self,
        tx: NormalizedTransaction,
        block_transactions: Iterable[NormalizedTransaction],
    ) -> tuple[MevFlag, ...]:
        if tx.family != FAMILY_ACCOUNT or tx.position is None or tx.call is None:
            return ()
        block = _ordered(block_transactions)
        if not any(t.tx_hash == tx.tx_hash for t in block):
            block = _ordered([*block, tx])

        flags: dict[tuple[MevKind, str], MevFlag] = {}
        for flag in self._sandwiches(tx, block):
            flags.setdefault((flag.kind, flag.attacker), flag)
        for flag in self._front_runs(tx, block):
            flags.setdefault((flag.kind, flag.attacker), flag)

        if flags:
            logger.info(
                "mev_detected",
                chain=tx.chain,
                tx_hash=tx.tx_hash,
                kinds=sorted({k.value for k, _ in flags}),
            )
        return tuple(flags.values())

    def _is_swap(self, t: NormalizedTransaction) -> bool:
        if t.call is None:
            return False
        return self._registry.category_of(t.call.selector) == CATEGORY_SWAP

    def swap_leg(self, t: NormalizedTransaction) -> SwapLeg | None:
        """Decode a swap's path and amounts; None if t is not a decodable swap."""
        if not self._is_swap(t):
            return None
        decoded = self._registry.decode(t.call)
        if decoded is None:
            return None
        args = dict(decoded.arguments)
        path = args.get("path")
        if not path or len(path) < 2:
            return None
        amount_in = args.get("amountIn", args.get("amountInMax"))
        if amount_in is None:
            # native-currency swaps carry the input as the call value
            amount_in = t.total_output
        return SwapLeg(
            token_in=str(path[0]).lower(),
            token_out=str(path[-1]).lower(),
            amount_in=int(amount_in),
            amount_out_min=args.get("amountOutMin", args.get("amountOut")),
        )

    def _sandwiches(self, tx: NormalizedTransaction, block: list[NormalizedTransaction]) -> list[MevFlag]:
        """Find sandwiches on tx's contract in which tx is the victim or an attacker leg."""
        on_contract = [t for t in block if _same_contract(t, tx)]
        out: list[MevFlag] = []
        for i, victim in enumerate(on_contract):
            victim_leg = self.swap_leg(victim)
            if self.config.require_swap_victim and victim_leg is None:
                continue
            before = {t.sender: t for t in on_contract[:i] if t.sender and t.sender != victim.sender}
            for after in on_contract[i + 1:]:
                attacker = after.sender
                front = before.get(attacker)
                if front is None:
                    continue
                legs = (front.tx_hash, victim.tx_hash, after.tx_hash)
                if tx.tx_hash not in legs:
                    continue
                evidence: dict[str, Any] = {
                    "role": "victim" if tx.tx_hash == victim.tx_hash else "attacker",
                    "contract": victim.call.contract,  # type: ignore[union-attr]
                    "front_tx": front.tx_hash,
                    "victim_tx": victim.tx_hash,
                    "back_tx": after.tx_hash,
                    "positions": [front.position, victim.position, after.position],
                }
                if victim_leg is not None:
                    front_leg, back_leg = self.swap_leg(front), self.swap_leg(after)
                    if front_leg is None or back_leg is None or not _brackets(front_leg, victim_leg, back_leg):
                        continue
                    evidence["legs"] = {
                        "front": front_leg.to_dict(),
                        "victim": victim_leg.to_dict(),
                        "back": back_leg.to_dict(),
                    }
                out.append(MevFlag(kind=MevKind.SANDWICH, attacker=attacker, evidence=evidence))  # type: ignore[arg-type]
                break
        return out

    def _front_runs(self, tx: NormalizedTransaction, block: list[NormalizedTransaction]) -> list[MevFlag]:
        out: list[MevFlag] = []
        window = self.config.front_run_max_positions
        for other in block:
            if other.tx_hash == tx.tx_hash or not _same_contract(other, tx):
                continue
            if other.sender == tx.sender or other.call.selector != tx.call.selector:  # type: ignore[union-attr]
                continue
            distance = abs(other.position - tx.position)  # type: ignore[operator]
            if distance > window:
                continue
            if other.position < tx.position:  # type: ignore[operator]
                front, victim, role = other, tx, "victim"
            else:
                front, victim, role = tx, other, "attacker"
            if front.gas_price is None or victim.gas_price is None or front.gas_price <= victim.gas_price:
                continue
            victim_leg = self.swap_leg(victim)
            if victim_leg is not None:
                front_leg = self.swap_leg(front)
                if front_leg is None or front_leg.pair != victim_leg.pair or front_leg.amount_in <= 0:
                    continue
            out.append(
                MevFlag(
                    kind=MevKind.FRONT_RUNNING,
                    attacker=front.sender or "",
                    evidence={
                        "role": role,
                        "contract": tx.call.contract,  # type: ignore[union-attr]
                        "selector": tx.call.selector,  # type: ignore[union-attr]
                        "front_tx": front.tx_hash,
                        "victim_tx": victim.tx_hash,
                        "gas_premium": front.gas_price - victim.gas_price,
                        "position_gap": distance,
                        "value_delta": front.total_output - victim.total_output,
                    },
                )
            )
        return out
