"""
Chain-agnostic transaction and address models.

Every chain adapter produces these shapes, so the analysis engine never
branches on chain-specific payload layouts. Amounts are integers in the
chain's base unit (satoshi for Bitcoin, wei for EVM chains).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

FAMILY_UTXO = "utxo"
FAMILY_ACCOUNT = "account"


class TxStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class TransferLeg:
    """One input or output of a transaction; address is None for coinbase / unspendable outputs."""

    address: str | None
    amount: int

    def to_dict(self) -> dict[str, Any]:
        return {"address": self.address, "amount": self.amount}


@dataclass(frozen=True)
class ContractCall:
    """
    Decoded-call metadata captured by the adapter.

    selector is the 4-byte method id ("0xa9059cbb"); call_data is the full hex
    input. Human-readable decoding happens in the pipeline's decoding stage.
    """

    contract: str
    selector: str | None
    call_data: str

    def to_dict(self) -> dict[str, Any]:
        return {"contract": self.contract, "selector": self.selector, "call_data": self.call_data}


@dataclass(frozen=True)
class NormalizedTransaction:
    """
    Chain-agnostic transaction.

    Immutable once built from a confirmed payload. A pending transaction may be
    superseded by a confirmed or failed one with the same (chain, tx_hash).
    """

    chain: str
    tx_hash: str
    family: str
    inputs: tuple[TransferLeg, ...]
    outputs: tuple[TransferLeg, ...]
    fee: int
    status: TxStatus
    block_height: int | None = None
    block_time: int | None = None
    call: ContractCall | None = None
    position: int | None = None
    """Index within the block; None for pending or when the source omits it."""
    gas_price: int | None = None
    """Effective gas price (account chains); None for UTXO chains."""

    @property
    def sender(self) -> str | None:
        """First input address (fee payer on account chains)."""
        for leg in self.inputs:
            if leg.address:
                return leg.address
        return None

    @property
    def total_input(self) -> int:
        return sum(leg.amount for leg in self.inputs)

    @property
    def total_output(self) -> int:
        return sum(leg.amount for leg in self.outputs)

    def addresses(self) -> list[str]:
        """Distinct input and output addresses, inputs first, in payload order."""
        seen: dict[str, None] = {}
        for leg in self.inputs + self.outputs:
            if leg.address and leg.address not in seen:
                seen[leg.address] = None
        if self.call is not None and self.call.contract not in seen:
            seen[self.call.contract] = None
        return list(seen)

    def supersedes(self, other: "NormalizedTransaction") -> bool:
        """True if this transaction may replace ``other`` (pending -> confirmed/failed)."""
        return (
            self.chain == other.chain
            and self.tx_hash == other.tx_hash
            and other.status == TxStatus.PENDING
            and self.status != TxStatus.PENDING
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "chain": self.chain,
            "tx_hash": self.tx_hash,
            "family": self.family,
            "block_height": self.block_height,
            "block_time": self.block_time,
            "inputs": [leg.to_dict() for leg in self.inputs],
            "outputs": [leg.to_dict() for leg in self.outputs],
            "fee": self.fee,
            "status": self.status.value,
            "call": self.call.to_dict() if self.call else None,
            "position": self.position,
            "gas_price": self.gas_price,
        }


@dataclass(frozen=True)
class NormalizedAddress:
    """Chain-agnostic address summary; address is canonical for its chain."""

    chain: str
    address: str
    first_seen: int | None
    tx_count: int
    total_volume: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "chain": self.chain,
            "address": self.address,
            "first_seen": self.first_seen,
            "tx_count": self.tx_count,
            "total_volume": self.total_volume,
        }
