"""
EVM-family adapter (account model).

Parses JSON-RPC transaction objects (eth_getTransactionByHash) with an optional
merged ``receipt`` (eth_getTransactionReceipt) and ``blockTimestamp``. Also
accepts Etherscan-style txlist rows (decimal quantities, timeStamp, isError,
gasUsed). Addresses are EIP-55 checksummed via eth-utils.
"""

from __future__ import annotations

import re
from typing import Any

from eth_utils import is_address, to_checksum_address

from backend_riskengine.chains.base import ChainAdapter
from backend_riskengine.chains.models import (
    FAMILY_ACCOUNT,
    ContractCall,
    NormalizedAddress,
    NormalizedTransaction,
    TransferLeg,
    TxStatus,
)

_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
_HEX_DATA_RE = re.compile(r"^0x([0-9a-fA-F]{2})*$")


class EthereumAdapter(ChainAdapter):
    """Account adapter: one input (from, value + fee payer), one output (to)."""

    family = FAMILY_ACCOUNT
    default_chain_id = "ethereum"

    def canonicalize_address(self, address: Any, field: str = "address") -> str:
        if not isinstance(address, str) or not is_address(address):
            raise self.malformed(field, "invalid EVM address")
        return to_checksum_address(address)

    def is_address_payload(self, raw: dict[str, Any]) -> bool:
        return "address" in raw and "hash" not in raw

    def _quantity(self, value: Any, field: str, default: int | None = None) -> int | None:
        """Parse a JSON-RPC hex quantity, a decimal string, or an int."""
        if value is None or value == "":
            return default
        if isinstance(value, bool):
            raise self.malformed(field, "expected quantity")
        if isinstance(value, int):
            result = value
        elif isinstance(value, str):
            try:
                result = int(value, 16) if value.lower().startswith("0x") else int(value, 10)
            except ValueError as e:
                raise self.malformed(field, f"invalid quantity {value!r}") from e
        else:
            raise self.malformed(field, "expected quantity")
        if result < 0:
            raise self.malformed(field, "negative quantity")
        return result

    def decode_call(self, raw: dict[str, Any]) -> ContractCall | None:
        call_data = raw.get("input") or raw.get("data") or "0x"
        if not isinstance(call_data, str) or not _HEX_DATA_RE.match(call_data):
            raise self.malformed("input", "expected 0x-prefixed hex bytes")
        to = raw.get("to")
        if not to or call_data in ("0x", "0X"):
            return None
        selector = call_data[:10].lower() if len(call_data) >= 10 else None
        return ContractCall(
            contract=self.canonicalize_address(to, "to"),
            selector=selector,
            call_data=call_data.lower(),
        )

    def _status(self, raw: dict[str, Any], receipt: dict[str, Any], block_number: int | None) -> TxStatus:
        if block_number is None:
            return TxStatus.PENDING
        receipt_status = receipt.get("status", raw.get("txreceipt_status"))
        if receipt_status is not None and receipt_status != "":
            if self._quantity(receipt_status, "receipt.status") == 0:
                return TxStatus.FAILED
        if str(raw.get("isError", "0")) == "1":
            return TxStatus.FAILED
        return TxStatus.CONFIRMED

    def normalize_transaction(self, raw: dict[str, Any]) -> NormalizedTransaction:
        tx_hash = self.require(raw, "hash")
        if not isinstance(tx_hash, str) or not _HASH_RE.match(tx_hash):
            raise self.malformed("hash", "expected 0x-prefixed 32-byte hex")
        sender = self.canonicalize_address(self.require(raw, "from"), "from")

        receipt = raw.get("receipt") or {}
        if not isinstance(receipt, dict):
            raise self.malformed("receipt", "expected object")

        to_raw = raw.get("to") or receipt.get("contractAddress") or raw.get("contractAddress")
        recipient = self.canonicalize_address(to_raw, "to") if to_raw else None

        value = self._quantity(raw.get("value"), "value", default=0)
        block_number = self._quantity(raw.get("blockNumber"), "blockNumber")
        position = self._quantity(raw.get("transactionIndex"), "transactionIndex")
        block_time = self._quantity(
            raw.get("blockTimestamp", raw.get("timeStamp")), "blockTimestamp"
        )

        gas_price = self._quantity(
            receipt.get("effectiveGasPrice", raw.get("gasPrice")), "gasPrice"
        )
        gas_used = self._quantity(receipt.get("gasUsed", raw.get("gasUsed")), "gasUsed")
        if gas_used is None:
            # Pending: upper bound from gas limit
            gas_used = self._quantity(raw.get("gas"), "gas", default=0)
        fee = (gas_used or 0) * (gas_price or 0)

        status = self._status(raw, receipt, block_number)
        if status == TxStatus.PENDING:
            position = None
            block_time = None

        return NormalizedTransaction(
            chain=self.chain_id,
            tx_hash=tx_hash.lower(),
            family=self.family,
            inputs=(TransferLeg(address=sender, amount=value),),
            outputs=(TransferLeg(address=recipient, amount=value),) if recipient else (),
            fee=fee,
            status=status,
            block_height=block_number,
            block_time=block_time,
            call=self.decode_call(raw),
            position=position,
            gas_price=gas_price,
        )

    def normalize_address(self, raw: dict[str, Any]) -> NormalizedAddress:
        address = self.canonicalize_address(self.require(raw, "address"))
        first_seen = self._quantity(raw.get("firstSeen", raw.get("first_seen")), "firstSeen")
        tx_count = self._quantity(
            raw.get("txCount", raw.get("tx_count", raw.get("nonce"))), "txCount", default=0
        )
        total_volume = self._quantity(
            raw.get("totalVolume", raw.get("total_volume")), "totalVolume", default=0
        )
        return NormalizedAddress(
            chain=self.chain_id,
            address=address,
            first_seen=first_seen,
            tx_count=tx_count or 0,
            total_volume=total_volume or 0,
        )
