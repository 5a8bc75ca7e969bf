"""
Bitcoin-family adapter (UTXO).

Parses Esplora-style transaction JSON (txid, vin[].prevout, vout[], fee,
status) and address JSON (address, chain_stats, mempool_stats). Values are
satoshis. Base58 addresses are validated with their checksum; bech32
addresses are lower-cased.
"""

from __future__ import annotations

from typing import Any

import base58

from backend_riskengine.chains.base import ChainAdapter
from backend_riskengine.chains.models import (
    FAMILY_UTXO,
    ContractCall,
    NormalizedAddress,
    NormalizedTransaction,
    TransferLeg,
    TxStatus,
)

# Version bytes for P2PKH / P2SH on mainnet and testnet
BASE58_VERSION_BYTES = {0x00, 0x05, 0x6F, 0xC4}
BECH32_HRPS = ("bc1", "tb1", "bcrt1")
BECH32_CHARSET = set("qpzry9x8gf2tvdw0s3jn54khce6mua7l")


class BitcoinAdapter(ChainAdapter):
    """UTXO adapter: inputs come from vin[].prevout, outputs from vout[]."""

    family = FAMILY_UTXO
    default_chain_id = "bitcoin"

    def canonicalize_address(self, address: Any, field: str = "address") -> str:
        if not isinstance(address, str) or not address.strip():
            raise self.malformed(field, "address must be a non-empty string")
        addr = address.strip()
        lowered = addr.lower()
        if lowered.startswith(BECH32_HRPS):
            if addr != lowered and addr != addr.upper():
                raise self.malformed(field, "bech32 address has mixed case")
            # bech32 separator is the last '1'; data part follows it
            data = lowered.rsplit("1", 1)[1]
            if len(data) < 6 or not set(data) <= BECH32_CHARSET:
                raise self.malformed(field, "invalid bech32 data part")
            return lowered
        try:
            payload = base58.b58decode_check(addr)
        except ValueError as e:
            raise self.malformed(field, f"invalid base58check address: {e}") from e
        if len(payload) != 21 or payload[0] not in BASE58_VERSION_BYTES:
            raise self.malformed(field, "unexpected base58 address version or length")
        return addr

    def is_address_payload(self, raw: dict[str, Any]) -> bool:
        return "address" in raw and "txid" not in raw

    def decode_call(self, raw: dict[str, Any]) -> ContractCall | None:
        # No contract calls on UTXO chains
        return None

    def _amount(self, value: Any, field: str) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise self.malformed(field, "expected integer satoshis")
        if value < 0:
            raise self.malformed(field, "negative amount")
        return value

    def _inputs(self, vin: Any) -> tuple[TransferLeg, ...]:
        if not isinstance(vin, list):
            raise self.malformed("vin", "expected list")
        legs: list[TransferLeg] = []
        for i, item in enumerate(vin):
            prefix = f"vin[{i}]"
            if not isinstance(item, dict):
                raise self.malformed(prefix, "expected object")
            if item.get("is_coinbase"):
                legs.append(TransferLeg(address=None, amount=0))
                continue
            prevout = item.get("prevout")
            if not isinstance(prevout, dict):
                raise self.malformed(f"{prefix}.prevout", "missing")
            amount = self._amount(prevout.get("value"), f"{prefix}.prevout.value")
            raw_addr = prevout.get("scriptpubkey_address")
            address = (
                self.canonicalize_address(raw_addr, f"{prefix}.prevout.scriptpubkey_address")
                if raw_addr is not None
                else None
            )
            legs.append(TransferLeg(address=address, amount=amount))
        return tuple(legs)

    def _outputs(self, vout: Any) -> tuple[TransferLeg, ...]:
        if not isinstance(vout, list):
            raise self.malformed("vout", "expected list")
        legs: list[TransferLeg] = []
        for i, item in enumerate(vout):
            prefix = f"vout[{i}]"
            if not isinstance(item, dict):
                raise self.malformed(prefix, "expected object")
            amount = self._amount(item.get("value"), f"{prefix}.value")
            raw_addr = item.get("scriptpubkey_address")
            # OP_RETURN and other non-standard outputs have no address
            address = (
                self.canonicalize_address(raw_addr, f"{prefix}.scriptpubkey_address")
                if raw_addr is not None
                else None
            )
            legs.append(TransferLeg(address=address, amount=amount))
        return tuple(legs)

    def normalize_transaction(self, raw: dict[str, Any]) -> NormalizedTransaction:
        txid = self.require(raw, "txid")
        if not isinstance(txid, str) or len(txid) != 64:
            raise self.malformed("txid", "expected 64 hex characters")
        try:
            int(txid, 16)
        except ValueError as e:
            raise self.malformed("txid", "not hex") from e

        inputs = self._inputs(self.require(raw, "vin"))
        outputs = self._outputs(self.require(raw, "vout"))

        fee = raw.get("fee")
        if fee is None:
            is_coinbase = any(leg.address is None and leg.amount == 0 for leg in inputs)
            fee = 0 if is_coinbase else max(0, sum(leg.amount for leg in inputs) - sum(leg.amount for leg in outputs))
        fee = self._amount(fee, "fee")

        status_obj = raw.get("status") or {}
        if not isinstance(status_obj, dict):
            raise self.malformed("status", "expected object")
        confirmed = bool(status_obj.get("confirmed"))
        block_height = status_obj.get("block_height") if confirmed else None
        block_time = status_obj.get("block_time") if confirmed else None
        for name, value in (("block_height", block_height), ("block_time", block_time)):
            if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
                raise self.malformed(f"status.{name}", "expected integer")

        return NormalizedTransaction(
            chain=self.chain_id,
            tx_hash=txid.lower(),
            family=self.family,
            inputs=inputs,
            outputs=outputs,
            fee=fee,
            status=TxStatus.CONFIRMED if confirmed else TxStatus.PENDING,
            block_height=block_height,
            block_time=block_time,
            call=None,
            position=None,
            gas_price=None,
        )

    def normalize_address(self, raw: dict[str, Any]) -> NormalizedAddress:
        address = self.canonicalize_address(self.require(raw, "address"))
        tx_count = 0
        total_volume = 0
        for section in ("chain_stats", "mempool_stats"):
            stats = raw.get(section) or {}
            if not isinstance(stats, dict):
                raise self.malformed(section, "expected object")
            tx_count += self._amount(stats.get("tx_count", 0), f"{section}.tx_count")
            total_volume += self._amount(stats.get("funded_txo_sum", 0), f"{section}.funded_txo_sum")
        first_seen = raw.get("first_seen")
        if first_seen is not None and (isinstance(first_seen, bool) or not isinstance(first_seen, int)):
            raise self.malformed("first_seen", "expected unix timestamp")
        return NormalizedAddress(
            chain=self.chain_id,
            address=address,
            first_seen=first_seen,
            tx_count=tx_count,
            total_volume=total_volume,
        )
