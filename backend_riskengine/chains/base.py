"""
Chain adapter interface: raw chain payloads to the chain-agnostic model.

One ABC, closed set of variants (UTXO, EVM). Adapters are pure transforms:
no I/O inside normalization, so identical input always yields field-identical
output. Fetch helpers delegate I/O to a ChainNodeSource and then normalize.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from backend_riskengine.chains.models import (
    ContractCall,
    NormalizedAddress,
    NormalizedTransaction,
)
from backend_riskengine.core.exceptions import MalformedPayload

if TYPE_CHECKING:
    from backend_riskengine.sources.base import ChainNodeSource


class ChainAdapter(ABC):
    """Capability set per chain: normalize, decode_call, fetch tx / address history."""

    family: str = ""
    default_chain_id: str = ""

    def __init__(self, chain_id: str | None = None) -> None:
        self.chain_id = (chain_id or self.default_chain_id).strip().lower()

    # --- pure transforms ---

    @abstractmethod
    def canonicalize_address(self, address: Any, field: str = "address") -> str:
        """Return the canonical form of an address or raise MalformedPayload(field)."""
        ...

    @abstractmethod
    def normalize_transaction(self, raw: dict[str, Any]) -> NormalizedTransaction:
        ...

    @abstractmethod
    def normalize_address(self, raw: dict[str, Any]) -> NormalizedAddress:
        ...

    @abstractmethod
    def decode_call(self, raw: dict[str, Any]) -> ContractCall | None:
        """Extract contract-call metadata from a raw transaction, if any."""
        ...

    @abstractmethod
    def is_address_payload(self, raw: dict[str, Any]) -> bool:
        ...

    def normalize(self, raw: Any) -> NormalizedTransaction | NormalizedAddress:
        if not isinstance(raw, dict):
            raise self.malformed("<root>", f"expected object, got {type(raw).__name__}")
        if self.is_address_payload(raw):
            return self.normalize_address(raw)
        return self.normalize_transaction(raw)

    def malformed(self, field: str, reason: str) -> MalformedPayload:
        return MalformedPayload(self.chain_id, field, reason)

    def require(self, raw: dict[str, Any], key: str, prefix: str = "") -> Any:
        value = raw.get(key)
        if value is None:
            raise self.malformed(f"{prefix}{key}", "missing")
        return value

    # --- I/O via a node source ---

    async def fetch_transaction(self, source: "ChainNodeSource", tx_hash: str) -> NormalizedTransaction:
        raw = await source.fetch_raw_transaction(self.chain_id, tx_hash)
        return self.normalize_transaction(raw)

    async def fetch_address_history(
        self,
        source: "ChainNodeSource",
        address: str,
        cursor: str | None = None,
    ) -> tuple[list[NormalizedTransaction], str | None]:
        """Fetch one page of address history; returns (transactions, next_cursor)."""
        page = await source.fetch_raw_address_history(self.chain_id, address, cursor)
        txs = [self.normalize_transaction(raw) for raw in page.payloads]
        return txs, page.next_cursor
