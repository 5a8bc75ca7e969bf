"""
External source interfaces: chain node and sanctions/AML list.

Sources return raw payloads; adapters normalize them. Unreachable sources
raise SourceUnavailable (retryable); missing objects raise NotFound.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from backend_riskengine.core.exceptions import NotFound, SourceUnavailable
from backend_riskengine.riskengine_logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SanctionsStatus:
    listed: bool
    list_name: str | None = None
    effective_date: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"listed": self.listed, "list_name": self.list_name, "effective_date": self.effective_date}


@dataclass
class AddressHistoryPage:
    """One page of raw transactions for an address; next_cursor is None on the last page."""

    payloads: list[dict[str, Any]] = field(default_factory=list)
    next_cursor: str | None = None


class ChainNodeSource(Protocol):
    async def fetch_raw_transaction(self, chain: str, tx_hash: str) -> dict[str, Any]:
        ...

    async def fetch_raw_address_history(
        self, chain: str, address: str, cursor: str | None = None
    ) -> AddressHistoryPage:
        ...

    async def fetch_raw_address(self, chain: str, address: str) -> dict[str, Any]:
        ...

    async def fetch_raw_block_transactions(self, chain: str, block_height: int) -> list[dict[str, Any]]:
        ...


class SanctionsListSource(Protocol):
    async def is_listed(self, chain: str, address: str) -> SanctionsStatus:
        ...


class StaticChainNodeSource:
    """
    In-memory chain node: raw payloads keyed by (chain, id).

    Set ``available = False`` to simulate an outage. ``calls`` counts every
    fetch, for asserting deduplication.
    """

    def __init__(self, *, page_size: int = 50) -> None:
        self.transactions: dict[tuple[str, str], dict[str, Any]] = {}
        self.histories: dict[tuple[str, str], list[dict[str, Any]]] = {}
        self.addresses: dict[tuple[str, str], dict[str, Any]] = {}
        self.blocks: dict[tuple[str, int], list[dict[str, Any]]] = {}
        self.page_size = max(1, page_size)
        self.available = True
        self.calls = 0

    def add_transaction(self, chain: str, tx_hash: str, raw: dict[str, Any], *, block_height: int | None = None) -> None:
        self.transactions[(chain, tx_hash)] = raw
        if block_height is not None:
            self.blocks.setdefault((chain, block_height), []).append(raw)

    def add_history(self, chain: str, address: str, payloads: list[dict[str, Any]]) -> None:
        self.histories.setdefault((chain, address), []).extend(payloads)

    def add_address(self, chain: str, address: str, raw: dict[str, Any]) -> None:
        self.addresses[(chain, address)] = raw

    def _check(self) -> None:
        self.calls += 1
        if not self.available:
            raise SourceUnavailable("chain node source offline")

    async def fetch_raw_transaction(self, chain: str, tx_hash: str) -> dict[str, Any]:
        self._check()
        raw = self.transactions.get((chain, tx_hash))
        if raw is None:
            raise NotFound(f"transaction {tx_hash} not found on {chain}", chain=chain, tx_hash=tx_hash)
        return raw

    async def fetch_raw_address_history(
        self, chain: str, address: str, cursor: str | None = None
    ) -> AddressHistoryPage:
        self._check()
        items = self.histories.get((chain, address), [])
        start = int(cursor) if cursor else 0
        end = start + self.page_size
        return AddressHistoryPage(
            payloads=items[start:end],
            next_cursor=str(end) if end < len(items) else None,
        )

    async def fetch_raw_address(self, chain: str, address: str) -> dict[str, Any]:
        self._check()
        raw = self.addresses.get((chain, address))
        if raw is None:
            raise NotFound(f"address {address} not found on {chain}", chain=chain, address=address)
        return raw

    async def fetch_raw_block_transactions(self, chain: str, block_height: int) -> list[dict[str, Any]]:
        self._check()
        return list(self.blocks.get((chain, block_height), []))


class StaticSanctionsList:
    """Sanctions list held in memory: (chain, address) -> (list name, effective date)."""

    def __init__(self, entries: dict[tuple[str, str], tuple[str, int | None]] | None = None) -> None:
        self._entries = dict(entries or {})
        self.available = True

    def add(self, chain: str, address: str, list_name: str, effective_date: int | None = None) -> None:
        self._entries[(chain, address)] = (list_name, effective_date)

    def remove(self, chain: str, address: str) -> None:
        self._entries.pop((chain, address), None)

    def __len__(self) -> int:
        return len(self._entries)

    async def is_listed(self, chain: str, address: str) -> SanctionsStatus:
        if not self.available:
            raise SourceUnavailable("sanctions list source offline")
        entry = self._entries.get((chain, address))
        if entry is None:
            return SanctionsStatus(listed=False)
        list_name, effective_date = entry
        return SanctionsStatus(listed=True, list_name=list_name, effective_date=effective_date)

    @classmethod
    def from_entries(cls, rows: list[dict[str, Any]]) -> "StaticSanctionsList":
        """Rows of {chain, address, list, effective_date?}; malformed rows are skipped with a warning."""
        out = cls()
        for row in rows:
            chain = str(row.get("chain") or "").strip().lower()
            address = str(row.get("address") or "").strip()
            if not chain or not address:
                logger.warning("sanctions_row_skipped", row=row)
                continue
            effective = row.get("effective_date")
            out.add(chain, address, str(row.get("list") or "unspecified"), int(effective) if effective is not None else None)
        return out
