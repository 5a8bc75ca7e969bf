"""
HTTP chain node source.

Bitcoin-family chains are read from an Esplora REST API; EVM chains from a
JSON-RPC endpoint plus an Etherscan-style ``txlist`` endpoint for address
history. Transport failures, 429 and 5xx map to SourceUnavailable; 404 and
null RPC results map to NotFound.
"""

from __future__ import annotations

from typing import Any

import httpx

from backend_riskengine.analysis_engine.simulation import StateSnapshot
from backend_riskengine.core.exceptions import NotFound, SimulationUnavailable, SourceUnavailable
from backend_riskengine.riskengine_logging import get_logger
from backend_riskengine.sources.base import AddressHistoryPage

logger = get_logger(__name__)

REQUEST_TIMEOUT_SEC = 10.0
ESPLORA_PAGE_SIZE = 25
"""Esplora returns up to 25 confirmed transactions per page."""
TXLIST_PAGE_SIZE = 100


class HttpChainNodeSource:
    """
    esplora_urls: chain -> Esplora base URL (e.g. https://blockstream.info/api).
    rpc_urls: chain -> EVM JSON-RPC URL.
    history_urls: chain -> Etherscan-compatible API URL.
    """

    def __init__(
        self,
        *,
        esplora_urls: dict[str, str] | None = None,
        rpc_urls: dict[str, str] | None = None,
        history_urls: dict[str, str] | None = None,
        history_api_key: str | None = None,
        timeout: float = REQUEST_TIMEOUT_SEC,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._esplora = {k: v.rstrip("/") for k, v in (esplora_urls or {}).items() if v}
        self._rpc = {k: v for k, v in (rpc_urls or {}).items() if v}
        self._history = {k: v for k, v in (history_urls or {}).items() if v}
        self._api_key = history_api_key
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._rpc_id = 0

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # --- transport ---

    async def _get(self, url: str, **params: Any) -> Any:
        try:
            resp = await self._client.get(url, params=params or None)
        except httpx.HTTPError as e:
            logger.warning("source_request_failed", url=url, error=str(e))
            raise SourceUnavailable(f"request to {url} failed: {e}") from e
        return self._decode(resp, url)

    async def _rpc_call(self, chain: str, method: str, params: list[Any]) -> Any:
        url = self._rpc.get(chain)
        if url is None:
            raise SourceUnavailable(f"no RPC endpoint configured for {chain}", chain=chain)
        self._rpc_id += 1
        body = {"jsonrpc": "2.0", "id": self._rpc_id, "method": method, "params": params}
        try:
            resp = await self._client.post(url, json=body)
        except httpx.HTTPError as e:
            logger.warning("source_rpc_failed", chain=chain, method=method, error=str(e))
            raise SourceUnavailable(f"{method} failed: {e}", chain=chain) from e
        data = self._decode(resp, url)
        if not isinstance(data, dict):
            raise SourceUnavailable(f"{method} returned a non-object response", chain=chain)
        if data.get("error"):
            logger.warning("source_rpc_error", chain=chain, method=method, error=str(data["error"]))
            raise SourceUnavailable(f"{method} error: {data['error']}", chain=chain)
        return data.get("result")

    @staticmethod
    def _decode(resp: httpx.Response, url: str) -> Any:
        if resp.status_code == 404:
            raise NotFound(f"not found: {url}")
        if resp.status_code == 429 or resp.status_code >= 500:
            raise SourceUnavailable(f"{url} returned HTTP {resp.status_code}", status=resp.status_code)
        try:
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPStatusError, ValueError) as e:
            raise SourceUnavailable(f"bad response from {url}: {e}") from e

    def _esplora_base(self, chain: str) -> str | None:
        return self._esplora.get(chain)

    # --- ChainNodeSource ---

    async def fetch_raw_transaction(self, chain: str, tx_hash: str) -> dict[str, Any]:
        base = self._esplora_base(chain)
        if base is not None:
            return await self._get(f"{base}/tx/{tx_hash}")

        tx = await self._rpc_call(chain, "eth_getTransactionByHash", [tx_hash])
        if tx is None:
            raise NotFound(f"transaction {tx_hash} not found on {chain}", chain=chain, tx_hash=tx_hash)
        if tx.get("blockNumber"):
            receipt = await self._rpc_call(chain, "eth_getTransactionReceipt", [tx_hash])
            block = await self._rpc_call(chain, "eth_getBlockByNumber", [tx["blockNumber"], False])
            tx = dict(tx)
            if receipt:
                tx["receipt"] = receipt
            if block:
                tx["blockTimestamp"] = block.get("timestamp")
        return tx

    async def fetch_raw_address_history(
        self, chain: str, address: str, cursor: str | None = None
    ) -> AddressHistoryPage:
        base = self._esplora_base(chain)
        if base is not None:
            url = f"{base}/address/{address}/txs/chain/{cursor}" if cursor else f"{base}/address/{address}/txs"
            items = await self._get(url) or []
            next_cursor = items[-1].get("txid") if len(items) >= ESPLORA_PAGE_SIZE else None
            return AddressHistoryPage(payloads=items, next_cursor=next_cursor)

        url = self._history.get(chain)
        if url is None:
            raise SourceUnavailable(f"no history endpoint configured for {chain}", chain=chain)
        page = int(cursor) if cursor else 1
        params: dict[str, Any] = {
            "module": "account",
            "action": "txlist",
            "address": address,
            "page": page,
            "offset": TXLIST_PAGE_SIZE,
            "sort": "asc",
        }
        if self._api_key:
            params["apikey"] = self._api_key
        data = await self._get(url, **params)
        rows = data.get("result") if isinstance(data, dict) else None
        if not isinstance(rows, list):
            # "No transactions found" comes back as status 0 with a string result
            rows = []
        return AddressHistoryPage(
            payloads=rows,
            next_cursor=str(page + 1) if len(rows) >= TXLIST_PAGE_SIZE else None,
        )

    async def fetch_raw_address(self, chain: str, address: str) -> dict[str, Any]:
        base = self._esplora_base(chain)
        if base is not None:
            return await self._get(f"{base}/address/{address}")

        nonce = await self._rpc_call(chain, "eth_getTransactionCount", [address, "latest"])
        summary: dict[str, Any] = {"address": address, "nonce": nonce or "0x0"}
        if chain in self._history:
            first = await self.fetch_raw_address_history(chain, address)
            if first.payloads:
                summary["firstSeen"] = first.payloads[0].get("timeStamp")
        return summary

    async def fetch_raw_block_transactions(self, chain: str, block_height: int) -> list[dict[str, Any]]:
        if self._esplora_base(chain) is not None:
            # Block ordering only matters for MEV detection on account chains
            return []
        block = await self._rpc_call(chain, "eth_getBlockByNumber", [hex(block_height), True])
        if not block:
            return []
        timestamp = block.get("timestamp")
        return [dict(tx, blockTimestamp=timestamp) for tx in block.get("transactions") or []]

    async def fetch_balance(self, chain: str, address: str) -> int:
        """Confirmed plus mempool balance (Esplora) or latest balance (EVM), in base units."""
        base = self._esplora_base(chain)
        if base is not None:
            data = await self._get(f"{base}/address/{address}")
            total = 0
            for key in ("chain_stats", "mempool_stats"):
                stats = data.get(key) or {}
                total += int(stats.get("funded_txo_sum", 0)) - int(stats.get("spent_txo_sum", 0))
            return total
        result = await self._rpc_call(chain, "eth_getBalance", [address, "latest"])
        return int(result or "0x0", 16)


class NodeSimulationBackend:
    """SimulationBackend reading live balances from an HttpChainNodeSource."""

    def __init__(self, source: HttpChainNodeSource) -> None:
        self._source = source

    async def load_snapshot(self, chain: str, addresses: list[str]) -> StateSnapshot:
        balances: dict[str, int] = {}
        try:
            for address in addresses:
                balances[address] = await self._source.fetch_balance(chain, address)
        except SourceUnavailable as e:
            raise SimulationUnavailable(f"balance snapshot failed: {e.message}", chain=chain) from e
        return StateSnapshot(chain=chain, balances=balances)
