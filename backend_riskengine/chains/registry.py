"""
Adapter registry and the module-level normalize() entrypoint.

Adding a chain means registering an adapter variant here; shared pipeline
code never branches on chain id.
"""

from __future__ import annotations

import functools
from typing import Any

from backend_riskengine.chains.base import ChainAdapter
from backend_riskengine.chains.bitcoin import BitcoinAdapter
from backend_riskengine.chains.ethereum import EthereumAdapter
from backend_riskengine.chains.models import NormalizedAddress, NormalizedTransaction
from backend_riskengine.core.exceptions import UnsupportedChain


class AdapterRegistry:
    """chain_id -> ChainAdapter. Lookups of unknown chains raise UnsupportedChain."""

    def __init__(self, adapters: list[ChainAdapter] | None = None) -> None:
        self._adapters: dict[str, ChainAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: ChainAdapter) -> None:
        self._adapters[adapter.chain_id] = adapter

    def get(self, chain_id: str) -> ChainAdapter:
        key = (chain_id or "").strip().lower()
        adapter = self._adapters.get(key)
        if adapter is None:
            raise UnsupportedChain(chain_id)
        return adapter

    def chains(self) -> list[str]:
        return sorted(self._adapters)

    def __contains__(self, chain_id: object) -> bool:
        return isinstance(chain_id, str) and chain_id.strip().lower() in self._adapters


@functools.lru_cache(maxsize=1)
def default_registry() -> AdapterRegistry:
    """Bitcoin plus the EVM chains that share the Ethereum adapter."""
    return AdapterRegistry(
        [
            BitcoinAdapter(),
            EthereumAdapter(),
            EthereumAdapter("polygon"),
        ]
    )


def get_adapter(chain_id: str, registry: AdapterRegistry | None = None) -> ChainAdapter:
    return (registry or default_registry()).get(chain_id)


def normalize(
    raw_payload: Any,
    chain_id: str,
    registry: AdapterRegistry | None = None,
) -> NormalizedTransaction | NormalizedAddress:
    """
    Normalize a raw transaction or address payload for ``chain_id``.

    Raises UnsupportedChain when no adapter is registered and MalformedPayload
    (with the offending field) when the payload cannot be parsed.
    """
    return get_adapter(chain_id, registry).normalize(raw_payload)
