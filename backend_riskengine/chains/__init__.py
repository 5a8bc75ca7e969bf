"""
Chain adapters: per-chain payload parsing into the chain-agnostic model.

Variants: Bitcoin (UTXO) and EVM (account). Use normalize(raw, chain_id)
or get_adapter(chain_id) for capability access.
"""

from backend_riskengine.chains.base import ChainAdapter
from backend_riskengine.chains.bitcoin import BitcoinAdapter
from backend_riskengine.chains.ethereum import EthereumAdapter
from backend_riskengine.chains.models import (
    FAMILY_ACCOUNT,
    FAMILY_UTXO,
    ContractCall,
    NormalizedAddress,
    NormalizedTransaction,
    TransferLeg,
    TxStatus,
)
from backend_riskengine.chains.registry import (
    AdapterRegistry,
    default_registry,
    get_adapter,
    normalize,
)

__all__ = [
    "ChainAdapter",
    "BitcoinAdapter",
    "EthereumAdapter",
    "FAMILY_ACCOUNT",
    "FAMILY_UTXO",
    "ContractCall",
    "NormalizedAddress",
    "NormalizedTransaction",
    "TransferLeg",
    "TxStatus",
    "AdapterRegistry",
    "default_registry",
    "get_adapter",
    "normalize",
]
