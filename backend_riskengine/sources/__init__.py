"""
External data sources: chain nodes and sanctions lists.
"""

from backend_riskengine.sources.base import (
    AddressHistoryPage,
    ChainNodeSource,
    SanctionsListSource,
    SanctionsStatus,
    StaticChainNodeSource,
    StaticSanctionsList,
)
from backend_riskengine.sources.remote import HttpChainNodeSource, NodeSimulationBackend

__all__ = [
    "AddressHistoryPage",
    "ChainNodeSource",
    "HttpChainNodeSource",
    "NodeSimulationBackend",
    "SanctionsListSource",
    "SanctionsStatus",
    "StaticChainNodeSource",
    "StaticSanctionsList",
]
