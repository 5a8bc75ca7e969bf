"""
Cache / single-flight layer shared by the pipeline, engine, and API.

Holds time-bounded copies only; canonical data lives in the reputation store,
correlator, and database.
"""

from backend_riskengine.cache.single_flight import CacheStats, CacheTtls, SingleFlightCache

__all__ = ["CacheStats", "CacheTtls", "SingleFlightCache"]
