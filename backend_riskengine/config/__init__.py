"""
Configuration for the risk engine.

Settings come from environment variables (and .env); reference labels come
from a bundled or configured JSON file.
"""

from backend_riskengine.config.reference import ReferenceData, load_reference_data, parse_reference_data
from backend_riskengine.config.settings import EngineSettings, get_settings

__all__ = [
    "EngineSettings",
    "ReferenceData",
    "get_settings",
    "load_reference_data",
    "parse_reference_data",
]
