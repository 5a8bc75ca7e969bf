"""
Environment variable loading for the risk engine.

Loads .env from the project root (once per call, safe to repeat) and offers
typed readers that fall back to defaults on empty values.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Project root: config is backend_riskengine/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_PACKAGE_DIR = _CONFIG_DIR.parent
_ROOT = _PACKAGE_DIR.parent
_ENV_PATH = _ROOT / ".env"

DEFAULT_REFERENCE_DATA_PATH = _PACKAGE_DIR / "data" / "reference_labels.json"


def load_riskengine_env() -> None:
    """Load .env from project root; existing environment variables win."""
    load_dotenv(_ENV_PATH)


def env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or "").strip() or default


def env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    return float(raw) if raw else default


def env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    return int(raw) if raw else default
