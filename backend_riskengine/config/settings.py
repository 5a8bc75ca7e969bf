"""
Engine settings from environment variables.

Every component keeps its own dataclass config with documented defaults;
EngineSettings.from_env() builds them all from the environment (after
loading .env) and get_settings() caches the result for the process.

Variables:
- RISK_SUSPICIOUS_THRESHOLD, RISK_TRUSTED_MATURITY_DAYS, RISK_CONFIDENCE_NORMALIZER
- RISK_HIGH_THRESHOLD, RISK_MEDIUM_THRESHOLD, RISK_CRITICAL_THRESHOLD
- RISK_STRUCTURING_MIN_COUNT, RISK_STRUCTURING_WINDOW_SEC, RISK_MIXER_MAX_HOPS
- RISK_FRONT_RUN_MAX_POSITIONS
- TRACE_DEFAULT_MAX_DEPTH, TRACE_MAX_DEPTH_LIMIT, TRACE_SHARED_WINDOW_SEC
- CACHE_CONFIRMED_TTL_SEC, CACHE_PENDING_TTL_SEC, CACHE_REPUTATION_TTL_SEC, CACHE_TRACE_TTL_SEC
- RETRY_MAX_ATTEMPTS, RETRY_BASE_DELAY_SEC, RETRY_MAX_DELAY_SEC
- SOURCE_DEADLINE_SEC, SIMULATION_DEADLINE_SEC
- HISTORY_MAX_PAGES, FUNDER_MAX_ADDRESSES, FUNDER_HISTORY_MAX_PAGES, BATCH_CONCURRENCY
- DB_PATH (unset: in-memory only), REFERENCE_DATA_PATH
- BITCOIN_ESPLORA_URL, ETHEREUM_RPC_URL, ETHEREUM_HISTORY_URL,
  POLYGON_RPC_URL, POLYGON_HISTORY_URL, HISTORY_API_KEY
- API_HOST, API_PORT
"""

from __future__ import annotations

import functools
from dataclasses import dataclass, field
from pathlib import Path

from backend_riskengine.analysis_engine.correlator import CorrelatorConfig
from backend_riskengine.analysis_engine.mev import MevConfig
from backend_riskengine.analysis_engine.patterns import PatternConfig
from backend_riskengine.analysis_engine.reputation import ReputationConfig
from backend_riskengine.analysis_engine.scorer import ScoringConfig
from backend_riskengine.analysis_engine.simulation import SimulationConfig
from backend_riskengine.cache import CacheTtls
from backend_riskengine.config.env import (
    DEFAULT_REFERENCE_DATA_PATH,
    env_float,
    env_int,
    env_str,
    load_riskengine_env,
)
from backend_riskengine.core.exceptions import SimulationUnavailable, Timeout
from backend_riskengine.core.retry import RetryPolicy

DEFAULT_SOURCE_DEADLINE_SEC = 10.0
DEFAULT_HISTORY_MAX_PAGES = 4
DEFAULT_FUNDER_MAX_ADDRESSES = 20
DEFAULT_FUNDER_HISTORY_MAX_PAGES = 1
DEFAULT_BATCH_CONCURRENCY = 8


@dataclass
class EngineSettings:
    reputation: ReputationConfig = field(default_factory=ReputationConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    patterns: PatternConfig = field(default_factory=PatternConfig)
    mev: MevConfig = field(default_factory=MevConfig)
    correlator: CorrelatorConfig = field(default_factory=CorrelatorConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    cache_ttls: CacheTtls = field(default_factory=CacheTtls)
    source_deadline_sec: float = DEFAULT_SOURCE_DEADLINE_SEC
    history_max_pages: int = DEFAULT_HISTORY_MAX_PAGES
    funder_max_addresses: int = DEFAULT_FUNDER_MAX_ADDRESSES
    funder_history_max_pages: int = DEFAULT_FUNDER_HISTORY_MAX_PAGES
    batch_concurrency: int = DEFAULT_BATCH_CONCURRENCY
    db_path: Path | None = None
    reference_data_path: Path = DEFAULT_REFERENCE_DATA_PATH
    esplora_urls: dict[str, str] = field(default_factory=dict)
    rpc_urls: dict[str, str] = field(default_factory=dict)
    history_urls: dict[str, str] = field(default_factory=dict)
    history_api_key: str | None = None
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    @classmethod
    def from_env(cls) -> "EngineSettings":
        load_riskengine_env()
        maturity_days = env_float("RISK_TRUSTED_MATURITY_DAYS", 180.0)
        retry = RetryPolicy(
            max_attempts=env_int("RETRY_MAX_ATTEMPTS", 3),
            base_delay_sec=env_float("RETRY_BASE_DELAY_SEC", 0.5),
            max_delay_sec=env_float("RETRY_MAX_DELAY_SEC", 8.0),
        )
        db_path = env_str("DB_PATH")
        return cls(
            reputation=ReputationConfig(
                suspicious_threshold=env_float("RISK_SUSPICIOUS_THRESHOLD", 1.0),
                trusted_maturity_days=maturity_days,
                confidence_normalizer=env_float("RISK_CONFIDENCE_NORMALIZER", 2.0),
            ),
            scoring=ScoringConfig(
                high_risk_threshold=env_float("RISK_HIGH_THRESHOLD", 80.0),
                medium_threshold=env_float("RISK_MEDIUM_THRESHOLD", 40.0),
                critical_threshold=env_float("RISK_CRITICAL_THRESHOLD", 95.0),
                freshness_maturity_days=maturity_days,
            ),
            patterns=PatternConfig(
                structuring_min_count=env_int("RISK_STRUCTURING_MIN_COUNT", 10),
                structuring_window_seconds=env_int("RISK_STRUCTURING_WINDOW_SEC", 3600),
                mixer_max_hops=env_int("RISK_MIXER_MAX_HOPS", 2),
            ),
            mev=MevConfig(front_run_max_positions=env_int("RISK_FRONT_RUN_MAX_POSITIONS", 3)),
            correlator=CorrelatorConfig(
                default_max_depth=env_int("TRACE_DEFAULT_MAX_DEPTH", 3),
                max_depth_limit=env_int("TRACE_MAX_DEPTH_LIMIT", 10),
                shared_window_seconds=env_int("TRACE_SHARED_WINDOW_SEC", 86400),
            ),
            simulation=SimulationConfig(
                deadline_sec=env_float("SIMULATION_DEADLINE_SEC", 5.0),
                retry_policy=RetryPolicy(
                    max_attempts=retry.max_attempts,
                    base_delay_sec=retry.base_delay_sec,
                    max_delay_sec=retry.max_delay_sec,
                    retry_on=(SimulationUnavailable, Timeout),
                ),
            ),
            retry=retry,
            cache_ttls=CacheTtls(
                confirmed_tx_sec=env_float("CACHE_CONFIRMED_TTL_SEC", 3600.0),
                pending_tx_sec=env_float("CACHE_PENDING_TTL_SEC", 15.0),
                reputation_sec=env_float("CACHE_REPUTATION_TTL_SEC", 300.0),
                trace_sec=env_float("CACHE_TRACE_TTL_SEC", 120.0),
            ),
            source_deadline_sec=env_float("SOURCE_DEADLINE_SEC", DEFAULT_SOURCE_DEADLINE_SEC),
            history_max_pages=env_int("HISTORY_MAX_PAGES", DEFAULT_HISTORY_MAX_PAGES),
            funder_max_addresses=env_int("FUNDER_MAX_ADDRESSES", DEFAULT_FUNDER_MAX_ADDRESSES),
            funder_history_max_pages=env_int("FUNDER_HISTORY_MAX_PAGES", DEFAULT_FUNDER_HISTORY_MAX_PAGES),
            batch_concurrency=env_int("BATCH_CONCURRENCY", DEFAULT_BATCH_CONCURRENCY),
            db_path=Path(db_path) if db_path else None,
            reference_data_path=Path(env_str("REFERENCE_DATA_PATH", str(DEFAULT_REFERENCE_DATA_PATH))),
            esplora_urls={"bitcoin": env_str("BITCOIN_ESPLORA_URL", "https://blockstream.info/api")},
            rpc_urls={
                "ethereum": env_str("ETHEREUM_RPC_URL"),
                "polygon": env_str("POLYGON_RPC_URL"),
            },
            history_urls={
                "ethereum": env_str("ETHEREUM_HISTORY_URL", "https://api.etherscan.io/api"),
                "polygon": env_str("POLYGON_HISTORY_URL", "https://api.polygonscan.com/api"),
            },
            history_api_key=env_str("HISTORY_API_KEY") or None,
            api_host=env_str("API_HOST", "0.0.0.0"),
            api_port=env_int("API_PORT", 8000),
        )


@functools.lru_cache(maxsize=1)
def get_settings() -> EngineSettings:
    """Process-wide settings built from the environment on first call."""
    return EngineSettings.from_env()
