"""
structlog setup shared by every engine module.

Each line carries event_type, level, an ISO-8601 UTC timestamp, the module
logger name, and chain / address / tx_hash when the caller passes them.
LOG_FORMAT=json (default) renders JSON lines; anything else uses the console
renderer. This module imports nothing from backend_riskengine.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("LOG_FORMAT", "json").strip().lower()

IDENTIFIER_KEYS = ("address", "tx_hash")
IDENTIFIER_MAX_LEN = 20


def _event_type(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """structlog's positional 'event' becomes event_type; message mirrors it unless given."""
    if "event" in event_dict and "event_type" not in event_dict:
        event_dict["event_type"] = event_dict.pop("event")
    event_dict.setdefault("message", str(event_dict.get("event_type", "")))
    return event_dict


def _shorten_identifiers(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    for key in IDENTIFIER_KEYS:
        value = event_dict.get(key)
        if isinstance(value, str) and len(value) > IDENTIFIER_MAX_LEN:
            event_dict[key] = value[:16] + "..."
    return event_dict


def configure_logging(level: str = LOG_LEVEL, fmt: str = LOG_FORMAT) -> None:
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _event_type,
        _shorten_identifiers,
    ]
    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


if not structlog.is_configured():
    configure_logging()


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Logger bound to the module name:

        logger = get_logger(__name__)
        logger.info("risk_scored", chain="bitcoin", tx_hash=h, score=85.0)
    """
    return structlog.get_logger(name).bind(logger=name)


def bind_address(chain: str, address: str) -> structlog.BoundLogger:
    """Logger carrying chain and address on every call, for per-address flows."""
    return get_logger("backend_riskengine").bind(chain=chain, address=address)
