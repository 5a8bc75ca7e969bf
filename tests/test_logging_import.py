"""
Test that riskengine_logging can be imported without circular import and logger works.
"""

from __future__ import annotations


def test_logging_import():
    """Import get_logger from riskengine_logging and use the logger."""
    from backend_riskengine.riskengine_logging import get_logger

    logger = get_logger("test")
    assert logger is not None
    assert hasattr(logger, "info")
    assert hasattr(logger, "debug")
    assert hasattr(logger, "warning")
    assert hasattr(logger, "error")
    # Smoke test: call info (should not raise)
    logger.info("test_message", key="value")


def test_bind_address_logger():
    from backend_riskengine.riskengine_logging import bind_address

    log = bind_address("ethereum", "0x" + "ab" * 20)
    log.info("bound_message", step="smoke")


def test_package_imports_cleanly():
    """Top-level packages import without cycles."""
    import backend_riskengine.analysis_engine  # noqa: F401
    import backend_riskengine.api_server.server  # noqa: F401
    import backend_riskengine.config  # noqa: F401
    import backend_riskengine.database  # noqa: F401
    import backend_riskengine.engine  # noqa: F401
    import backend_riskengine.sources  # noqa: F401


def test_event_type_and_identifier_processors():
    from backend_riskengine.riskengine_logging.logger import _event_type, _shorten_identifiers

    event = _event_type(None, "info", {"event": "risk_scored", "score": 12.5})
    assert event["event_type"] == "risk_scored"
    assert event["message"] == "risk_scored"
    assert "event" not in event

    short = _shorten_identifiers(None, "info", {"tx_hash": "0x" + "ab" * 32, "address": "bc1qshort"})
    assert short["tx_hash"] == ("0x" + "ab" * 32)[:16] + "..."
    assert short["address"] == "bc1qshort"


def test_configure_logging_switches_renderer():
    from backend_riskengine.riskengine_logging import configure_logging, get_logger

    configure_logging(level="DEBUG", fmt="console")
    try:
        get_logger("test").debug("console_message", chain="bitcoin")
    finally:
        configure_logging()
