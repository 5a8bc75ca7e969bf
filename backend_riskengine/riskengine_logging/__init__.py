"""
Structured logging for the risk engine: JSON lines with event_type, chain and address.
"""

from backend_riskengine.riskengine_logging.logger import bind_address, configure_logging, get_logger

__all__ = ["bind_address", "configure_logging", "get_logger"]
