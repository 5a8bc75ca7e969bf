"""
Main entrypoint: FastAPI server for the cross-chain risk engine.

Env: see backend_riskengine.config.settings (API_HOST, API_PORT, DB_PATH,
BITCOIN_ESPLORA_URL, ETHEREUM_RPC_URL, ...). Loads .env from the project root.

Equivalent: uvicorn backend_riskengine.api_server.app:app --host 0.0.0.0 --port 8000
"""

import uvicorn

# Configure structured JSON logging before other imports that may log
from backend_riskengine.riskengine_logging import get_logger

logger = get_logger("main")


def main() -> None:
    from backend_riskengine.config import get_settings

    settings = get_settings()
    logger.info(
        "main_starting",
        api_host=settings.api_host,
        api_port=settings.api_port,
        db_path=str(settings.db_path) if settings.db_path else None,
    )
    uvicorn.run(
        "backend_riskengine.api_server.app:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
