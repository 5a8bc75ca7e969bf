"""
FastAPI server: thin HTTP layer over RiskEngine.

Every body is {success, data, cached, timestamp} plus error {kind, message}
on failure. Error kinds map to HTTP status codes; unexpected errors return a
generic internal_error without stack detail.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from backend_riskengine.engine import EngineResponse, RiskEngine, build_engine
from backend_riskengine.config.settings import get_settings
from backend_riskengine.riskengine_logging import get_logger

logger = get_logger(__name__)

STATUS_BY_KIND = {
    "not_found": 404,
    "unsupported_chain": 400,
    "malformed_payload": 400,
    "timeout": 504,
    "source_unavailable": 503,
    "simulation_unavailable": 503,
}


# -----------------------------------------------------------------------------
# Request / response models
# -----------------------------------------------------------------------------


class SimulateRequest(BaseModel):
    """POST /simulate body: raw transaction payload as the chain's node returns it."""

    chain: str = Field(..., min_length=1, max_length=32, description="Chain id (bitcoin, ethereum, polygon)")
    transaction: dict[str, Any] = Field(..., description="Raw transaction payload")


class ErrorBody(BaseModel):
    kind: str
    message: str


class EnvelopeResponse(BaseModel):
    """Uniform response envelope."""

    success: bool
    data: Any = None
    cached: bool = False
    timestamp: int = Field(..., description="Unix timestamp when the response was produced")
    error: ErrorBody | None = None


# -----------------------------------------------------------------------------
# App factory
# -----------------------------------------------------------------------------


def get_engine(request: Request) -> RiskEngine:
    """Dependency: the app-scoped engine."""
    return request.app.state.engine


def _reply(response: EngineResponse) -> JSONResponse:
    if response.success:
        status = 200
    else:
        kind = (response.error or {}).get("kind", "internal_error")
        status = STATUS_BY_KIND.get(kind, 500)
    return JSONResponse(status_code=status, content=response.to_dict())


def create_app(engine: RiskEngine | None = None) -> FastAPI:
    """
    Build the ASGI app. With no engine given, one is built from settings on
    startup and closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = False
        if getattr(app.state, "engine", None) is None:
            app.state.engine = build_engine(get_settings())
            owned = True
            logger.info("api_engine_started", chains=app.state.engine.registry.chains())
        try:
            yield
        finally:
            if owned:
                await app.state.engine.aclose()
                app.state.engine = None
                logger.info("api_engine_stopped")

    app = FastAPI(title="Cross-Chain Risk Engine", version="0.1.0", lifespan=lifespan)
    app.state.engine = engine

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Invalid request bodies and parameters use the same envelope as engine errors."""
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ()))
        message = f"Invalid request at {field!r}: {first.get('msg', 'invalid')}"
        return _reply(
            EngineResponse(
                success=False,
                timestamp=int(time.time()),
                error={"kind": "malformed_payload", "message": message},
            )
        )

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/transactions/{chain}/{tx_hash}/risk", response_model=EnvelopeResponse)
    async def transaction_risk(chain: str, tx_hash: str, engine: RiskEngine = Depends(get_engine)) -> JSONResponse:
        """Risk score with factor breakdown, decoded interaction, simulation, and flags."""
        return _reply(await engine.transaction_risk(chain, tx_hash))

    @app.get("/addresses/{chain}/{address}/reputation", response_model=EnvelopeResponse)
    async def address_reputation(chain: str, address: str, engine: RiskEngine = Depends(get_engine)) -> JSONResponse:
        return _reply(await engine.address_reputation(chain, address))

    @app.post("/simulate", response_model=EnvelopeResponse)
    async def simulate(body: SimulateRequest, engine: RiskEngine = Depends(get_engine)) -> JSONResponse:
        """Predict the outcome of a raw transaction without broadcasting it."""
        return _reply(await engine.simulate(body.chain, body.transaction))

    @app.get("/trace/{chain}/{address}", response_model=EnvelopeResponse)
    async def trace(
        chain: str,
        address: str,
        max_depth: int | None = Query(None, ge=0, description="Max hops from the root address"),
        engine: RiskEngine = Depends(get_engine),
    ) -> JSONResponse:
        return _reply(await engine.cross_chain_trace(chain, address, max_depth))

    return app
