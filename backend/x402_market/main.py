"""
Main FastAPI application entry point.

This module creates and configures the marketplace application, wires the
x402 payment gate in front of the priced routes, and sets up middleware and
health check endpoints.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Load environment variables from .env file
load_dotenv()

from x402_market import __version__
from x402_market.agents.completion import ChatOpenAICompletionProvider, CompletionProvider
from x402_market.agents.repository import AgentRepository, InMemoryAgentRepository
from x402_market.agents.routes import chat_router
from x402_market.agents.routes import router as agents_router
from x402_market.agents.service import AgentService, agent_price_override
from x402_market.config import MarketplaceConfig
from x402_market.errors import register_exception_handlers, utc_timestamp
from x402_market.logging_utils import configure_logging
from x402_market.middleware import RequestContextMiddleware
from x402_market.payment.codec import (
    X_PAYER_ADDRESS,
    X_PAYMENT,
    X_PAYMENT_REQUIRED,
    X_PAYMENT_RESPONSE,
    X_REQUEST_ID,
)
from x402_market.payment.config import PaymentConfig
from x402_market.payment.facilitator import Facilitator, HttpFacilitator, LocalFacilitator
from x402_market.payment.middleware import DEFAULT_SKIP_PATHS, X402PaymentGate
from x402_market.payment.pricing import PricingResolver, routes_from_table
from x402_market.payment.routes import router as facilitator_router
from x402_market.payment.transaction_log import InMemoryTransactionLog, TransactionLog

logger = logging.getLogger(__name__)

# Configuration constants
SERVICE_NAME = "x402-agent-marketplace"

PAYMENT_HEADERS = [X_PAYMENT_REQUIRED, X_PAYMENT_RESPONSE, X_REQUEST_ID]


def create_facilitator(payment_config: PaymentConfig) -> Facilitator:
    """Remote facilitator when FACILITATOR_URL is set, local otherwise."""
    if payment_config.facilitator_url:
        logger.info("Using remote facilitator at %s", payment_config.facilitator_url)
        return HttpFacilitator(
            payment_config.facilitator_url,
            api_key=payment_config.facilitator_api_key,
            timeout=payment_config.x402_facilitator_timeout_seconds,
        )
    logger.info("Using built-in local facilitator (test mode, no chain broadcast)")
    return LocalFacilitator()


def create_app(
    payment_config: Optional[PaymentConfig] = None,
    marketplace_config: Optional[MarketplaceConfig] = None,
    repository: Optional[AgentRepository] = None,
    facilitator: Optional[Facilitator] = None,
    completion_provider: Optional[CompletionProvider] = None,
    transaction_log: Optional[TransactionLog] = None,
) -> FastAPI:
    """Create and configure the marketplace application.

    Args:
        payment_config: x402 settings (defaults to the environment)
        marketplace_config: Server settings (defaults to the environment)
        repository: Agent store (defaults to an in-memory store with demo agents)
        facilitator: Payment facilitator (defaults from FACILITATOR_URL)
        completion_provider: Inference backend (defaults to Hyperbolic via ChatOpenAI)
        transaction_log: Sink for confirmed payments

    Returns:
        Configured FastAPI application instance
    """
    payment_config = payment_config or PaymentConfig()
    marketplace_config = marketplace_config or MarketplaceConfig()
    configure_logging(marketplace_config.log_level, marketplace_config.debug)

    repository = repository or InMemoryAgentRepository.with_demo_agents()
    facilitator = facilitator or create_facilitator(payment_config)
    completion_provider = completion_provider or ChatOpenAICompletionProvider(
        api_key=marketplace_config.hyperbolic_api_key,
        base_url=marketplace_config.completion_base_url,
        timeout=marketplace_config.request_timeout_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if isinstance(facilitator, HttpFacilitator):
            await facilitator.aclose()

    app = FastAPI(
        title="x402 Agent Marketplace",
        description="AI agents paid per request over HTTP 402",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.payment_config = payment_config
    app.state.marketplace_config = marketplace_config
    app.state.agent_service = AgentService(
        repository,
        completion_provider,
        default_model=marketplace_config.default_model,
    )
    app.state.transaction_log = transaction_log or InMemoryTransactionLog()
    app.state.local_facilitator = facilitator if isinstance(facilitator, LocalFacilitator) else None

    register_exception_handlers(app, debug=marketplace_config.debug)

    # x402 payment gate for priced routes (ADD FIRST - executes last)
    try:
        payment_config.validate_config()
    except ValueError as e:
        app.state.payment_enabled = False
        logger.warning("x402 payment gate disabled: %s", e)
    else:
        app.state.payment_enabled = True
        resolver = PricingResolver(
            routes_from_table(payment_config.x402_route_prices, payment_config.network_id),
            pay_to=payment_config.payment_address,
            asset=payment_config.x402_asset,
            max_timeout_seconds=payment_config.x402_max_timeout_seconds,
        )
        app.state.pricing_resolver = resolver
        app.add_middleware(
            X402PaymentGate,
            resolver=resolver,
            facilitator=facilitator,
            override_provider=agent_price_override(repository),
            facilitator_timeout=payment_config.x402_facilitator_timeout_seconds,
            skip_paths=DEFAULT_SKIP_PATHS + ("/", "/docs", "/openapi.json"),
            debug=marketplace_config.debug,
        )
        logger.info("x402 payment gate enabled: %d priced routes, payment to %s",
                    len(resolver.routes()), payment_config.payment_address)

    app.add_middleware(RequestContextMiddleware)

    # Add CORS middleware (ADD LAST - executes first to handle OPTIONS)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[marketplace_config.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["Content-Type", "Authorization", X_PAYMENT, X_REQUEST_ID, X_PAYER_ADDRESS],
        expose_headers=PAYMENT_HEADERS,
    )

    @app.get("/")
    async def root() -> JSONResponse:
        """Service description."""
        return JSONResponse(
            content={
                "service": SERVICE_NAME,
                "version": __version__,
                "description": "AI agent marketplace with x402 pay-per-request payments",
                "endpoints": {
                    "agents": "/api/agents",
                    "chat": "/v1/chat/completions",
                    "health": "/health",
                    "ready": "/ready",
                },
                "payment": {
                    "protocol": "x402",
                    "network": payment_config.network_id,
                    "asset": payment_config.x402_asset,
                    "enabled": app.state.payment_enabled,
                },
            }
        )

    @app.get("/health")
    async def health_check() -> JSONResponse:
        """Health check endpoint for monitoring and load balancers."""
        return JSONResponse(
            content={
                "status": "healthy",
                "service": SERVICE_NAME,
                "version": __version__,
                "timestamp": utc_timestamp(),
            }
        )

    @app.get("/ready")
    async def readiness_check() -> JSONResponse:
        """Readiness: payment and completion provider must be configured."""
        checks = {
            "payment": bool(app.state.payment_enabled),
            "completion": bool(marketplace_config.hyperbolic_api_key),
        }
        ready = all(checks.values())
        return JSONResponse(
            status_code=200 if ready else 503,
            content={
                "status": "ready" if ready else "not ready",
                "checks": checks,
                "timestamp": utc_timestamp(),
            },
        )

    app.include_router(agents_router)
    app.include_router(chat_router)
    if app.state.local_facilitator is not None:
        app.include_router(facilitator_router)

    return app


def run() -> None:
    """Run the API server with uvicorn."""
    import uvicorn

    config = MarketplaceConfig()
    uvicorn.run(
        "x402_market.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=config.port,
        log_level=(config.log_level or ("debug" if config.debug else "info")).lower(),
    )


if __name__ == "__main__":
    run()
