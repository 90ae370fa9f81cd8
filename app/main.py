# app/main.py
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
import logging

from app.core.config import Settings, settings
from app.api.endpoints import transfers
from app.api.models.transfers import parse_transfer_query
from app.services.alchemy import AlchemyClient
from app.services.transfers import TransferQueryExecutor
from app.x402.cache import VerifiedPaymentCache
from app.x402.errors import ConfigurationError, ProviderError, QueryValidationError, X402Error
from app.x402.gate import PaymentGate
from app.x402.ledger import LedgerClient
from app.x402.middleware import (
    X_PAYMENT_STATUS_HEADER,
    ProtectedRoute,
    X402Middleware,
    create_bad_request_response,
)
from app.x402.requirements import requirement_from_settings
from app.x402.verifier import PaymentVerifier

# Configure basic logging
logging.basicConfig(level=settings.LOG_LEVEL.upper())
logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """Render errors as {error, status, message} bodies."""

    @app.exception_handler(QueryValidationError)
    async def query_validation_handler(request: Request, exc: QueryValidationError):
        return create_bad_request_response(exc)

    @app.exception_handler(ProviderError)
    async def provider_error_handler(request: Request, exc: ProviderError):
        logger.error(f"Data provider failed for {request.url.path}: {exc}")
        body = {
            "error": "Bad Gateway",
            "status": 502,
            "message": f"Could not fetch data from the provider: {exc.message}",
            "retryable": True,
        }
        if exc.page_key is not None:
            body["pageKey"] = exc.page_key
        return JSONResponse(status_code=502, content=body)

    @app.exception_handler(X402Error)
    async def x402_error_handler(request: Request, exc: X402Error):
        logger.error(f"Unhandled x402 error for {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal Server Error", "status": 500, "message": str(exc)},
        )


def create_app(
    app_settings: Optional[Settings] = None,
    ledger: Optional[LedgerClient] = None,
    cache: Optional[VerifiedPaymentCache] = None,
) -> FastAPI:
    """
    Build the application.

    Payment configuration is validated here, so a broken network/token setup
    stops the process at startup instead of failing individual requests.

    Raises:
        ConfigurationError: if the payment configuration is unusable
    """
    app_settings = app_settings or settings
    requirement = requirement_from_settings(app_settings)

    if ledger is None:
        if not app_settings.ALCHEMY_API_KEY and not app_settings.X402_DEVELOPMENT_MODE:
            raise ConfigurationError("ALCHEMY_API_KEY is required outside development mode")
        ledger = AlchemyClient(
            api_key=app_settings.ALCHEMY_API_KEY,
            timeout=app_settings.LEDGER_TIMEOUT_SECONDS,
        )

    if cache is None:
        cache = VerifiedPaymentCache(
            ttl_seconds=app_settings.X402_CACHE_TTL_SECONDS,
            max_entries=app_settings.X402_CACHE_MAX_ENTRIES,
        )

    verifier = PaymentVerifier(
        ledger,
        max_retries=app_settings.LEDGER_MAX_RETRIES,
        retry_backoff_seconds=app_settings.LEDGER_RETRY_BACKOFF_SECONDS,
        min_confirmations=app_settings.X402_MIN_CONFIRMATIONS,
    )
    gate = PaymentGate(verifier, cache, development_mode=app_settings.X402_DEVELOPMENT_MODE)

    prefix = app_settings.API_PREFIX.rstrip("/")
    app = FastAPI(
        title=app_settings.PROJECT_NAME,
        openapi_url=f"{prefix}/openapi.json"
    )
    app.state.settings = app_settings
    app.state.payment_requirement = requirement
    app.state.payment_gate = gate
    app.state.query_executor = TransferQueryExecutor(ledger, requirement.network)

    app.include_router(transfers.router, prefix=f"{prefix}/transfers", tags=["transfers"])

    protected_routes = [
        ProtectedRoute("GET", f"{prefix}/transfers", requirement, validate_query=parse_transfer_query),
    ]
    app.add_middleware(X402Middleware, gate=gate, routes=protected_routes)

    # Added last so it wraps the x402 middleware and 402 responses carry CORS headers
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[X_PAYMENT_STATUS_HEADER, "Retry-After"],
    )

    register_exception_handlers(app)

    @app.get("/", summary="Health Check", tags=["default"])
    def read_root():
        """ Basic health check endpoint. """
        logger.info("Root endpoint '/' accessed.")
        return {
            "status": "ok",
            "message": f"Welcome to {app_settings.PROJECT_NAME}",
            "network": requirement.network.value,
            "developmentMode": gate.development_mode,
        }

    logger.info(
        f"x402: Gating {prefix}/transfers at {requirement.minimum_amount} {requirement.token_symbol} "
        f"on {requirement.network_label} to {requirement.recipient_address}"
    )
    return app


app = create_app()
