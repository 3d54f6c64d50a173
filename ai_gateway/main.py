import os
import json
from http import HTTPStatus
from typing import Optional
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from dotenv import load_dotenv

# Load environment variables first
load_dotenv()

# Import centralized logging configuration
from config.logging_config import setup_logging, get_logger

from ai_gateway.auth import verify_caller
from ai_gateway.cors import GatewayCORSMiddleware
from ai_gateway.dispatcher import GatewayDispatcher, parse_exchange_request
from ai_gateway.providers import AnthropicRelay
from ai_gateway.settings import GatewaySettings
from ai_gateway.tenant import (
    SupabaseTenantClient,
    TenantDirectory,
    TierPolicy,
    RequestRateLimiter,
    UsageTracker
)

_TRUTHY = ('true', '1', 'yes', 'on')

# Backwards compatibility: DEBUG_MODE/VERBOSE force DEBUG
DEBUG_MODE = os.getenv('DEBUG_MODE', 'false').lower() in _TRUTHY
VERBOSE = os.getenv('VERBOSE', 'false').lower() in _TRUTHY

if DEBUG_MODE or VERBOSE:
    log_level = 'DEBUG'
else:
    log_level = os.getenv('LOG_LEVEL', 'INFO').upper()

setup_logging(
    log_level=log_level,
    enable_diagnostic=os.getenv('ENABLE_DIAGNOSTIC', 'false').lower() in _TRUTHY,
    log_to_console=True,
    log_to_file=os.getenv('LOG_TO_FILE', 'false').lower() in _TRUTHY,
    filter_sensitive_data=os.getenv('FILTER_SENSITIVE_DATA', 'true').lower() in _TRUTHY,
    log_file=os.getenv('LOG_FILE') or None
)

logger = get_logger(__name__)

router = APIRouter()


@router.post("/v1/ai-gateway")
@router.post("/")
async def ai_gateway(request: Request):
    """Single action-discriminated exchange endpoint."""
    try:
        payload = json.loads(await request.body())
    except ValueError:
        raise HTTPException(status_code=400, detail={"error": "Invalid JSON body"})
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail={"error": "Invalid JSON body"})

    caller = await verify_caller(request)
    exchange_request = parse_exchange_request(payload)

    dispatcher: GatewayDispatcher = request.app.state.dispatcher
    return await dispatcher.dispatch(exchange_request, caller)


@router.get("/v1/models")
async def list_models(request: Request):
    """List the model catalog (abstract ids, provider ids, minimum tier)."""
    await verify_caller(request)

    policy: TierPolicy = request.app.state.policy
    return {
        "object": "list",
        "data": policy.catalog.models_for_api()
    }


@router.get("/health")
async def health_check(request: Request):
    """Unauthenticated liveness probe."""
    return {
        "status": "healthy",
        "service": "ai-gateway",
        "instance": os.getenv("INSTANCE_NAME", "unknown")
    }


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render HTTP errors as {error, message} JSON; structured details pass through."""
    if isinstance(exc.detail, dict):
        content = exc.detail
    else:
        try:
            code = HTTPStatus(exc.status_code).phrase.lower().replace(" ", "_")
        except ValueError:
            code = "http_error"
        content = {"error": code, "message": str(exc.detail)}

    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=getattr(exc, "headers", None)
    )


def create_app(
    settings: Optional[GatewaySettings] = None,
    directory: Optional[TenantDirectory] = None,
    policy: Optional[TierPolicy] = None,
    provider_transport: Optional[httpx.AsyncBaseTransport] = None,
    rate_limiter: Optional[RequestRateLimiter] = None
) -> FastAPI:
    """
    Build the gateway app.

    Args:
        settings: Runtime settings (default: from environment)
        directory: Tenant/usage store (default: Supabase client from settings)
        policy: Tier policy (default: production tables, relaxed in development mode)
        provider_transport: httpx transport for provider calls (tests)
        rate_limiter: Per-minute limiter (default: windows in settings.rate_limit_storage_uri)
    """
    settings = settings or GatewaySettings.from_env()
    if policy is None:
        policy = TierPolicy.development() if settings.development_mode else TierPolicy.default()
    if directory is None:
        directory = SupabaseTenantClient(
            settings.supabase_url,
            settings.supabase_anon_key,
            settings.supabase_service_key
        )

    tracker = UsageTracker(directory, policy.catalog, settings.usage_queue_size)
    relay = AnthropicRelay(settings, transport=provider_transport)
    rate_limiter = rate_limiter or RequestRateLimiter(settings.rate_limit_storage_uri)
    dispatcher = GatewayDispatcher(settings, policy, directory, relay, tracker, rate_limiter)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"AI Gateway starting (environment={settings.environment}, "
            f"development_mode={settings.development_mode}, api_key={'set' if settings.has_api_key else 'missing'})"
        )
        if DEBUG_MODE or VERBOSE:
            logger.debug("🔧 Available endpoints:")
            logger.debug("   POST /v1/ai-gateway - Exchange endpoint (action-discriminated)")
            logger.debug("   GET  /v1/models - List catalog models")
            logger.debug("   GET  /health - Liveness")

        yield

        logger.info("Shutting down usage tracker...")
        await tracker.close()
        if tracker.errors:
            logger.warning(f"{len(tracker.errors)} usage log write(s) failed during this run")

    app = FastAPI(
        title="AI Gateway",
        description="Tier-aware broker between client apps and the LLM provider",
        version="1.0.0",
        lifespan=lifespan
    )

    app.state.settings = settings
    app.state.policy = policy
    app.state.directory = directory
    app.state.tracker = tracker
    app.state.dispatcher = dispatcher

    app.add_middleware(GatewayCORSMiddleware, allow_origins=settings.cors_origins)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.include_router(router)

    return app


app = create_app()


def run_server(port: Optional[int] = None):
    """Run the server - used as the console script entry point."""
    import uvicorn

    # Priority: CLI arg > ENV var > default
    if port is None:
        port = int(os.getenv("PORT", "8000"))

    logger.info(f"🚀 Server starting on http://0.0.0.0:{port}")
    uvicorn.run(app, host="0.0.0.0", port=port)


if __name__ == "__main__":
    import sys

    port = None
    if len(sys.argv) > 1:
        try:
            port = int(sys.argv[1])
            print(f"Using port from command line: {port}")
        except ValueError:
            print(f"Invalid port number: {sys.argv[1]}. Using default.")

    run_server(port)
