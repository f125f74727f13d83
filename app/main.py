"""
FastAPI application main module.
"""
import os
import json
import asyncio
import logging
from contextlib import asynccontextmanager, suppress

# Initialize Sentry BEFORE importing anything else (for best error capture)
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

sentry_dsn = os.getenv('SENTRY_DSN')
if sentry_dsn:
    sentry_sdk.init(
        dsn=sentry_dsn,
        integrations=[
            FastApiIntegration(),
            StarletteIntegration(),
        ],
        traces_sample_rate=0.1,  # 10% of requests traced
        environment=os.getenv('ENVIRONMENT', 'development'),
        send_default_pii=False,
    )
    logging.info("Sentry initialized for error monitoring")

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from dotenv import load_dotenv

dotenv_override = os.getenv("DOTENV_OVERRIDE", "false").lower() == "true"
load_dotenv(override=dotenv_override)

from app.core.dependencies import get_change_relay, get_gateway
from app.middleware.auth import APIKeyMiddleware
from app.middleware.error_handling import setup_error_handling
from app.middleware.rate_limit import limiter, rate_limit_exceeded_handler
from app.routers.connections import router as connections_router
from app.routers.health import router as health_router
from app.routers.notifications import router as notifications_router
from app.routers.user import router as user_router
from app.utils.logging_config import RequestLoggingMiddleware, setup_logging

setup_logging()

# Get configuration from environment variables
app_name = os.getenv('APP_NAME')
app_version = os.getenv('APP_VERSION')
environment = os.getenv('ENVIRONMENT', 'development')

# Parse CORS origins from JSON string
cors_origins_str = os.getenv('CORS_ORIGINS')
try:
    cors_origins = json.loads(cors_origins_str) if cors_origins_str else None
except json.JSONDecodeError:
    cors_origins = None

# Validate required environment variables
required_vars = ['APP_NAME', 'APP_VERSION', 'CORS_ORIGINS']
missing_vars = [var for var in required_vars if not os.getenv(var)]
if missing_vars:
    raise ValueError(f"Missing required environment variables: {', '.join(missing_vars)}")

if not cors_origins:
    raise ValueError("CORS_ORIGINS must be a valid JSON array")

# Log non-sensitive configuration (NEVER log secrets/credentials)
logger = logging.getLogger(__name__)
logger.info(f"Starting {app_name} v{app_version} in {environment} environment")
logger.info(f"CORS origins: {len(cors_origins)} configured")
logger.info(f"Persistence backend: {os.getenv('PERSISTENCE_BACKEND', 'dynamodb')}")

AUTH_EXCLUDED_PATHS = ["/health", "/api/v1/health", "/docs", "/redoc", "/openapi.json"]


async def _run_change_relay(relay, gateway) -> None:
    try:
        await relay.run(gateway)
    except RedisError as e:
        logger.error(f"Change relay stopped; cross-process subscriptions are offline: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    relay = get_change_relay()
    relay_task = None
    if relay is not None:
        relay_task = asyncio.create_task(_run_change_relay(relay, get_gateway()))
    yield
    if relay_task is not None:
        relay_task.cancel()
        with suppress(asyncio.CancelledError):
            await relay_task
        await relay.close()


app = FastAPI(
    title=app_name,
    description="Peer skill-exchange matching and connections",
    version=app_version,
    lifespan=lifespan,
    swagger_ui_parameters={
        "persistAuthorization": True
    }
)

# Configure rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

# Configure OpenAPI schema to include API key authentication
from fastapi.openapi.utils import get_openapi


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=app_name,
        version=app_version,
        description="Peer skill-exchange matching and connections",
        routes=app.routes,
    )

    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "ApiKeyAuth": {
            "type": "apiKey",
            "in": "header",
            "name": "X-API-KEY"
        }
    }

    for path in openapi_schema["paths"]:
        if path == "/" or any(path.startswith(excluded) for excluded in AUTH_EXCLUDED_PATHS):
            continue
        for method in openapi_schema["paths"][path]:
            openapi_schema["paths"][path][method]["security"] = [{"ApiKeyAuth": []}]

    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi

setup_error_handling(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-API-KEY", "X-User-ID", "X-Request-ID", "Accept"],
)

# Add rate limiting middleware
app.add_middleware(SlowAPIMiddleware)

# Add API key authentication middleware
app.add_middleware(APIKeyMiddleware, exclude_paths=AUTH_EXCLUDED_PATHS)

# Outermost: every request gets an id and a timing line
app.add_middleware(RequestLoggingMiddleware)

app.include_router(health_router)
app.include_router(user_router, prefix="/api/v1")
app.include_router(connections_router, prefix="/api/v1")
app.include_router(notifications_router, prefix="/api/v1")
