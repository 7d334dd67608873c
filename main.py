# main.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from utils.exceptions import APIError, ConfigurationError
from schemas.common import UnifiedAPIResponse
from schemas.sources import TrustedProxiesConfig
from utils.errors import ErrorCode
# Core and services
from core.config import get_config_manager, ConfigManager
from core.logging import setup_logging
from core.context import ProvisionContext
from core.matchers.base import IRequestMatcher
from core.registry import build_default_registries
# API
from api.middleware import TrustedProxyMiddleware
from api.internal.ip_ranges import router as internal_ip_ranges_router


logger = logging.getLogger(f"edgeguard.{__name__}")


def build_ip_matcher(config_manager: ConfigManager, ctx: ProvisionContext) -> IRequestMatcher:
    """
    Creates and provisions the trusted proxy matcher from the `trusted_proxies`
    configuration section.
    Raises:
        ConfigurationError: If the section is invalid or the matcher has no usable source.
    """
    raw = config_manager.get_config("trusted_proxies")
    if not raw:
        raise ConfigurationError("Configuration is missing the 'trusted_proxies' section")
    try:
        settings = TrustedProxiesConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid 'trusted_proxies' configuration: {e}") from e

    matcher = ctx.load_matcher(settings.matcher, {"source": settings.source})
    errors = matcher.validate()
    if errors:
        raise ConfigurationError("; ".join(errors))
    return matcher


def create_app(config_manager: Optional[ConfigManager] = None) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # 1. Configuration and logging
        config = config_manager or get_config_manager()
        app.state.config = config
        setup_logging(config)
        logger.info("Logging initialized.")

        # 2. Registries and provisioning context (owns the shutdown signal)
        source_registry, matcher_registry = build_default_registries()
        ctx = ProvisionContext(sources=source_registry, matchers=matcher_registry)
        app.state.provision_context = ctx

        # 3. Trusted proxy matcher. Provisioning does the initial range fetch.
        try:
            app.state.ip_matcher = build_ip_matcher(config, ctx)
        except ConfigurationError as e:
            logger.critical(f"Invalid trusted proxy configuration, application cannot start: {e}")
            ctx.cancel()
            raise
        app.state.client_ip_headers = tuple(
            config.get_config("trusted_proxies.client_ip_headers", ["CF-Connecting-IP", "X-Forwarded-For"])
        )
        logger.info("Trusted proxy matcher initialized.")

        yield

        logger.info("Application shutdown...")
        ctx.cancel()
        logger.info("Application shutdown complete.")

    app = FastAPI(
        title="EdgeGuard",
        description="Trusts forwarded client addresses only from dynamically refreshed edge IP ranges.",
        version="1.0.0",
        lifespan=lifespan,
    )

    # --- Middleware ---
    app.add_middleware(TrustedProxyMiddleware)

    # --- Exception Handlers ---
    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError):
        return JSONResponse(
            status_code=exc.status_code,
            content=UnifiedAPIResponse(
                success=False,
                error_code=exc.error_code,
                message=exc.detail,
                error_details=exc.details or None,
                data=None
            ).model_dump(exclude_none=True)
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=UnifiedAPIResponse(
                success=False,
                error_code=f"HTTP_{exc.status_code}",
                message=exc.detail,
                data=None
            ).model_dump(exclude_none=True)
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = []
        for error in exc.errors():
            field_name = ".".join(str(item) for item in error["loc"] if item != "body")
            errors.append({
                "field": field_name,
                "message": error["msg"],
                "error_type": error["type"]
            })

        return JSONResponse(
            status_code=422,
            content=UnifiedAPIResponse(
                success=False,
                error_code=ErrorCode.COMMON_VALIDATION_ERROR.code,
                message=ErrorCode.COMMON_VALIDATION_ERROR.message,
                data=None,
                error_details={"errors": errors}
            ).model_dump(exclude_none=True)
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception for request {request.url}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content=UnifiedAPIResponse(
                success=False,
                error_code=ErrorCode.COMMON_INTERNAL_ERROR.code,
                message=ErrorCode.COMMON_INTERNAL_ERROR.message,
                data=None
            ).model_dump(exclude_none=True)
        )

    # --- API Routers ---
    app.include_router(internal_ip_ranges_router, prefix="/api/v1/internal/ip-ranges", tags=["Internal - IP Ranges"])

    # --- Root Endpoint ---
    @app.get("/", tags=["Root"])
    async def read_root():
        return {"message": f"Welcome to EdgeGuard API (Version {app.version})"}

    return app


app = create_app()

# Run with: uvicorn main:app
