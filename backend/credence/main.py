"""FastAPI application entry point.

This module creates and configures the FastAPI application, including:
- Credential services, notifier, and rate limiter on app.state
- Exception handlers for API errors
- API v1 router mounting
- Health check endpoint
"""

import logging

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from credence.api.v1.router import router as v1_router
from credence.core.config import Settings, settings
from credence.core.errors import APIError
from credence.core.notifier import Notifier, build_notifier
from credence.core.responses import ErrorDetail, ErrorResponse
from credence.services.account_service import AccountService
from credence.services.federated import build_identity_verifier
from credence.services.identity import IdentityReconciler
from credence.services.password_policy import PasswordPolicy
from credence.services.rate_limiter import RateLimiter
from credence.services.token_issuer import SigningKey, TokenIssuer
from credence.services.verification_codes import VerificationCodeManager

logger = structlog.get_logger()


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers to all responses.

    Headers added:
    - X-Content-Type-Options: Prevents MIME sniffing
    - Cache-Control: Token and code responses must never be cached
    - Content-Security-Policy: API returns no HTML
    - Strict-Transport-Security: Forces HTTPS (production only)

    Args:
        app: Wrapped ASGI app.
        environment: Deployment environment from the app's settings.
    """

    def __init__(self, app: ASGIApp, *, environment: str) -> None:
        super().__init__(app)
        self.environment = environment

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        """Add security headers to response."""
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"

        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store, max-age=0"

        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none'"
        )

        # HSTS only in production (assumes HTTPS via reverse proxy)
        if self.environment == "production":
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        return response


def api_error_handler(_request: Request, exc: APIError) -> JSONResponse:
    """Handle custom API errors.

    Args:
        request: The incoming request.
        exc: The APIError that was raised.

    Returns:
        JSONResponse with error envelope, status code, and any extra headers.
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=exc.code,
                message=exc.message,
                details=exc.details,
            )
        ).model_dump(),
        headers=exc.headers,
    )


def validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors from FastAPI.

    Converts FastAPI's validation errors to the standard envelope.

    Args:
        request: The incoming request.
        exc: The RequestValidationError from Pydantic.

    Returns:
        JSONResponse with VALIDATION_ERROR code and field-level details.
    """
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=ErrorDetail(
                code="VALIDATION_ERROR",
                message="Request validation failed",
                details=[
                    {"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]}
                    for e in exc.errors()
                ],
            )
        ).model_dump(),
    )


def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions.

    Returns 500 INTERNAL_ERROR without exposing stack traces.

    Args:
        request: The incoming request.
        exc: The unhandled exception.

    Returns:
        JSONResponse with generic error message (500).
    """
    logger.exception("Unhandled exception", exc_info=exc, path=str(request.url.path))

    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="INTERNAL_ERROR",
                message="An unexpected error occurred",
            )
        ).model_dump(),
    )


def build_account_service(config: Settings) -> AccountService:
    """Wire the credential components from settings.

    Args:
        config: Application settings.

    Returns:
        AccountService backed by the SQLAlchemy repositories.
    """
    policy = PasswordPolicy(
        min_length=config.password_min_length,
        max_length=config.password_max_length,
        check_remote=config.password_breach_check_remote,
    )
    identity = IdentityReconciler(policy)
    return AccountService(
        identity=identity,
        codes=VerificationCodeManager.from_settings(config),
        issuer=TokenIssuer(SigningKey.from_settings(config), identity),
        policy=policy,
        verifier=build_identity_verifier(config),
    )


def build_rate_limiter(config: Settings) -> RateLimiter:
    return RateLimiter(
        config.rate_limit_rules,
        default_rule=config.rate_limit_default,
        storage_uri=config.rate_limit_storage_uri,
        enabled=config.rate_limit_enabled,
    )


def create_app(
    *,
    config: Settings | None = None,
    accounts: AccountService | None = None,
    notifier: Notifier | None = None,
    rate_limiter: RateLimiter | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Settings override (defaults to the module settings).
        accounts: Prebuilt account service (tests).
        notifier: Prebuilt notifier (tests).
        rate_limiter: Prebuilt rate limiter (tests).

    Returns:
        Configured FastAPI application instance.
    """
    config = config or settings
    logging.getLogger("credence").setLevel(config.log_level.upper())

    app = FastAPI(
        title="Credence API",
        version="1.0.0",
        description="Credential and verification-token lifecycle service",
    )

    # Middleware order: Starlette uses LIFO, so the LAST added runs FIRST.
    # CORS must run first to handle preflight requests, so add it last.
    app.add_middleware(SecurityHeadersMiddleware, environment=config.environment)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "Authorization", "X-Request-ID"],
    )

    # Register exception handlers
    # Order matters: specific handlers first, then catch-all
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, internal_error_handler)

    # Process-wide components, built once
    app.state.accounts = accounts or build_account_service(config)
    app.state.notifier = notifier or build_notifier(config)
    app.state.rate_limiter = rate_limiter or build_rate_limiter(config)

    # Include v1 router at /api/v1
    app.include_router(v1_router, prefix="/api/v1")

    # Health check endpoint (outside versioned API)
    @app.get("/health")
    def health_check() -> dict:
        """Health check endpoint for monitoring.

        Returns:
            {"status": "healthy"} if service is running.
        """
        return {"status": "healthy"}

    return app


# Create the application instance
# Used by uvicorn: uvicorn credence.main:app
app = create_app()
