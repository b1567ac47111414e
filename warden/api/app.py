"""
Warden - FastAPI Application Factory

Creates and configures the FastAPI application with:
- Auth and user routes
- CORS and request-context logging middleware
- Domain error to HTTP status mapping
- Health and readiness probes
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from neo4j.exceptions import ServiceUnavailable, SessionExpired, TransientError
from starlette.exceptions import HTTPException as StarletteHTTPException

from warden import __version__
from warden.config import Settings, get_settings
from warden.database import Neo4jClient, SchemaManager
from warden.models.base import utc_now
from warden.monitoring import LoggingContextMiddleware, configure_logging, log_duration
from warden.repositories import AccountStore, InMemoryAccountStore, Neo4jAccountStore
from warden.security.auth_service import (
    AccountDisabledError,
    AccountLockedError,
    AccountNotFoundError,
    AuthenticationError,
    AuthService,
    DeliveryFailedError,
    DuplicateAccountError,
    InvalidCredentialsError,
    InvalidOrExpiredTokenError,
    InvalidTokenError,
    StaleTokenError,
)
from warden.security.authorization import (
    AccessControl,
    AuthorizationError,
    ForbiddenError,
    UnauthenticatedError,
)
from warden.security.lockout import LockoutPolicy
from warden.security.password import CredentialHasher, PasswordValidationError
from warden.security.secret_tokens import SecretTokenFactory
from warden.security.tokens import TokenIssuer
from warden.services.accounts import AccountService
from warden.services.email import EmailSender, create_email_sender
from warden.services.images import (
    ImageError,
    ImageStorageError,
    ImageStore,
    InvalidImageError,
    create_image_store,
)

logger = structlog.get_logger(__name__)


# Most specific first; looked up along the exception's MRO
ERROR_STATUS_CODES: dict[type[Exception], int] = {
    InvalidOrExpiredTokenError: 400,
    InvalidCredentialsError: 401,
    InvalidTokenError: 401,
    StaleTokenError: 401,
    UnauthenticatedError: 401,
    ForbiddenError: 403,
    AccountDisabledError: 403,
    AccountNotFoundError: 404,
    DuplicateAccountError: 409,
    AccountLockedError: 423,
    DeliveryFailedError: 503,
    PasswordValidationError: 400,
    InvalidImageError: 400,
    ImageStorageError: 503,
    AuthenticationError: 400,
    AuthorizationError: 403,
}


def status_code_for(exc: Exception) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 500


class WardenApp:
    """
    Warden application container.

    Builds every component from one Settings object. A store, email sender
    or image store passed in is used as-is instead of the configured backend.
    """

    def __init__(
        self,
        settings: Settings,
        store: AccountStore | None = None,
        email_sender: EmailSender | None = None,
        image_store: ImageStore | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings
        self.clock = clock

        self.db_client: Neo4jClient | None = None
        self.store: AccountStore | None = store
        self.email_sender: EmailSender | None = email_sender
        self.image_store: ImageStore | None = image_store

        self.issuer: TokenIssuer | None = None
        self.auth_service: AuthService | None = None
        self.account_service: AccountService | None = None
        self.access_control: AccessControl | None = None

        self.started_at: datetime | None = None
        self.is_ready: bool = False

    async def initialize(self) -> None:
        """Initialize all components."""
        settings = self.settings
        logger.info("warden_initializing", store_backend=settings.store_backend)

        if self.store is None:
            if settings.store_backend == "neo4j":
                self.db_client = Neo4jClient.from_settings(settings)
                await self.db_client.connect()
                with log_duration(logger, "schema_setup"):
                    await SchemaManager(self.db_client).ensure_schema()
                self.store = Neo4jAccountStore(self.db_client)
            else:
                self.store = InMemoryAccountStore()

        if self.email_sender is None:
            self.email_sender = create_email_sender(settings)
        if self.image_store is None:
            self.image_store = create_image_store(settings)

        self.issuer = TokenIssuer.from_settings(settings, clock=self.clock)
        self.auth_service = AuthService(
            store=self.store,
            hasher=CredentialHasher(rounds=settings.password_bcrypt_rounds),
            issuer=self.issuer,
            secrets=SecretTokenFactory(clock=self.clock),
            lockout=LockoutPolicy.from_settings(settings),
            email_sender=self.email_sender,
            frontend_url=settings.frontend_url,
            reset_ttl=settings.password_reset_ttl,
            verify_ttl=settings.email_verification_ttl,
            clock=self.clock,
        )
        self.account_service = AccountService(
            self.store,
            default_page_size=settings.pagination_limit,
            clock=self.clock,
            image_store=self.image_store,
            max_image_bytes=settings.image_max_bytes,
        )
        self.access_control = AccessControl(self.store, self.issuer)

        self.started_at = utc_now()
        self.is_ready = True
        logger.info("warden_initialized")

    async def shutdown(self) -> None:
        logger.info("warden_shutting_down")
        self.is_ready = False

        if self.email_sender is not None:
            try:
                await self.email_sender.close()
            except (RuntimeError, OSError) as e:
                logger.warning("email_sender_shutdown_failed", error=str(e))

        if self.image_store is not None:
            try:
                await self.image_store.close()
            except (RuntimeError, OSError) as e:
                logger.warning("image_store_shutdown_failed", error=str(e))

        if self.db_client is not None:
            await self.db_client.close()

        logger.info("warden_shutdown_complete")

    def get_status(self) -> dict[str, Any]:
        return {
            "status": "ready" if self.is_ready else "starting",
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "uptime_seconds": (
                (utc_now() - self.started_at).total_seconds() if self.started_at else 0
            ),
            "store": self.settings.store_backend,
        }


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Initialize the container on startup, shut it down on exit."""
    warden_app: WardenApp = app.state.warden
    try:
        await warden_app.initialize()
        yield
    finally:
        try:
            await asyncio.wait_for(warden_app.shutdown(), timeout=30.0)
        except TimeoutError:
            logger.error("warden_shutdown_timeout", timeout_seconds=30.0)


def _error_body(request: Request, detail: Any, status_code: int) -> dict[str, Any]:
    return {
        "error": detail,
        "status_code": status_code,
        "path": str(request.url.path),
    }


def create_app(
    settings: Settings | None = None,
    warden_app: WardenApp | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Settings to use (defaults to the cached environment settings)
        warden_app: Pre-built container (tests inject stores and senders this way)

    Returns:
        Configured FastAPI application
    """
    if warden_app is not None:
        settings = warden_app.settings
    settings = settings or get_settings()
    warden_app = warden_app or WardenApp(settings)

    configure_logging(level=settings.log_level, json_output=settings.log_json)

    docs_url = None if settings.is_production else "/docs"
    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        docs_url=docs_url,
        redoc_url=None,
        debug=settings.debug,
        lifespan=lifespan,
        openapi_tags=[
            {"name": "auth", "description": "Registration, login and credential flows"},
            {"name": "users", "description": "Profile and account administration"},
        ],
    )
    app.state.warden = warden_app

    app.add_middleware(LoggingContextMiddleware)
    cors_origins = settings.cors_origins_list
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type", "X-Correlation-ID"],
        )

    # Exception handlers
    async def domain_error_handler(request: Request, exc: Exception) -> JSONResponse:
        status_code = status_code_for(exc)
        headers: dict[str, str] = {}
        if status_code == 401:
            headers["WWW-Authenticate"] = "Bearer"
        if isinstance(exc, AccountLockedError) and exc.locked_until is not None:
            remaining = int((exc.locked_until - utc_now()).total_seconds())
            if remaining > 0:
                headers["Retry-After"] = str(remaining)
        if isinstance(exc, (DeliveryFailedError, ImageStorageError)):
            headers["Retry-After"] = "60"
        return JSONResponse(
            status_code=status_code,
            content=_error_body(request, str(exc), status_code),
            headers=headers or None,
        )

    app.add_exception_handler(AuthenticationError, domain_error_handler)
    app.add_exception_handler(AuthorizationError, domain_error_handler)
    app.add_exception_handler(PasswordValidationError, domain_error_handler)
    app.add_exception_handler(ImageError, domain_error_handler)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, exc.detail, exc.status_code),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        # Never echo submitted values: they may be passwords
        sanitized_errors = [
            {
                "loc": list(error.get("loc", [])),
                "type": error.get("type", "unknown"),
                "msg": error.get("msg", "Validation failed"),
            }
            for error in exc.errors()
        ]
        body = _error_body(request, "Validation error", 422)
        body["details"] = sanitized_errors
        return JSONResponse(status_code=422, content=body)

    async def store_unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "store_unavailable",
            path=str(request.url.path),
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return JSONResponse(
            status_code=503,
            content=_error_body(request, "Account store temporarily unavailable", 503),
            headers={"Retry-After": "5"},
        )

    for exc_class in (ServiceUnavailable, SessionExpired, TransientError):
        app.add_exception_handler(exc_class, store_unavailable_handler)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            "unhandled_exception",
            path=str(request.url.path),
            error=str(exc),
        )
        return JSONResponse(
            status_code=500,
            content=_error_body(request, "Internal server error", 500),
        )

    from warden.api.routes import auth, users

    app.include_router(auth.router, prefix="/api/v1/auth", tags=["auth"])
    app.include_router(users.router, prefix="/api/v1/users", tags=["users"])

    @app.get("/", include_in_schema=False)
    async def root() -> dict[str, Any]:
        return {
            "name": settings.app_name,
            "version": __version__,
            "status": warden_app.get_status(),
        }

    @app.get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "healthy" if warden_app.is_ready else "starting"}

    @app.get("/ready", include_in_schema=False)
    async def ready() -> Response:
        if not warden_app.is_ready:
            return JSONResponse(status_code=503, content={"status": "not_ready"})
        if warden_app.db_client is not None:
            if not await warden_app.db_client.verify_connection():
                return JSONResponse(
                    status_code=503,
                    content={"status": "degraded", "reason": "store_unreachable"},
                    headers={"Retry-After": "5"},
                )
        return JSONResponse(content={"status": "ready"})

    logger.info("fastapi_app_created", version=__version__, docs_url=docs_url)
    return app


def run_server(
    host: str | None = None,
    port: int | None = None,
    reload: bool = False,
    workers: int = 1,
) -> None:
    """
    Run the Warden server.

    For production use:
        uvicorn warden.api.app:create_app --factory --host 0.0.0.0 --port 8000
    """
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "warden.api.app:create_app",
        factory=True,
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
        workers=workers,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run_server(reload=True)
