"""
FastAPI application entry point.
"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from vetcall.config import get_settings
from vetcall.scheduling.config import get_queue_config
from vetcall.scheduling.execution import HttpEmailSender
from vetcall.scheduling.qstash import QStashClient, QStashSignatureVerifier
from vetcall.scheduling.router import execution_router
from vetcall.scheduling.router import router as scheduling_router
from vetcall.scheduling.scheduler import DelayedJobScheduler
from vetcall.shared.database import get_database_manager
from vetcall.shared.exceptions import (
    ConfigurationError,
    NotFoundError,
    SchedulingError,
    UpstreamError,
)
from vetcall.shared.logging import correlation_id_var, get_logger, setup_logging
from vetcall.telephony.factory import build_throttle, build_voice_provider
from vetcall.tools.built_in import register_built_in_tools
from vetcall.tools.registry import ToolRegistry
from vetcall.webhooks.dispatcher import WebhookDispatcher
from vetcall.webhooks.router import router as webhooks_router

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Builds the process-wide collaborators once: tool registry, throttled
    voice provider, queue client and scheduler, webhook dispatcher.
    """
    setup_logging()
    settings = get_settings()
    db = get_database_manager()

    logger.info("Application starting", extra={"env": settings.app_env})

    registry = ToolRegistry()
    register_built_in_tools(registry, db.session)

    provider = build_voice_provider(throttle=build_throttle())
    queue_config = get_queue_config()
    queue = QStashClient(queue_config)
    scheduler = DelayedJobScheduler(queue, queue_config, session_scope=db.session)

    app.state.tool_registry = registry
    app.state.voice_provider = provider
    app.state.queue_config = queue_config
    app.state.job_scheduler = scheduler
    app.state.signature_verifier = QStashSignatureVerifier.from_config(queue_config)
    app.state.email_sender = HttpEmailSender(settings)
    app.state.webhook_dispatcher = WebhookDispatcher(
        registry,
        retry_scheduler=scheduler,
        max_retries=settings.call_max_retries,
    )

    logger.info("Tools registered", extra={"tools": registry.names()})

    yield

    logger.info("Shutting down application")
    provider.close()
    queue.close()
    await db.close()
    logger.info("Application shutdown complete")


def register_exception_handlers(app: FastAPI) -> None:
    """Map domain exceptions to ``{"error": ...}`` responses."""

    @app.exception_handler(NotFoundError)
    async def _not_found(_: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": str(exc)})

    @app.exception_handler(SchedulingError)
    async def _scheduling(_: Request, exc: SchedulingError) -> JSONResponse:
        code = status.HTTP_502_BAD_GATEWAY if exc.upstream else status.HTTP_400_BAD_REQUEST
        return JSONResponse(status_code=code, content={"error": exc.user_message})

    @app.exception_handler(UpstreamError)
    async def _upstream(request: Request, exc: UpstreamError) -> JSONResponse:
        logger.error(
            "Upstream provider error",
            extra={"path": request.url.path, "status_code": exc.status_code, "error": str(exc)},
        )
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"error": "Upstream provider error"},
        )

    @app.exception_handler(ConfigurationError)
    async def _configuration(request: Request, exc: ConfigurationError) -> JSONResponse:
        logger.error("Configuration error", extra={"path": request.url.path, "error": str(exc)})
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Server configuration error"},
        )

    # Request validation (FastAPI/Pydantic) -> consistent 422 payload
    @app.exception_handler(RequestValidationError)
    async def _request_validation(_: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            }
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "detail": {
                    "code": "VALIDATION_ERROR",
                    "message": "Request validation failed",
                    "errors": errors,
                }
            },
        )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="vetcall API",
        description="Veterinary discharge calls: voice webhooks and delayed call/email scheduling",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    register_exception_handlers(app)

    @app.middleware("http")
    async def correlation_id_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        correlation_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        token = correlation_id_var.set(correlation_id)
        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)
        response.headers[REQUEST_ID_HEADER] = correlation_id
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(webhooks_router)
    app.include_router(scheduling_router)
    app.include_router(execution_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    return app


app = create_app()
