"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional
from uuid import uuid4

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from veridicus.api.v1.endpoints import health
from veridicus.api.v1.middleware.auth import JWTAuthenticationMiddleware
from veridicus.api.v1.router import api_router
from veridicus.core.config import Settings, settings
from veridicus.core.container import ServiceContainer
from veridicus.core.exceptions import AppError
from veridicus.schemas.health import RootResponse
from veridicus.utils.logging import get_logger, set_correlation_id
from veridicus.websocket import live_audio

LOGGER = get_logger(__name__, level=settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Start and stop the service container around the application's lifetime."""
    container: ServiceContainer = app.state.container
    LOGGER.info(
        "Starting application",
        extra={
            "app_name": container.settings.app_name,
            "version": container.settings.app_version,
            "environment": container.settings.environment,
        },
    )
    try:
        await container.startup()
    except Exception as e:
        LOGGER.error(
            "Unexpected error during application startup",
            exc_info=True,
            extra={"error": str(e)},
        )

    yield

    LOGGER.info("Shutting down application")
    try:
        await container.shutdown()
    except Exception as e:
        LOGGER.error("Error during shutdown", exc_info=True, extra={"error": str(e)})


def validation_message(exc: RequestValidationError) -> str:
    """First validation problem, phrased for the ``error`` field."""
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    message = str(first.get("msg", "Invalid request"))
    if message.startswith("Value error, "):
        return message[len("Value error, "):]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    return f"{location}: {message}" if location else message


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        if exc.status_code >= 500:
            LOGGER.error(
                f"{type(exc).__name__}: {exc.message}",
                exc_info=exc.original_error,
                extra={"path": request.url.path},
            )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": validation_message(exc)},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        LOGGER.error(
            f"Unhandled error: {exc}", exc_info=True, extra={"path": request.url.path}
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )


def create_app(
    app_settings: Settings = settings, container: Optional[ServiceContainer] = None
) -> FastAPI:
    app = FastAPI(
        title=app_settings.app_name,
        version=app_settings.app_version,
        description="Forensic case analysis backend: evidence ingestion, reasoning and live audio",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.container = container or ServiceContainer(app_settings)

    # Correlation ID middleware - before JWT auth
    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid4()))
        request.state.correlation_id = correlation_id
        set_correlation_id(correlation_id)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    app.add_middleware(JWTAuthenticationMiddleware)

    # CORS middleware - added last so it wraps auth failures too
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Correlation-ID"],
    )

    register_exception_handlers(app)

    app.include_router(api_router, prefix=app_settings.api_v1_prefix)
    app.include_router(health.router, prefix="/health", tags=["Health"])
    app.include_router(live_audio.router, tags=["Vibe Forensics"])

    @app.get(
        "/",
        response_model=RootResponse,
        tags=["Root"],
        summary="Root endpoint",
        description="Get basic information about the API",
        operation_id="get_public_root_metadata",
    )
    async def root() -> RootResponse:
        return RootResponse(
            message="Server is running",
            version=app_settings.app_version,
            docs="/docs",
            health="/health",
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "veridicus.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
