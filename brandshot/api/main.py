"""
FastAPI Application
==================

HTTP front end for the capture pipeline: request validation, response
mapping and static serving of stored screenshots.
"""

from contextlib import asynccontextmanager
import uuid
from typing import AsyncGenerator, Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
import uvicorn

from brandshot import __version__
from brandshot.config.settings import get_settings, Settings
from brandshot.config.logging import get_logger
from brandshot.core.errors import CaptureError, InvalidInput
from brandshot.core.pipeline import create_orchestrator
from brandshot.models.schemas import ErrorResponse

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings: Settings = app.state.settings
    logger.info(
        "Starting Brandshot",
        pool_size=settings.browser_pool_size,
        strategy=settings.compositing_strategy,
        variant=settings.delivery_variant,
    )

    try:
        orchestrator = create_orchestrator(settings, launcher=app.state.launcher)
    except CaptureError as e:
        logger.error("Invalid pipeline configuration", kind=e.kind, detail=e.detail)
        raise RuntimeError(f"Pipeline configuration invalid: {e.detail}")

    app.state.orchestrator = orchestrator

    try:
        yield
    finally:
        logger.info("Shutting down Brandshot")
        try:
            await orchestrator.pool.close()
        except Exception as e:
            logger.error("Error closing session pool", error=str(e))
        app.state.orchestrator = None


def create_app(settings: Optional[Settings] = None, launcher: Optional[Any] = None) -> FastAPI:
    """
    Application factory.

    Args:
        settings: Settings to use instead of the environment-derived ones
        launcher: Session launcher replacing Playwright, mainly for tests

    Returns:
        FastAPI application instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Capture web pages and brand them with a site overlay band",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.settings = settings
    app.state.launcher = launcher
    app.state.orchestrator = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_hosts,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_request_id(request: Request, call_next) -> Any:  # type: ignore
        """Add request ID to all requests."""
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    register_exception_handlers(app)

    from brandshot.api.routes.health import router as health_router
    from brandshot.api.routes.screenshot import router as screenshot_router

    app.include_router(health_router)
    app.include_router(screenshot_router)

    app.mount(
        settings.public_screenshots_prefix,
        StaticFiles(directory=str(settings.screenshots_path)),
        name="screenshots",
    )

    @app.get("/", tags=["General"])
    async def root() -> dict[str, Any]:
        """Root endpoint with basic API information."""
        return {
            "name": settings.app_name,
            "version": __version__,
            "health_check": "/api/health",
            "endpoints": {
                "screenshot": "POST /api/screenshot",
                "stored_screenshots": f"GET {settings.public_screenshots_prefix}/{{filename}}",
            },
        }

    return app


def _error_payload(
    request: Request, message: str, code: str, details: Optional[dict] = None
) -> dict[str, Any]:
    return ErrorResponse(
        error=message,
        error_code=code,
        details=details,
        request_id=getattr(request.state, "request_id", None),
    ).model_dump(mode="json")


def register_exception_handlers(app: FastAPI) -> None:
    """Map capture errors onto HTTP responses."""

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.warning("Malformed request body", errors=len(exc.errors()))
        return JSONResponse(
            status_code=400,
            content=_error_payload(
                request,
                "Request body must be a JSON object with targetUrl and label",
                InvalidInput.kind,
            ),
        )

    @app.exception_handler(InvalidInput)
    async def invalid_input_handler(request: Request, exc: InvalidInput) -> JSONResponse:
        logger.warning("Invalid capture request", detail=exc.detail)
        return JSONResponse(
            status_code=400, content=_error_payload(request, exc.detail, exc.kind)
        )

    @app.exception_handler(CaptureError)
    async def capture_error_handler(request: Request, exc: CaptureError) -> JSONResponse:
        """Pipeline-stage failures: one error with its kind and stage."""
        payload = _error_payload(request, exc.detail, exc.kind, {"stage": exc.stage})
        logger.error(
            "Capture error",
            error_code=exc.kind,
            stage=exc.stage,
            request_id=payload["request_id"],
        )
        return JSONResponse(status_code=500, content=payload)

    @app.exception_handler(HTTPException)
    async def custom_http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Custom HTTP exception handler with structured error response."""
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(request, str(exc.detail), str(exc.status_code)),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """General exception handler for unexpected errors."""
        settings: Settings = request.app.state.settings
        logger.error("Unhandled exception", exception=str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content=_error_payload(
                request,
                "Internal server error",
                "internal_error",
                {"exception": str(exc)} if settings.debug else None,
            ),
        )


app = create_app()


def run_development_server() -> None:
    """Run development server with auto-reload."""
    settings = get_settings()
    uvicorn.run(
        "brandshot.api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=True,
    )


if __name__ == "__main__":
    run_development_server()
