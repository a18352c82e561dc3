"""FastAPI application factory.

This module builds the FastAPI application served by the service manager,
with the API routers, the RSS feed, the health endpoint and the error
handlers.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from topix import __version__
from topix.server.api.router import router as api_router
from topix.server.exceptions import (
    FetchInProgressError,
    PluginExecutionError,
    PluginNotEnabledError,
    PluginNotFoundError,
    TopixError,
)
from topix.server.models.common import ErrorResponse, HealthResponse
from topix.server.services.feed import build_rss

logger = logging.getLogger(__name__)

# Status codes for errors raised by the plugin runtime
ERROR_STATUS = {
    PluginNotFoundError: status.HTTP_404_NOT_FOUND,
    PluginNotEnabledError: status.HTTP_409_CONFLICT,
    FetchInProgressError: status.HTTP_409_CONFLICT,
    PluginExecutionError: status.HTTP_502_BAD_GATEWAY,
}


def _error_response(status_code: int, error: str, message: str, detail=None) -> JSONResponse:
    body = ErrorResponse(error=error, message=message, detail=detail)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def create_app(service) -> FastAPI:
    """Create the FastAPI application for a service.

    Args:
        service: Service manager whose components the endpoints use

    Returns:
        Configured FastAPI application
    """
    settings = service.settings
    app = FastAPI(
        title=settings.app_name,
        description="Personal headline aggregator",
        version=__version__,
        debug=settings.debug,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.service = service

    # Local UI runs on a different port
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost", "http://127.0.0.1"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    @app.get(
        "/health",
        response_model=HealthResponse,
        status_code=status.HTTP_200_OK,
        tags=["health"],
        summary="Health check endpoint",
    )
    async def health_check() -> HealthResponse:
        """Health check endpoint.

        Example:
            >>> GET /health
            >>> {"status": "healthy", "uptime": 12.5, "started_at": "2026-02-01T10:00:00Z"}
        """
        return HealthResponse(status="healthy", uptime=service.uptime, started_at=service.started_at)

    @app.get(
        "/feed.xml",
        tags=["feed"],
        summary="RSS feed",
        description="Returns the curated headlines as an RSS 2.0 document",
        response_class=Response,
    )
    async def rss_feed(request: Request) -> Response:
        feed = service.config_manager.get_feed_config()
        headlines = service.store.headlines.list_headlines(limit=feed["max_items"])
        xml = build_rss(headlines, feed, link=str(request.url))
        return Response(content=xml, media_type="application/rss+xml")

    @app.exception_handler(TopixError)
    async def topix_exception_handler(request: Request, exc: TopixError) -> JSONResponse:
        """Map service errors to HTTP status codes."""
        status_code = ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
        if status_code >= 500:
            logger.error(f"{type(exc).__name__} on {request.url.path}: {exc}")
        return _error_response(status_code, type(exc).__name__, str(exc))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled errors.

        Args:
            request: The request that caused the error
            exc: The exception that was raised

        Returns:
            JSON error response
        """
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return _error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "InternalServerError",
            "An unexpected error occurred",
            detail=str(exc) if settings.debug else None,
        )

    return app
