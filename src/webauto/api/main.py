"""
FastAPI application for webauto.

Provides REST endpoints for navigation, content extraction, page actions and
session management on top of AutomationService.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from webauto import __version__
from webauto.config import WebAutoConfig, load_config
from webauto.errors import (
    AutomationError,
    BackendInitFailed,
    CapacityExceeded,
    ElementNotFound,
    InvalidSelector,
    OperationTimeout,
)
from webauto.extraction.engine import ContentType
from webauto.service import AutomationService

logger = structlog.get_logger(__name__)

DEFAULT_CLIENT_ID = "default"

# Most specific first.
ERROR_STATUS_CODES: tuple[tuple[type[AutomationError], int], ...] = (
    (CapacityExceeded, 429),
    (InvalidSelector, 400),
    (ElementNotFound, 404),
    (BackendInitFailed, 503),
    (OperationTimeout, 504),
)


class NavigateRequest(BaseModel):
    """Request to load a URL in a client's page."""

    url: str = Field(min_length=1)
    client_id: str = DEFAULT_CLIENT_ID
    wait_for_load: bool = True
    wait_for_selector: str | None = None


class ClickRequest(BaseModel):
    """Request to click an element."""

    selector: str = Field(min_length=1)
    client_id: str = DEFAULT_CLIENT_ID
    wait_for_navigation: bool = False


class InputRequest(BaseModel):
    """Request to type text into an element."""

    selector: str = Field(min_length=1)
    text: str
    client_id: str = DEFAULT_CLIENT_ID
    clear: bool = True
    delay_ms: int | None = Field(default=None, ge=0, le=1000)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    version: str
    sessions: int
    max_sessions: int
    backend_initialized: bool


class AppState:
    """Application state container."""

    service: AutomationService | None = None


def status_code_for(error: AutomationError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 502


def create_app(
    config: WebAutoConfig | None = None,
    service: AutomationService | None = None,
) -> FastAPI:
    """
    Create FastAPI application.

    Args:
        config: Configuration, loaded from file and environment if omitted
        service: Prebuilt service; built from config on startup if omitted
    """
    config = service.config if service is not None else (config or load_config())
    state = AppState()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan management."""
        log = logger.bind(component="api")
        log.info("Starting webauto API server")

        state.service = service or AutomationService(config)

        yield

        log.info("Shutting down webauto API server")
        await state.service.shutdown()
        state.service = None

    app = FastAPI(
        title="webauto",
        description="Pooled browser sessions with resilient content extraction",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.server.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AutomationError)
    async def automation_error_handler(request: Request, exc: AutomationError) -> JSONResponse:
        status_code = status_code_for(exc)
        logger.warning(
            "Request failed",
            path=request.url.path,
            status_code=status_code,
            error=exc.message,
            error_type=type(exc).__name__,
        )
        return JSONResponse(
            status_code=status_code,
            content={"success": False, **exc.to_dict()},
        )

    def get_service() -> AutomationService:
        if state.service is None:
            raise HTTPException(status_code=503, detail="Automation service not available")
        return state.service

    @app.get("/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        pool = get_service().get_all_statuses()
        return HealthResponse(
            status="ok",
            timestamp=datetime.now(UTC),
            version=__version__,
            sessions=pool.total_sessions,
            max_sessions=pool.max_sessions,
            backend_initialized=pool.backend_initialized,
        )

    @app.post("/api/navigate")
    async def navigate(request: NavigateRequest) -> dict[str, Any]:
        """Load a URL in the client's page."""
        result = await get_service().navigate(
            request.client_id,
            request.url,
            wait_for_load=request.wait_for_load,
            wait_for_selector=request.wait_for_selector,
        )
        return {"success": True, "data": result.to_dict()}

    @app.get("/api/content")
    async def extract_content(
        client_id: str = Query(DEFAULT_CLIENT_ID),
        selector: str = Query("body", min_length=1),
        content_type: ContentType = Query(ContentType.TEXT, alias="type"),
        timeout: int | None = Query(None, ge=1, description="Timeout in milliseconds"),
        wait_for_content: bool | None = Query(None),
        retry_attempts: int | None = Query(None, ge=1),
        min_length: int | None = Query(None, ge=0),
        fallback_selectors: list[str] | None = Query(None),
    ) -> dict[str, Any]:
        """Extract content, falling back to a page summary when nothing matches."""
        result = await get_service().extract_content(
            client_id,
            selector,
            content_type,
            timeout_ms=timeout,
            wait_for_content=wait_for_content,
            retry_attempts=retry_attempts,
            min_length=min_length,
            fallback_selectors=fallback_selectors or (),
        )
        return {"success": True, "data": result.to_dict()}

    @app.post("/api/click")
    async def click(request: ClickRequest) -> dict[str, Any]:
        """Click an element."""
        result = await get_service().click_element(
            request.client_id,
            request.selector,
            wait_for_navigation=request.wait_for_navigation,
        )
        return {"success": True, "data": result.to_dict()}

    @app.post("/api/input")
    async def input_text(request: InputRequest) -> dict[str, Any]:
        """Type text into an element."""
        result = await get_service().input_text(
            request.client_id,
            request.selector,
            request.text,
            clear=request.clear,
            delay_ms=request.delay_ms,
        )
        return {"success": True, "data": result.to_dict()}

    @app.get("/api/screenshot")
    async def screenshot(
        client_id: str = Query(DEFAULT_CLIENT_ID),
        full_page: bool = Query(True),
        element: str | None = Query(None),
        image_format: str = Query("png", alias="format", pattern="^(png|jpeg|jpg)$"),
        quality: int | None = Query(None, ge=0, le=100),
    ) -> Response:
        """Capture the page or one element as an image."""
        result = await get_service().take_screenshot(
            client_id,
            full_page=full_page,
            element=element,
            image_format=image_format,
            quality=quality,
        )
        media_type = "image/png" if result.image_format == "png" else "image/jpeg"
        return Response(
            content=result.data,
            media_type=media_type,
            headers={
                "X-Screenshot-Width": str(result.width),
                "X-Screenshot-Height": str(result.height),
                "X-Screenshot-Timestamp": result.timestamp.isoformat(),
            },
        )

    @app.get("/api/sessions")
    async def list_sessions() -> dict[str, Any]:
        """Get the status of every client session."""
        return get_service().get_all_statuses().to_dict()

    @app.get("/api/sessions/{client_id}")
    async def get_session(client_id: str) -> dict[str, Any]:
        """Get one client session."""
        status = get_service().get_status(client_id)
        if status is None:
            raise HTTPException(status_code=404, detail=f"Session not found: {client_id}")
        return status.to_dict()

    @app.delete("/api/sessions/{client_id}")
    async def close_session(client_id: str) -> dict[str, Any]:
        """Release a client session."""
        if not await get_service().close_client(client_id):
            raise HTTPException(status_code=404, detail=f"Session not found: {client_id}")
        return {"status": "closed", "client_id": client_id}

    return app


def run_server(
    config: WebAutoConfig | None = None,
    host: str | None = None,
    port: int | None = None,
) -> None:
    """Run the API server."""
    import uvicorn

    config = config or load_config()
    uvicorn.run(
        create_app(config),
        host=host or config.server.host,
        port=port or config.server.port,
    )


if __name__ == "__main__":
    run_server()
