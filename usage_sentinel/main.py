from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Sequence

from fastapi import FastAPI, Request
from fastapi.exception_handlers import (
    http_exception_handler,
    request_validation_exception_handler,
)
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from usage_sentinel.core.clients.http import close_http_client, init_http_client
from usage_sentinel.core.config.settings import get_settings
from usage_sentinel.core.config.startup_log import log_startup_config
from usage_sentinel.core.errors import dashboard_error
from usage_sentinel.core.notifications.delivery import Notifier
from usage_sentinel.core.sources.base import UsageSource
from usage_sentinel.db.session import SessionLocal, close_db, init_db
from usage_sentinel.modules.health import api as health_api
from usage_sentinel.modules.metrics import api as metrics_api
from usage_sentinel.modules.refresh import api as refresh_api
from usage_sentinel.modules.settings import api as settings_api
from usage_sentinel.modules.sources import api as sources_api
from usage_sentinel.runtime import build_runtime, prepare_runtime

logger = logging.getLogger(__name__)


def _build_lifespan(
    *,
    sources: Sequence[UsageSource] | None,
    notifier: Notifier | None,
):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings = get_settings()
        log_startup_config()

        session_factory = SessionLocal
        try:
            await init_db()
        except (RuntimeError, SQLAlchemyError, OSError):
            logger.error("Database unavailable; settings and history will not persist", exc_info=True)
            session_factory = None
        app.state.persistence = session_factory is not None

        await init_http_client()
        runtime = build_runtime(settings, session_factory=session_factory, sources=sources, notifier=notifier)
        await prepare_runtime(runtime, settings)
        app.state.runtime = runtime
        await runtime.scheduler.start()

        try:
            yield
        finally:
            try:
                await runtime.scheduler.stop()
                await close_http_client()
            finally:
                await close_db()

    return lifespan


def create_app(
    *,
    sources: Sequence[UsageSource] | None = None,
    notifier: Notifier | None = None,
) -> FastAPI:
    app = FastAPI(
        title="usage-sentinel",
        version="0.1.0",
        lifespan=_build_lifespan(sources=sources, notifier=notifier),
    )

    @app.middleware("http")
    async def api_unhandled_error_middleware(request: Request, call_next) -> Response:
        try:
            return await call_next(request)
        except Exception:
            if request.url.path.startswith("/api/"):
                logger.exception("Unhandled API error path=%s", request.url.path)
                return JSONResponse(
                    status_code=500,
                    content=dashboard_error("internal_error", "Unexpected error"),
                )
            raise

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> Response:
        if request.url.path.startswith("/api/"):
            return JSONResponse(
                status_code=422,
                content=dashboard_error("validation_error", "Invalid request payload"),
            )
        return await request_validation_exception_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error_handler(
        request: Request,
        exc: StarletteHTTPException,
    ) -> Response:
        if request.url.path.startswith("/api/"):
            detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
            return JSONResponse(
                status_code=exc.status_code,
                content=dashboard_error(f"http_{exc.status_code}", detail),
            )
        return await http_exception_handler(request, exc)

    app.include_router(sources_api.router)
    app.include_router(settings_api.router)
    app.include_router(refresh_api.router)
    app.include_router(metrics_api.router)
    app.include_router(health_api.router)

    return app


app = create_app()
