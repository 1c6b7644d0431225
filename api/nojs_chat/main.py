import logging
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from nojs_chat.chat.orchestrator import ChatOrchestrator
from nojs_chat.chat.service import ChatService
from nojs_chat.core.config import Settings, get_settings
from nojs_chat.core.errors import ChatError, PersistenceError, ValidationError
from nojs_chat.core.logging import setup_logging
from nojs_chat.core.ollama import OllamaClient
from nojs_chat.db.sqlite import connect, init_db
from nojs_chat.memory import store
from nojs_chat.web.render import STATIC_DIR, templates
from nojs_chat.web.routes import router

logger = logging.getLogger("api")

SECURITY_HEADERS = {
    "Content-Security-Policy": (
        "default-src 'self'; script-src 'none'; object-src 'none'; "
        "frame-ancestors 'none'; form-action 'self'; base-uri 'self'"
    ),
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "same-origin",
}


def wants_json(request: Request) -> bool:
    path = request.url.path
    if path.startswith("/api/") or path.startswith("/health"):
        return True
    accept = request.headers.get("accept", "")
    content_type = request.headers.get("content-type", "")
    return "application/json" in accept or "application/json" in content_type


def error_response(request: Request, message: str, status_code: int) -> Response:
    if wants_json(request):
        return JSONResponse(content={"success": False, "error": message}, status_code=status_code)
    theme = request.cookies.get("theme", "light")
    return templates.TemplateResponse(
        request, "error.html", {"error": message, "theme": theme}, status_code=status_code
    )


def create_app(
    settings: Optional[Settings] = None,
    ollama_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    app = FastAPI(
        title="No-JS AI Chat",
        version="1.0.0",
        description="Server-rendered chat UI for a local Ollama runtime.",
    )
    app.state.settings = settings
    app.state.ollama = OllamaClient(settings, transport=ollama_transport)
    app.include_router(router)
    app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")

    if settings.otel_enabled:
        from nojs_chat.observability.otel import setup_otel

        setup_otel(app, service_name=settings.otel_service_name)

    @app.on_event("startup")
    async def _startup() -> None:
        conn = connect(settings.sqlite_path)
        init_db(conn)
        app.state.conn = conn
        app.state.service = ChatService(conn, settings)
        app.state.orchestrator = ChatOrchestrator(app.state.service, app.state.ollama, settings)
        logger.info("sqlite initialized path=%s", settings.sqlite_path)

        expired = store.purge_expired(conn, settings.session_retention_days)
        if expired:
            logger.info("expired sessions purged count=%s retention_days=%s", expired, settings.session_retention_days)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        conn = getattr(app.state, "conn", None)
        if conn is not None:
            conn.close()

    @app.middleware("http")
    async def _security_headers(request: Request, call_next) -> Response:
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError) -> Response:
        return error_response(request, exc.message, 400)

    @app.exception_handler(PersistenceError)
    async def _persistence_error(request: Request, exc: PersistenceError) -> Response:
        logger.error("persistence error path=%s err=%s", request.url.path, exc)
        return error_response(request, "Database operation failed", 500)

    @app.exception_handler(ChatError)
    async def _chat_error(request: Request, exc: ChatError) -> Response:
        logger.error("unhandled chat error path=%s err=%s", request.url.path, exc)
        return error_response(request, exc.message, 500)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> Response:
        if exc.status_code == 404:
            logger.warning("404 method=%s path=%s", request.method, request.url.path)
            return error_response(request, "Page not found", 404)
        return error_response(request, str(exc.detail), exc.status_code)

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception) -> Response:
        logger.exception("unhandled error path=%s", request.url.path)
        message = "An unexpected error occurred" if settings.app_env == "production" else str(exc)
        return error_response(request, message, 500)

    return app


app = create_app()
