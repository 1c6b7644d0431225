from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Cookie, Form, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response

from nojs_chat.chat.orchestrator import ChatOrchestrator, PageResult, Redirect, sessions_for_sidebar
from nojs_chat.chat.service import ChatService
from nojs_chat.core.validation import generate_session_id
from nojs_chat.memory import store
from nojs_chat.schemas.chat import HealthResponse
from nojs_chat.web.render import templates

logger = logging.getLogger("api")

router = APIRouter()

THEMES = ("light", "dark")
THEME_COOKIE_MAX_AGE = 365 * 24 * 60 * 60


def _orchestrator(request: Request) -> ChatOrchestrator:
    return request.app.state.orchestrator


def _service(request: Request) -> ChatService:
    return request.app.state.service


def _theme(raw: Optional[str]) -> str:
    return raw if raw in THEMES else "light"


def to_response(request: Request, result: PageResult) -> Response:
    if isinstance(result, Redirect):
        return RedirectResponse(result.url, status_code=303)
    return templates.TemplateResponse(
        request,
        f"{result.view}.html",
        result.context,
        status_code=result.status_code,
    )


@router.get("/")
async def home(request: Request, session: Optional[str] = None, theme: Optional[str] = Cookie(None)) -> Response:
    result = await _orchestrator(request).home(session, _theme(theme))
    return to_response(request, result)


@router.get("/new")
async def new_session() -> Response:
    return RedirectResponse(f"/?session={generate_session_id()}", status_code=303)


@router.post("/chat")
async def post_chat(
    request: Request,
    background: BackgroundTasks,
    message: Optional[str] = Form(None),
    sessionId: Optional[str] = Form(None),
    theme: Optional[str] = Cookie(None),
) -> Response:
    orchestrator = _orchestrator(request)
    result = await orchestrator.post_message(sessionId, message, _theme(theme))
    if result.schedule_completion:
        # runs once the processing page has been sent
        background.add_task(orchestrator.run_completion, sessionId)
    return to_response(request, result)


@router.get("/check-response/{session_id}")
async def check_response(
    request: Request,
    session_id: str,
    count: Optional[str] = None,
    theme: Optional[str] = Cookie(None),
) -> Response:
    result = await _orchestrator(request).check_response(session_id, count, _theme(theme))
    return to_response(request, result)


@router.post("/system-prompt")
async def system_prompt(
    request: Request,
    sessionId: Optional[str] = Form(None),
    systemPrompt: Optional[str] = Form(None),
    theme: Optional[str] = Cookie(None),
) -> Response:
    result = await _orchestrator(request).update_system_prompt(sessionId, systemPrompt, _theme(theme))
    return to_response(request, result)


@router.post("/model-selection")
async def model_selection(
    request: Request,
    sessionId: Optional[str] = Form(None),
    selectedModel: Optional[str] = Form(None),
    theme: Optional[str] = Cookie(None),
) -> Response:
    result = await _orchestrator(request).select_model(sessionId, selectedModel, _theme(theme))
    return to_response(request, result)


@router.post("/sessions/{session_id}/delete")
async def delete_session(request: Request, session_id: str, theme: Optional[str] = Cookie(None)) -> Response:
    result = await _orchestrator(request).delete_session(session_id, _theme(theme))
    return to_response(request, result)


@router.post("/toggle-theme")
async def toggle_theme(
    request: Request,
    returnUrl: Optional[str] = Form(None),
    theme: Optional[str] = Cookie(None),
) -> Response:
    new_theme = "light" if _theme(theme) == "dark" else "dark"
    # only same-site relative targets
    target = returnUrl if returnUrl and returnUrl.startswith("/") and not returnUrl.startswith("//") else "/"

    resp = RedirectResponse(target, status_code=303)
    resp.set_cookie(
        "theme",
        new_theme,
        max_age=THEME_COOKIE_MAX_AGE,
        httponly=True,
        secure=request.app.state.settings.app_env == "production",
        samesite="strict",
    )
    return resp


@router.get("/api/sessions")
async def api_sessions(request: Request, limit: int = 100, skip: int = 0) -> Dict[str, Any]:
    sessions = _service(request).list_sessions(limit=limit, skip=skip)
    return {"success": True, "data": sessions_for_sidebar(sessions)}


@router.get("/health")
async def health(request: Request) -> JSONResponse:
    ollama = _orchestrator(request).ollama
    db_ok = store.ping(request.app.state.conn)

    ollama_status = await ollama.health_check()
    models: List[str] = []
    if ollama_status == "connected":
        models = await ollama.list_model_names()

    payload = HealthResponse(
        status="ok",
        database="connected" if db_ok else "disconnected",
        ollama=ollama_status,
        availableModels=models,
        timestamp=store.utc_now_iso(),
    )
    logger.info("health database=%s ollama=%s models=%s", payload.database, ollama_status, len(models))
    return JSONResponse(content=payload.model_dump())


@router.get("/health/ollama")
async def health_ollama(request: Request) -> JSONResponse:
    ollama = _orchestrator(request).ollama
    status, models = await asyncio.gather(ollama.health_check(), ollama.list_model_names())
    if status != "connected":
        return JSONResponse(content={"success": False, "error": "Ollama service unavailable"}, status_code=503)
    return JSONResponse(content={"success": True, "data": {"status": status, "models": models}})
