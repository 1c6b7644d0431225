from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from nojs_chat.chat.service import ChatService
from nojs_chat.core.config import Settings
from nojs_chat.core.errors import AIError, ChatError, PersistenceError, ValidationError
from nojs_chat.core.ollama import NO_MODELS_TEXT, OllamaClient, find_model
from nojs_chat.core.validation import (
    SESSION_INVALID,
    generate_session_id,
    is_valid_session_id,
    validate_message,
)
from nojs_chat.schemas.session import Chat, SessionSummary
from nojs_chat.web.render import render_messages

logger = logging.getLogger("orchestrator")

FAILURE_REPLY = "Sorry, I encountered an error processing your request. Please try again."
LOADING_ANCHOR = "loading-anchor"


@dataclass
class Render:
    view: str
    context: Dict[str, Any]
    status_code: int = 200
    schedule_completion: bool = False


@dataclass
class Redirect:
    url: str


PageResult = Union[Render, Redirect]


def session_url(session_id: str) -> str:
    return f"/?session={session_id}"


def parse_count(raw: Any) -> int:
    try:
        return max(0, int(raw))
    except (TypeError, ValueError):
        return 0


def sessions_for_sidebar(sessions: List[SessionSummary]) -> List[Dict[str, Any]]:
    return [s.model_dump(exclude={"messages"}) for s in sessions]


@dataclass
class _SessionLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    pending: int = 0


class ChatOrchestrator:
    """
    Drives the no-JS page/poll cycle.

    There is no stored "processing" status: every request derives it from the
    message count and the role of the last message.
    """

    def __init__(self, service: ChatService, ollama: OllamaClient, settings: Settings) -> None:
        self.service = service
        self.ollama = ollama
        self.settings = settings
        self._locks: Dict[str, _SessionLock] = {}

    def _valid_id(self, session_id: Any) -> bool:
        return is_valid_session_id(
            session_id,
            self.settings.min_session_id_length,
            self.settings.max_session_id_length,
        )

    # --- model fallback ---------------------------------------------------

    async def reconcile_model(self, chat: Chat, available: List[str]) -> str:
        """
        Returns the model to show for this render. When the stored choice is
        no longer in the directory, the first available model is substituted
        and persisted so the next render is a no-op.
        """
        selected = chat.selected_model or self.settings.default_model
        if not available:
            return selected
        listed = find_model(selected, available)
        if listed:
            return listed

        fallback = available[0]
        logger.info(
            "model fallback session=%s stored=%s fallback=%s",
            chat.session_id,
            selected,
            fallback,
        )
        try:
            self.service.update_selected_model(chat.session_id, fallback, create=False)
            chat.selected_model = fallback
        except ChatError as e:
            logger.warning("model fallback not persisted session=%s err=%s", chat.session_id, e)
        return fallback

    # --- render helpers ---------------------------------------------------

    def _base_context(self, theme: str) -> Dict[str, Any]:
        return {
            "theme": theme,
            "error": None,
            "is_loading": False,
            "pending_message": None,
            "is_processing": False,
            "response_complete": False,
            "no_sessions": False,
            "message_count_before_ai": None,
            "expected_message_count": None,
            "scroll_to_anchor": None,
            "poll_interval_s": self.settings.poll_interval_s,
            "max_message_length": self.settings.max_message_length,
            "max_system_prompt_length": self.settings.max_system_prompt_length,
        }

    async def _chat_render(
        self,
        chat: Chat,
        sessions: List[SessionSummary],
        theme: str,
        error: Optional[str] = None,
        is_loading: bool = False,
        pending_message: Optional[str] = None,
    ) -> Render:
        available = await self.ollama.list_model_names()
        selected = await self.reconcile_model(chat, available)

        ctx = self._base_context(theme)
        ctx.update(
            {
                "session_id": chat.session_id,
                "current_session_id": chat.session_id,
                "messages": render_messages(chat.messages),
                "error": error,
                "is_loading": is_loading,
                "pending_message": pending_message,
                "sessions": sessions_for_sidebar(sessions),
                "system_prompt": chat.system_prompt or "",
                "available_models": available,
                "selected_model": selected,
            }
        )
        return Render("chat", ctx)

    async def _empty_render(self, theme: str) -> Render:
        ctx = self._base_context(theme)
        ctx.update(
            {
                "session_id": None,
                "current_session_id": None,
                "messages": [],
                "sessions": [],
                "system_prompt": "",
                "no_sessions": True,
                "available_models": await self.ollama.list_model_names(),
                "selected_model": self.settings.default_model,
            }
        )
        return Render("chat", ctx)

    def error_page(self, message: str, theme: str, status_code: int = 500) -> Render:
        return Render("error", {"error": message, "theme": theme}, status_code=status_code)

    def _bare_chat_error(self, session_id: Any, message: str, theme: str) -> Render:
        """Inline error without touching the store (the id itself is bad)."""
        ctx = self._base_context(theme)
        ctx.update(
            {
                "session_id": session_id,
                "current_session_id": session_id,
                "messages": [],
                "sessions": [],
                "system_prompt": "",
                "available_models": [],
                "selected_model": self.settings.default_model,
                "error": message,
            }
        )
        return Render("chat", ctx, status_code=400)

    async def _inline_error(self, session_id: str, message: str, theme: str) -> Render:
        """
        Re-renders the chat with an error so the user keeps their place.
        A store failure while doing so falls back to the error page.
        """
        try:
            chat = self.service.get_or_create(session_id)
            sessions = self.service.list_sessions()
        except ChatError as e:
            logger.error("could not build error view session=%s err=%s", session_id, e)
            return self.error_page("Database operation failed", theme)
        render = await self._chat_render(chat, sessions, theme, error=message)
        render.status_code = 400
        return render

    # --- Idle ---------------------------------------------------------------

    async def home(self, session_id: Optional[str], theme: str) -> PageResult:
        sessions = self.service.list_sessions()

        if not session_id:
            if sessions:
                return Redirect(session_url(sessions[0].session_id))
            return await self._empty_render(theme)

        if not self._valid_id(session_id):
            return Redirect(session_url(generate_session_id()))

        try:
            chat = self.service.get_or_create(session_id)
        except PersistenceError as e:
            logger.error("failed to load chat session=%s err=%s", session_id, e)
            return self.error_page("Failed to load chat session", theme)

        # a session created just now is not in the sidebar list yet
        if not any(s.session_id == session_id for s in sessions):
            sessions = self.service.list_sessions()

        logger.debug("render chat session=%s messages=%s", session_id, len(chat.messages))
        return await self._chat_render(chat, sessions, theme)

    # --- UserMessageJustPosted ---------------------------------------------

    async def post_message(self, session_id: Any, message: Any, theme: str) -> Render:
        if not self._valid_id(session_id):
            return self._bare_chat_error(session_id, SESSION_INVALID, theme)

        try:
            content = validate_message(message, self.settings.max_message_length)
        except ValidationError as e:
            return await self._inline_error(session_id, e.message, theme)

        try:
            chat = self.service.append_message(session_id, "user", content)
            sessions = self.service.list_sessions()
        except ValidationError as e:
            return await self._inline_error(session_id, e.message, theme)
        except PersistenceError as e:
            logger.error("failed to store user message session=%s err=%s", session_id, e)
            return self.error_page("An error occurred while processing your message", theme)

        render = await self._chat_render(chat, sessions, theme, is_loading=True, pending_message=content)
        render.context.update(
            {
                "is_processing": True,
                "scroll_to_anchor": LOADING_ANCHOR,
                "message_count_before_ai": len(chat.messages),
                "expected_message_count": len(chat.messages),
            }
        )
        render.schedule_completion = True
        logger.info("user message stored session=%s count=%s", session_id, len(chat.messages))
        return render

    # --- Polling / Complete -------------------------------------------------

    async def check_response(self, session_id: Any, count: Any, theme: str) -> Render:
        if not self._valid_id(session_id):
            return self.error_page(SESSION_INVALID, theme, status_code=400)

        try:
            chat = self.service.get_or_create(session_id)
            sessions = self.service.list_sessions()
        except PersistenceError as e:
            logger.error("check response failed session=%s err=%s", session_id, e)
            return self.error_page("Error checking response status", theme)

        expected = parse_count(count)
        current = len(chat.messages)
        last = chat.last_message
        has_ai_response = last is not None and last.role == "assistant"
        has_new_message = current > expected if expected > 0 else True

        logger.debug(
            "check response session=%s expected=%s current=%s has_ai=%s has_new=%s",
            session_id,
            expected,
            current,
            has_ai_response,
            has_new_message,
        )

        if has_ai_response and has_new_message:
            render = await self._chat_render(chat, sessions, theme)
            render.context["response_complete"] = True
            return render

        render = await self._chat_render(chat, sessions, theme, is_loading=True)
        render.context.update(
            {
                "is_processing": True,
                "scroll_to_anchor": LOADING_ANCHOR,
                "expected_message_count": expected or current,
                "message_count_before_ai": max(expected, current - 1),
            }
        )
        return render

    # --- background completion ---------------------------------------------

    def is_generating(self, session_id: str) -> bool:
        entry = self._locks.get(session_id)
        return entry is not None and entry.lock.locked()

    async def run_completion(self, session_id: str) -> None:
        """
        Runs after the POST response has been sent. Completions for the same
        session are queued behind one lock. Always appends exactly one
        assistant message, a failure apology if nothing else.
        """
        entry = self._locks.setdefault(session_id, _SessionLock())
        entry.pending += 1
        try:
            async with entry.lock:
                await self._complete_once(session_id)
        finally:
            entry.pending -= 1
            if entry.pending == 0:
                self._locks.pop(session_id, None)

    async def _complete_once(self, session_id: str) -> None:
        """The session may be deleted at any await; nothing here recreates it."""
        try:
            chat = self.service.get_session(session_id)
            if chat is None:
                logger.info("completion skipped, session gone session=%s", session_id)
                return
            available = await self.ollama.list_model_names()
            model = await self.reconcile_model(chat, available)
            reply = await self.ollama.complete(chat.messages, model, chat.system_prompt or "")
            reply = reply[: self.settings.max_response_length]
            if self.service.append_message(session_id, "assistant", reply, create=False) is not None:
                logger.info("ai response stored session=%s model=%s chars=%s", session_id, model, len(reply))
            return
        except AIError as e:
            logger.error("completion failed session=%s kind=%s err=%s", session_id, e.kind, e.message)
            failure_text = f"{FAILURE_REPLY}\n\n{e.message}"
        except Exception:
            logger.exception("background completion failed session=%s", session_id)
            failure_text = FAILURE_REPLY

        try:
            self.service.append_message(session_id, "assistant", failure_text, create=False)
        except Exception:
            logger.exception("could not store failure reply session=%s", session_id)

    # --- settings forms -----------------------------------------------------

    async def update_system_prompt(self, session_id: Any, prompt: Any, theme: str) -> PageResult:
        if not self._valid_id(session_id):
            return self.error_page(SESSION_INVALID, theme, status_code=400)

        try:
            self.service.update_system_prompt(session_id, prompt or "")
        except ValidationError as e:
            return await self._inline_error(session_id, e.message, theme)
        except PersistenceError as e:
            logger.error("system prompt update failed session=%s err=%s", session_id, e)
            return self.error_page("Failed to update system prompt", theme)
        return Redirect(session_url(session_id))

    async def select_model(self, session_id: Any, model: Any, theme: str) -> PageResult:
        """Unlike ChatService.update_selected_model, availability is enforced here."""
        if not self._valid_id(session_id):
            return self.error_page(SESSION_INVALID, theme, status_code=400)

        name = model.strip() if isinstance(model, str) else ""
        if not name:
            return await self._inline_error(session_id, "Please choose a model", theme)

        available = await self.ollama.list_model_names()
        if not available:
            return await self._inline_error(
                session_id, NO_MODELS_TEXT.format(model=self.settings.default_model), theme
            )
        listed = find_model(name, available)
        if listed is None:
            return await self._inline_error(
                session_id,
                f"Model '{name}' is not available. Available models: {', '.join(available)}",
                theme,
            )

        try:
            self.service.update_selected_model(session_id, listed)
        except ValidationError as e:
            return await self._inline_error(session_id, e.message, theme)
        except PersistenceError as e:
            logger.error("model update failed session=%s err=%s", session_id, e)
            return self.error_page("Failed to update model selection", theme)
        return Redirect(session_url(session_id))

    async def delete_session(self, session_id: Any, theme: str) -> PageResult:
        if not self._valid_id(session_id):
            return self.error_page(SESSION_INVALID, theme, status_code=400)

        if self.is_generating(session_id):
            logger.warning("deleting session with completion in flight session=%s, reply will be dropped", session_id)

        try:
            deleted = self.service.delete_session(session_id)
            if not deleted:
                return self.error_page("Session not found or could not be deleted.", theme, status_code=404)
            remaining = self.service.list_sessions(limit=1)
        except PersistenceError as e:
            logger.error("delete failed session=%s err=%s", session_id, e)
            return self.error_page("Failed to delete session", theme)

        if remaining:
            return Redirect(session_url(remaining[0].session_id))
        return await self._empty_render(theme)
