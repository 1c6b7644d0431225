from __future__ import annotations

import logging
import re
from datetime import timedelta
from typing import Any, Dict, List, Optional

from nojs_chat.core.config import Settings
from nojs_chat.core.validation import (
    validate_message,
    validate_model_name,
    validate_role,
    validate_session_id,
    validate_system_prompt,
)
from nojs_chat.memory import store
from nojs_chat.schemas.session import (
    Chat,
    Message,
    MessageCounts,
    SessionStats,
    SessionSummary,
)

logger = logging.getLogger("chat_service")

PREVIEW_LENGTH = 50
NEW_CHAT_PREVIEW = "New chat"

_WS_RE = re.compile(r"\s+")


def session_preview(messages: List[Message]) -> str:
    first_user = next((m for m in messages if m.role == "user"), None)
    if first_user is None:
        return NEW_CHAT_PREVIEW

    full = first_user.content.strip()
    preview = _WS_RE.sub(" ", full)[:PREVIEW_LENGTH]
    return preview + "..." if len(preview) < len(full) else preview


def count_by_role(messages: List[Message]) -> MessageCounts:
    counts = MessageCounts()
    for m in messages:
        if m.role == "user":
            counts.user += 1
        else:
            counts.assistant += 1
        counts.total += 1
    return counts


class ChatService:
    """
    Validation and mutation of chat sessions. Every public method validates
    the session id before touching the store.
    """

    def __init__(self, conn, settings: Settings) -> None:
        self.conn = conn
        self.settings = settings

    def _check_id(self, session_id: Any) -> str:
        return validate_session_id(
            session_id,
            self.settings.min_session_id_length,
            self.settings.max_session_id_length,
        )

    def _normalize_on_load(self, row: Dict[str, Any]) -> Chat:
        """
        Sessions stored before model selection existed have no model;
        back-fill the default once.
        """
        if not row.get("selected_model"):
            row["selected_model"] = self.settings.default_model
            if store.set_selected_model_if_missing(self.conn, row["session_id"], row["selected_model"]):
                logger.info(
                    "backfilled selected_model session=%s model=%s",
                    row["session_id"],
                    row["selected_model"],
                )
        return Chat(**row)

    def _load(self, session_id: str) -> Optional[Chat]:
        row = store.get_chat(self.conn, session_id)
        return self._normalize_on_load(row) if row else None

    def get_or_create(self, session_id: Any) -> Chat:
        session_id = self._check_id(session_id)

        chat = self._load(session_id)
        if chat is None:
            store.insert_chat(self.conn, session_id, selected_model=self.settings.default_model)
            logger.debug("created chat session=%s", session_id)
            chat = self._load(session_id)
        return chat

    def get_history(self, session_id: Any) -> List[Message]:
        session_id = self._check_id(session_id)
        chat = self._load(session_id)
        return chat.messages if chat else []

    def get_session(self, session_id: Any) -> Optional[Chat]:
        """Like get_or_create, but a missing session stays missing."""
        return self._load(self._check_id(session_id))

    def append_message(self, session_id: Any, role: Any, content: Any, create: bool = True) -> Optional[Chat]:
        """
        With create=False the message is dropped (None is returned) if the
        session no longer exists, e.g. it was deleted mid-completion.
        """
        session_id = self._check_id(session_id)
        role = validate_role(role)
        max_length = (
            self.settings.max_message_length if role == "user" else self.settings.max_response_length
        )
        content = validate_message(content, max_length=max_length, check_unsafe=False)

        if create:
            self.get_or_create(session_id)
        if store.append_message(self.conn, session_id, role, content) is None:
            logger.warning("dropped message for missing session=%s role=%s", session_id, role)
            return None
        logger.debug("appended message session=%s role=%s chars=%s", session_id, role, len(content))
        return self._load(session_id)

    def update_system_prompt(self, session_id: Any, prompt: Any) -> Chat:
        session_id = self._check_id(session_id)
        prompt = validate_system_prompt(prompt, self.settings.max_system_prompt_length)

        self.get_or_create(session_id)
        store.update_chat_fields(self.conn, session_id, system_prompt=prompt)
        logger.info("system prompt updated session=%s chars=%s", session_id, len(prompt))
        return self._load(session_id)

    def update_selected_model(self, session_id: Any, model_name: Any, create: bool = True) -> Optional[Chat]:
        """Persists the choice only; availability is checked by the caller."""
        session_id = self._check_id(session_id)
        model_name = validate_model_name(model_name)

        if create:
            self.get_or_create(session_id)
        if not store.update_chat_fields(self.conn, session_id, selected_model=model_name):
            logger.warning("selected model not stored, missing session=%s", session_id)
            return None
        logger.info("selected model updated session=%s model=%s", session_id, model_name)
        return self._load(session_id)

    def list_sessions(self, limit: int = 100, skip: int = 0) -> List[SessionSummary]:
        limit = max(1, min(int(limit), 100))
        skip = max(0, int(skip))

        summaries: List[SessionSummary] = []
        for row in store.list_chats(self.conn, limit=limit, skip=skip):
            messages = [Message(**m) for m in row["messages"]]
            summaries.append(
                SessionSummary(
                    session_id=row["session_id"],
                    message_count=len(messages),
                    message_counts=count_by_role(messages),
                    preview=session_preview(messages),
                    last_message=messages[-1] if messages else None,
                    messages=messages,
                    created_at=row["created_at"],
                    updated_at=row["updated_at"],
                )
            )
        return summaries

    def delete_session(self, session_id: Any) -> bool:
        session_id = self._check_id(session_id)
        deleted = store.delete_chat(self.conn, session_id)
        if deleted:
            logger.info("deleted chat session=%s", session_id)
        else:
            logger.warning("delete of unknown chat session=%s", session_id)
        return deleted

    def clear_session(self, session_id: Any) -> Chat:
        session_id = self._check_id(session_id)
        self.get_or_create(session_id)
        store.clear_messages(self.conn, session_id)
        logger.info("cleared chat session=%s", session_id)
        return self._load(session_id)

    def get_session_stats(self, session_id: Any) -> Optional[SessionStats]:
        session_id = self._check_id(session_id)
        chat = self._load(session_id)
        if chat is None:
            return None

        counts = count_by_role(chat.messages)
        return SessionStats(
            session_id=chat.session_id,
            total_messages=counts.total,
            user_messages=counts.user,
            assistant_messages=counts.assistant,
            total_characters=sum(len(m.content) for m in chat.messages),
            created_at=chat.created_at,
            updated_at=chat.updated_at,
        )

    def cleanup_old_sessions(self, days_old: int = 7) -> int:
        days_old = max(1, int(days_old))
        cutoff = store.utc_now() - timedelta(days=days_old)

        if store.count_chats_older_than(self.conn, cutoff) == 0:
            logger.info("cleanup found no sessions older than days=%s", days_old)
            return 0

        deleted = store.delete_chats_older_than(self.conn, cutoff)
        logger.info("cleaned up old sessions count=%s days=%s", deleted, days_old)
        return deleted
