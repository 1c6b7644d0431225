from __future__ import annotations

import re
import secrets
import string
from typing import Any, Pattern

from nojs_chat.core.errors import ValidationError

SESSION_INVALID = "Invalid session format."
MESSAGE_REQUIRED = "Message is required"
MESSAGE_EMPTY = "Please enter a message"
MESSAGE_TOO_LONG = "Message too long. Please keep it under {max_length} characters."
MESSAGE_UNSAFE = "Message contains potentially unsafe content."

ROLES = ("user", "assistant")

_SUSPICIOUS_PATTERNS = [
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
    re.compile(r"onload=", re.IGNORECASE),
    re.compile(r"onerror=", re.IGNORECASE),
    re.compile(r"onclick=", re.IGNORECASE),
    re.compile(r"eval\(", re.IGNORECASE),
    re.compile(r"expression\(", re.IGNORECASE),
]

_MODEL_NAME_RE = re.compile(r"^[a-zA-Z0-9._:-]+$")
_SESSION_ID_CHARS = string.ascii_letters + string.digits


def _session_id_pattern(min_len: int, max_len: int) -> Pattern[str]:
    return re.compile(rf"^[a-zA-Z0-9]{{{min_len},{max_len}}}$")


def is_valid_session_id(session_id: Any, min_len: int = 10, max_len: int = 50) -> bool:
    if not session_id or not isinstance(session_id, str):
        return False
    return _session_id_pattern(min_len, max_len).fullmatch(session_id) is not None


def validate_session_id(session_id: Any, min_len: int = 10, max_len: int = 50) -> str:
    if not is_valid_session_id(session_id, min_len, max_len):
        raise ValidationError(SESSION_INVALID)
    return session_id


def generate_session_id(length: int = 15) -> str:
    return "".join(secrets.choice(_SESSION_ID_CHARS) for _ in range(length))


def has_suspicious_content(text: Any) -> bool:
    if not text or not isinstance(text, str):
        return False
    return any(p.search(text) for p in _SUSPICIOUS_PATTERNS)


def validate_message(message: Any, max_length: int = 2000, check_unsafe: bool = True) -> str:
    """
    Returns the trimmed message or raises ValidationError.
    """
    if not message or not isinstance(message, str):
        raise ValidationError(MESSAGE_REQUIRED)

    trimmed = message.strip()
    if not trimmed:
        raise ValidationError(MESSAGE_EMPTY)

    if len(trimmed) > max_length:
        raise ValidationError(MESSAGE_TOO_LONG.format(max_length=max_length))

    if check_unsafe and has_suspicious_content(trimmed):
        raise ValidationError(MESSAGE_UNSAFE)

    return trimmed


def validate_role(role: Any) -> str:
    if role not in ROLES:
        raise ValidationError(f"Invalid role: {role!r}. Expected one of: {', '.join(ROLES)}")
    return role


def validate_system_prompt(prompt: Any, max_length: int = 2000) -> str:
    if prompt is None:
        return ""
    if not isinstance(prompt, str):
        raise ValidationError("System prompt must be text")
    trimmed = prompt.strip()
    if len(trimmed) > max_length:
        raise ValidationError(f"System prompt too long. Please keep it under {max_length} characters.")
    return trimmed


def is_valid_model_name(model: Any) -> bool:
    if not model or not isinstance(model, str):
        return False
    return _MODEL_NAME_RE.fullmatch(model) is not None


def validate_model_name(model: Any) -> str:
    if not isinstance(model, str) or not model.strip():
        raise ValidationError("Model name is required")
    name = model.strip()
    if not is_valid_model_name(name):
        raise ValidationError(f"Invalid model name: {name!r}")
    return name
