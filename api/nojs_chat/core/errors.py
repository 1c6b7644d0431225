from __future__ import annotations


class ChatError(Exception):
    """Base class for errors the web layer knows how to present."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ChatError):
    """Bad session id, message, system prompt or model name."""


class PersistenceError(ChatError):
    """The session store failed (unreachable, locked, constraint...)."""


class AIError(ChatError):
    kind = "ai_error"


class AIUnavailable(AIError):
    kind = "ai_unavailable"


class ModelNotFound(AIError):
    kind = "model_not_found"


class RequestTimeout(AIError):
    kind = "request_timeout"


class AICallFailed(AIError):
    kind = "ai_call_failed"


class NoModelsAvailable(AIError):
    kind = "no_models_available"
