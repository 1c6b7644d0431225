from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import httpx

from nojs_chat.core.config import Settings
from nojs_chat.core.errors import (
    AICallFailed,
    AIUnavailable,
    ModelNotFound,
    NoModelsAvailable,
    RequestTimeout,
)
from nojs_chat.schemas.chat import ModelInfo

logger = logging.getLogger("ollama")

MODEL_PREFERENCES = ["llama3.2", "llama3.1", "llama3", "mistral", "codellama", "phi3"]

GENERATE_OPTIONS: Dict[str, Any] = {
    "temperature": 0.7,
    "top_p": 0.9,
    "num_predict": 2000,
}

NO_MODELS_TEXT = "No models available in Ollama. Please pull a model first (e.g., ollama pull {model})"

History = Union[str, Sequence[Any]]


def model_preference_order(default_model: Optional[str]) -> List[str]:
    """Configured default first, then the common families, no duplicates."""
    prefs = [m for m in MODEL_PREFERENCES if m != default_model]
    if default_model:
        prefs.insert(0, default_model)
    return prefs


def _untagged(name: str) -> str:
    return name[: -len(":latest")] if name.endswith(":latest") else name


def find_model(name: Optional[str], available: Sequence[str]) -> Optional[str]:
    """
    The directory entry for `name`. "llama3.2" and "llama3.2:latest" are the
    same model to Ollama.
    """
    if not name:
        return None
    if name in available:
        return name
    wanted = _untagged(name)
    return next((m for m in available if _untagged(m) == wanted), None)


def _turn(msg: Any) -> tuple:
    if isinstance(msg, Mapping):
        return msg.get("role"), msg.get("content", "")
    return getattr(msg, "role", None), getattr(msg, "content", "")


def format_prompt(history: History, system_prompt: str = "", max_history: int = 0) -> str:
    """
    Renders the conversation as alternating "User:" / "Assistant:" turns with a
    trailing "Assistant:" cue. A plain string is sent as-is.
    """
    if isinstance(history, str):
        body = history
    else:
        turns = list(history)
        if max_history and len(turns) > max_history:
            turns = turns[-max_history:]
        if not turns:
            body = ""
        else:
            lines = []
            for msg in turns:
                role, content = _turn(msg)
                label = "User" if role == "user" else "Assistant"
                lines.append(f"{label}: {content}")
            body = "\n\n".join(lines) + "\n\nAssistant:"

    system_prompt = (system_prompt or "").strip()
    if system_prompt:
        return f"System: {system_prompt}\n\n{body}"
    return body


class OllamaClient:
    """
    Model directory + completion client for a local Ollama runtime.
    One short-lived httpx.AsyncClient per call.
    """

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.base_url = settings.ollama_base_url.rstrip("/")
        self.default_model = settings.default_model
        self.timeout_s = settings.ollama_timeout_s
        self.health_timeout_s = settings.ollama_health_timeout_s
        self.max_history = settings.max_history_length
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, transport=self._transport)

    async def _fetch_models(self) -> List[ModelInfo]:
        async with self._client() as client:
            r = await client.get("/api/tags", timeout=self.health_timeout_s)
            r.raise_for_status()
            data = r.json()

        models: List[ModelInfo] = []
        for m in data.get("models", []) or []:
            if isinstance(m, dict) and m.get("name"):
                models.append(
                    ModelInfo(
                        name=str(m["name"]),
                        size=m.get("size"),
                        modified_at=m.get("modified_at"),
                    )
                )
        return models

    async def list_available_models(self) -> List[ModelInfo]:
        """
        Best-effort: an unreachable runtime is reported as "no models".
        """
        try:
            return await self._fetch_models()
        except Exception as e:
            logger.warning("model listing failed base=%s err=%s", self.base_url, e)
            return []

    async def list_model_names(self) -> List[str]:
        return [m.name for m in await self.list_available_models()]

    async def select_best_model(self, preferred_default: Optional[str] = None) -> str:
        models = await self.list_available_models()
        default = preferred_default or self.default_model

        if not models:
            raise NoModelsAvailable(NO_MODELS_TEXT.format(model=default))

        for preferred in model_preference_order(default):
            needle = preferred.lower()
            for m in models:
                if needle in m.name.lower():
                    logger.info("using model=%s preferred=%s", m.name, preferred)
                    return m.name

        logger.info("no preferred model available, using first model=%s", models[0].name)
        return models[0].name

    async def complete(self, history: History, model: Optional[str] = None, system_prompt: str = "") -> str:
        """
        Calls /api/generate with stream=false and returns the response text.
        Failures are raised as one of the AIError kinds.
        """
        if not model:
            model = await self.select_best_model()

        prompt = format_prompt(history, system_prompt, max_history=self.max_history)
        payload: Dict[str, Any] = {
            "model": model,
            "prompt": prompt,
            "stream": False,
            "options": dict(GENERATE_OPTIONS),
        }

        try:
            async with self._client() as client:
                r = await client.post("/api/generate", json=payload, timeout=self.timeout_s)
                r.raise_for_status()
                data = r.json()
        except httpx.ConnectError as e:
            logger.error("generate connect failed model=%s err=%s", model, e)
            raise AIUnavailable(
                f"Cannot connect to Ollama. Please ensure Ollama is running on {self.base_url}"
            ) from e
        except httpx.TimeoutException as e:
            logger.error("generate timed out model=%s timeout_s=%s", model, self.timeout_s)
            raise RequestTimeout("Request timeout. The request took too long to complete.") from e
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                logger.error("generate model not found model=%s", model)
                raise ModelNotFound(await self._model_not_found_text()) from e
            logger.error("generate failed model=%s status=%s", model, e.response.status_code)
            raise AICallFailed(f"AI service is currently unavailable: {e}") from e
        except Exception as e:
            logger.exception("generate failed model=%s", model)
            raise AICallFailed(f"AI service is currently unavailable: {e}") from e

        return str(data.get("response", "")).strip()

    async def _model_not_found_text(self) -> str:
        try:
            models = await self._fetch_models()
        except Exception:
            return "Model not found and could not fetch available models."
        if models:
            return f"Model not found. Available models: {', '.join(m.name for m in models)}"
        return (
            "Model not found and no models are available. "
            f"Please pull a model first (e.g., ollama pull {self.default_model})"
        )

    async def health_check(self) -> str:
        try:
            async with self._client() as client:
                r = await client.get("/api/tags", timeout=self.health_timeout_s)
                r.raise_for_status()
            return "connected"
        except Exception as e:
            logger.warning("ollama health check failed err=%s", e)
            return "disconnected"
