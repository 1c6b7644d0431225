import json
from typing import Callable, Iterable, Optional

import httpx
import pytest

from nojs_chat.chat.service import ChatService
from nojs_chat.core.config import Settings
from nojs_chat.db.sqlite import connect, init_db


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(_env_file=None, sqlite_path=str(tmp_path / "chat.db"), log_level="WARNING")


@pytest.fixture
def conn(settings):
    conn = connect(settings.sqlite_path)
    init_db(conn)
    yield conn
    conn.close()


@pytest.fixture
def service(conn, settings) -> ChatService:
    return ChatService(conn, settings)


@pytest.fixture
def make_transport() -> Callable[..., httpx.MockTransport]:
    """
    Fake Ollama runtime. Generate requests are recorded on the returned
    transport as `.generate_calls` (decoded JSON payloads).
    """

    def _make(
        models: Iterable[str] = ("llama3.2:latest",),
        reply: str = "Hello there!",
        generate_status: int = 200,
        error: Optional[Exception] = None,
    ) -> httpx.MockTransport:
        calls = []
        names = list(models)

        def handler(request: httpx.Request) -> httpx.Response:
            if error is not None:
                raise error
            if request.url.path == "/api/tags":
                return httpx.Response(200, json={"models": [{"name": n, "size": 1} for n in names]})
            if request.url.path == "/api/generate":
                calls.append(json.loads(request.content))
                if generate_status != 200:
                    return httpx.Response(generate_status, json={"error": "boom"})
                return httpx.Response(200, json={"response": reply, "done": True})
            return httpx.Response(404)

        transport = httpx.MockTransport(handler)
        transport.generate_calls = calls
        return transport

    return _make
