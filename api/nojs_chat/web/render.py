from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List

import markdown
import nh3
from fastapi.templating import Jinja2Templates
from markupsafe import escape

from nojs_chat.schemas.session import Message

logger = logging.getLogger("render")

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
STATIC_DIR = Path(__file__).resolve().parent / "static"

ALLOWED_TAGS = {
    "p", "br", "strong", "em", "u", "strike", "del", "s",
    "code", "pre", "blockquote",
    "h1", "h2", "h3", "h4", "h5", "h6",
    "ul", "ol", "li",
    "a", "img",
    "table", "thead", "tbody", "tr", "th", "td",
    "hr", "div", "span",
}
ALLOWED_ATTRIBUTES = {
    "a": {"href", "title"},
    "img": {"src", "alt", "title"},
    "*": {"class"},
}

_MD_EXTENSIONS = ["fenced_code", "tables", "nl2br", "sane_lists"]


def escape_text(text: str) -> str:
    return str(escape(text or "")).replace("\n", "<br>")


def render_markdown(text: str) -> str:
    """Markdown -> sanitised HTML. Falls back to escaped text."""
    if not text or not isinstance(text, str):
        return ""
    try:
        raw_html = markdown.markdown(text, extensions=_MD_EXTENSIONS)
    except Exception:
        logger.exception("markdown rendering failed, escaping instead")
        return escape_text(text)
    return nh3.clean(raw_html, tags=ALLOWED_TAGS, attributes=ALLOWED_ATTRIBUTES)


def render_messages(messages: Iterable[Message]) -> List[Dict[str, Any]]:
    """
    Assistant replies are markdown; user input is shown verbatim (escaped).
    """
    out: List[Dict[str, Any]] = []
    for m in messages:
        html = render_markdown(m.content) if m.role == "assistant" else escape_text(m.content)
        out.append({"role": m.role, "content": html, "timestamp": m.timestamp})
    return out


templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
