import logging
import sys
from typing import Iterable, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# every poll lists models, so request-level INFO from these is noise
CHATTY_LOGGERS = ("httpx", "httpcore", "multipart")


def _resolve_level(level: str) -> int:
    numeric: Optional[int] = getattr(logging, str(level).upper(), None)
    return numeric if isinstance(numeric, int) else logging.INFO


def setup_logging(level: str = "INFO", quiet: Iterable[str] = CHATTY_LOGGERS) -> None:
    """
    One stdout handler on the root logger, shared by the web app and the
    maintenance CLI. Safe to call again (app factory, uvicorn --reload).
    """
    numeric_level = _resolve_level(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT))

    root = logging.getLogger()
    root.setLevel(numeric_level)
    root.handlers.clear()
    root.addHandler(handler)

    for name in quiet:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))
