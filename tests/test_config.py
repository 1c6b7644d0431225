import logging

import pytest

from nojs_chat.core.config import Settings
from nojs_chat.core.logging import CHATTY_LOGGERS, setup_logging


def test_operational_defaults():
    s = Settings(_env_file=None)
    assert s.rate_limit_chat_window_s == 60
    assert s.rate_limit_chat_max == 10
    assert s.cleanup_interval_hours == 24
    assert s.streaming_timeout_s == 120.0


def test_operational_settings_from_env(monkeypatch):
    monkeypatch.setenv("RATE_LIMIT_CHAT_MAX", "5")
    monkeypatch.setenv("RATE_LIMIT_CHAT_WINDOW_S", "30")
    monkeypatch.setenv("CLEANUP_INTERVAL_HOURS", "6")

    s = Settings(_env_file=None)
    assert s.rate_limit_chat_max == 5
    assert s.rate_limit_chat_window_s == 30
    assert s.cleanup_interval_hours == 6


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    quiet_levels = {name: logging.getLogger(name).level for name in CHATTY_LOGGERS}
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)
    for name, lvl in quiet_levels.items():
        logging.getLogger(name).setLevel(lvl)


class TestSetupLogging:
    def test_single_handler_after_repeated_calls(self, restore_root_logger):
        setup_logging("INFO")
        setup_logging("DEBUG")
        assert len(restore_root_logger.handlers) == 1
        assert restore_root_logger.level == logging.DEBUG

    def test_http_client_loggers_kept_at_warning(self, restore_root_logger):
        setup_logging("DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING

        setup_logging("ERROR")
        assert logging.getLogger("httpx").level == logging.ERROR

    def test_unknown_level_falls_back_to_info(self, restore_root_logger):
        setup_logging("chatty")
        assert restore_root_logger.level == logging.INFO
