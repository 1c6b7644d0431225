from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    sqlite_path: str = "./data/chat.db"
    session_retention_days: int = 30  # storage-level expiry, applied on startup

    ollama_base_url: str = "http://localhost:11434"
    default_model: str = "llama3.2"
    ollama_timeout_s: float = 60.0
    ollama_health_timeout_s: float = 10.0
    streaming_timeout_s: float = 120.0  # recognised; there is no streaming endpoint

    max_message_length: int = 2000
    max_system_prompt_length: int = 2000
    min_session_id_length: int = 10
    max_session_id_length: int = 50
    max_response_length: int = 20000  # assistant replies
    max_history_length: int = 50  # 0 = send full history

    cleanup_days_old: int = 7
    cleanup_interval_hours: int = 24  # for the operator's scheduler running `maintenance cleanup`

    # enforced by the gateway in front of the app, not in-process
    rate_limit_chat_window_s: int = 60
    rate_limit_chat_max: int = 10

    poll_interval_s: int = 2

    otel_enabled: bool = False
    otel_service_name: str = "nojs-chat"


@lru_cache
def get_settings() -> Settings:
    return Settings()
