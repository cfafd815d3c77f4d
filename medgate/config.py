"""Application settings from environment."""
import os
from functools import lru_cache
from typing import List, Optional

DEFAULT_CORS_ORIGINS = "https://www.wellmedai.com,http://localhost:5173"


@lru_cache
def get_settings() -> "Settings":
    return Settings()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "y", "on")


class Settings:
    """Central config. Properties read env at access time, so load .env before touching them."""

    # Upstream provider
    @property
    def openai_api_key(self) -> str:
        return os.getenv("OPENAI_API_KEY", "").strip()

    @property
    def openai_base_url(self) -> str:
        return (os.getenv("OPENAI_BASE_URL") or "https://api.openai.com").strip().rstrip("/")

    @property
    def upstream_timeout_s(self) -> Optional[float]:
        raw = os.getenv("UPSTREAM_TIMEOUT_S", "").strip()
        return float(raw) if raw else None

    @property
    def upstream_retries(self) -> int:
        return int(os.getenv("UPSTREAM_RETRIES", "0"))

    @property
    def upstream_retry_backoff_s(self) -> float:
        return float(os.getenv("UPSTREAM_RETRY_BACKOFF_S", "1"))

    # Completion defaults, used when the caller omits them
    @property
    def chat_model(self) -> str:
        return os.getenv("CHAT_MODEL", "gpt-4o-mini").strip()

    @property
    def chat_max_tokens(self) -> int:
        return int(os.getenv("CHAT_MAX_TOKENS", "1000"))

    @property
    def chat_temperature(self) -> float:
        return float(os.getenv("CHAT_TEMPERATURE", "0.7"))

    # Gate
    @property
    def classifier_model(self) -> str:
        return os.getenv("CLASSIFIER_MODEL", "gpt-3.5-turbo").strip()

    @property
    def gate_policy(self) -> str:
        return os.getenv("GATE_POLICY", "context").strip().lower()

    @property
    def session_gate_policy(self) -> str:
        return os.getenv("SESSION_GATE_POLICY", "session").strip().lower()

    # Sessions
    @property
    def session_ttl_s(self) -> int:
        return int(os.getenv("SESSION_TTL_S", "86400"))

    @property
    def session_max_entries(self) -> int:
        return int(os.getenv("SESSION_MAX_ENTRIES", "10000"))

    @property
    def redis_host(self) -> str:
        return os.getenv("REDIS_HOST", "").strip()

    @property
    def redis_port(self) -> int:
        return int(os.getenv("REDIS_PORT", "6379"))

    @property
    def redis_db(self) -> int:
        return int(os.getenv("REDIS_DB", "0"))

    # Server
    @property
    def cors_origins(self) -> List[str]:
        raw = os.getenv("CORS_ORIGINS", DEFAULT_CORS_ORIGINS)
        return [o.strip() for o in raw.split(",") if o.strip()]

    @property
    def port(self) -> int:
        return int(os.getenv("PORT", "5000"))

    @property
    def environment(self) -> str:
        return (os.getenv("APP_ENV") or os.getenv("NODE_ENV") or "development").strip()

    @property
    def log_level(self) -> str:
        return os.getenv("LOG_LEVEL", "INFO").strip().upper()

    @property
    def otel_enabled(self) -> bool:
        return _env_bool("OTEL_ENABLED")

    @property
    def otel_service_name(self) -> str:
        return os.getenv("OTEL_SERVICE_NAME", "medgate-proxy")
