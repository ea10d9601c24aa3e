from __future__ import annotations

import math
import os
from functools import lru_cache
from typing import Any, Optional

from dotenv import load_dotenv


load_dotenv()

LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class ConfigurationError(RuntimeError):
    """Required startup configuration is missing or inconsistent."""


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if math.isfinite(value) else default


def _env_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _resolve_log_level() -> str:
    raw = (os.getenv("DAYDREAMS_LOG_LEVEL") or os.getenv("LOG_LEVEL") or "INFO").strip().upper()
    return raw if raw in LOG_LEVELS else "INFO"


class Settings:
    """Application settings loaded from environment variables.

    Keep all credentials and config centralized here. Values are read once
    when the object is built; keyword overrides win over the environment.
    """

    app_env: str
    openrouter_api_key: Optional[str]
    openrouter_model: str
    openrouter_base_url: str
    temperature: float
    log_level: str
    disable_payments: bool
    default_price: Optional[str]
    facilitator_url: Optional[str]
    pay_to: Optional[str]
    network: Optional[str]
    cors_origin: str
    port: int
    tool_timeout: float
    max_sessions: Optional[int]
    session_ttl_seconds: Optional[float]
    max_agent_steps: int

    def __init__(self, **overrides: Any) -> None:
        self.app_env = os.getenv("APP_ENV", "development")
        self.openrouter_api_key = os.getenv("OPENROUTER_API_KEY") or None
        self.openrouter_model = os.getenv("OPENROUTER_MODEL", "openai/gpt-4o-mini")
        self.openrouter_base_url = os.getenv(
            "OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1"
        )
        self.temperature = _env_float("OPENROUTER_TEMPERATURE", 0.2)
        self.log_level = _resolve_log_level()
        self.disable_payments = os.getenv("SCHEMAAGENT_DISABLE_PAYMENTS") == "true"
        self.default_price = (
            os.getenv("SCHEMAAGENT_DEFAULT_PRICE") or os.getenv("DEFAULT_PRICE") or None
        )
        self.facilitator_url = os.getenv("FACILITATOR_URL") or None
        self.pay_to = os.getenv("PAYMENTS_RECEIVABLE_ADDRESS") or None
        self.network = os.getenv("NETWORK") or None
        self.cors_origin = os.getenv("SCHEMAAGENT_CORS_ORIGIN", "*")
        self.port = _env_int("PORT") or 3000
        self.tool_timeout = _env_float("SCHEMAAGENT_TOOL_TIMEOUT", 15.0)
        self.max_sessions = _env_int("SCHEMAAGENT_MAX_SESSIONS")
        ttl = _env_float("SCHEMAAGENT_SESSION_TTL", 0.0)
        self.session_ttl_seconds = ttl if ttl > 0 else None
        self.max_agent_steps = _env_int("SCHEMAAGENT_MAX_STEPS") or 6

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise TypeError(f"Unknown setting: {key}")
            setattr(self, key, value)

    @property
    def payments_enabled(self) -> bool:
        if self.disable_payments:
            return False
        return all((self.default_price, self.facilitator_url, self.pay_to, self.network))

    def validate(self) -> None:
        """Refuse to run degraded: raise when required configuration is missing."""
        if not self.openrouter_api_key:
            raise ConfigurationError(
                "Missing required environment variable: OPENROUTER_API_KEY"
            )
        if not self.disable_payments and not self.payments_enabled:
            raise ConfigurationError(
                "Schema Agent requires x402 payments. Set FACILITATOR_URL, "
                "PAYMENTS_RECEIVABLE_ADDRESS, NETWORK, and DEFAULT_PRICE "
                "(or SCHEMAAGENT_DISABLE_PAYMENTS=true)."
            )
        if self.max_sessions is not None and self.max_sessions < 1:
            raise ConfigurationError(
                f"SCHEMAAGENT_MAX_SESSIONS must be at least 1, got {self.max_sessions}"
            )
        if self.session_ttl_seconds is not None and self.session_ttl_seconds <= 0:
            raise ConfigurationError(
                f"SCHEMAAGENT_SESSION_TTL must be positive, got {self.session_ttl_seconds}"
            )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
