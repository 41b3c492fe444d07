from __future__ import annotations

import os

from pydantic import BaseModel, Field


def _parse_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


class AnalysisServiceConfig(BaseModel):
    # Provider credentials (server-side only)
    openai_api_key: str | None = Field(default_factory=lambda: os.getenv("OPENAI_API_KEY"))
    openai_org_id: str | None = Field(default_factory=lambda: os.getenv("OPENAI_ORG_ID"))
    gemini_api_key: str | None = Field(default_factory=lambda: os.getenv("GEMINI_API_KEY"))
    openai_base_url: str = Field(default_factory=lambda: os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1"))
    gemini_base_url: str = Field(
        default_factory=lambda: os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta")
    )
    default_model: str = Field(default_factory=lambda: os.getenv("DEFAULT_MODEL", "gpt-4o-mini"))

    # Key store
    key_store_path: str | None = Field(default_factory=lambda: os.getenv("KEY_STORE_PATH"))
    fernet_key: str | None = Field(default_factory=lambda: os.getenv("KEY_STORE_FERNET_KEY"))
    key_rotation_days: int = Field(default_factory=lambda: int(os.getenv("KEY_ROTATION_DAYS", "30")))

    # Completion client
    llm_max_retries: int = Field(default_factory=lambda: int(os.getenv("LLM_MAX_RETRIES", "3")))
    llm_backoff_initial_seconds: float = Field(
        default_factory=lambda: float(os.getenv("LLM_BACKOFF_INITIAL_SECONDS", "1.0"))
    )
    llm_backoff_max_seconds: float = Field(
        default_factory=lambda: float(os.getenv("LLM_BACKOFF_MAX_SECONDS", "60.0"))
    )
    llm_timeout_seconds: float = Field(default_factory=lambda: float(os.getenv("LLM_TIMEOUT_SECONDS", "60")))
    llm_http_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("LLM_HTTP_TIMEOUT_SECONDS", "60"))
    )

    # Admission gate
    max_requests_per_minute: int = Field(default_factory=lambda: int(os.getenv("MAX_REQUESTS_PER_MINUTE", "10")))
    max_requests_per_day: int = Field(default_factory=lambda: int(os.getenv("MAX_REQUESTS_PER_DAY", "50")))
    rate_limit_timezone: str = Field(default_factory=lambda: os.getenv("RATE_LIMIT_TIMEZONE", "Asia/Dubai"))

    # Observability
    telemetry_enabled: bool = Field(default_factory=lambda: _env_bool("TELEMETRY_ENABLED", "true"))
    telemetry_capacity: int = Field(default_factory=lambda: int(os.getenv("TELEMETRY_CAPACITY", "100")))
    production: bool = Field(default_factory=lambda: os.getenv("APP_ENV", "development").lower() == "production")
    enable_metrics: bool = Field(default_factory=lambda: _env_bool("ENABLE_METRICS"))
    metrics_bind: str = Field(default_factory=lambda: os.getenv("METRICS_BIND", "127.0.0.1"))
    metrics_port: int = Field(default_factory=lambda: int(os.getenv("METRICS_PORT", "9109")))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = Field(default_factory=lambda: os.getenv("LOG_FORMAT", "json"))

    # Server hardening
    enable_api_docs: bool = Field(default_factory=lambda: _env_bool("ENABLE_API_DOCS"))
    allowed_hosts: list[str] = Field(default_factory=lambda: _parse_csv(os.getenv("ALLOWED_HOSTS")))
    cors_allow_origins: list[str] = Field(default_factory=lambda: _parse_csv(os.getenv("CORS_ALLOW_ORIGINS")))
    cors_allow_credentials: bool = Field(default_factory=lambda: _env_bool("CORS_ALLOW_CREDENTIALS"))
    max_request_body_bytes: int = Field(
        default_factory=lambda: int(os.getenv("MAX_REQUEST_BODY_BYTES", str(1024 * 1024)))
    )
    max_inflight_requests: int = Field(default_factory=lambda: int(os.getenv("MAX_INFLIGHT_REQUESTS", "32")))
    secure_cookies: bool = Field(default_factory=lambda: _env_bool("SECURE_COOKIES"))

    def secrets(self) -> list[str]:
        return [s for s in (self.openai_api_key, self.gemini_api_key, self.fernet_key) if s]
