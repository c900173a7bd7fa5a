from __future__ import annotations

import os

from pydantic import BaseModel, Field

from .candidates import build_candidate_list


def _parse_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


class ChatProxyConfig(BaseModel):
    # Inference backend
    backend_base_url: str = Field(
        default_factory=lambda: os.getenv("BACKEND_BASE_URL", "http://localhost:11434")
    )
    default_model: str = Field(default_factory=lambda: os.getenv("DEFAULT_MODEL", "tinyllama"))
    fallback_models: list[str] = Field(
        default_factory=lambda: _parse_csv(os.getenv("FALLBACK_MODELS", "orca-mini,mistral"))
    )
    # Fallback models that serve without the "used fallback" note.
    unannotated_models: list[str] = Field(
        default_factory=lambda: _parse_csv(os.getenv("UNANNOTATED_MODELS"))
    )
    temperature: float = Field(default_factory=lambda: float(os.getenv("MODEL_TEMPERATURE", "0.7")))
    attempt_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("ATTEMPT_TIMEOUT_SECONDS", "20"))
    )

    # Requests
    request_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("REQUEST_TIMEOUT_SECONDS", "90"))
    )
    max_prompt_chars: int = Field(default_factory=lambda: int(os.getenv("MAX_PROMPT_CHARS", "20000")))

    # Requester side
    chat_server_url: str = Field(default_factory=lambda: os.getenv("CHAT_SERVER_URL", "http://localhost:3001"))
    requester_iterates_candidates: bool = Field(
        default_factory=lambda: _env_flag("REQUESTER_ITERATES_CANDIDATES")
    )

    # Observability
    enable_metrics: bool = Field(default_factory=lambda: _env_flag("ENABLE_METRICS"))
    metrics_bind: str = Field(default_factory=lambda: os.getenv("METRICS_BIND", "127.0.0.1"))
    metrics_port: int = Field(default_factory=lambda: int(os.getenv("METRICS_PORT", "9109")))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = Field(default_factory=lambda: os.getenv("LOG_FORMAT", "json"))

    # Server hardening
    server_auth_token: str | None = Field(default_factory=lambda: os.getenv("SERVER_AUTH_TOKEN"))
    enable_api_docs: bool = Field(default_factory=lambda: _env_flag("ENABLE_API_DOCS"))
    allowed_hosts: list[str] = Field(default_factory=lambda: _parse_csv(os.getenv("ALLOWED_HOSTS")))
    cors_allow_origins: list[str] = Field(default_factory=lambda: _parse_csv(os.getenv("CORS_ALLOW_ORIGINS")))
    cors_allow_credentials: bool = Field(default_factory=lambda: _env_flag("CORS_ALLOW_CREDENTIALS"))
    max_request_body_bytes: int = Field(
        default_factory=lambda: int(os.getenv("MAX_REQUEST_BODY_BYTES", str(256 * 1024)))
    )

    def candidate_models(self, primary: str | None = None) -> tuple[str, ...]:
        return build_candidate_list((primary or "").strip() or self.default_model, self.fallback_models)
