from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, MutableMapping
from typing import Any, TypeAlias, cast

import structlog

Processor: TypeAlias = Callable[[Any, str, MutableMapping[str, Any]], Mapping[str, Any] | str | bytes]

# Fields that carry raw backend or proxy error text.
BACKEND_TEXT_FIELDS = ("error", "last_error", "details", "body")
MAX_BACKEND_TEXT_CHARS = 500

# Fields that may carry user prompt or answer text; only their length is logged.
PROMPT_FIELDS = ("prompt", "response", "text")

_AUTH_FIELDS = ("authorization", "x-api-key", "server_auth_token")


def bound_backend_text(_logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    for key in BACKEND_TEXT_FIELDS:
        value = event_dict.get(key)
        if isinstance(value, str) and len(value) > MAX_BACKEND_TEXT_CHARS:
            event_dict[key] = value[:MAX_BACKEND_TEXT_CHARS] + "...[truncated]"
    return event_dict


def prompt_lengths_only(_logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    for key in PROMPT_FIELDS:
        if key not in event_dict:
            continue
        value = event_dict.pop(key)
        event_dict.setdefault(f"{key}_chars", len(value) if isinstance(value, str) else 0)
    return event_dict


def make_auth_scrubber(token: str | None) -> Processor:
    """Drops auth header fields and masks the server token wherever it shows up."""

    def _processor(_logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
        for key in _AUTH_FIELDS:
            if key in event_dict:
                event_dict[key] = "[REDACTED]"
        if token:
            for key, value in event_dict.items():
                if isinstance(value, str) and token in value:
                    event_dict[key] = value.replace(token, "[REDACTED]")
        return event_dict

    return _processor


def configure_logging(level: str = "INFO", fmt: str = "json", *, auth_token: str | None = None) -> None:
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=log_level)

    processors: list[Processor] = [
        cast(Processor, structlog.contextvars.merge_contextvars),
        cast(Processor, structlog.processors.add_log_level),
        cast(Processor, structlog.processors.TimeStamper(fmt="iso")),
        prompt_lengths_only,
        bound_backend_text,
        make_auth_scrubber(auth_token),
    ]
    if fmt == "json":
        processors.append(cast(Processor, structlog.processors.JSONRenderer()))
    else:
        processors.append(cast(Processor, structlog.dev.ConsoleRenderer()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=True,
    )
