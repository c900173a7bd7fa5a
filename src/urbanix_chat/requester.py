from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

import httpx
import structlog

from .config import ChatProxyConfig
from .context import DistrictIndicators, build_prompt, summarize_districts
from .contracts import FailureReport
from .errors import ExhaustionError, ValidationError
from .proxy import fallback_note

log = structlog.get_logger()

CHAT_SERVER_UNREACHABLE = "Failed to reach chat server"

SERVER_CONNECTION_GUIDANCE = (
    "**Server Connection Error**\n\n"
    "Please start the chat server:\n```\nurbanix-chat-server\n```"
)

BACKEND_DOWN_GUIDANCE = (
    "**Inference Backend Not Running**\n\n"
    "Please ensure Ollama is running:\n```\nollama serve\n```"
)

NO_MODEL_GUIDANCE = (
    "**No Model Available**\n\n"
    "None of the configured models could answer. Pull one of them first:\n```\nollama pull {model}\n```"
)


def guidance_for(error: ExhaustionError, *, suggested_model: str = "tinyllama") -> str:
    """Turn a terminal failure into something an operator can act on."""
    detail = error.report.last_error or ""
    lowered = detail.lower()
    if CHAT_SERVER_UNREACHABLE.lower() in lowered:
        return SERVER_CONNECTION_GUIDANCE
    if "backend unreachable" in lowered or "timed out" in lowered:
        return BACKEND_DOWN_GUIDANCE
    if not detail or "not found" in lowered or "backend error: 404" in lowered:
        return NO_MODEL_GUIDANCE.format(model=suggested_model)
    return f"**Error**: {detail}"


def _json_body(resp: httpx.Response) -> dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class CompletionRequester:
    """Client side of the chat: builds prompts and calls the fallback proxy."""

    def __init__(self, cfg: ChatProxyConfig, *, client: httpx.AsyncClient | None = None):
        self.cfg = cfg
        self._client = client or httpx.AsyncClient(
            base_url=cfg.chat_server_url,
            timeout=cfg.request_timeout_seconds,
        )

    async def close(self) -> None:
        await self._client.aclose()

    def candidates(self) -> tuple[str, ...]:
        if self.cfg.requester_iterates_candidates:
            return self.cfg.candidate_models()
        # The proxy runs the fallback loop itself.
        return self.cfg.candidate_models()[:1]

    async def request_completion(self, prompt: str) -> str:
        if not prompt.strip():
            raise ValidationError("Prompt is required")

        candidates = self.candidates()
        iterate = self.cfg.requester_iterates_candidates
        last_error: str | None = None
        for model in candidates:
            log.info("requester_attempt", model=model)
            payload: dict[str, Any] = {"prompt": prompt, "model": model}
            if iterate:
                payload["fallback"] = False
            try:
                resp = await self._client.post("/completion", json=payload)
            except httpx.HTTPError as e:
                last_error = f"{CHAT_SERVER_UNREACHABLE}: {e.__class__.__name__}"
                log.warning("requester_attempt_failed", model=model, error=last_error)
                continue

            body = _json_body(resp)
            if resp.status_code == 400:
                raise ValidationError(body.get("error") or "Prompt is required")
            if not resp.is_success or body.get("error"):
                last_error = body.get("details") or body.get("error") or f"Server error: {resp.status_code}"
                log.warning("requester_attempt_failed", model=model, status_code=resp.status_code, error=last_error)
                continue

            text = body.get("response")
            if isinstance(text, str) and text.strip():
                log.info("requester_attempt_ok", model=model)
                if iterate and model != candidates[0] and model not in self.cfg.unannotated_models:
                    text += fallback_note(model)
                return text
            last_error = "Empty response from chat server"

        raise ExhaustionError(FailureReport(last_error=last_error, exhausted=last_error is not None))

    async def ask(
        self,
        message: str,
        districts: Iterable[DistrictIndicators | Mapping[str, Any]] | None = None,
    ) -> str:
        if not message.strip():
            raise ValidationError("Prompt is required")
        prompt = build_prompt(message.strip(), summarize_districts(districts))
        try:
            return await self.request_completion(prompt)
        except ExhaustionError as e:
            log.error("requester_exhausted", last_error=e.report.last_error)
            return guidance_for(e, suggested_model=self.cfg.default_model)
