from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol

import structlog

from .config import ChatProxyConfig
from .contracts import AttemptOutcome, CompletionRequest, CompletionResponse, FailureReport, ModelAttemptResult
from .errors import (
    BackendError,
    EmptyResponseError,
    ExhaustionError,
    ProxyError,
    RequestCancelledError,
    ValidationError,
)
from .metrics import completions_total
from .ollama_session import OllamaSession

log = structlog.get_logger()

StopCheck = Callable[[], Awaitable[bool]]


class BackendSession(Protocol):
    async def generate(self, model: str, prompt: str, *, temperature: float | None = None) -> ModelAttemptResult: ...

    async def close(self) -> None: ...


def fallback_note(model: str) -> str:
    return f"\n\n_(Used fallback model '{model}')_"


def attempt_error(result: ModelAttemptResult) -> ProxyError | None:
    if result.outcome is AttemptOutcome.BACKEND_ERROR:
        return BackendError(result.error or "Backend error", status_code=result.status_code)
    if result.outcome is AttemptOutcome.EMPTY_RESPONSE:
        return EmptyResponseError(result.error or "Empty response from model")
    return None


class FallbackProxy:
    """Tries candidate models one after another until one of them answers."""

    def __init__(self, cfg: ChatProxyConfig, *, session: BackendSession | None = None):
        self.cfg = cfg
        self.session = session or OllamaSession(
            cfg.backend_base_url,
            timeout_seconds=cfg.attempt_timeout_seconds,
        )

    def build_request(
        self, prompt: str | None, model: str | None = None, *, fallback: bool = True
    ) -> CompletionRequest:
        text = (prompt or "").strip()
        if not text:
            raise ValidationError("Prompt is required")
        if self.cfg.max_prompt_chars > 0 and len(text) > self.cfg.max_prompt_chars:
            raise ValidationError("Prompt too large.")
        primary = (model or "").strip() or self.cfg.default_model
        return CompletionRequest.build(text, primary, self.cfg.fallback_models if fallback else ())

    async def complete(
        self,
        prompt: str | None,
        model: str | None = None,
        *,
        should_stop: StopCheck | None = None,
        fallback: bool = True,
    ) -> CompletionResponse:
        """
        Answer ``prompt`` from the first candidate that produces text.

        With ``fallback=False`` only the requested model is tried; callers that
        walk the candidate list themselves use this so no model runs twice.
        """
        try:
            request = self.build_request(prompt, model, fallback=fallback)
        except ValidationError:
            completions_total.labels(status="invalid", fallback="false").inc()
            raise

        last: ModelAttemptResult | None = None
        for candidate in request.candidates:
            if should_stop is not None and await should_stop():
                completions_total.labels(status="cancelled", fallback="false").inc()
                log.info("completion_abandoned", primary=request.primary_model, next_model=candidate)
                raise RequestCancelledError("Caller disconnected before any model answered.")

            log.info("completion_attempt", model=candidate)
            result = await self.session.generate(candidate, request.prompt, temperature=self.cfg.temperature)
            if result.ok:
                log.info("completion_attempt_ok", model=candidate, latency_seconds=result.latency_seconds)
                return self._respond(request, result)

            log.warning(
                "completion_attempt_failed",
                model=candidate,
                outcome=result.outcome.value,
                status_code=result.status_code,
                error=result.error,
            )
            last = result

        completions_total.labels(status="exhausted", fallback="false").inc()
        if last is None:
            log.error("completion_no_candidates", primary=request.primary_model)
            raise ExhaustionError(FailureReport(last_error=None, exhausted=False))

        log.error("completion_exhausted", candidates=list(request.candidates), last_error=last.error)
        raise ExhaustionError(FailureReport(last_error=last.error, exhausted=True)) from attempt_error(last)

    def _respond(self, request: CompletionRequest, result: ModelAttemptResult) -> CompletionResponse:
        used_fallback = result.model != request.primary_model
        text = result.text or ""
        if used_fallback and result.model not in self.cfg.unannotated_models:
            text += fallback_note(result.model)
        completions_total.labels(status="success", fallback=str(used_fallback).lower()).inc()
        return CompletionResponse(text=text, used_fallback=used_fallback, serving_model=result.model)
