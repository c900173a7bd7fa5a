from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

import httpx
import structlog

from .contracts import ModelAttemptResult
from .metrics import backend_attempt_latency_seconds, backend_attempts_total

log = structlog.get_logger()

OLLAMA_DEFAULT_BASE = "http://localhost:11434"


class OllamaSession:
    """
    Session wrapper for a local Ollama-compatible ``/api/generate`` endpoint.

    Every call returns a ``ModelAttemptResult``; expected failures (transport
    errors, timeouts, non-2xx, blank output) are reported as variants rather
    than raised, so the caller can move on to the next candidate.
    """

    def __init__(
        self,
        base_url: str = OLLAMA_DEFAULT_BASE,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 20.0,
        clock: Callable[[], float] | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._clock: Callable[[], float] = clock or time.monotonic

    async def close(self) -> None:
        await self._client.aclose()

    async def generate(self, model: str, prompt: str, *, temperature: float | None = None) -> ModelAttemptResult:
        url = f"{self._base_url}/api/generate"
        payload: dict[str, Any] = {"model": model, "prompt": prompt, "stream": False}
        if temperature is not None:
            payload["temperature"] = temperature

        started = self._clock()
        result = await self._post(url, model, payload, started)
        backend_attempts_total.labels(model=model, outcome=result.outcome.value).inc()
        backend_attempt_latency_seconds.labels(model=model).observe(result.latency_seconds)
        return result

    async def _post(self, url: str, model: str, payload: dict[str, Any], started: float) -> ModelAttemptResult:
        def elapsed() -> float:
            return max(0.0, self._clock() - started)

        try:
            resp = await self._client.post(url, json=payload, timeout=self._timeout_seconds)
        except httpx.TimeoutException:
            return ModelAttemptResult.failed(
                model,
                f"Inference backend timed out after {self._timeout_seconds:g}s",
                latency_seconds=elapsed(),
            )
        except httpx.HTTPError as e:
            return ModelAttemptResult.failed(
                model,
                f"Inference backend unreachable: {e.__class__.__name__}: {e}",
                latency_seconds=elapsed(),
            )

        if not resp.is_success:
            return ModelAttemptResult.failed(
                model,
                f"Backend error: {resp.status_code} - {resp.text[:500]}",
                status_code=resp.status_code,
                latency_seconds=elapsed(),
            )

        try:
            data = resp.json()
        except ValueError:
            return ModelAttemptResult.failed(
                model,
                "Backend returned a non-JSON body.",
                status_code=resp.status_code,
                latency_seconds=elapsed(),
            )

        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str) or not text.strip():
            return ModelAttemptResult.empty(model, latency_seconds=elapsed())

        log.debug("ollama_generate_ok", model=model, prompt_chars=len(payload["prompt"]))
        return ModelAttemptResult.succeeded(model, text.strip(), latency_seconds=elapsed())
