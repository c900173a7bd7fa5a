from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from .candidates import build_candidate_list


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    EMPTY_RESPONSE = "empty_response"
    BACKEND_ERROR = "backend_error"


@dataclass(frozen=True)
class CompletionRequest:
    prompt: str
    primary_model: str
    candidates: tuple[str, ...]

    @classmethod
    def build(cls, prompt: str, primary_model: str, fallback_models: Iterable[str]) -> "CompletionRequest":
        return cls(
            prompt=prompt,
            primary_model=primary_model,
            candidates=build_candidate_list(primary_model, fallback_models),
        )


@dataclass(frozen=True)
class ModelAttemptResult:
    model: str
    outcome: AttemptOutcome
    text: str | None = None
    error: str | None = None
    status_code: int | None = None
    latency_seconds: float = 0.0

    @classmethod
    def succeeded(cls, model: str, text: str, *, latency_seconds: float = 0.0) -> "ModelAttemptResult":
        return cls(model=model, outcome=AttemptOutcome.SUCCESS, text=text, latency_seconds=latency_seconds)

    @classmethod
    def empty(cls, model: str, *, latency_seconds: float = 0.0) -> "ModelAttemptResult":
        return cls(
            model=model,
            outcome=AttemptOutcome.EMPTY_RESPONSE,
            error="Empty response from model",
            latency_seconds=latency_seconds,
        )

    @classmethod
    def failed(
        cls,
        model: str,
        error: str,
        *,
        status_code: int | None = None,
        latency_seconds: float = 0.0,
    ) -> "ModelAttemptResult":
        return cls(
            model=model,
            outcome=AttemptOutcome.BACKEND_ERROR,
            error=error,
            status_code=status_code,
            latency_seconds=latency_seconds,
        )

    @property
    def ok(self) -> bool:
        return self.outcome is AttemptOutcome.SUCCESS


@dataclass(frozen=True)
class CompletionResponse:
    text: str
    used_fallback: bool
    serving_model: str


@dataclass(frozen=True)
class FailureReport:
    last_error: str | None
    exhausted: bool
