from __future__ import annotations

from pydantic import BaseModel, ConfigDict, field_validator


class CompletionRequestBody(BaseModel):
    model_config = ConfigDict(extra="allow")

    # Optional here so a missing prompt reaches the proxy and gets the
    # "Prompt is required" 400 instead of a framework 422.
    prompt: str | None = None
    model: str | None = None
    # false: try only `model`, the caller walks the candidate list itself.
    fallback: bool = True

    @field_validator("model")
    @classmethod
    def _blank_model_means_default(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None


class CompletionResponseBody(BaseModel):
    response: str


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    error: str
    details: str | None = None
    request_id: str | None = None


def make_error_response(*, error: str, details: str | None = None, request_id: str | None = None) -> dict:
    return ErrorResponse(error=error, details=details, request_id=request_id).model_dump(exclude_none=True)
