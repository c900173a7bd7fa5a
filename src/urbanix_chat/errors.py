from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .contracts import FailureReport


class ProxyError(Exception):
    """Base error for chat proxy failures."""


class ValidationError(ProxyError):
    pass


class BackendError(ProxyError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class EmptyResponseError(ProxyError):
    def __init__(self, message: str = "Empty response from model"):
        super().__init__(message)


class ExhaustionError(ProxyError):
    """Every candidate model failed, or there was nothing to try."""

    def __init__(self, report: FailureReport):
        if report.last_error:
            message = report.last_error
        elif report.exhausted:
            message = "All candidate models failed"
        else:
            message = "No candidate models configured"
        super().__init__(message)
        self.report = report


class RequestCancelledError(ProxyError):
    """Caller went away before any candidate answered."""


class RequestTimeoutError(ProxyError):
    """Server-side request deadline exceeded."""
