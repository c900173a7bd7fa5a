from __future__ import annotations

import asyncio
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import ChatProxyConfig
from .errors import ExhaustionError, ProxyError, RequestCancelledError, RequestTimeoutError, ValidationError
from .http_security import install_middlewares
from .logging import configure_logging
from .metrics import maybe_start_metrics, server_errors_total, server_request_latency_seconds, server_requests_total
from .proxy import FallbackProxy
from .schemas import CompletionRequestBody, CompletionResponseBody, HealthResponse, make_error_response

BACKEND_FAILURE_MESSAGE = "Failed to communicate with inference backend"


def create_app(cfg: ChatProxyConfig | None = None, proxy: FallbackProxy | None = None) -> FastAPI:
    cfg = cfg or ChatProxyConfig()
    configure_logging(
        level=cfg.log_level,
        fmt=cfg.log_format,
        auth_token=cfg.server_auth_token,
    )
    proxy = proxy or FallbackProxy(cfg)

    def _request_id(request) -> str | None:
        return getattr(getattr(request, "state", None), "request_id", None)

    def _observe(path: str, status_code: int, started_at: float) -> None:
        server_requests_total.labels(path=path, status=str(status_code)).inc()
        server_request_latency_seconds.labels(path=path).observe(max(0.0, time.monotonic() - started_at))

    def _first_problem(exc: RequestValidationError) -> str | None:
        errors = exc.errors()
        if not errors:
            return None
        first = errors[0]
        where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        msg = first.get("msg", "")
        return f"{where}: {msg}" if where else msg

    def _error(request, status_code: int, error_type: str, *, error: str, details: str | None = None):
        server_errors_total.labels(type=error_type).inc()
        server_requests_total.labels(path=request.url.path, status=str(status_code)).inc()
        return JSONResponse(
            status_code=status_code,
            content=make_error_response(error=error, details=details, request_id=_request_id(request)),
        )

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        maybe_start_metrics(enable=cfg.enable_metrics, bind=cfg.metrics_bind, port=cfg.metrics_port)
        try:
            yield
        finally:
            await proxy.session.close()

    app = FastAPI(
        title="urbanix-chat-proxy",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if cfg.enable_api_docs else None,
        redoc_url="/redoc" if cfg.enable_api_docs else None,
        openapi_url="/openapi.json" if cfg.enable_api_docs else None,
    )
    install_middlewares(app, cfg=cfg)

    @app.exception_handler(ValidationError)
    async def _validation_error_handler(request, exc: ValidationError):
        return _error(request, 400, "validation_error", error=str(exc))

    @app.exception_handler(RequestValidationError)
    async def _request_body_error_handler(request, exc: RequestValidationError):
        return _error(request, 400, "validation_error", error="Invalid request body.", details=_first_problem(exc))

    @app.exception_handler(ExhaustionError)
    async def _exhaustion_error_handler(request, exc: ExhaustionError):
        return _error(request, 502, "exhausted", error=BACKEND_FAILURE_MESSAGE, details=str(exc))

    @app.exception_handler(RequestTimeoutError)
    async def _timeout_error_handler(request, exc: RequestTimeoutError):
        return _error(request, 504, "timeout", error=BACKEND_FAILURE_MESSAGE, details=str(exc) or "Request timed out.")

    @app.exception_handler(RequestCancelledError)
    async def _cancelled_handler(request, exc: RequestCancelledError):
        # Non-standard "client closed request"; nobody is listening anyway.
        return _error(request, 499, "cancelled", error="Request cancelled", details=str(exc))

    @app.exception_handler(ProxyError)
    async def _proxy_error_handler(request, exc: ProxyError):
        return _error(request, 500, "proxy_error", error=BACKEND_FAILURE_MESSAGE, details=str(exc))

    @app.get("/health", response_model=HealthResponse)
    @app.get("/api/health", response_model=HealthResponse, include_in_schema=False)
    async def health() -> HealthResponse:
        return HealthResponse()

    @app.post("/completion", response_model=CompletionResponseBody)
    @app.post("/api/chat", response_model=CompletionResponseBody, include_in_schema=False)
    async def completion(body: CompletionRequestBody, request: Request, response: Response):
        started_at = time.monotonic()
        try:
            result = await asyncio.wait_for(
                proxy.complete(body.prompt, body.model, should_stop=request.is_disconnected, fallback=body.fallback),
                timeout=max(0.0, float(cfg.request_timeout_seconds or 0)) or None,
            )
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError("Request timed out.") from e

        response.headers["X-Serving-Model"] = result.serving_model
        response.headers["X-Used-Fallback"] = str(result.used_fallback).lower()
        _observe(request.url.path, 200, started_at)
        return CompletionResponseBody(response=result.text)

    return app


app = create_app()


def main() -> None:  # pragma: no cover
    try:
        import uvicorn
    except ImportError as e:
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "3001"))
    uvicorn.run("urbanix_chat.server:app", host=host, port=port)


if __name__ == "__main__":  # pragma: no cover
    main()
