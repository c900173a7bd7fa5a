from __future__ import annotations

import re
import secrets as secrets_module
import uuid

COMPLETION_PATHS = ("/completion", "/api/chat")

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{8,128}$")


def coerce_request_id(value: str | None) -> str:
    if value and _REQUEST_ID_RE.fullmatch(value):
        return value
    return uuid.uuid4().hex


def parse_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2:
        return None
    scheme, token = parts[0].strip(), parts[1].strip()
    if scheme.lower() != "bearer" or not token:
        return None
    return token


def constant_time_equals(a: str, b: str) -> bool:
    return secrets_module.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def is_completion_path(path: str) -> bool:
    return path.rstrip("/") in COMPLETION_PATHS


def install_middlewares(app, *, cfg) -> None:
    """Install request-id, header, body-size, auth, host and CORS middleware."""
    import structlog
    from fastapi.responses import JSONResponse
    from starlette.middleware.base import BaseHTTPMiddleware
    from starlette.requests import Request

    from .schemas import make_error_response

    class RequestIdMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            request_id = coerce_request_id(request.headers.get("x-request-id"))
            request.state.request_id = request_id
            structlog.contextvars.bind_contextvars(request_id=request_id)
            response = None
            try:
                response = await call_next(request)
            finally:
                structlog.contextvars.clear_contextvars()
            if response is not None:
                response.headers.setdefault("X-Request-Id", request_id)
            return response

    class SecurityHeadersMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            response = await call_next(request)
            response.headers.setdefault("X-Content-Type-Options", "nosniff")
            response.headers.setdefault("X-Frame-Options", "DENY")
            response.headers.setdefault("Referrer-Policy", "no-referrer")
            if is_completion_path(request.url.path):
                response.headers.setdefault("Cache-Control", "no-store")
                response.headers.setdefault("Pragma", "no-cache")
            return response

    class MaxBodySizeMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            limit = int(getattr(cfg, "max_request_body_bytes", 0) or 0)
            if limit > 0 and request.method == "POST" and is_completion_path(request.url.path):
                content_length = request.headers.get("content-length")
                too_large = bool(content_length and content_length.isdigit() and int(content_length) > limit)
                if not too_large:
                    too_large = len(await request.body()) > limit
                if too_large:
                    return JSONResponse(
                        status_code=413,
                        content=make_error_response(
                            error="Request body too large.",
                            request_id=getattr(request.state, "request_id", None),
                        ),
                    )
            return await call_next(request)

    class BearerAuthMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            expected = getattr(cfg, "server_auth_token", None)
            if not expected or not is_completion_path(request.url.path) or request.method == "OPTIONS":
                return await call_next(request)

            token = parse_bearer_token(request.headers.get("authorization")) or request.headers.get(
                "x-api-key"
            )
            if not token or not constant_time_equals(token, expected):
                return JSONResponse(
                    status_code=401,
                    headers={"WWW-Authenticate": 'Bearer realm="urbanix-chat"'},
                    content=make_error_response(
                        error="Missing or invalid authentication token.",
                        request_id=getattr(request.state, "request_id", None),
                    ),
                )
            return await call_next(request)

    app.add_middleware(MaxBodySizeMiddleware)
    app.add_middleware(BearerAuthMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    # Outermost, so X-Request-Id is set even when inner middleware short-circuits.
    app.add_middleware(RequestIdMiddleware)

    allowed_hosts: list[str] = list(getattr(cfg, "allowed_hosts", []) or [])
    if allowed_hosts:
        from starlette.middleware.trustedhost import TrustedHostMiddleware

        app.add_middleware(TrustedHostMiddleware, allowed_hosts=allowed_hosts)

    cors_allow_origins: list[str] = list(getattr(cfg, "cors_allow_origins", []) or [])
    if cors_allow_origins:
        from fastapi.middleware.cors import CORSMiddleware

        allow_credentials = bool(getattr(cfg, "cors_allow_credentials", False))
        if allow_credentials and "*" in cors_allow_origins:
            raise ValueError("CORS_ALLOW_ORIGINS cannot include '*' when CORS_ALLOW_CREDENTIALS=true.")
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_allow_origins,
            allow_credentials=allow_credentials,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type", "X-Request-Id", "X-API-Key"],
            expose_headers=["X-Request-Id", "X-Serving-Model", "X-Used-Fallback"],
            max_age=600,
        )
