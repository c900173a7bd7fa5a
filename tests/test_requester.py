import json

import httpx
import pytest

from urbanix_chat import ChatProxyConfig, CompletionRequester, FailureReport, ModelAttemptResult
from urbanix_chat.errors import ExhaustionError, ValidationError
from urbanix_chat.requester import (
    BACKEND_DOWN_GUIDANCE,
    SERVER_CONNECTION_GUIDANCE,
    guidance_for,
)


def _cfg(**kwargs) -> ChatProxyConfig:
    base = dict(
        default_model="mistral",
        fallback_models=["orca-mini", "mistral"],
        chat_server_url="http://chat.test",
        requester_iterates_candidates=False,
    )
    base.update(kwargs)
    return ChatProxyConfig(**base)


def _requester(handler, **cfg_kwargs) -> CompletionRequester:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://chat.test")
    return CompletionRequester(_cfg(**cfg_kwargs), client=client)


@pytest.mark.asyncio
async def test_server_side_fallback_makes_a_single_call_with_primary_model():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/completion"
        body = json.loads(request.content.decode("utf-8"))
        seen.append(body["model"])
        assert "Current Urban Data Context" in body["prompt"]
        assert body["prompt"].endswith("User: How green are we?\nAssistant:")
        return httpx.Response(200, json={"response": "Quite green."})

    r = _requester(handler)
    try:
        out = await r.ask(
            "  How green are we?  ",
            districts=[{"airQuality": 1, "healthScore": 1, "mobilityEfficiency": 1, "greenSpaceAccess": 1, "populationDensity": 1}],
        )
    finally:
        await r.close()

    assert out == "Quite green."
    assert seen == ["mistral"]


@pytest.mark.asyncio
async def test_client_side_iteration_uses_configured_candidates_in_order():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content.decode("utf-8"))
        assert body["fallback"] is False
        model = body["model"]
        seen.append(model)
        if model == "mistral":
            return httpx.Response(502, json={"error": "Failed to communicate with inference backend", "details": "x"})
        return httpx.Response(200, json={"response": "from orca"})

    r = _requester(handler, requester_iterates_candidates=True)
    try:
        out = await r.request_completion("prompt")
    finally:
        await r.close()

    assert out == "from orca\n\n_(Used fallback model 'orca-mini')_"
    assert seen == ["mistral", "orca-mini"]


@pytest.mark.asyncio
async def test_empty_message_raises_without_calls():
    def handler(_: httpx.Request) -> httpx.Response:  # pragma: no cover
        raise AssertionError("no request expected")

    r = _requester(handler)
    try:
        with pytest.raises(ValidationError):
            await r.ask("   ")
    finally:
        await r.close()


@pytest.mark.asyncio
async def test_400_from_server_is_not_retried():
    calls = {"n": 0}

    def handler(_: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(400, json={"error": "Prompt is required"})

    r = _requester(handler, requester_iterates_candidates=True)
    try:
        with pytest.raises(ValidationError, match="Prompt is required"):
            await r.request_completion("prompt")
    finally:
        await r.close()
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_unreachable_server_maps_to_connection_guidance():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    r = _requester(handler)
    try:
        out = await r.ask("hello")
    finally:
        await r.close()

    assert out == SERVER_CONNECTION_GUIDANCE


@pytest.mark.asyncio
async def test_backend_down_maps_to_backend_guidance():
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(
            502,
            json={
                "error": "Failed to communicate with inference backend",
                "details": "Inference backend unreachable: ConnectError: refused",
            },
        )

    r = _requester(handler)
    try:
        out = await r.ask("hello")
    finally:
        await r.close()

    assert out == BACKEND_DOWN_GUIDANCE


@pytest.mark.asyncio
async def test_empty_responses_exhaust_candidates():
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"response": "  "})

    r = _requester(handler, requester_iterates_candidates=True)
    try:
        with pytest.raises(ExhaustionError) as exc:
            await r.request_completion("prompt")
    finally:
        await r.close()

    assert exc.value.report == FailureReport(last_error="Empty response from chat server", exhausted=True)


def test_guidance_for_missing_model_names_a_model_to_pull():
    err = ExhaustionError(
        FailureReport(last_error="Backend error: 404 - {\"error\":\"model 'x' not found\"}", exhausted=True)
    )
    out = guidance_for(err, suggested_model="tinyllama")
    assert "No Model Available" in out
    assert "ollama pull tinyllama" in out


def test_guidance_for_no_candidates_is_no_model():
    out = guidance_for(ExhaustionError(FailureReport(last_error=None, exhausted=False)))
    assert "No Model Available" in out


def test_guidance_for_unknown_error_shows_detail():
    err = ExhaustionError(FailureReport(last_error="Backend error: 500 - out of memory", exhausted=True))
    assert guidance_for(err) == "**Error**: Backend error: 500 - out of memory"


class _RecordingBackend:
    def __init__(self, answers: dict[str, str] | None = None):
        self.answers = answers or {}
        self.calls: list[str] = []

    async def generate(self, model, prompt, *, temperature=None):
        self.calls.append(model)
        if model in self.answers:
            return ModelAttemptResult.succeeded(model, self.answers[model])
        return ModelAttemptResult.failed(model, f"Backend error: 500 - {model} down", status_code=500)

    async def close(self):
        return None


def _requester_against_app(backend: _RecordingBackend, cfg: ChatProxyConfig) -> CompletionRequester:
    pytest.importorskip("fastapi")
    from urbanix_chat.proxy import FallbackProxy
    from urbanix_chat.server import create_app

    app = create_app(cfg=cfg, proxy=FallbackProxy(cfg, session=backend))
    client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")
    return CompletionRequester(cfg, client=client)


@pytest.mark.asyncio
async def test_client_iteration_through_app_tries_each_model_once():
    cfg = _cfg(default_model="A", fallback_models=["B", "C"], requester_iterates_candidates=True, unannotated_models=[], enable_metrics=False)
    backend = _RecordingBackend()
    r = _requester_against_app(backend, cfg)
    try:
        with pytest.raises(ExhaustionError) as exc:
            await r.request_completion("What reduces emissions?")
    finally:
        await r.close()

    assert backend.calls == ["A", "B", "C"]
    assert exc.value.report.last_error == "Backend error: 500 - C down"


@pytest.mark.asyncio
async def test_client_iteration_through_app_annotates_fallback_once():
    cfg = _cfg(default_model="A", fallback_models=["B", "C"], requester_iterates_candidates=True, unannotated_models=[], enable_metrics=False)
    backend = _RecordingBackend({"B": "Increase transit investment."})
    r = _requester_against_app(backend, cfg)
    try:
        out = await r.request_completion("What reduces emissions?")
    finally:
        await r.close()

    assert backend.calls == ["A", "B"]
    assert out == "Increase transit investment.\n\n_(Used fallback model 'B')_"


@pytest.mark.asyncio
async def test_server_fallback_through_app_matches_client_iteration():
    cfg = _cfg(default_model="A", fallback_models=["B", "C"], unannotated_models=[], enable_metrics=False)
    backend = _RecordingBackend({"B": "Increase transit investment."})
    r = _requester_against_app(backend, cfg)
    try:
        out = await r.request_completion("What reduces emissions?")
    finally:
        await r.close()

    assert backend.calls == ["A", "B"]
    assert out == "Increase transit investment.\n\n_(Used fallback model 'B')_"
