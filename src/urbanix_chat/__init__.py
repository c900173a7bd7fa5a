from .config import ChatProxyConfig
from .contracts import AttemptOutcome, CompletionRequest, CompletionResponse, FailureReport, ModelAttemptResult
from .ollama_session import OllamaSession
from .proxy import FallbackProxy
from .requester import CompletionRequester

__all__ = [
    "AttemptOutcome",
    "ChatProxyConfig",
    "CompletionRequest",
    "CompletionRequester",
    "CompletionResponse",
    "FailureReport",
    "FallbackProxy",
    "ModelAttemptResult",
    "OllamaSession",
]
