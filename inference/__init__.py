"""
Model boundary layer for text generation.

This package provides a clean abstraction for model invocation,
allowing the gateway to remain agnostic of the underlying backend.

Supported backends:
- StubModelBackend: Deterministic fake model (fallback, CI/tests)
- OllamaModelBackend: Remote Ollama model server

Example usage:
    from inference import StubModelBackend

    backend = StubModelBackend(stream_delay_s=0)
    text = backend.generate("Hello, world!")
"""

from .errors import (
    GatewayError,
    PromptValidationError,
    BackendError,
    BackendConfigError,
    GenerationCancelled,
    TransportError,
    LoggingError,
)
from .types import BackendKind, BackendConfig, GenerationRequest
from .base import ModelBackend, TokenSink
from .stub import StubModelBackend
from .ollama import OllamaModelBackend

__all__ = [
    "GatewayError",
    "PromptValidationError",
    "BackendError",
    "BackendConfigError",
    "GenerationCancelled",
    "TransportError",
    "LoggingError",
    "BackendKind",
    "BackendConfig",
    "GenerationRequest",
    "ModelBackend",
    "TokenSink",
    "StubModelBackend",
    "OllamaModelBackend",
]
