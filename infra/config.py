"""
Infrastructure configuration system.

Environment-based backend selection with sensible defaults.
A backend that cannot be configured degrades to the stub unless
fallback is switched off; degradation is reported, never hidden.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from inference import (
    BackendConfig,
    BackendConfigError,
    BackendKind,
    ModelBackend,
    OllamaModelBackend,
    StubModelBackend,
)

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class BackendSelection:
    """
    Outcome of backend selection.

    ``requested_kind`` is what configuration asked for; ``kind`` is what
    actually serves. ``fallback_reason`` is set iff they differ because
    the requested backend could not be built.
    """
    backend: ModelBackend
    kind: BackendKind
    model: Optional[str]
    requested_kind: str
    fallback_reason: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.fallback_reason is not None

    def describe(self) -> dict:
        return {
            "kind": self.kind.value,
            "model": self.model,
            "requested_kind": self.requested_kind,
            "degraded": self.degraded,
            "fallback_reason": self.fallback_reason,
        }


def build_backend(
    config: BackendConfig,
    timeout_s: Optional[float] = 120,
    stub_stream_delay_s: float = 0.1,
) -> ModelBackend:
    """One constructor per variant; raises BackendConfigError on bad input."""
    if config.kind is BackendKind.OLLAMA:
        return OllamaModelBackend(
            model_name=config.model,
            base_url=config.endpoint,
            timeout_s=timeout_s,
        )
    return StubModelBackend(stream_delay_s=stub_stream_delay_s)


def select_backend(
    kind: str,
    endpoint: Optional[str] = None,
    model: Optional[str] = None,
    timeout_s: Optional[float] = 120,
    stub_stream_delay_s: float = 0.1,
    allow_fallback: bool = True,
) -> BackendSelection:
    """
    Validate configuration and construct the backend.

    If validation or construction fails and ``allow_fallback`` is set,
    the stub backend is returned instead with the reason attached.

    Raises:
        BackendConfigError: configuration invalid and fallback disabled
    """
    requested = kind.value if isinstance(kind, BackendKind) else str(kind or "")
    try:
        config = BackendConfig(kind=BackendKind.parse(requested), endpoint=endpoint, model=model)
        backend = build_backend(config, timeout_s=timeout_s, stub_stream_delay_s=stub_stream_delay_s)
    except BackendConfigError as e:
        if not allow_fallback:
            raise
        logger.warning(f"LLM backend '{requested}' unavailable ({e}); falling back to stub")
        return BackendSelection(
            backend=StubModelBackend(stream_delay_s=stub_stream_delay_s),
            kind=BackendKind.STUB,
            model=None,
            requested_kind=requested,
            fallback_reason=str(e),
        )

    logger.info(f"LLM backend selected: {backend.kind.value} (model={backend.model})")
    return BackendSelection(
        backend=backend,
        kind=backend.kind,
        model=backend.model,
        requested_kind=requested,
    )


@dataclass
class InfraConfig:
    """Infrastructure configuration from environment."""

    # LLM
    llm_backend: str
    ollama_base_url: str
    ollama_model: str
    ollama_timeout_s: float
    llm_fallback: bool
    stub_stream_delay_s: float

    # Interaction log
    interaction_log_path: str

    @classmethod
    def from_env(cls) -> "InfraConfig":
        """
        Load configuration from environment variables.

        Ollama endpoint and model have no defaults: an unconfigured
        environment is served by the stub backend.
        """
        return cls(
            # LLM Configuration
            llm_backend=os.getenv("LLM_BACKEND", "ollama"),
            ollama_base_url=os.getenv("OLLAMA_BASE_URL", ""),
            ollama_model=os.getenv("OLLAMA_MODEL", ""),
            ollama_timeout_s=float(os.getenv("OLLAMA_TIMEOUT_S", "120")),
            llm_fallback=_env_bool("LLM_FALLBACK", "true"),
            stub_stream_delay_s=int(os.getenv("STUB_STREAM_DELAY_MS", "100")) / 1000.0,

            # Interaction log
            interaction_log_path=os.getenv("INTERACTION_LOG_PATH", "logs/log.jsonl"),
        )

    def create_llm_backend(self) -> BackendSelection:
        """Select the LLM backend, falling back to the stub if allowed."""
        return select_backend(
            kind=self.llm_backend,
            endpoint=self.ollama_base_url,
            model=self.ollama_model,
            timeout_s=self.ollama_timeout_s,
            stub_stream_delay_s=self.stub_stream_delay_s,
            allow_fallback=self.llm_fallback,
        )


def get_config() -> InfraConfig:
    """Get global infrastructure configuration."""
    return InfraConfig.from_env()
