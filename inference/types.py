from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import BackendConfigError, PromptValidationError


class BackendKind(str, Enum):
    """Closed set of backend variants."""

    OLLAMA = "ollama"   # remote model server
    STUB = "stub"

    @classmethod
    def parse(cls, value: str) -> "BackendKind":
        """Map a configuration string onto a backend kind."""
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            raise BackendConfigError(f"unsupported LLM type: {value}") from None


@dataclass(frozen=True)
class GenerationRequest:
    prompt: str

    @classmethod
    def create(cls, prompt: Optional[str]) -> "GenerationRequest":
        """Build a request, rejecting prompts that are blank after trimming."""
        if prompt is None or not prompt.strip():
            raise PromptValidationError("prompt cannot be empty")
        return cls(prompt=prompt)


@dataclass(frozen=True)
class BackendConfig:
    """
    Backend configuration.

    kind=ollama requires both endpoint and model; a violating config
    cannot be constructed.
    """

    kind: BackendKind
    endpoint: Optional[str] = None
    model: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.kind, BackendKind):
            object.__setattr__(self, "kind", BackendKind.parse(self.kind))

        if self.kind is BackendKind.OLLAMA:
            if not self.endpoint:
                raise BackendConfigError("OLLAMA_BASE_URL is not set")
            if not self.model:
                raise BackendConfigError("OLLAMA_MODEL is not set")
