import threading
from abc import ABC, abstractmethod
from typing import Optional, Protocol

from .types import BackendKind


class TokenSink(Protocol):
    """Anything a backend can stream fragments into."""

    def write(self, fragment: str) -> None:
        ...


class ModelBackend(ABC):
    """
    Abstract model boundary.
    Gateway code must depend ONLY on this interface.

    Implementations are stateless after construction and safe to share
    across concurrent requests.
    """

    kind: BackendKind
    model: Optional[str] = None

    @abstractmethod
    def generate(self, prompt: str, cancel: Optional[threading.Event] = None) -> str:
        """
        Return the full completion for a prompt.

        Args:
            prompt: Validated, non-blank prompt
            cancel: Set by the caller when the client goes away

        Raises:
            BackendError: network failure, bad status, malformed payload
        """
        raise NotImplementedError

    @abstractmethod
    def generate_stream(
        self,
        prompt: str,
        sink: TokenSink,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        """
        Write the completion into ``sink`` fragment by fragment.

        Concatenated fragments equal the full completion. On failure some
        fragments may already have been written; they are not retracted.

        Raises:
            BackendError: same conditions as generate()
            TransportError: the sink rejected a write
        """
        raise NotImplementedError
