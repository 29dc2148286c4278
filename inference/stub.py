import threading
import time
from typing import Optional

from .base import ModelBackend, TokenSink
from .errors import GenerationCancelled
from .types import BackendKind

_RESPONSE_TEMPLATE = "This is a stubbed response to your prompt: {prompt}"
_STREAM_TEMPLATE = "This is a stubbed streaming response to your prompt:"


class StubModelBackend(ModelBackend):
    """
    Deterministic fake model for testing and degraded-mode operation.

    Same prompt in, same text out. Used as the fallback whenever the
    configured backend cannot be constructed.
    """

    kind = BackendKind.STUB
    model = None

    def __init__(self, stream_delay_s: float = 0.1):
        """
        Args:
            stream_delay_s: Pause between streamed words; 0 disables pacing
        """
        self.stream_delay_s = stream_delay_s

    def generate(self, prompt: str, cancel: Optional[threading.Event] = None) -> str:
        return _RESPONSE_TEMPLATE.format(prompt=prompt)

    def generate_stream(
        self,
        prompt: str,
        sink: TokenSink,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        """
        Write the template words and then the prompt, one per fragment,
        each terminated by a newline.
        """
        if cancel is not None and cancel.is_set():
            raise GenerationCancelled("generation cancelled by caller")

        words = _STREAM_TEMPLATE.split() + [prompt]
        for i, word in enumerate(words):
            if i > 0:
                self._pause(cancel)
            sink.write(f"{word}\n")

    def _pause(self, cancel: Optional[threading.Event]) -> None:
        """Pacing delay between words; raises once the caller cancels."""
        if cancel is None:
            if self.stream_delay_s > 0:
                time.sleep(self.stream_delay_s)
            return

        if cancel.wait(self.stream_delay_s) or cancel.is_set():
            raise GenerationCancelled("generation cancelled by caller")
