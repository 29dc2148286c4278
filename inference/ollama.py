import json
import logging
import threading
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import requests

from .base import ModelBackend, TokenSink
from .errors import BackendConfigError, BackendError, GenerationCancelled
from .types import BackendKind

logger = logging.getLogger(__name__)

READ_CHUNK_BYTES = 8192


def _validate_base_url(url: str) -> str:
    """
    Reject base URLs that are not plain http(s) or carry CR/LF.

    Raises:
        BackendConfigError: malformed URL
    """
    parsed = urlparse(url)

    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise BackendConfigError(f"Ollama base_url must be http(s), got {url!r}")

    if "\r" in url or "\n" in url:
        raise BackendConfigError("CRLF injection detected in base_url")

    return url.rstrip("/")


def _check_cancel(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise GenerationCancelled("generation cancelled by caller")


def _decode_object(raw: Any, what: str) -> Dict[str, Any]:
    if not isinstance(raw, dict) or not isinstance(raw.get("response", ""), str):
        raise BackendError(f"failed to decode {what}: unexpected payload {raw!r}")
    return raw


class OllamaModelBackend(ModelBackend):
    """
    Ollama backend for local model inference.

    Uses /api/generate. The non-streaming call expects a single
    {"response", "done"} object; the streaming call reads one such
    object per line and forwards each "response" as soon as it arrives.
    """

    kind = BackendKind.OLLAMA

    def __init__(
        self,
        model_name: str,
        base_url: str = "http://localhost:11434",
        timeout_s: Optional[float] = 120,
    ):
        """
        Initialize Ollama backend.

        Args:
            model_name: Name of the model (e.g. "phi3:mini", "llama3")
            base_url:   Base URL of the Ollama service
            timeout_s:  Per-request deadline (connect and read)

        Raises:
            BackendConfigError: empty model or malformed base URL
        """
        if not model_name:
            raise BackendConfigError("OLLAMA_MODEL is not set")
        if not base_url:
            raise BackendConfigError("OLLAMA_BASE_URL is not set")

        self.model = model_name
        self.base_url = _validate_base_url(base_url)
        self.timeout_s = timeout_s

    @property
    def generate_url(self) -> str:
        return f"{self.base_url}/api/generate"

    def _post(self, prompt: str, stream: bool) -> requests.Response:
        """
        Send the generate request; the body is always read incrementally
        so the caller can drop the connection on cancel.
        """
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": stream,
        }
        try:
            resp = requests.post(
                self.generate_url,
                json=payload,
                timeout=self.timeout_s,
                stream=True,
            )
        except requests.RequestException as e:
            raise BackendError(f"failed to send request: {e}") from e

        if not 200 <= resp.status_code < 300:
            resp.close()
            raise BackendError(f"unexpected status code: {resp.status_code}")

        return resp

    def generate(self, prompt: str, cancel: Optional[threading.Event] = None) -> str:
        """
        Generate a full completion using Ollama /api/generate.

        The single {"response", "done"} object is read in chunks; a cancel
        between chunks closes the upstream connection.
        """
        _check_cancel(cancel)

        resp = self._post(prompt, stream=False)
        body = bytearray()
        with resp:
            try:
                for chunk in resp.iter_content(chunk_size=READ_CHUNK_BYTES):
                    _check_cancel(cancel)
                    body.extend(chunk)
            except requests.RequestException as e:
                raise BackendError(f"failed to read response: {e}") from e

        try:
            data = _decode_object(json.loads(bytes(body)), "response")
        except ValueError as e:
            raise BackendError(f"failed to decode response: {e}") from e

        return data.get("response", "")

    def generate_stream(
        self,
        prompt: str,
        sink: TokenSink,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        """
        Stream a completion using Ollama /api/generate with stream=true.

        Flow:
          1. POST with stream=true; a non-2xx status fails before any write
          2. Decode one JSON object per line
          3. Forward its "response" to the sink immediately, empty ones included
          4. Stop after the object marked done, or at end of stream
        """
        _check_cancel(cancel)

        resp = self._post(prompt, stream=True)
        fragments = 0
        with resp:
            try:
                lines = resp.iter_lines(decode_unicode=True)
                for line in lines:
                    _check_cancel(cancel)

                    if not line or not line.strip():
                        continue

                    try:
                        data = _decode_object(json.loads(line), "stream")
                    except ValueError as e:
                        raise BackendError(f"failed to decode stream: {e}") from e

                    sink.write(data.get("response", ""))
                    fragments += 1

                    if data.get("done"):
                        break
            except requests.RequestException as e:
                raise BackendError(f"failed to read stream: {e}") from e

        logger.debug(f"Ollama stream finished after {fragments} fragments")
