"""
Append-only interaction log.

One JSON line per request attempt, success or failure:
- Single append handle, opened once, owned until close()
- Thread-safe (one writer at a time, lines never interleave)
- Never truncated or rewritten
- No rotation or retention
"""

import itertools
import json
import logging
import os
import platform
import threading
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO, Tuple, Union

import psutil

from inference.errors import LoggingError

logger = logging.getLogger(__name__)

_sequence = itertools.count(1)


@dataclass(frozen=True)
class LogRecord:
    """One immutable audit entry for a single request."""

    # Request details
    id: str
    timestamp: str
    duration_ms: int

    # Input details
    prompt: str
    llm_type: str
    llm_model: str
    streaming: bool

    # Response details
    response: str
    token_count: int
    response_size: int

    # Status details
    success: bool
    error: Optional[str] = None
    fallback_reason: Optional[str] = None

    # Process details
    python_version: str = ""
    active_threads: int = 0
    memory_bytes: int = 0

    def to_json(self) -> str:
        data = asdict(self)
        # error is present iff the request failed
        if data["error"] is None:
            data.pop("error")
        if data["fallback_reason"] is None:
            data.pop("fallback_reason")
        return json.dumps(data, ensure_ascii=False)


def generate_request_id() -> str:
    """Unique id from wall-clock nanoseconds, process id and a counter."""
    return f"{time.time_ns()}-{os.getpid()}-{next(_sequence)}"


def count_tokens(text: str) -> int:
    """
    Approximate token count as the number of whitespace-delimited runs.

    Not a real tokenizer; good enough for relative sizing in the log.
    """
    return len(text.split()) if text else 0


def process_snapshot() -> Tuple[int, int]:
    """Return (active thread count, resident memory in bytes)."""
    try:
        memory = psutil.Process(os.getpid()).memory_info().rss
    except psutil.Error as e:
        logger.debug(f"Failed to read process memory: {e}")
        memory = 0
    return threading.active_count(), memory


class InteractionLogger:
    """
    Records every generation request to an append-only JSONL store.

    The backend identity (kind, model, fallback reason) is fixed at
    construction so records reflect the backend actually serving, not
    the one that was requested.
    """

    def __init__(
        self,
        log_path: Union[str, Path],
        backend_kind: str,
        backend_model: Optional[str] = None,
        fallback_reason: Optional[str] = None,
    ):
        """
        Open the log store in append mode.

        Args:
            log_path: JSONL file; parent directories are created
            backend_kind: Kind of the serving backend ("ollama", "stub")
            backend_model: Model name, if the backend has one
            fallback_reason: Why the configured backend was replaced, if it was

        Raises:
            LoggingError: the store cannot be opened
        """
        self.log_path = Path(log_path)
        self.backend_kind = str(getattr(backend_kind, "value", backend_kind))
        self.backend_model = backend_model or ""
        self.fallback_reason = fallback_reason

        self._lock = threading.Lock()
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            self._file: Optional[TextIO] = open(self.log_path, "a", encoding="utf-8")
        except OSError as e:
            raise LoggingError(f"failed to open log file {self.log_path}: {e}") from e

    @property
    def closed(self) -> bool:
        return self._file is None

    def record_success(
        self,
        prompt: str,
        response: str,
        streaming: bool,
        started_at: Optional[float] = None,
    ) -> LogRecord:
        """Append a record for a request that produced a response."""
        return self._append(
            self._build(prompt, response, streaming, started_at, success=True)
        )

    def record_failure(
        self,
        prompt: str,
        error: Union[BaseException, str],
        streaming: bool,
        started_at: Optional[float] = None,
    ) -> LogRecord:
        """Append a record for a request that failed; the response is empty."""
        return self._append(
            self._build(prompt, "", streaming, started_at, success=False, error=str(error))
        )

    def close(self) -> None:
        """Close the store. Closing twice is a no-op."""
        with self._lock:
            if self._file is None:
                return
            try:
                self._file.close()
            except OSError as e:
                raise LoggingError(f"failed to close log file: {e}") from e
            self._file = None

    def __enter__(self) -> "InteractionLogger":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _build(
        self,
        prompt: str,
        response: str,
        streaming: bool,
        started_at: Optional[float],
        success: bool,
        error: Optional[str] = None,
    ) -> LogRecord:
        now = time.time()
        start = started_at if started_at is not None else now
        threads, memory = process_snapshot()

        return LogRecord(
            id=generate_request_id(),
            timestamp=datetime.fromtimestamp(start, tz=timezone.utc).isoformat(),
            duration_ms=max(0, int((now - start) * 1000)),
            prompt=prompt or "",
            llm_type=self.backend_kind,
            llm_model=self.backend_model,
            streaming=streaming,
            response=response,
            token_count=count_tokens(response),
            response_size=len(response.encode("utf-8")),
            success=success,
            error=error,
            fallback_reason=self.fallback_reason,
            python_version=platform.python_version(),
            active_threads=threads,
            memory_bytes=memory,
        )

    def _append(self, record: LogRecord) -> LogRecord:
        try:
            line = record.to_json()
        except (TypeError, ValueError) as e:
            raise LoggingError(f"failed to marshal log entry: {e}") from e

        with self._lock:
            if self._file is None:
                raise LoggingError("log store is closed")
            try:
                self._file.write(line + "\n")
                self._file.flush()
            except OSError as e:
                raise LoggingError(f"failed to write to log file: {e}") from e

        return record


def read_records(log_path: Union[str, Path]) -> List[Dict[str, Any]]:
    """
    Parse every line of a log store.

    Operator-side reader for the audit trail; the gateway itself only
    appends. See the module entry point for a summary view.
    """
    records = []
    with open(log_path, encoding="utf-8") as f:
        for line in f:
            if line.strip():
                records.append(json.loads(line))
    return records


def last_record(log_path: Union[str, Path]) -> Optional[Dict[str, Any]]:
    """Most recent record in the store, or None when it is empty."""
    records = read_records(log_path)
    return records[-1] if records else None


def summarize(records: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Counts and timing over a list of parsed records."""
    failures = [r for r in records if not r.get("success")]
    durations = [r.get("duration_ms", 0) for r in records]
    return {
        "total": len(records),
        "failures": len(failures),
        "streaming": sum(1 for r in records if r.get("streaming")),
        "fallback": sum(1 for r in records if r.get("fallback_reason")),
        "avg_duration_ms": round(sum(durations) / len(durations), 1) if durations else 0,
        "last_error": failures[-1].get("error") if failures else None,
    }


if __name__ == "__main__":
    # Inspect the interaction log: python -m observability.interaction_log [path]
    import sys

    path = sys.argv[1] if len(sys.argv) > 1 else os.getenv("INTERACTION_LOG_PATH", "logs/log.jsonl")
    summary = summarize(read_records(path))
    print(f"Interaction log: {path}")
    for key, value in summary.items():
        print(f"  {key}: {value}")
