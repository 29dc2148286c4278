"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add project root to sys.path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from infra import InfraBootstrap, InfraConfig  # noqa: E402


class RecordingSink:
    """Byte sink that keeps everything written and counts flushes."""

    def __init__(self):
        self.headers = {"Content-Length": "42"}
        self.written = bytearray()
        self.flushes = 0

    def write(self, data: bytes) -> int:
        self.written.extend(data)
        return len(data)

    def flush(self) -> None:
        self.flushes += 1

    def lines(self):
        return self.written.decode("utf-8").splitlines()


class FragmentCollector:
    """Plain token sink for backend tests."""

    def __init__(self):
        self.fragments = []

    def write(self, fragment: str) -> None:
        self.fragments.append(fragment)


@pytest.fixture
def log_path(tmp_path):
    """Interaction log location inside the test's temp dir."""
    return tmp_path / "logs" / "log.jsonl"


@pytest.fixture
def stub_config(log_path):
    """Infra config serving the unpaced stub backend."""
    return InfraConfig(
        llm_backend="stub",
        ollama_base_url="",
        ollama_model="",
        ollama_timeout_s=5,
        llm_fallback=True,
        stub_stream_delay_s=0,
        interaction_log_path=str(log_path),
    )


@pytest.fixture
def stub_infra(stub_config):
    """Bootstrap built from stub_config, shut down after the test."""
    infra = InfraBootstrap(stub_config)
    yield infra
    infra.shutdown()


@pytest.fixture
def recording_sink():
    return RecordingSink()


@pytest.fixture
def collector():
    return FragmentCollector()
