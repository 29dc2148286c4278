"""
Generation Route Tests

Covers:
  - POST /generate: success, validation (400), backend failure (500)
  - POST /generate/stream: chunked NDJSON body, early failure (500),
    mid-stream failure (200, truncated body)
  - client disconnect cancels the backend, before and after the first token
  - interaction log records for every outcome
  - log write failures never change the response
  - health and config endpoints
"""

import asyncio
import dataclasses
import json
import threading
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from api import generate_router, get_infra
from inference import BackendError, GenerationCancelled, ModelBackend, StubModelBackend
from inference.types import BackendKind
from infra import InfraBootstrap
from main import app
from observability import last_record, read_records


class PartialFailureBackend(ModelBackend):
    """Writes two fragments, then fails."""

    kind = BackendKind.STUB
    model = None

    def generate(self, prompt, cancel=None):
        raise BackendError("model crashed")

    def generate_stream(self, prompt, sink, cancel=None):
        sink.write("first ")
        sink.write("second ")
        raise BackendError("model crashed mid-stream")


class WaitForCancelBackend(ModelBackend):
    """Blocks until the caller's cancel event fires, then stops."""

    kind = BackendKind.STUB
    model = None

    def __init__(self):
        self.saw_cancel = threading.Event()

    def _wait(self, cancel):
        if cancel is None or not cancel.wait(5):
            raise BackendError("cancel never arrived")
        self.saw_cancel.set()
        raise GenerationCancelled("generation cancelled by caller")

    def generate(self, prompt, cancel=None):
        self._wait(cancel)

    def generate_stream(self, prompt, sink, cancel=None):
        self._wait(cancel)


def use_backend(infra, backend):
    infra.selection = dataclasses.replace(infra.selection, backend=backend)


@pytest.fixture
def client(stub_infra):
    app.dependency_overrides[get_infra] = lambda: stub_infra
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def ollama_infra(stub_config):
    stub_config.llm_backend = "ollama"
    stub_config.ollama_base_url = "http://model-server:11434"
    stub_config.ollama_model = "test-model"
    infra = InfraBootstrap(stub_config)
    yield infra
    infra.shutdown()


@pytest.fixture
def ollama_client(ollama_infra):
    app.dependency_overrides[get_infra] = lambda: ollama_infra
    yield TestClient(app)
    app.dependency_overrides.clear()


def error_response(status_code):
    resp = MagicMock()
    resp.status_code = status_code
    return resp


# ─────────────────────────────────────────────────────
# POST /generate
# ─────────────────────────────────────────────────────


class TestGenerate:
    def test_success(self, client, log_path):
        response = client.post("/generate", json={"prompt": "Tell me a joke"})

        assert response.status_code == 200
        assert "Tell me a joke" in response.json()["response"]

        record = last_record(log_path)
        assert record["success"] is True
        assert record["streaming"] is False
        assert record["prompt"] == "Tell me a joke"
        assert record["response"] == response.json()["response"]
        assert record["llm_type"] == "stub"

    def test_malformed_body(self, client, log_path):
        response = client.post(
            "/generate",
            content="{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid request format"}
        assert last_record(log_path)["success"] is False

    def test_missing_prompt(self, client):
        response = client.post("/generate", json={})

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request format"

    def test_non_string_prompt(self, client):
        response = client.post("/generate", json={"prompt": 42})
        assert response.status_code == 400

    @pytest.mark.parametrize("prompt", ["", "   ", "\n\t"])
    def test_blank_prompt(self, client, log_path, prompt):
        response = client.post("/generate", json={"prompt": prompt})

        assert response.status_code == 400
        assert response.json() == {"error": "prompt cannot be empty"}

        record = last_record(log_path)
        assert record["success"] is False
        assert record["error"] == "prompt cannot be empty"

    def test_blank_prompt_never_reaches_backend(self, client, stub_infra):
        backend = MagicMock(spec=ModelBackend)
        use_backend(stub_infra, backend)

        client.post("/generate", json={"prompt": "  "})

        backend.generate.assert_not_called()

    def test_backend_failure(self, client, stub_infra, log_path):
        use_backend(stub_infra, PartialFailureBackend())

        response = client.post("/generate", json={"prompt": "x"})

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to generate response"}

        record = last_record(log_path)
        assert record["success"] is False
        assert record["error"] == "model crashed"

    def test_remote_500(self, ollama_client, log_path):
        with patch("inference.ollama.requests.post", return_value=error_response(500)):
            response = ollama_client.post("/generate", json={"prompt": "x"})

        assert response.status_code == 500
        record = last_record(log_path)
        assert record["llm_type"] == "ollama"
        assert record["llm_model"] == "test-model"
        assert "unexpected status code: 500" in record["error"]

    def test_log_failure_does_not_change_response(self, client, stub_infra):
        stub_infra.get_interaction_log().close()

        response = client.post("/generate", json={"prompt": "still served"})

        assert response.status_code == 200
        assert "still served" in response.json()["response"]


# ─────────────────────────────────────────────────────
# POST /generate/stream
# ─────────────────────────────────────────────────────


class TestGenerateStream:
    def test_streams_ndjson_tokens(self, client, log_path):
        response = client.post("/generate/stream", json={"prompt": "test prompt"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/json")
        assert "content-length" not in response.headers

        tokens = [json.loads(line)["token"] for line in response.text.splitlines()]
        assert len(tokens) == 10
        assert tokens[0] == "This\n"
        assert "test prompt" in "".join(tokens)

        record = last_record(log_path)
        assert record["success"] is True
        assert record["streaming"] is True
        assert record["response"] == "".join(tokens)

    def test_blank_prompt(self, client, log_path):
        response = client.post("/generate/stream", json={"prompt": " "})

        assert response.status_code == 400
        assert response.json() == {"error": "prompt cannot be empty"}
        assert last_record(log_path)["streaming"] is True

    def test_malformed_body(self, client):
        response = client.post(
            "/generate/stream",
            content=b"\xff\xfe",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400

    def test_remote_500_before_any_token(self, ollama_client, log_path):
        with patch("inference.ollama.requests.post", return_value=error_response(500)):
            response = ollama_client.post("/generate/stream", json={"prompt": "x"})

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to generate response"}

        record = last_record(log_path)
        assert record["success"] is False
        assert record["streaming"] is True
        assert "unexpected status code: 500" in record["error"]

    def test_remote_stream(self, ollama_client, log_path):
        resp = MagicMock()
        resp.status_code = 200
        resp.iter_lines.return_value = iter([
            json.dumps({"response": "Hello", "done": False}),
            json.dumps({"response": " world", "done": True}),
        ])
        with patch("inference.ollama.requests.post", return_value=resp):
            response = ollama_client.post("/generate/stream", json={"prompt": "hi"})

        assert response.status_code == 200
        lines = [json.loads(line) for line in response.text.splitlines()]
        assert lines == [{"token": "Hello"}, {"token": " world"}]
        assert last_record(log_path)["response"] == "Hello world"

    def test_mid_stream_failure_keeps_200(self, client, stub_infra, log_path):
        use_backend(stub_infra, PartialFailureBackend())

        response = client.post("/generate/stream", json={"prompt": "x"})

        assert response.status_code == 200
        lines = [json.loads(line) for line in response.text.splitlines()]
        assert lines == [{"token": "first "}, {"token": "second "}]

        record = last_record(log_path)
        assert record["success"] is False
        assert record["error"] == "model crashed mid-stream"

    def test_one_record_per_request(self, client, log_path):
        for i in range(3):
            client.post("/generate/stream", json={"prompt": f"p{i}"})

        assert [r["prompt"] for r in read_records(log_path)] == ["p0", "p1", "p2"]


# ─────────────────────────────────────────────────────
# Client disconnect
# ─────────────────────────────────────────────────────


def http_scope(path):
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "POST",
        "scheme": "http",
        "path": path,
        "raw_path": path.encode("ascii"),
        "query_string": b"",
        "root_path": "",
        "headers": [(b"host", b"testserver"), (b"content-type", b"application/json")],
        "client": ("testclient", 50000),
        "server": ("testserver", 80),
    }


async def stream_then_hang_up(asgi_app, prompt):
    """Drive the ASGI app directly and disconnect after the first body chunk."""
    request_body = json.dumps({"prompt": prompt}).encode("utf-8")
    first_chunk = asyncio.Event()
    body_sent = False
    chunks = []

    async def receive():
        nonlocal body_sent
        if not body_sent:
            body_sent = True
            return {"type": "http.request", "body": request_body, "more_body": False}
        await first_chunk.wait()
        return {"type": "http.disconnect"}

    async def send(message):
        if message["type"] == "http.response.body" and message.get("body"):
            chunks.append(message["body"])
            first_chunk.set()

    await asyncio.wait_for(asgi_app(http_scope("/generate/stream"), receive, send), timeout=5)
    return chunks


async def wait_for_records(log_path, timeout_s=2.5):
    records = []
    for _ in range(int(timeout_s / 0.05)):
        records = read_records(log_path)
        if records:
            break
        await asyncio.sleep(0.05)
    # Let the producer task settle
    await asyncio.sleep(0.1)
    return records


@pytest.fixture
def router_app(stub_infra):
    """Generation routes alone, without the request-logging middleware."""
    router_only = FastAPI()
    router_only.include_router(generate_router)
    router_only.dependency_overrides[get_infra] = lambda: stub_infra
    return router_only


class TestClientDisconnect:
    @pytest.mark.asyncio
    async def test_hang_up_mid_stream_stops_backend(self, router_app, stub_infra, log_path):
        # Ten words at 0.5s apiece: a full run would outlast the wait below
        use_backend(stub_infra, StubModelBackend(stream_delay_s=0.5))

        chunks = await stream_then_hang_up(router_app, "slow prompt")
        records = await wait_for_records(log_path)

        assert 1 <= len(chunks) < 10
        assert json.loads(chunks[0]) == {"token": "This\n"}

        assert len(records) == 1
        assert records[0]["success"] is False
        assert records[0]["streaming"] is True
        assert records[0]["response"] == ""

    def test_disconnect_cancels_generate(self, client, stub_infra, log_path):
        backend = WaitForCancelBackend()
        use_backend(stub_infra, backend)

        with patch.object(Request, "is_disconnected", new=AsyncMock(return_value=True)):
            response = client.post("/generate", json={"prompt": "x"})

        assert backend.saw_cancel.is_set()
        assert response.status_code == 500

        record = last_record(log_path)
        assert record["success"] is False
        assert record["streaming"] is False
        assert "cancelled" in record["error"]

    def test_disconnect_before_first_token(self, client, stub_infra, log_path):
        backend = WaitForCancelBackend()
        use_backend(stub_infra, backend)

        with patch.object(Request, "is_disconnected", new=AsyncMock(return_value=True)):
            response = client.post("/generate/stream", json={"prompt": "x"})

        assert backend.saw_cancel.is_set()
        assert response.status_code == 500

        records = read_records(log_path)
        assert len(records) == 1
        assert records[0]["streaming"] is True
        assert "cancelled" in records[0]["error"]


# ─────────────────────────────────────────────────────
# Health / info
# ─────────────────────────────────────────────────────


class TestHealthEndpoints:
    def setup_method(self):
        InfraBootstrap.reset()

    def teardown_method(self):
        InfraBootstrap.reset()

    def test_live(self):
        assert TestClient(app).get("/health/live").json() == {"status": "alive"}

    def test_ready_before_bootstrap(self):
        response = TestClient(app).get("/health/ready")
        assert response.status_code == 503

    def test_ready_reports_fallback(self, stub_config):
        stub_config.llm_backend = "ollama"
        InfraBootstrap.get_instance(stub_config)

        body = TestClient(app).get("/health/ready").json()
        assert body["status"] == "degraded"
        assert body["backend"]["kind"] == "stub"
        assert body["backend"]["requested_kind"] == "ollama"

    def test_config_info(self, stub_config):
        InfraBootstrap.get_instance(stub_config)

        body = TestClient(app).get("/config/info").json()
        assert body["backend"]["kind"] == "stub"
        assert body["backend"]["degraded"] is False

    def test_root_lists_endpoints(self):
        body = TestClient(app).get("/").json()
        assert body["endpoints"]["generate_stream"] == "POST /generate/stream"
