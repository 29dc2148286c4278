"""
Generation endpoints.

Request Flow:
  POST /generate        → validate → backend.generate → {"response"}
  POST /generate/stream → validate → backend.generate_stream (worker thread)
                          → TokenStreamWriter → ChunkChannel → chunked body

Every request attempt is recorded in the interaction log. A failing
log write is reported to the application log and never changes the
response.
"""

import asyncio
import logging
import threading
import time
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from inference import (
    BackendError,
    GatewayError,
    GenerationRequest,
    LoggingError,
    PromptValidationError,
)
from infra import InfraBootstrap
from observability import InteractionLogger
from transport import JSON_MEDIA_TYPE, ChunkChannel, StreamClosed, TokenStreamWriter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["generation"])

INVALID_FORMAT = "Invalid request format"
GENERATION_FAILED = "Failed to generate response"
DISCONNECT_POLL_S = 0.25


class GenerateRequest(BaseModel):
    prompt: str


class GenerateResponse(BaseModel):
    response: str


class ErrorResponse(BaseModel):
    error: str


def get_infra() -> InfraBootstrap:
    """Dependency: the process-wide bootstrap (overridden in tests)."""
    return InfraBootstrap.get_instance()


def _audit(record: Callable, *args, **kwargs) -> None:
    """Write an interaction record without letting log failures escape."""
    try:
        record(*args, **kwargs)
    except LoggingError as e:
        logger.error(f"Interaction log write failed: {e}")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def _read_prompt(request: Request) -> str:
    """
    Decode the JSON body into a prompt.

    Raises:
        PromptValidationError: body is not JSON or has no string prompt
    """
    try:
        body = GenerateRequest.model_validate(await request.json())
    except ValueError as e:
        raise PromptValidationError(INVALID_FORMAT) from e
    return body.prompt


async def _validate(
    request: Request,
    log: InteractionLogger,
    streaming: bool,
    started_at: float,
):
    """
    Return a GenerationRequest, or a 400 response after logging the failure.
    """
    prompt = ""
    try:
        prompt = await _read_prompt(request)
        return GenerationRequest.create(prompt)
    except PromptValidationError as e:
        detail = f"{e}: {e.__cause__}" if e.__cause__ is not None else str(e)
        logger.info(f"Rejected generation request: {detail}")
        _audit(log.record_failure, prompt, detail, streaming, started_at)
        return _error(400, str(e))


async def _cancel_on_disconnect(request: Request, cancel: threading.Event) -> None:
    """Set ``cancel`` once the client goes away."""
    while not cancel.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected; cancelling generation")
            cancel.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_S)


def _finish(channel: ChunkChannel, error: Optional[BaseException] = None) -> None:
    try:
        channel.close(error)
    except GatewayError as e:
        logger.warning(f"Could not close stream: {e}")


@router.post(
    "/generate",
    response_model=GenerateResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def generate(request: Request, infra: InfraBootstrap = Depends(get_infra)):
    """
    Generate a complete response for a prompt.

    Expected payload:
    {
        "prompt": "Tell me a joke"
    }
    """
    started_at = time.time()
    log = infra.get_interaction_log()

    validated = await _validate(request, log, streaming=False, started_at=started_at)
    if isinstance(validated, JSONResponse):
        return validated

    backend = infra.get_llm_backend()
    cancel = threading.Event()
    watcher = asyncio.create_task(_cancel_on_disconnect(request, cancel))
    try:
        text = await run_in_threadpool(backend.generate, validated.prompt, cancel)
    except BackendError as e:
        logger.error(f"Generation failed: {e}")
        _audit(log.record_failure, validated.prompt, e, False, started_at)
        return _error(500, GENERATION_FAILED)
    finally:
        watcher.cancel()

    _audit(log.record_success, validated.prompt, text, False, started_at)
    return GenerateResponse(response=text)


@router.post(
    "/generate/stream",
    responses={
        200: {"content": {JSON_MEDIA_TYPE: {}}, "description": 'Newline-delimited {"token": ...} objects'},
        400: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def generate_stream(request: Request, infra: InfraBootstrap = Depends(get_infra)):
    """
    Stream a response as newline-delimited JSON tokens.

    The status is decided by the first event from the backend: a failure
    before any token is a 500, otherwise the 200 is committed and a later
    failure only ends the body early.
    """
    started_at = time.time()
    log = infra.get_interaction_log()

    validated = await _validate(request, log, streaming=True, started_at=started_at)
    if isinstance(validated, JSONResponse):
        return validated

    backend = infra.get_llm_backend()
    channel = ChunkChannel()
    writer = TokenStreamWriter(channel)
    prompt = validated.prompt

    def produce() -> None:
        try:
            backend.generate_stream(prompt, writer, cancel=channel.cancelled)
        except GatewayError as e:
            logger.error(f"Streaming generation failed after {writer.fragment_count} tokens: {e}")
            _audit(log.record_failure, prompt, e, True, started_at)
            _finish(channel, e)
            return
        except Exception as e:
            # Thread boundary: relay to the event loop so the response ends
            logger.exception("Unexpected error in streaming backend")
            _audit(log.record_failure, prompt, e, True, started_at)
            _finish(channel, e)
            return

        text = writer.close()
        _audit(log.record_success, prompt, text, True, started_at)
        _finish(channel)

    producer = asyncio.create_task(run_in_threadpool(produce))
    watcher = asyncio.create_task(_cancel_on_disconnect(request, channel.cancelled))
    try:
        first = await channel.receive()
    finally:
        watcher.cancel()

    if isinstance(first, StreamClosed) and first.error is not None:
        await producer
        return _error(500, GENERATION_FAILED)

    async def body():
        item = first
        try:
            while not isinstance(item, StreamClosed):
                yield item
                item = await channel.receive()
            await producer
        finally:
            # No-op once the producer is done; stops it if the client left
            channel.cancel()

    headers = dict(channel.headers)
    headers["Cache-Control"] = "no-cache"
    headers["X-Accel-Buffering"] = "no"

    return StreamingResponse(body(), media_type=JSON_MEDIA_TYPE, headers=headers)
