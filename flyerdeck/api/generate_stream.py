"""
POST /generate: authenticated multipart in, server-sent events out.

Per request the session moves through
AUTHENTICATING -> VALIDATING -> STREAMING -> (ABORTED | COMPLETED).
Auth and validation failures are answered before any stream is opened.

While streaming, three tasks feed one outbox that the response body drains:
the pump forwards generator events, the heartbeat emits a liveness event
every ``heartbeat_interval`` seconds, and the watcher polls for client
disconnect. On disconnect the abort flag is set and nothing more is
forwarded; the generator is not cancelled, its in-flight provider calls are
left to finish.
"""

import asyncio
import json
import logging
import time
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Protocol, Set

from fastapi import Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import ValidationError
from starlette.datastructures import UploadFile

from flyerdeck.agents.config import HEARTBEAT_INTERVAL_SECONDS
from flyerdeck.agents.generation.exceptions import InputValidationError, user_message_for
from flyerdeck.agents.generation.progress_manager import heartbeat_event
from flyerdeck.api.session import SessionResolver
from flyerdeck.models.events import EventType, PipelineEvent
from flyerdeck.models.requests import FlyerFile, GenerationInput
from flyerdeck.services.event_channel import EventChannel

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

INVALID_FORM_DETAIL = "Invalid form data"

DISCONNECT_POLL_INTERVAL_SECONDS = 0.5

# Pumps outlive an aborted response until their generator yields again
_background_tasks: Set[asyncio.Task] = set()


class StreamState(str, Enum):
    AUTHENTICATING = "authenticating"
    VALIDATING = "validating"
    STREAMING = "streaming"
    ABORTED = "aborted"
    COMPLETED = "completed"


class EventSource(Protocol):
    def run(self, validated: GenerationInput) -> AsyncIterator[PipelineEvent]:
        ...


GeneratorFactory = Callable[[GenerationInput], EventSource]


class EventIdSequence:
    """Millisecond-clock ids, bumped when the clock hasn't moved."""

    def __init__(self):
        self._last = 0

    def next(self) -> str:
        self._last = max(self._last + 1, time.time_ns() // 1_000_000)
        return str(self._last)


def format_sse(event_id: str, event: str, data: Dict[str, Any]) -> str:
    payload = json.dumps(data if data is not None else {}, ensure_ascii=False, default=str)
    return f"id: {event_id}\nevent: {event}\ndata: {payload}\n\n"


async def parse_generation_form(form) -> GenerationInput:
    """Build a GenerationInput from the ``input`` JSON field and ``flyerFiles`` uploads."""
    raw_input = form.get("input")
    if not isinstance(raw_input, str):
        raise InputValidationError("Invalid input")
    try:
        input_data = json.loads(raw_input)
    except ValueError as e:
        raise InputValidationError("input is not valid JSON", cause=e)
    if not isinstance(input_data, dict):
        raise InputValidationError("input must be a JSON object")

    flyer_files = []
    for item in form.getlist("flyerFiles"):
        if isinstance(item, UploadFile):
            flyer_files.append(FlyerFile(
                filename=item.filename or "flyer",
                content_type=item.content_type or "application/octet-stream",
                data=await item.read(),
            ))

    try:
        return GenerationInput.model_validate({**input_data, "flyerFiles": flyer_files})
    except ValidationError as e:
        raise InputValidationError("Generation input failed validation", cause=e)


class GenerationStream:
    """Streaming half of a session: multiplexes pipeline events with heartbeats."""

    def __init__(
        self,
        events: AsyncIterator[PipelineEvent],
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
        heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS,
        disconnect_poll_interval: float = DISCONNECT_POLL_INTERVAL_SECONDS,
    ):
        self.events = events
        self.is_disconnected = is_disconnected
        self.heartbeat_interval = heartbeat_interval
        self.disconnect_poll_interval = disconnect_poll_interval
        self.state = StreamState.STREAMING
        self.aborted = False
        self.ids = EventIdSequence()
        self._outbox: EventChannel[PipelineEvent] = EventChannel()
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._watcher_task: Optional[asyncio.Task] = None
        self._closed = False

    def abort(self) -> None:
        if self.aborted:
            return
        self.aborted = True
        logger.info("[SSE] Stream aborted by client")
        self._outbox.close()

    async def _pump(self) -> None:
        try:
            async for event in self.events:
                if self.aborted:
                    break
                self._outbox.push(event)
        except Exception as e:
            logger.error(f"[SSE] Generator failed: {e}", exc_info=True)
            if not self.aborted:
                self._outbox.push(PipelineEvent(type=EventType.ERROR.value, data={"message": user_message_for(e)}))
        finally:
            self._outbox.close()
            aclose = getattr(self.events, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            self._outbox.push(heartbeat_event())

    async def _watch_disconnect(self) -> None:
        while not self.aborted:
            if await self.is_disconnected():
                self.abort()
                return
            await asyncio.sleep(self.disconnect_poll_interval)

    def _start(self) -> None:
        pump = asyncio.create_task(self._pump())
        _background_tasks.add(pump)
        pump.add_done_callback(_background_tasks.discard)
        self._heartbeat_task = asyncio.create_task(self._heartbeat())
        if self.is_disconnected is not None:
            self._watcher_task = asyncio.create_task(self._watch_disconnect())

    def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Heartbeat timer is cleared on every exit path
        for task in (self._heartbeat_task, self._watcher_task):
            if task is not None and not task.done():
                task.cancel()
        self._outbox.close()
        self.state = StreamState.ABORTED if self.aborted else StreamState.COMPLETED
        logger.info(f"[SSE] Stream closed ({self.state.value})")

    async def frames(self) -> AsyncIterator[str]:
        self._start()
        try:
            async for event in self._outbox:
                if self.aborted:
                    break
                yield format_sse(self.ids.next(), event.type, event.data)
                if event.is_slide_event:
                    logger.debug(f"[SSE] Event sent: {event.type} index={event.data.get('index')}")
                elif event.type != EventType.HEARTBEAT.value:
                    logger.debug(f"[SSE] Event sent: {event.type}")
        except (asyncio.CancelledError, GeneratorExit):
            # Server tore down the response; treat as a client abort
            self.aborted = True
            raise
        finally:
            self._close()


class GenerationSession:
    """One POST /generate request from authentication through the end of the stream."""

    def __init__(
        self,
        request: Request,
        sessions: SessionResolver,
        generator_factory: GeneratorFactory,
        heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS,
        disconnect_poll_interval: float = DISCONNECT_POLL_INTERVAL_SECONDS,
    ):
        self.request = request
        self.sessions = sessions
        self.generator_factory = generator_factory
        self.heartbeat_interval = heartbeat_interval
        self.disconnect_poll_interval = disconnect_poll_interval
        self.state = StreamState.AUTHENTICATING
        self.user: Optional[Dict[str, Any]] = None
        self.stream: Optional[GenerationStream] = None

    async def respond(self) -> Response:
        self.user = self.sessions.resolve(self.request.headers, self.request.cookies)
        if self.user is None:
            logger.warning(f"[SSE] Unauthenticated request to {self.request.url.path}")
            return Response(status_code=401)

        self.state = StreamState.VALIDATING
        try:
            form = await self.request.form()
            validated = await parse_generation_form(form)
        except InputValidationError as e:
            logger.warning(f"[SSE] {INVALID_FORM_DETAIL}: {e}")
            return JSONResponse(status_code=400, content={"detail": INVALID_FORM_DETAIL})
        except Exception as e:
            logger.warning(f"[SSE] Could not read multipart body: {e}")
            return JSONResponse(status_code=400, content={"detail": INVALID_FORM_DETAIL})

        self.state = StreamState.STREAMING
        logger.info(
            f"[SSE] Generation started for user {self.user['id']} "
            f"({len(validated.flyerFiles)} flyer file(s))"
        )
        generator = self.generator_factory(validated)
        self.stream = GenerationStream(
            generator.run(validated),
            is_disconnected=self.request.is_disconnected,
            heartbeat_interval=self.heartbeat_interval,
            disconnect_poll_interval=self.disconnect_poll_interval,
        )
        return StreamingResponse(self._frames(), media_type="text/event-stream", headers=SSE_HEADERS)

    async def _frames(self) -> AsyncIterator[str]:
        try:
            async for frame in self.stream.frames():
                yield frame
        finally:
            self.state = self.stream.state
