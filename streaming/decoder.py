"""
Turn state machine for the assistant event stream.

One StreamEventDecoder drives one turn: it reads events from the current
stream, accumulates deltas into a single buffer, pauses to run requested
functions, resumes on the nested stream the submission opens, and ends in
exactly one terminal snapshot.

States::

    STREAMING -> AWAITING_TOOL_EXECUTION -> AWAITING_SUBMISSION -> RESUMED
    RESUMED   -> AWAITING_TOOL_EXECUTION (another pause)
    any       -> COMPLETED | FAILED | CANCELLED
"""

import asyncio
import inspect
import json
import logging
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional

from pydantic import BaseModel, Field

from llm.base_client import BaseTurnTransport, ChunkStream, TransportError
from schemas.context import PersonaId
from schemas.events import (
    Delta,
    FunctionCall,
    FunctionCallRequested,
    RunCompleted,
    RunFailed,
    StreamEnded,
    StreamEvent,
    ThreadCreated,
    ToolOutput,
)
from schemas.responses import PartialResponse, ResponseSnapshot, SnapshotStatus
from .frames import FrameDecoder, iter_events
from .partial_json import IncrementalResponseParser

logger = logging.getLogger(__name__)

RUN_FAILED_MESSAGE = (
    "I apologize, but I encountered an error processing your request. "
    "Please try again or rephrase your question."
)
TRANSPORT_FAILED_MESSAGE = "I apologize, but I encountered an error. Please try again."


class TurnState(str, Enum):
    """Lifecycle of one turn."""
    STREAMING = "streaming"
    AWAITING_TOOL_EXECUTION = "awaiting_tool_execution"
    AWAITING_SUBMISSION = "awaiting_submission"
    RESUMED = "resumed"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = (TurnState.COMPLETED, TurnState.FAILED, TurnState.CANCELLED)


class TurnResult(BaseModel):
    """Outcome of a finished turn."""
    state: TurnState
    content: str = ""
    response: PartialResponse = Field(default_factory=PartialResponse)
    thread_id: Optional[str] = None
    error: Optional[str] = None
    function_calls: int = 0
    submission_failures: int = 0
    malformed_frames: int = 0


class StreamEventDecoder:
    """Decodes one turn's event streams into ordered response snapshots."""

    def __init__(
        self,
        transport: BaseTurnTransport,
        executor: Any = None,
        conversation_id: Optional[str] = None,
        parser: Optional[IncrementalResponseParser] = None,
        persona: Optional[PersonaId] = None
    ):
        """
        Initialize decoder.

        Args:
            transport: Used to submit function results mid-turn
            executor: Object with ``execute(calls)`` returning ToolOutputs,
                synchronously or as an awaitable
            conversation_id: Remote thread id, if already known
            parser: Parser for the response buffer
            persona: Persona answering this turn, stamped on snapshots
        """
        self.transport = transport
        self.executor = executor
        self.thread_id = conversation_id
        self.parser = parser or IncrementalResponseParser()
        self.persona = persona
        self.state = TurnState.STREAMING
        self.error: Optional[str] = None
        self.final_content: Optional[str] = None
        self.function_calls = 0
        self.submission_failures = 0

        self._chunks: List[str] = []
        self._streams: List[AsyncIterator[StreamEvent]] = []
        self._frame_decoders: List[FrameDecoder] = []
        self._sequence = 0
        self._last_emitted: Optional[Dict[str, Any]] = None
        self._handlers = {
            "thread_created": self._on_thread_created,
            "delta": self._on_delta,
            "completed": self._on_run_completed,
            "failed": self._on_run_failed,
            "stream_ended": self._on_stream_ended,
        }

    @property
    def content(self) -> str:
        """Everything accumulated from deltas so far."""
        return "".join(self._chunks)

    @property
    def malformed_frames(self) -> int:
        return sum(decoder.malformed_frames for decoder in self._frame_decoders)

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    async def run(self, stream: ChunkStream) -> AsyncIterator[ResponseSnapshot]:
        """
        Decode a turn, starting from the stream opened by ``send_turn``.

        Yields:
            Snapshots in order; the last one is FINAL or ERROR unless the
            turn was cancelled
        """
        self._push_stream(stream)
        try:
            while self._streams and not self.finished:
                try:
                    event = await self._streams[-1].__anext__()
                except StopAsyncIteration:
                    await self._pop_stream()
                    continue
                except TransportError as e:
                    for snapshot in self.fail(str(e)):
                        yield snapshot
                    break

                for snapshot in await self._dispatch(event):
                    yield snapshot

            if not self.finished:
                for snapshot in self._converge():
                    yield snapshot
        except (asyncio.CancelledError, GeneratorExit):
            if not self.finished:
                self.state = TurnState.CANCELLED
                self._chunks.clear()
                logger.info("Turn cancelled, discarding response buffer")
            raise
        finally:
            await self._close_streams()

    def result(self) -> TurnResult:
        return TurnResult(
            state=self.state,
            content=self.final_content if self.final_content is not None else self.content,
            response=self.parser.snapshot,
            thread_id=self.thread_id,
            error=self.error,
            function_calls=self.function_calls,
            submission_failures=self.submission_failures,
            malformed_frames=self.malformed_frames
        )

    async def _dispatch(self, event: StreamEvent) -> List[ResponseSnapshot]:
        if isinstance(event, FunctionCallRequested):
            return await self._on_function_call(event)
        return self._handlers[event.kind](event)

    def _on_thread_created(self, event: ThreadCreated) -> List[ResponseSnapshot]:
        if self.thread_id and self.thread_id != event.thread_id:
            logger.warning(f"Thread id changed from {self.thread_id} to {event.thread_id}")
        self.thread_id = event.thread_id
        logger.info(f"Turn running on thread {event.thread_id}")
        return []

    def _on_delta(self, event: Delta) -> List[ResponseSnapshot]:
        if not event.text:
            return []
        self._chunks.append(event.text)
        response = self.parser.feed(self.content)
        fields = response.present_fields()
        if fields == self._last_emitted:
            return []
        self._last_emitted = fields
        return [self._snapshot(SnapshotStatus.STREAMING, response)]

    async def _on_function_call(self, event: FunctionCallRequested) -> List[ResponseSnapshot]:
        self.state = TurnState.AWAITING_TOOL_EXECUTION
        names = ", ".join(call.name for call in event.calls)
        logger.info(f"Run {event.run_id} paused for {len(event.calls)} function call(s): {names}")

        outputs = await self._execute(event.calls)
        self.function_calls += len(event.calls)

        self.state = TurnState.AWAITING_SUBMISSION
        thread_id = event.thread_id or self.thread_id
        try:
            nested = await self.transport.submit_tool_outputs(thread_id, event.run_id, outputs)
        except TransportError as e:
            self.submission_failures += 1
            logger.warning(f"Submitting function results for run {event.run_id} failed, continuing: {e}")
            self.state = TurnState.STREAMING
            return []

        self.state = TurnState.RESUMED
        self._push_stream(nested)
        logger.debug(f"Resumed run {event.run_id} on nested stream")
        return []

    async def _execute(self, calls: List[FunctionCall]) -> List[ToolOutput]:
        if self.executor is None:
            logger.warning("No function executor configured")
            return [_error_output(call, "No function executor available") for call in calls]

        try:
            outputs = self.executor.execute(calls)
            if inspect.isawaitable(outputs):
                outputs = await outputs
        except Exception as e:
            logger.error(f"Function executor failed: {e}")
            return [_error_output(call, "Function execution failed") for call in calls]

        return [
            output if isinstance(output, ToolOutput) else ToolOutput.model_validate(output)
            for output in outputs
        ]

    def _on_run_completed(self, event: RunCompleted) -> List[ResponseSnapshot]:
        buffered = self.content
        if event.full_content and event.full_content != buffered:
            logger.debug("Completion carries full content, preferring it over the buffer")
        return self._complete(event.full_content or buffered)

    def _on_run_failed(self, event: RunFailed) -> List[ResponseSnapshot]:
        self.state = TurnState.FAILED
        self.error = event.reason
        logger.error(f"Run failed: {event.reason}")
        return [self._snapshot(
            SnapshotStatus.ERROR,
            self.parser.snapshot,
            error=event.reason,
            fallback_message=RUN_FAILED_MESSAGE
        )]

    def _on_stream_ended(self, event: StreamEnded) -> List[ResponseSnapshot]:
        logger.debug("End-of-stream sentinel received")
        return []

    def _complete(self, content: str) -> List[ResponseSnapshot]:
        self.final_content = content
        response = self.parser.finalize(content)
        self.state = TurnState.COMPLETED
        logger.info(f"Turn completed ({len(content)} chars, {self.function_calls} function call(s))")
        return [self._snapshot(SnapshotStatus.FINAL, response)]

    def _converge(self) -> List[ResponseSnapshot]:
        """Finish a turn whose streams all ended without a terminal event."""
        if self.content.strip():
            logger.warning("Streams ended without a completion event, finalizing from buffer")
            return self._complete(self.content)
        return self.fail("Stream ended without a response")

    def fail(self, reason: str) -> List[ResponseSnapshot]:
        """End the turn on a transport-level failure."""
        self.state = TurnState.FAILED
        self.error = reason
        logger.error(f"Turn failed: {reason}")
        return [self._snapshot(
            SnapshotStatus.ERROR,
            self.parser.snapshot,
            error=reason,
            fallback_message=TRANSPORT_FAILED_MESSAGE
        )]

    def _snapshot(self, status: SnapshotStatus, response: PartialResponse, **extra) -> ResponseSnapshot:
        self._sequence += 1
        return ResponseSnapshot(
            sequence=self._sequence,
            status=status,
            response=response,
            persona=self.persona,
            **extra
        )

    def _push_stream(self, chunks: ChunkStream):
        decoder = FrameDecoder()
        self._frame_decoders.append(decoder)
        self._streams.append(iter_events(chunks, decoder))

    async def _pop_stream(self):
        stream = self._streams.pop()
        await stream.aclose()
        if self._streams:
            logger.debug("Nested stream ended, resuming outer stream")

    async def _close_streams(self):
        while self._streams:
            await self._streams.pop().aclose()


def _error_output(call: FunctionCall, message: str) -> ToolOutput:
    return ToolOutput(tool_call_id=call.id, output=json.dumps({"error": message}))
