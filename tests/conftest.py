"""Shared fixtures for the orchestrator tests."""

import json
from typing import List, Optional

import pytest

from llm.base_client import BaseTurnTransport, ToolSubmissionError, TransportError
from streaming.frames import encode_done, encode_frame


def delta(text: str) -> str:
    return encode_frame("delta", {"content": text})


def function_call(run_id: str, *calls) -> str:
    return encode_frame("function_call", {
        "runId": run_id,
        "threadId": "thread_1",
        "toolCalls": [
            {
                "id": call_id,
                "type": "function",
                "function": {"name": name, "arguments": json.dumps(arguments)},
            }
            for call_id, name, arguments in calls
        ],
    })


def completed(full_content: Optional[str] = None) -> str:
    payload = {"fullContent": full_content} if full_content is not None else {}
    return encode_frame("done", payload)


def failed(reason: str) -> str:
    return encode_frame("error", {"error": reason})


def done() -> str:
    return encode_done()


class ScriptedTransport(BaseTurnTransport):
    """Replays canned chunk lists for turns and tool submissions."""

    def __init__(
        self,
        turns: Optional[List[List[str]]] = None,
        submissions: Optional[List[List[str]]] = None,
        send_error: Optional[str] = None,
        submit_error: Optional[str] = None
    ):
        self.turns = list(turns or [])
        self.submissions = list(submissions or [])
        self.send_error = send_error
        self.submit_error = submit_error
        self.sent = []
        self.submitted = []
        self.opened = 0
        self.closed = 0

    async def send_turn(self, conversation_id, text, metadata=None):
        self.sent.append((conversation_id, text, metadata))
        if self.send_error:
            raise TransportError(self.send_error)
        return self._stream(self.turns.pop(0))

    async def submit_tool_outputs(self, conversation_id, run_id, results):
        self.submitted.append((conversation_id, run_id, list(results)))
        if self.submit_error:
            raise ToolSubmissionError(self.submit_error)
        return self._stream(self.submissions.pop(0))

    async def _stream(self, chunks):
        self.opened += 1
        try:
            for chunk in chunks:
                if isinstance(chunk, Exception):
                    raise chunk
                yield chunk
        finally:
            self.closed += 1

    def get_provider_name(self) -> str:
        return "scripted"


@pytest.fixture
def scripted_transport():
    """Factory for ScriptedTransport instances."""
    return ScriptedTransport
