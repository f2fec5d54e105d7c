"""Typed events decoded from the remote turn stream."""

import json
from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, Field


class FunctionCall(BaseModel):
    """A function the model asked the client to run."""
    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    raw_arguments: str = ""

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "FunctionCall":
        """
        Build from an assistants-style tool call.

        Accepts both ``{"id", "function": {"name", "arguments"}}`` and the
        flat ``{"id", "name", "arguments"}`` shape. Arguments arrive as a JSON
        string; unparseable arguments are kept raw and left empty.

        Raises:
            ValueError: If the call has no id or no function name
        """
        function = data.get("function") or {}
        call_id = data.get("id")
        name = function.get("name") or data.get("name")
        if not call_id or not name:
            raise ValueError(f"Tool call missing id or name: {data!r}")

        raw = function.get("arguments", data.get("arguments", ""))
        if isinstance(raw, dict):
            return cls(id=call_id, name=name, arguments=raw, raw_arguments=json.dumps(raw))

        raw = raw or ""
        try:
            arguments = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError:
            arguments = {}
        if not isinstance(arguments, dict):
            arguments = {}
        return cls(id=call_id, name=name, arguments=arguments, raw_arguments=raw)


class ToolOutput(BaseModel):
    """Result of one executed function call, keyed by call id."""
    tool_call_id: str
    output: str


class ThreadCreated(BaseModel):
    kind: Literal["thread_created"] = "thread_created"
    thread_id: str


class Delta(BaseModel):
    kind: Literal["delta"] = "delta"
    text: str


class FunctionCallRequested(BaseModel):
    kind: Literal["function_call"] = "function_call"
    calls: List[FunctionCall]
    run_id: str
    thread_id: Optional[str] = None


class RunCompleted(BaseModel):
    kind: Literal["completed"] = "completed"
    full_content: Optional[str] = None


class RunFailed(BaseModel):
    kind: Literal["failed"] = "failed"
    reason: str = "Run failed"


class StreamEnded(BaseModel):
    kind: Literal["stream_ended"] = "stream_ended"


StreamEvent = Union[ThreadCreated, Delta, FunctionCallRequested, RunCompleted, RunFailed, StreamEnded]
