"""Pydantic schemas for the wellness chat orchestrator."""

from .context import PersonaId, TurnRole, ConversationTurn, ConversationState, StagedAnswer
from .events import (
    FunctionCall,
    ToolOutput,
    ThreadCreated,
    Delta,
    FunctionCallRequested,
    RunCompleted,
    RunFailed,
    StreamEnded,
    StreamEvent,
)
from .responses import PartialResponse, SnapshotStatus, ResponseSnapshot

__all__ = [
    "PersonaId",
    "TurnRole",
    "ConversationTurn",
    "ConversationState",
    "StagedAnswer",
    "FunctionCall",
    "ToolOutput",
    "ThreadCreated",
    "Delta",
    "FunctionCallRequested",
    "RunCompleted",
    "RunFailed",
    "StreamEnded",
    "StreamEvent",
    "PartialResponse",
    "SnapshotStatus",
    "ResponseSnapshot",
]
