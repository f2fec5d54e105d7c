"""Assistant response and snapshot schemas."""

from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from .context import PersonaId


class PartialResponse(BaseModel):
    """
    Structured assistant reply, possibly still streaming.

    Every field is optional: a field is only set once its JSON value was
    structurally closed in the accumulated text. Wire names are camelCase.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    greeting: Optional[str] = None
    attention_required: Optional[str] = Field(None, alias="attentionRequired")
    emergency_reasoning: Optional[str] = Field(None, alias="emergencyReasoning")
    action_items: Optional[List[Any]] = Field(None, alias="actionItems")
    additional_information: Optional[str] = Field(None, alias="additionalInformation")
    actionable_items: Optional[List[Any]] = Field(None, alias="actionableItems")
    questions: Optional[List[Any]] = None

    @classmethod
    def wire_fields(cls) -> List[str]:
        """Top-level JSON keys this model understands."""
        return [field.alias or name for name, field in cls.model_fields.items()]

    def present_fields(self) -> Dict[str, Any]:
        """Fields that currently hold a value, keyed by wire name."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def is_empty(self) -> bool:
        return not self.present_fields()


class SnapshotStatus(str, Enum):
    """Where a snapshot sits in the turn lifecycle."""
    STREAMING = "streaming"
    FINAL = "final"
    ERROR = "error"


class ResponseSnapshot(BaseModel):
    """A renderable view of the assistant reply at one point in a turn."""
    sequence: int
    status: SnapshotStatus = SnapshotStatus.STREAMING
    response: PartialResponse = Field(default_factory=PartialResponse)
    persona: Optional[PersonaId] = None
    handoff_message: Optional[str] = None
    error: Optional[str] = None
    fallback_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (SnapshotStatus.FINAL, SnapshotStatus.ERROR)
