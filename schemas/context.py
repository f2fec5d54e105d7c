"""Conversation and persona schemas."""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class PersonaId(str, Enum):
    """Specialist role answering within a conversation."""
    CHAT = "chat"  # general wellness and triage
    ROUTINE = "routine"
    PANTRY = "pantry"
    RECOMMENDATION = "recommendation"


class TurnRole(str, Enum):
    """Author of a conversation turn."""
    USER = "user"
    ASSISTANT = "assistant"


class ConversationTurn(BaseModel):
    """A single message in a conversation. Never mutated once appended."""
    model_config = ConfigDict(frozen=True)

    role: TurnRole
    content: str
    created_at: datetime = Field(default_factory=datetime.now)
    persona_used: Optional[PersonaId] = None


class ConversationState(BaseModel):
    """Per-conversation routing state."""
    current_persona: Optional[PersonaId] = None
    active_task_mode: Optional[PersonaId] = Field(
        None, description="Sticky persona override until explicitly cleared"
    )


class StagedAnswer(BaseModel):
    """A user's answer to a displayed question, held for batched dispatch."""
    model_config = ConfigDict(frozen=True)

    question_id: str
    question_text: str
    answer_text: str
    staged_at: datetime = Field(default_factory=datetime.now)
