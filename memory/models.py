"""Context cache data models."""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

from schemas.context import PersonaId, TurnRole


class CachedTurn(BaseModel):
    """A single turn held in the context window."""
    model_config = ConfigDict(frozen=True)

    role: TurnRole
    content: str
    persona_used: Optional[PersonaId] = None
    timestamp: datetime = Field(default_factory=datetime.now)


class ContextSummary(BaseModel):
    """What the conversation has covered so far, derived from the window."""
    conversation_id: str
    topics: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    latest_user_message: Optional[str] = None
    must_acknowledge: bool = False
    turn_count: int = 0
