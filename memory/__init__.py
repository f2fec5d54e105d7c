"""In-memory conversation context and routing state."""

from .models import CachedTurn, ContextSummary
from .context_cache import ConversationContextCache
from .state_store import ConversationStateStore

__all__ = [
    "CachedTurn",
    "ContextSummary",
    "ConversationContextCache",
    "ConversationStateStore",
]
