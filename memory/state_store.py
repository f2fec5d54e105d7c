"""Keyed store for per-conversation routing state."""

import logging
import threading
from typing import Dict

from schemas.context import ConversationState

logger = logging.getLogger(__name__)


class ConversationStateStore:
    """Holds one ConversationState per conversation id."""

    def __init__(self):
        self._states: Dict[str, ConversationState] = {}
        self._lock = threading.Lock()

    def get(self, conversation_id: str) -> ConversationState:
        """Return a copy of the conversation's state (empty when unknown)."""
        with self._lock:
            state = self._states.get(conversation_id)
            return state.model_copy() if state else ConversationState()

    def put(self, conversation_id: str, state: ConversationState):
        with self._lock:
            self._states[conversation_id] = state.model_copy()

    def clear(self, conversation_id: str):
        with self._lock:
            self._states.pop(conversation_id, None)
        logger.debug(f"Cleared routing state for conversation {conversation_id}")
