"""Bounded per-conversation context window."""

import json
import logging
import re
import threading
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from schemas.context import TurnRole
from streaming.partial_json import strip_code_fences
from .models import CachedTurn, ContextSummary

logger = logging.getLogger(__name__)


class ConversationContextCache:
    """
    Keeps the last N turns of every conversation in memory.

    Each conversation has its own deque and lock; the registry lock is only
    held while a conversation's entry is created or dropped.
    """

    DEFAULT_WINDOW_SIZE = 10
    RECENT_EXCHANGES = 6
    RESPONSE_PREVIEW_CHARS = 200

    TOPIC_PATTERN = re.compile(
        r"\b(sleep|stress|pain|energy|anxiety|supplement|routine|medication|"
        r"melatonin|magnesium|vitamin|exercise|diet)\b",
        re.IGNORECASE
    )
    SUPPLEMENT_PATTERN = re.compile(
        r"\b(melatonin|magnesium|vitamin [a-z]\d?|omega-3|probiotics|ashwagandha|l-theanine)\b",
        re.IGNORECASE
    )

    def __init__(self, window_size: int = DEFAULT_WINDOW_SIZE):
        """
        Initialize context cache.

        Args:
            window_size: Maximum turns kept per conversation
        """
        if window_size < 1:
            raise ValueError("window_size must be at least 1")
        self.window_size = window_size
        self._windows: Dict[str, Deque[CachedTurn]] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _entry(self, conversation_id: str, create: bool):
        with self._registry_lock:
            if conversation_id not in self._windows:
                if not create:
                    return None, None
                self._windows[conversation_id] = deque(maxlen=self.window_size)
                self._locks[conversation_id] = threading.Lock()
            return self._windows[conversation_id], self._locks[conversation_id]

    def append(self, conversation_id: str, turn: CachedTurn):
        """
        Add a turn, evicting the oldest one when the window is full.

        Args:
            conversation_id: Conversation ID
            turn: Completed turn to cache
        """
        window, lock = self._entry(conversation_id, create=True)
        with lock:
            if len(window) == window.maxlen:
                logger.debug(f"Evicting oldest turn of conversation {conversation_id}")
            window.append(turn)

    def window(self, conversation_id: str) -> List[CachedTurn]:
        """Turns currently cached, oldest first. Unknown ids give []."""
        window, lock = self._entry(conversation_id, create=False)
        if window is None:
            return []
        with lock:
            return list(window)

    def clear(self, conversation_id: str):
        """Forget a conversation."""
        with self._registry_lock:
            self._windows.pop(conversation_id, None)
            self._locks.pop(conversation_id, None)
        logger.info(f"Cleared context for conversation {conversation_id}")

    def conversation_ids(self) -> List[str]:
        with self._registry_lock:
            return list(self._windows)

    def summary(self, conversation_id: str) -> ContextSummary:
        """
        Derive topics and surfaced recommendations from the window.

        Topics come from user turns; recommendation titles come from the
        ``actionableItems`` of structured assistant replies, or from known
        supplement names when the assistant answered in prose. Both lists
        are deduplicated in order of first mention.

        Args:
            conversation_id: Conversation ID

        Returns:
            ContextSummary (empty for unknown conversations)
        """
        return self._summarize(conversation_id, self.window(conversation_id))

    def _summarize(self, conversation_id: str, turns: List[CachedTurn]) -> ContextSummary:
        topics: List[str] = []
        recommendations: List[str] = []
        latest_user: Optional[str] = None

        for turn in turns:
            if turn.role == TurnRole.USER:
                latest_user = turn.content
                for match in self.TOPIC_PATTERN.findall(turn.content):
                    _add_unique(topics, match.lower())
            else:
                for title in self._recommendation_titles(turn.content):
                    _add_unique(recommendations, title)

        return ContextSummary(
            conversation_id=conversation_id,
            topics=topics,
            recommendations=recommendations,
            latest_user_message=latest_user,
            must_acknowledge=latest_user is not None,
            turn_count=len(turns)
        )

    def _recommendation_titles(self, content: str) -> List[str]:
        parsed: Any = None
        try:
            parsed = json.loads(strip_code_fences(content))
        except ValueError:
            pass

        if isinstance(parsed, dict):
            items = parsed.get("actionableItems") or []
            return [
                item["title"] for item in items
                if isinstance(item, dict) and isinstance(item.get("title"), str) and item["title"]
            ]
        return [match.lower() for match in self.SUPPLEMENT_PATTERN.findall(content)]

    def render_instructions(
        self,
        conversation_id: str,
        pending_user_message: Optional[str] = None
    ) -> Optional[str]:
        """
        Render the context block sent with the next run.

        Args:
            conversation_id: Conversation ID
            pending_user_message: Message of the turn being sent, which is
                not cached until the turn completes

        Returns:
            Instruction text, or None when there is no context at all
        """
        turns = self.window(conversation_id)
        if pending_user_message:
            turns.append(CachedTurn(role=TurnRole.USER, content=pending_user_message))
        if not turns:
            return None

        summary = self._summarize(conversation_id, turns)
        lines = [
            "CONVERSATION CONTEXT:",
            f"- User has discussed: {', '.join(summary.topics) or 'general wellness'}",
            f"- You have already recommended: "
            f"{', '.join(summary.recommendations) or 'no specific recommendations yet'}",
        ]
        if summary.latest_user_message:
            lines.append(
                f'- MOST RECENT USER INPUT: "{summary.latest_user_message}" '
                f"- You MUST acknowledge this before proceeding."
            )

        lines.append("")
        lines.append("Recent exchanges:")
        for turn in turns[-self.RECENT_EXCHANGES:]:
            if turn.role == TurnRole.USER:
                lines.append(f'USER SAID: "{turn.content}"')
            else:
                role = turn.persona_used.value if turn.persona_used else "assistant"
                preview = turn.content[:self.RESPONSE_PREVIEW_CHARS]
                lines.append(f'YOU (as {role} specialist) RESPONDED: "{preview}..."')
        return "\n".join(lines)


def _add_unique(values: List[str], value: str):
    if value not in values:
        values.append(value)
