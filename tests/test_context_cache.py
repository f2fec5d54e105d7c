"""Tests for the per-conversation context window."""

import json
import threading

import pytest

from memory.context_cache import ConversationContextCache
from memory.models import CachedTurn
from schemas.context import PersonaId, TurnRole


def user(text):
    return CachedTurn(role=TurnRole.USER, content=text)


def assistant(text, persona=PersonaId.CHAT):
    return CachedTurn(role=TurnRole.ASSISTANT, content=text, persona_used=persona)


class TestConversationContextCache:
    """Test window bookkeeping."""

    def setup_method(self):
        """Set up test fixtures."""
        self.cache = ConversationContextCache(window_size=3)

    def test_unknown_conversation_is_empty(self):
        assert self.cache.window("missing") == []
        assert self.cache.summary("missing").turn_count == 0
        assert self.cache.render_instructions("missing") is None

    def test_window_is_bounded_and_fifo(self):
        for i in range(5):
            self.cache.append("c1", user(f"message {i}"))

        window = self.cache.window("c1")
        assert [turn.content for turn in window] == ["message 2", "message 3", "message 4"]

    def test_conversations_are_isolated(self):
        self.cache.append("c1", user("sleep"))
        self.cache.append("c2", user("stress"))

        assert [t.content for t in self.cache.window("c1")] == ["sleep"]
        assert sorted(self.cache.conversation_ids()) == ["c1", "c2"]

    def test_window_returns_a_copy(self):
        self.cache.append("c1", user("hi"))
        self.cache.window("c1").clear()
        assert len(self.cache.window("c1")) == 1

    def test_clear(self):
        self.cache.append("c1", user("hi"))
        self.cache.clear("c1")

        assert self.cache.window("c1") == []
        assert "c1" not in self.cache.conversation_ids()

    def test_invalid_window_size(self):
        with pytest.raises(ValueError):
            ConversationContextCache(window_size=0)

    def test_concurrent_appends_keep_bound(self):
        cache = ConversationContextCache(window_size=10)

        def writer(n):
            for i in range(100):
                cache.append("shared", user(f"{n}-{i}"))

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(cache.window("shared")) == 10


class TestContextSummary:
    """Test topic and recommendation extraction."""

    def setup_method(self):
        """Set up test fixtures."""
        self.cache = ConversationContextCache()

    def test_topics_from_user_turns(self):
        self.cache.append("c1", user("I can't sleep and my stress is high"))
        self.cache.append("c1", user("Sleep is still bad, maybe melatonin?"))

        summary = self.cache.summary("c1")

        assert summary.topics == ["sleep", "stress", "melatonin"]
        assert summary.latest_user_message == "Sleep is still bad, maybe melatonin?"
        assert summary.must_acknowledge
        assert summary.turn_count == 2

    def test_recommendations_from_actionable_items(self):
        reply = json.dumps({
            "greeting": "Here is a plan",
            "actionableItems": [
                {"type": "thriving", "title": "Evening Sleep Routine"},
                {"type": "supplement_choice", "title": "Magnesium Glycinate"},
            ],
        })
        self.cache.append("c1", assistant(reply, PersonaId.ROUTINE))

        assert self.cache.summary("c1").recommendations == [
            "Evening Sleep Routine", "Magnesium Glycinate"
        ]

    def test_recommendations_from_fenced_reply(self):
        body = json.dumps({
            "greeting": "Try this",
            "actionableItems": [{"type": "thriving", "title": "Wind Down Routine"}],
        })
        self.cache.append("c1", assistant(f"```json\n{body}\n```"))

        assert self.cache.summary("c1").recommendations == ["Wind Down Routine"]

    def test_recommendations_from_prose(self):
        self.cache.append("c1", assistant("You could try Magnesium or vitamin D3 in the morning."))
        assert self.cache.summary("c1").recommendations == ["magnesium", "vitamin d3"]

    def test_assistant_only_window_needs_no_acknowledgement(self):
        self.cache.append("c1", assistant("Hello"))
        summary = self.cache.summary("c1")

        assert summary.latest_user_message is None
        assert not summary.must_acknowledge


class TestRenderInstructions:
    """Test the context block sent with each run."""

    def setup_method(self):
        """Set up test fixtures."""
        self.cache = ConversationContextCache()

    def test_pending_message_only(self):
        instructions = self.cache.render_instructions("c1", pending_user_message="I feel tired")

        assert instructions.startswith("CONVERSATION CONTEXT:")
        assert "- User has discussed: general wellness" in instructions
        assert "no specific recommendations yet" in instructions
        assert 'MOST RECENT USER INPUT: "I feel tired"' in instructions
        assert 'USER SAID: "I feel tired"' in instructions

    def test_pending_message_is_not_cached(self):
        self.cache.render_instructions("c1", pending_user_message="hello")
        assert self.cache.window("c1") == []

    def test_recent_exchanges_and_preview(self):
        long_reply = "x" * 500
        self.cache.append("c1", user("help with my sleep"))
        self.cache.append("c1", assistant(long_reply, PersonaId.ROUTINE))

        instructions = self.cache.render_instructions("c1", pending_user_message="thanks")

        assert "- User has discussed: sleep" in instructions
        assert f'YOU (as routine specialist) RESPONDED: "{"x" * 200}..."' in instructions
        assert 'MOST RECENT USER INPUT: "thanks"' in instructions

    def test_only_last_exchanges_are_listed(self):
        for i in range(8):
            self.cache.append("c1", user(f"message {i}"))

        instructions = self.cache.render_instructions("c1")

        assert "message 1" not in instructions
        assert 'USER SAID: "message 2"' in instructions
        assert 'USER SAID: "message 7"' in instructions
