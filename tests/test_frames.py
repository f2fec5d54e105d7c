"""Tests for stream framing."""

import asyncio

from schemas.events import (
    Delta,
    FunctionCallRequested,
    RunCompleted,
    RunFailed,
    StreamEnded,
    ThreadCreated,
)
from streaming.frames import FrameDecoder, encode_frame, iter_events, parse_frame


async def _chunks(items):
    for item in items:
        yield item


def _collect(chunks):
    async def run():
        return [event async for event in iter_events(_chunks(chunks))]
    return asyncio.run(run())


class TestParseFrame:
    """Tests for single frame interpretation."""

    def test_thread_created(self):
        event = parse_frame('data: {"type":"thread_created","threadId":"thread_123"}')
        assert event == ThreadCreated(thread_id="thread_123")

    def test_delta(self):
        assert parse_frame('data: {"type":"delta","content":"Hello"}') == Delta(text="Hello")

    def test_content_alias(self):
        assert parse_frame('data: {"type":"content","content":"Hi"}') == Delta(text="Hi")

    def test_event_line(self):
        event = parse_frame('event: delta\ndata: {"content":"Hi"}')
        assert event == Delta(text="Hi")

    def test_compact_form(self):
        assert parse_frame('delta: {"content":"Hi"}') == Delta(text="Hi")
        assert parse_frame('run-completed: {}') == RunCompleted()

    def test_done_sentinel(self):
        assert parse_frame("data: [DONE]") == StreamEnded()

    def test_completed_prefers_full_content(self):
        event = parse_frame('data: {"type":"done","fullContent":"{\\"greeting\\": \\"Hi\\"}"}')
        assert event == RunCompleted(full_content='{"greeting": "Hi"}')

    def test_completed_content_field(self):
        event = parse_frame('data: {"type":"completed","content":"abc","threadId":"t"}')
        assert event.full_content == "abc"

    def test_error(self):
        assert parse_frame('data: {"type":"error","error":"Run failed"}') == RunFailed(reason="Run failed")

    def test_function_call(self):
        frame = encode_frame("function_call", {
            "runId": "run_1",
            "threadId": "thread_1",
            "toolCalls": [{
                "id": "call_1",
                "type": "function",
                "function": {"name": "get_pantry_items", "arguments": '{"limit": 5}'},
            }],
        })
        event = parse_frame(frame.strip())

        assert isinstance(event, FunctionCallRequested)
        assert event.run_id == "run_1"
        assert event.calls[0].name == "get_pantry_items"
        assert event.calls[0].arguments == {"limit": 5}

    def test_comments_and_unknown_events_are_ignored(self):
        assert parse_frame(": keep-alive") is None
        assert parse_frame('data: {"type":"awaiting_function_results"}') is None


class TestFrameDecoder:
    """Tests for chunk reassembly."""

    def setup_method(self):
        """Set up test fixtures."""
        self.decoder = FrameDecoder()

    def test_frame_split_across_chunks(self):
        assert self.decoder.feed('data: {"type":"del') == []
        assert self.decoder.feed('ta","content":"Hi"}\n') == []
        assert self.decoder.feed("\n") == [Delta(text="Hi")]

    def test_crlf_split_across_chunks(self):
        assert self.decoder.feed('data: {"type":"delta","content":"Hi"}\r\n\r') == []
        assert self.decoder.feed("\n") == [Delta(text="Hi")]

    def test_multibyte_character_split_across_chunks(self):
        raw = 'data: {"type":"delta","content":"🌟"}\n\n'.encode("utf-8")
        star = raw.index("🌟".encode("utf-8"))

        assert self.decoder.feed(raw[:star + 2]) == []
        assert self.decoder.feed(raw[star + 2:]) == [Delta(text="🌟")]

    def test_malformed_frame_is_skipped_and_counted(self):
        events = self.decoder.feed(
            'data: {"type":"delta","content":"a"}\n\n'
            "data: not json\n\n"
            'data: {"type":"delta","content":"b"}\n\n'
        )

        assert events == [Delta(text="a"), Delta(text="b")]
        assert self.decoder.malformed_frames == 1

    def test_flush_decodes_unterminated_tail(self):
        self.decoder.feed('data: {"type":"delta","content":"tail"}')
        assert self.decoder.flush() == [Delta(text="tail")]


class TestIterEvents:
    """Tests for the async event iterator."""

    def test_stops_after_sentinel(self):
        events = _collect([
            'data: {"type":"delta","content":"Hello"}\n\n',
            "data: [DONE]\n\n",
            'data: {"type":"delta","content":" World"}\n\n',
        ])
        assert events == [Delta(text="Hello"), StreamEnded()]

    def test_one_bad_frame_is_not_fatal(self):
        valid = [
            encode_frame("delta", {"content": str(i)}) for i in range(10)
        ]
        with_bad = valid[:5] + ["data: {broken\n\n"] + valid[5:]

        assert _collect(with_bad) == _collect(valid)

    def test_closes_underlying_stream(self):
        closed = []

        async def chunks():
            try:
                yield "data: [DONE]\n\n"
                yield 'data: {"type":"delta","content":"late"}\n\n'
            finally:
                closed.append(True)

        async def run():
            return [event async for event in iter_events(chunks())]

        assert asyncio.run(run()) == [StreamEnded()]
        assert closed == [True]
