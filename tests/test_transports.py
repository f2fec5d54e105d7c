"""Tests for the turn transports."""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from llm.base_client import ToolSubmissionError, TransportError
from llm.factory import TransportProvider, create_transport
from llm.http_client import HTTPTurnTransport
from llm.openai_client import OpenAIAssistantTransport
from schemas.events import Delta, FunctionCallRequested, RunCompleted, RunFailed, StreamEnded, ThreadCreated, ToolOutput
from streaming.frames import iter_events


SSE_BODY = (
    'data: {"type":"thread_created","threadId":"thread_1"}\n\n'
    'data: {"type":"delta","content":"{\\"greeting\\": "}\n\n'
    'data: {"type":"delta","content":"\\"Hi\\"}"}\n\n'
    'data: {"type":"done","fullContent":"{\\"greeting\\": \\"Hi\\"}"}\n\n'
    "data: [DONE]\n\n"
)


def _http_transport(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HTTPTurnTransport("https://api.example.com/api/", client=client)


async def _events(stream):
    return [event async for event in iter_events(stream)]


class TestHTTPTurnTransport:
    """Test the SSE transport against a mocked API."""

    def test_send_turn_posts_body_and_streams(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, text=SSE_BODY, headers={"Content-Type": "text/event-stream"})

        async def run():
            transport = _http_transport(handler)
            stream = await transport.send_turn("thread_1", "I can't sleep", {
                "persona": "chat",
                "instructions": "CONVERSATION CONTEXT:",
                "basic_context": {"name": "Sam"},
            })
            return await _events(stream)

        events = asyncio.run(run())

        request = requests[0]
        assert request.url == "https://api.example.com/api/assistant/stream"
        assert request.headers["Accept"] == "text/event-stream"
        assert json.loads(request.content) == {
            "message": "I can't sleep",
            "threadId": "thread_1",
            "basicContext": {"name": "Sam"},
            "instructions": "CONVERSATION CONTEXT:",
            "persona": "chat",
        }
        assert events == [
            ThreadCreated(thread_id="thread_1"),
            Delta(text='{"greeting": '),
            Delta(text='"Hi"}'),
            RunCompleted(full_content='{"greeting": "Hi"}'),
            StreamEnded(),
        ]

    def test_submit_tool_outputs(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, text="data: [DONE]\n\n")

        async def run():
            transport = _http_transport(handler)
            stream = await transport.submit_tool_outputs(
                "thread_1", "run_1", [ToolOutput(tool_call_id="call_1", output="{}")]
            )
            return await _events(stream)

        assert asyncio.run(run()) == [StreamEnded()]
        assert requests[0].url.path == "/api/assistant/submit-tool-outputs"
        assert json.loads(requests[0].content) == {
            "threadId": "thread_1",
            "runId": "run_1",
            "toolOutputs": [{"tool_call_id": "call_1", "output": "{}"}],
        }

    def test_error_status_raises(self):
        transport = _http_transport(lambda request: httpx.Response(500, text="boom"))

        with pytest.raises(TransportError, match="HTTP 500"):
            asyncio.run(transport.send_turn(None, "hi"))

    def test_submission_error_status_raises_submission_error(self):
        transport = _http_transport(lambda request: httpx.Response(502, text="bad gateway"))

        with pytest.raises(ToolSubmissionError):
            asyncio.run(transport.submit_tool_outputs("t", "r", []))

    def test_connection_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        transport = _http_transport(handler)

        with pytest.raises(TransportError, match="failed"):
            asyncio.run(transport.send_turn(None, "hi"))

    def test_does_not_close_injected_client(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        transport = HTTPTurnTransport("https://api.example.com", client=client)

        asyncio.run(transport.aclose())
        assert not client.is_closed


def _text_part(value):
    return SimpleNamespace(type="text", text=SimpleNamespace(value=value))


def _event(name, data):
    return SimpleNamespace(event=name, data=data)


async def _sdk_stream(events):
    for event in events:
        yield event


def _mock_openai(run_events, submit_events=None):
    client = MagicMock()
    client.beta.threads.create = AsyncMock(return_value=SimpleNamespace(id="thread_new"))
    client.beta.threads.messages.create = AsyncMock()
    client.beta.threads.runs.create = AsyncMock(return_value=_sdk_stream(run_events))
    client.beta.threads.runs.submit_tool_outputs = AsyncMock(
        return_value=_sdk_stream(submit_events or [])
    )
    client.close = AsyncMock()
    return client


class TestOpenAIAssistantTransport:
    """Test SDK event translation."""

    def test_requires_key_or_client(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ValueError):
            OpenAIAssistantTransport("asst_1")

    def test_new_thread_and_text_deltas(self):
        final_message = SimpleNamespace(content=[_text_part('{"greeting": "Hi"}')])
        client = _mock_openai([
            _event("thread.run.created", SimpleNamespace(id="run_1")),
            _event("thread.message.delta", SimpleNamespace(delta=SimpleNamespace(content=[_text_part('{"greeting": ')]))),
            _event("thread.message.delta", SimpleNamespace(delta=SimpleNamespace(content=[_text_part('"Hi"}')]))),
            _event("thread.message.completed", final_message),
            _event("thread.run.completed", SimpleNamespace(id="run_1")),
        ])
        transport = OpenAIAssistantTransport("asst_1", client=client)

        async def run():
            stream = await transport.send_turn(None, "hello", {"instructions": "CONTEXT"})
            return await _events(stream)

        events = asyncio.run(run())

        assert events == [
            ThreadCreated(thread_id="thread_new"),
            Delta(text='{"greeting": '),
            Delta(text='"Hi"}'),
            RunCompleted(full_content='{"greeting": "Hi"}'),
            StreamEnded(),
        ]
        client.beta.threads.messages.create.assert_awaited_once_with(
            thread_id="thread_new", role="user", content="hello"
        )
        kwargs = client.beta.threads.runs.create.await_args.kwargs
        assert kwargs["additional_instructions"] == "CONTEXT"
        assert kwargs["stream"] is True

    def test_existing_thread_is_not_recreated(self):
        client = _mock_openai([])
        transport = OpenAIAssistantTransport("asst_1", client=client)

        async def run():
            return await _events(await transport.send_turn("thread_1", "hello"))

        assert asyncio.run(run()) == [StreamEnded()]
        client.beta.threads.create.assert_not_awaited()

    def test_requires_action_becomes_function_call(self):
        call = SimpleNamespace(
            id="call_1",
            function=SimpleNamespace(name="get_pantry_items", arguments='{"limit": 3}')
        )
        run = SimpleNamespace(
            id="run_1",
            required_action=SimpleNamespace(submit_tool_outputs=SimpleNamespace(tool_calls=[call]))
        )
        client = _mock_openai([_event("thread.run.requires_action", run)])
        transport = OpenAIAssistantTransport("asst_1", client=client)

        async def run_turn():
            return await _events(await transport.send_turn("thread_1", "what do I have?"))

        events = asyncio.run(run_turn())

        assert isinstance(events[0], FunctionCallRequested)
        assert events[0].run_id == "run_1"
        assert events[0].thread_id == "thread_1"
        assert events[0].calls[0].arguments == {"limit": 3}

    def test_failed_run_becomes_error(self):
        failed_run = SimpleNamespace(id="run_1", last_error=SimpleNamespace(message="rate limited"))
        client = _mock_openai([_event("thread.run.failed", failed_run)])
        transport = OpenAIAssistantTransport("asst_1", client=client)

        async def run():
            return await _events(await transport.send_turn("thread_1", "hi"))

        assert asyncio.run(run())[0] == RunFailed(reason="rate limited")

    def test_submit_tool_outputs(self):
        client = _mock_openai([], submit_events=[
            _event("thread.message.delta", SimpleNamespace(delta=SimpleNamespace(content=[_text_part("ok")]))),
        ])
        transport = OpenAIAssistantTransport("asst_1", client=client)

        async def run():
            stream = await transport.submit_tool_outputs(
                "thread_1", "run_1", [ToolOutput(tool_call_id="call_1", output="{}")]
            )
            return await _events(stream)

        assert asyncio.run(run()) == [Delta(text="ok"), StreamEnded()]
        kwargs = client.beta.threads.runs.submit_tool_outputs.await_args.kwargs
        assert kwargs["tool_outputs"] == [{"tool_call_id": "call_1", "output": "{}"}]
        assert kwargs["run_id"] == "run_1"


class TestCreateTransport:
    """Test the transport factory."""

    def test_http(self):
        transport = create_transport(TransportProvider.HTTP, base_url="https://api.example.com")
        assert transport.get_provider_name() == "http"
        asyncio.run(transport.aclose())

    def test_http_needs_base_url(self):
        with pytest.raises(ValueError):
            create_transport(TransportProvider.HTTP)

    def test_openai_needs_assistant_id(self):
        with pytest.raises(ValueError):
            create_transport(TransportProvider.OPENAI, api_key="sk-test")

    def test_openai(self):
        transport = create_transport(TransportProvider.OPENAI, api_key="sk-test", assistant_id="asst_1")
        assert transport.get_provider_name() == "openai"
