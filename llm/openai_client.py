"""OpenAI Assistants turn transport."""

import logging
import os
from typing import Any, AsyncIterator, Dict, List, Optional

from openai import APIError, AsyncOpenAI

from schemas.events import ToolOutput
from streaming.frames import encode_done, encode_frame
from .base_client import BaseTurnTransport, ChunkStream, ToolSubmissionError, TransportError

logger = logging.getLogger(__name__)


class OpenAIAssistantTransport(BaseTurnTransport):
    """
    Runs turns on an OpenAI assistant and re-encodes the run events.

    The SDK's typed run events are translated into the same frames the HTTP
    API emits, so the session decodes both transports identically.
    """

    def __init__(
        self,
        assistant_id: str,
        api_key: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None
    ):
        """
        Initialize OpenAI transport.

        Args:
            assistant_id: Assistant that answers the turns
            api_key: OpenAI API key (falls back to OPENAI_API_KEY env var)
            client: Optional preconfigured AsyncOpenAI client
        """
        self.assistant_id = assistant_id
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        if client is None and not self.api_key:
            raise ValueError("No OpenAI API key provided")
        self.client = client or AsyncOpenAI(api_key=self.api_key)
        logger.info(f"OpenAI assistant transport initialized for {self.assistant_id}")

    async def send_turn(
        self,
        conversation_id: Optional[str],
        text: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ChunkStream:
        """Post the user message and start a streaming run."""
        metadata = metadata or {}
        created = conversation_id is None
        try:
            if created:
                thread = await self.client.beta.threads.create()
                conversation_id = thread.id
            await self.client.beta.threads.messages.create(
                thread_id=conversation_id,
                role="user",
                content=text
            )
            stream = await self.client.beta.threads.runs.create(
                thread_id=conversation_id,
                assistant_id=self.assistant_id,
                additional_instructions=metadata.get("instructions"),
                stream=True
            )
        except APIError as e:
            logger.error(f"OpenAI run could not be started: {e}")
            raise TransportError(f"OpenAI run could not be started: {e}") from e

        return self._translate(stream, conversation_id, announce_thread=created)

    async def submit_tool_outputs(
        self,
        conversation_id: Optional[str],
        run_id: str,
        results: List[ToolOutput]
    ) -> ChunkStream:
        """Hand function results back to the paused run."""
        try:
            stream = await self.client.beta.threads.runs.submit_tool_outputs(
                run_id=run_id,
                thread_id=conversation_id,
                tool_outputs=[result.model_dump() for result in results],
                stream=True
            )
        except APIError as e:
            logger.error(f"Submitting tool outputs for run {run_id} failed: {e}")
            raise ToolSubmissionError(str(e)) from e

        return self._translate(stream, conversation_id, announce_thread=False)

    async def _translate(
        self,
        stream,
        thread_id: Optional[str],
        announce_thread: bool
    ) -> AsyncIterator[str]:
        if announce_thread:
            yield encode_frame("thread_created", {"threadId": thread_id})

        full_content = ""
        try:
            async for event in stream:
                frame = self._event_to_frame(event, thread_id)
                if event.event == "thread.message.completed":
                    full_content = self._message_text(event.data) or full_content
                    continue
                if event.event == "thread.run.completed":
                    frame = encode_frame("completed", {"fullContent": full_content})
                if frame:
                    yield frame
        except APIError as e:
            logger.error(f"OpenAI stream interrupted: {e}")
            raise TransportError(f"OpenAI stream interrupted: {e}") from e
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                await close()
        yield encode_done()

    def _event_to_frame(self, event, thread_id: Optional[str]) -> Optional[str]:
        name = event.event
        data = event.data

        if name == "thread.message.delta":
            text = "".join(
                part.text.value for part in (data.delta.content or [])
                if getattr(part, "type", None) == "text" and part.text and part.text.value
            )
            return encode_frame("delta", {"content": text}) if text else None

        if name == "thread.run.requires_action":
            tool_calls = data.required_action.submit_tool_outputs.tool_calls
            return encode_frame("function_call", {
                "runId": data.id,
                "threadId": thread_id,
                "toolCalls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {
                            "name": call.function.name,
                            "arguments": call.function.arguments,
                        },
                    }
                    for call in tool_calls
                ],
            })

        if name in ("thread.run.failed", "thread.run.cancelled", "thread.run.expired"):
            last_error = getattr(data, "last_error", None)
            reason = last_error.message if last_error else name.rsplit(".", 1)[-1]
            return encode_frame("error", {"error": reason})

        if name == "error":
            return encode_frame("error", {"error": str(getattr(data, "message", None) or data)})

        return None

    @staticmethod
    def _message_text(message) -> str:
        return "".join(
            part.text.value for part in (message.content or [])
            if getattr(part, "type", None) == "text"
        )

    async def aclose(self):
        await self.client.close()

    def get_provider_name(self) -> str:
        """Get the provider name."""
        return "openai"
