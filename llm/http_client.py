"""HTTP turn transport for the assistant streaming API."""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from schemas.events import ToolOutput
from .base_client import BaseTurnTransport, ChunkStream, ToolSubmissionError, TransportError

logger = logging.getLogger(__name__)


class HTTPTurnTransport(BaseTurnTransport):
    """Streams turns from the assistant API over server-sent events."""

    STREAM_PATH = "/assistant/stream"
    SUBMIT_PATH = "/assistant/submit-tool-outputs"
    DEFAULT_TIMEOUT = 60.0

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        headers: Optional[Dict[str, str]] = None
    ):
        """
        Initialize HTTP transport.

        Args:
            base_url: API root, e.g. https://app.example.com/api
            client: Optional preconfigured httpx client (tests pass one with
                a MockTransport)
            timeout: Read timeout in seconds
            headers: Extra headers sent with every request
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout, connect=10.0),
            headers=headers
        )
        logger.info(f"HTTP turn transport initialized for {self.base_url}")

    async def send_turn(
        self,
        conversation_id: Optional[str],
        text: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ChunkStream:
        """Open the SSE stream for a user turn."""
        metadata = metadata or {}
        body = {
            "message": text,
            "threadId": conversation_id,
            "basicContext": metadata.get("basic_context"),
            "instructions": metadata.get("instructions"),
            "persona": metadata.get("persona"),
        }
        return await self._open_stream(self.STREAM_PATH, body, TransportError)

    async def submit_tool_outputs(
        self,
        conversation_id: Optional[str],
        run_id: str,
        results: List[ToolOutput]
    ) -> ChunkStream:
        """Submit function results and open the resumed run's stream."""
        body = {
            "threadId": conversation_id,
            "runId": run_id,
            "toolOutputs": [result.model_dump() for result in results],
        }
        return await self._open_stream(self.SUBMIT_PATH, body, ToolSubmissionError)

    async def _open_stream(self, path: str, body: Dict[str, Any], error_cls) -> ChunkStream:
        request = self.client.build_request(
            "POST",
            f"{self.base_url}{path}",
            json=body,
            headers={"Accept": "text/event-stream"}
        )
        try:
            response = await self.client.send(request, stream=True)
        except httpx.HTTPError as e:
            logger.error(f"Request to {path} failed: {e}")
            raise error_cls(f"Request to {path} failed: {e}") from e

        if response.status_code >= 400:
            detail = (await response.aread()).decode("utf-8", errors="replace")[:200]
            await response.aclose()
            logger.error(f"{path} returned HTTP {response.status_code}: {detail}")
            raise error_cls(f"HTTP {response.status_code}: {detail}")

        return self._iter_chunks(response, path)

    async def _iter_chunks(self, response: httpx.Response, path: str) -> AsyncIterator[str]:
        try:
            async for chunk in response.aiter_text():
                yield chunk
        except httpx.HTTPError as e:
            logger.error(f"Stream from {path} interrupted: {e}")
            raise TransportError(f"Stream interrupted: {e}") from e
        finally:
            await response.aclose()

    async def aclose(self):
        if self._owns_client:
            await self.client.aclose()

    def get_provider_name(self) -> str:
        """Get the provider name."""
        return "http"
