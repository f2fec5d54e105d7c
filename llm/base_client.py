"""Base turn transport interface."""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from schemas.events import ToolOutput


class TransportError(Exception):
    """The remote stream could not be opened or was lost mid-turn."""
    pass


class ToolSubmissionError(TransportError):
    """Function results could not be handed back to the remote run."""
    pass


ChunkStream = AsyncIterator[Union[str, bytes]]


class BaseTurnTransport(ABC):
    """
    Abstract base class for assistant turn transports.

    A transport opens a server-sent event stream for one user turn and
    resumes a run by submitting function results, which opens a nested
    stream. Chunks are raw text; framing is left to the caller.
    """

    @abstractmethod
    async def send_turn(
        self,
        conversation_id: Optional[str],
        text: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ChunkStream:
        """
        Open the stream for a user turn.

        Args:
            conversation_id: Remote thread id, None to start a new thread
            text: Message text sent to the assistant
            metadata: Persona, context instructions and basic user context

        Returns:
            Async iterator of raw stream chunks

        Raises:
            TransportError: If the stream cannot be opened
        """
        pass

    @abstractmethod
    async def submit_tool_outputs(
        self,
        conversation_id: Optional[str],
        run_id: str,
        results: List[ToolOutput]
    ) -> ChunkStream:
        """
        Submit function results for a paused run.

        Returns:
            Async iterator of the resumed run's chunks

        Raises:
            ToolSubmissionError: If the submission is rejected
        """
        pass

    async def aclose(self):
        """Release network resources."""
        pass

    @abstractmethod
    def get_provider_name(self) -> str:
        """Get the name of the transport provider."""
        pass
