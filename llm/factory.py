"""Turn transport factory."""

from enum import Enum
from typing import Optional

from .base_client import BaseTurnTransport
from .http_client import HTTPTurnTransport
from .openai_client import OpenAIAssistantTransport


class TransportProvider(str, Enum):
    """Supported turn transports."""
    HTTP = "http"
    OPENAI = "openai"


def create_transport(
    provider: TransportProvider,
    base_url: Optional[str] = None,
    api_key: Optional[str] = None,
    assistant_id: Optional[str] = None
) -> BaseTurnTransport:
    """
    Create a turn transport for the specified provider.

    Args:
        provider: Transport provider (http or openai)
        base_url: Assistant API root for the http transport
        api_key: OpenAI API key for the openai transport
        assistant_id: Assistant id for the openai transport

    Returns:
        Configured turn transport

    Raises:
        ValueError: If provider is not supported or misconfigured
    """
    if provider == TransportProvider.HTTP:
        if not base_url:
            raise ValueError("The http transport needs a base URL")
        return HTTPTurnTransport(base_url=base_url)
    elif provider == TransportProvider.OPENAI:
        if not assistant_id:
            raise ValueError("The openai transport needs an assistant id")
        return OpenAIAssistantTransport(assistant_id=assistant_id, api_key=api_key)
    else:
        raise ValueError(f"Unsupported transport provider: {provider}")
