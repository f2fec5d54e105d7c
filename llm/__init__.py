"""Turn transport abstraction layer."""

from .base_client import BaseTurnTransport, TransportError, ToolSubmissionError
from .factory import create_transport, TransportProvider

__all__ = [
    "BaseTurnTransport",
    "TransportError",
    "ToolSubmissionError",
    "create_transport",
    "TransportProvider",
]
