"""Application settings."""

import os
from typing import Optional
from pydantic import BaseModel


class Settings(BaseModel):
    """Application configuration settings."""

    # Transport settings
    transport: str = "http"  # "http" or "openai"
    api_base_url: Optional[str] = None  # e.g. https://app.example.com/api
    request_timeout: float = 60.0

    # OpenAI assistants
    openai_api_key: Optional[str] = None
    chat_assistant_id: Optional[str] = None

    # Context window
    context_window_size: int = 10

    # Answer batching
    answer_debounce_seconds: float = 10.0
    typing_settle_seconds: float = 0.5

    # Safety timer that only clears the "responding" flag
    presentation_timeout_seconds: float = 60.0

    # Routing rules (None = bundled config/routing_rules.yaml)
    routing_rules_path: Optional[str] = None

    # Logging
    verbose: bool = False

    def __init__(self, **data):
        # Auto-load connection settings from environment if not provided
        if data.get("api_base_url") is None:
            data["api_base_url"] = os.environ.get("THRIVE_API_BASE_URL")

        if data.get("openai_api_key") is None:
            data["openai_api_key"] = (
                os.environ.get("THRIVE_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY")
            )

        if data.get("chat_assistant_id") is None:
            data["chat_assistant_id"] = os.environ.get("THRIVE_CHAT_ASSISTANT_ID")

        super().__init__(**data)
