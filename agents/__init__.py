"""Agents for the wellness chat orchestrator."""

from .router import AssistantRouter, EmergencyMatch, load_routing_rules

__all__ = [
    "AssistantRouter",
    "EmergencyMatch",
    "load_routing_rules",
]
