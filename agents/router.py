"""Assistant router for persona selection and handoffs."""

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from pydantic import BaseModel

from schemas.context import ConversationState, PersonaId
from schemas.responses import PartialResponse

logger = logging.getLogger(__name__)

DEFAULT_RULES_PATH = Path(__file__).resolve().parent.parent / "config" / "routing_rules.yaml"


class EmergencyMatch(BaseModel):
    """A safety keyword found in a user message."""
    keyword: str
    reason: str


def load_routing_rules(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load routing rules from YAML."""
    path = Path(path or DEFAULT_RULES_PATH)
    with open(path, "r", encoding="utf-8") as f:
        rules = yaml.safe_load(f) or {}
    logger.debug(f"Loaded routing rules from {path}")
    return rules


class AssistantRouter:
    """Picks the specialist persona that answers each message."""

    DEFAULT_PERSONA = PersonaId.CHAT

    def __init__(self, rules: Optional[Dict[str, Any]] = None):
        """
        Initialize router with routing rules.

        Args:
            rules: Parsed rules mapping; loaded from config/routing_rules.yaml
                when omitted
        """
        rules = rules if rules is not None else load_routing_rules()

        self.emergency_keywords: List[str] = [
            keyword.lower() for keyword in rules.get("emergency_keywords", [])
        ]
        self.rule_groups: List[Tuple[PersonaId, List[re.Pattern]]] = [
            (
                PersonaId(group["persona"]),
                [re.compile(pattern, re.IGNORECASE) for pattern in group.get("patterns", [])]
            )
            for group in rules.get("rule_groups", [])
        ]
        self.task_modes: Dict[str, PersonaId] = {
            item_type: PersonaId(persona)
            for item_type, persona in (rules.get("task_modes") or {}).items()
        }
        self.handoff_messages: Dict[Tuple[PersonaId, PersonaId], str] = {}
        for source, targets in (rules.get("handoff_messages") or {}).items():
            for target, message in targets.items():
                self.handoff_messages[(PersonaId(source), PersonaId(target))] = message
        self.default_handoff: str = rules.get(
            "default_handoff", "I'll connect you with the right specialist for your needs."
        )

    def select(self, message: str, state: Optional[ConversationState] = None) -> PersonaId:
        """
        Select the persona for a message.

        Precedence: safety keyword, then the sticky task mode, then the
        ordered rule groups, then the default persona.

        Args:
            message: User message
            state: Routing state of the conversation

        Returns:
            PersonaId that should answer
        """
        state = state or ConversationState()

        emergency = self.check_for_emergency(message)
        if emergency:
            logger.warning(f"Safety keyword '{emergency.keyword}' detected, routing to {self.DEFAULT_PERSONA.value}")
            return self.DEFAULT_PERSONA

        if state.active_task_mode:
            logger.debug(f"Staying on {state.active_task_mode.value} (active task mode)")
            return state.active_task_mode

        for persona, patterns in self.rule_groups:
            for pattern in patterns:
                if pattern.search(message):
                    logger.debug(f"Pattern '{pattern.pattern}' routed message to {persona.value}")
                    return persona

        return self.DEFAULT_PERSONA

    def check_for_emergency(self, message: str) -> Optional[EmergencyMatch]:
        """Return the first safety keyword found in the message, if any."""
        normalized = message.lower().replace("’", "'")
        for keyword in self.emergency_keywords:
            if keyword in normalized:
                return EmergencyMatch(
                    keyword=keyword,
                    reason=f"Message mentions '{keyword}', which may need immediate medical attention"
                )
        return None

    def handoff_message(self, from_persona: Optional[PersonaId], to_persona: PersonaId) -> Optional[str]:
        """Canned transition line, or None when the persona does not change."""
        if from_persona is None or from_persona == to_persona:
            return None
        return self.handoff_messages.get((from_persona, to_persona), self.default_handoff)

    def observe_response(self, state: ConversationState, response: PartialResponse) -> ConversationState:
        """
        Update stickiness from a completed reply.

        Actionable items such as a routine or pantry action pin the
        conversation to that persona. Task mode is never cleared here.
        """
        for item in response.actionable_items or []:
            if not isinstance(item, dict):
                continue
            persona = self.task_modes.get(item.get("type"))
            if persona and persona != state.active_task_mode:
                logger.info(f"Entering {persona.value} task mode from '{item.get('type')}' item")
                return state.model_copy(update={"active_task_mode": persona})
        return state

    def clear_task_mode(self, state: ConversationState) -> ConversationState:
        if state.active_task_mode:
            logger.info(f"Leaving {state.active_task_mode.value} task mode")
        return state.model_copy(update={"active_task_mode": None})
