"""Runs the assistant's function calls against local storage."""

import json
import logging
from typing import Any, Dict, List, Optional

from schemas.events import FunctionCall, ToolOutput
from .stores import (
    InMemoryJourneyStore,
    InMemoryPantryStore,
    InMemoryRoutineStore,
    JourneyStore,
    PantryStore,
    RoutineStore,
)
from .tools import (
    GetPantryItemsTool,
    GetSupplementRecommendationsTool,
    GetThrivingProgressTool,
    SearchHealthHistoryTool,
    Tool,
)

logger = logging.getLogger(__name__)


class FunctionExecutor:
    """
    Executes a batch of function calls and returns one output per call.

    A failing or unknown call never aborts the batch; its output is a JSON
    object with an ``error`` field instead.
    """

    def __init__(self, tools: List[Tool]):
        """
        Initialize executor.

        Args:
            tools: Functions the assistant may call, looked up by name
        """
        self.tools = {tool.name: tool for tool in tools}

    @classmethod
    def with_stores(
        cls,
        pantry: Optional[PantryStore] = None,
        routines: Optional[RoutineStore] = None,
        journeys: Optional[JourneyStore] = None
    ) -> "FunctionExecutor":
        """Build the standard function set over the given stores."""
        pantry = pantry or InMemoryPantryStore()
        return cls([
            GetPantryItemsTool(pantry),
            GetThrivingProgressTool(routines or InMemoryRoutineStore()),
            SearchHealthHistoryTool(journeys or InMemoryJourneyStore()),
            GetSupplementRecommendationsTool(pantry),
        ])

    def definitions(self) -> List[Dict]:
        """Tool definitions to register on the assistant."""
        return [tool.get_definition() for tool in self.tools.values()]

    def execute(self, calls: List[FunctionCall]) -> List[ToolOutput]:
        """
        Execute every call in order.

        Args:
            calls: Function calls requested by one paused run

        Returns:
            ToolOutput per call, keyed by call id, in request order
        """
        outputs = []
        for call in calls:
            result = self._execute_one(call)
            outputs.append(ToolOutput(tool_call_id=call.id, output=json.dumps(result)))
        return outputs

    def _execute_one(self, call: FunctionCall) -> Dict[str, Any]:
        tool = self.tools.get(call.name)
        if tool is None:
            logger.warning(f"Assistant requested unknown function '{call.name}'")
            return {"error": f"Unknown function: {call.name}"}

        try:
            if call.raw_arguments.strip():
                json.loads(call.raw_arguments)
            logger.info(f"Executing {call.name} with {call.arguments}")
            return tool.execute(**call.arguments)
        except Exception as e:
            logger.error(f"Function {call.name} failed: {e}")
            return {"error": str(e) or "Function execution failed"}
