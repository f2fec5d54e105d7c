"""Local functions the assistant can call mid-turn."""

from .executor import FunctionExecutor
from .tools import (
    Tool,
    GetPantryItemsTool,
    GetThrivingProgressTool,
    SearchHealthHistoryTool,
    GetSupplementRecommendationsTool,
)
from .stores import (
    PantryItem,
    Routine,
    Journey,
    JournalEntry,
    PantryStore,
    RoutineStore,
    JourneyStore,
    InMemoryPantryStore,
    InMemoryRoutineStore,
    InMemoryJourneyStore,
)

__all__ = [
    "FunctionExecutor",
    "Tool",
    "GetPantryItemsTool",
    "GetThrivingProgressTool",
    "SearchHealthHistoryTool",
    "GetSupplementRecommendationsTool",
    "PantryItem",
    "Routine",
    "Journey",
    "JournalEntry",
    "PantryStore",
    "RoutineStore",
    "JourneyStore",
    "InMemoryPantryStore",
    "InMemoryRoutineStore",
    "InMemoryJourneyStore",
]
