"""Functions the assistant can call against local storage."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from .stores import JourneyStore, PantryStore, RoutineStore

logger = logging.getLogger(__name__)


class Tool(ABC):
    """Abstract base class for assistant functions."""
    name: str
    description: str
    parameters: Dict[str, Any]

    @abstractmethod
    def execute(self, **kwargs) -> Dict[str, Any]:
        """Execute the function with the model's arguments."""
        pass

    def get_definition(self) -> Dict:
        """Get OpenAI-compatible tool definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters
            }
        }


class GetPantryItemsTool(Tool):
    """Lists what the user keeps in their pantry."""

    name = "get_pantry_items"
    description = """Get the supplements and medications saved in the user's pantry.
Use this before recommending supplements to avoid suggesting what they already have."""

    parameters = {
        "type": "object",
        "properties": {
            "category": {
                "type": "string",
                "description": "Only items tagged with this category ('all' for everything)"
            },
            "search": {
                "type": "string",
                "description": "Case-insensitive text matched against name, notes and tags"
            },
            "limit": {
                "type": "integer",
                "description": "Maximum items to return (default: 10)",
                "default": 10
            }
        }
    }

    def __init__(self, pantry: PantryStore):
        self.pantry = pantry

    def execute(
        self,
        category: Optional[str] = None,
        search: Optional[str] = None,
        limit: Optional[int] = None
    ) -> Dict[str, Any]:
        items = self.pantry.list_items()

        if category and category != "all":
            items = [item for item in items if category in item.tags]

        if search:
            needle = search.lower()
            items = [
                item for item in items
                if needle in item.name.lower()
                or needle in item.notes.lower()
                or any(needle in tag.lower() for tag in item.tags)
            ]

        limited = items[:limit or 10]
        return {
            "total": len(items),
            "items": [
                {
                    "id": item.id,
                    "name": item.name,
                    "tags": item.tags,
                    "notes": item.notes,
                    "dateAdded": item.date_added.isoformat(),
                }
                for item in limited
            ]
        }


class GetThrivingProgressTool(Tool):
    """Reports on the user's routines."""

    name = "get_thriving_progress"
    description = """Get details and progress of a wellness routine ("thriving").
Pass thriving_id='all' for a summary of every active routine."""

    parameters = {
        "type": "object",
        "properties": {
            "thriving_id": {
                "type": "string",
                "description": "Routine id, or 'all' for every active routine"
            },
            "include_steps": {
                "type": "boolean",
                "description": "Include steps, expected outcomes and safety notes"
            }
        },
        "required": ["thriving_id"]
    }

    # Progress tracking is not modelled yet
    DEFAULT_PROGRESS = 50

    def __init__(self, routines: RoutineStore):
        self.routines = routines

    def execute(self, thriving_id: str = "all", include_steps: bool = False) -> Dict[str, Any]:
        routines = self.routines.list_routines()

        if thriving_id == "all":
            active = [r for r in routines if r.is_active]
            return {
                "total": len(active),
                "thrivings": [
                    {
                        "id": r.id,
                        "title": r.name,
                        "type": r.type,
                        "progress": self.DEFAULT_PROGRESS,
                        "duration": r.duration,
                        "frequency": r.frequency,
                        "startDate": r.created_at.isoformat(),
                        "isActive": r.is_active,
                    }
                    for r in active
                ]
            }

        routine = next((r for r in routines if r.id == thriving_id), None)
        if routine is None:
            return {"error": True, "message": "Routine not found"}

        result = {
            "id": routine.id,
            "title": routine.name,
            "description": routine.description,
            "type": routine.type,
            "progress": self.DEFAULT_PROGRESS,
            "duration": routine.duration,
            "frequency": routine.frequency,
            "startDate": routine.created_at.isoformat(),
            "isActive": routine.is_active,
        }
        if include_steps:
            result["steps"] = routine.steps
            result["expectedOutcomes"] = routine.expected_outcomes
            result["safetyNotes"] = routine.safety_notes
        return result


class SearchHealthHistoryTool(Tool):
    """Searches journal entries of the user's health journeys."""

    name = "search_health_history"
    description = """Search the user's journal entries for symptoms, notes or tags.
Returns the newest matching entries first."""

    parameters = {
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "Text to look for in notes, symptoms and tags"
            },
            "days_back": {
                "type": "integer",
                "description": "How far back to search (default: 30)",
                "default": 30
            },
            "journey_type": {
                "type": "string",
                "description": "Only journeys of this type ('all' for every journey)"
            }
        },
        "required": ["query"]
    }

    MAX_RESULTS = 20

    def __init__(self, journeys: JourneyStore):
        self.journeys = journeys

    def execute(
        self,
        query: str = "",
        days_back: Optional[int] = None,
        journey_type: Optional[str] = None
    ) -> Dict[str, Any]:
        cutoff = datetime.now() - timedelta(days=days_back or 30)
        needle = query.lower()

        journeys = self.journeys.list_journeys()
        if journey_type and journey_type != "all":
            journeys = [j for j in journeys if j.type == journey_type]

        results: List[Dict[str, Any]] = []
        for journey in journeys:
            for entry in journey.entries:
                if entry.timestamp < cutoff:
                    continue
                matched = (
                    needle in entry.notes.lower()
                    or any(needle in s.lower() for s in entry.symptoms)
                    or any(needle in t.lower() for t in entry.tags)
                )
                if matched:
                    results.append({
                        "journeyId": journey.id,
                        "journeyTitle": journey.title,
                        "journeyType": journey.type,
                        "entryId": entry.id,
                        "date": entry.timestamp.isoformat(),
                        "painLevel": entry.pain_level,
                        "mood": entry.mood,
                        "symptoms": entry.symptoms,
                        "tags": entry.tags,
                        "notes": entry.notes,
                    })

        results.sort(key=lambda r: r["date"], reverse=True)
        return {"total": len(results), "entries": results[:self.MAX_RESULTS]}


class GetSupplementRecommendationsTool(Tool):
    """Suggests common supplements for a health concern."""

    name = "get_supplement_recommendations"
    description = """Get supplement suggestions for a health concern.
By default supplements already in the pantry are left out."""

    parameters = {
        "type": "object",
        "properties": {
            "health_concern": {
                "type": "string",
                "description": "Concern to address, e.g. 'sleep'"
            },
            "exclude_existing": {
                "type": "boolean",
                "description": "Leave out supplements already in the pantry (default: true)",
                "default": True
            }
        }
    }

    CATALOG = [
        {
            "name": "Vitamin D3",
            "reason": "Supports immune system and bone health",
            "dosage": "1000-2000 IU daily",
            "category": "vitamin",
        },
        {
            "name": "Magnesium Glycinate",
            "reason": "Helps with sleep and muscle relaxation",
            "dosage": "200-400mg before bed",
            "category": "mineral",
        },
        {
            "name": "Omega-3 Fish Oil",
            "reason": "Supports heart and brain health",
            "dosage": "1-2g daily with food",
            "category": "fatty acid",
        },
    ]

    def __init__(self, pantry: PantryStore):
        self.pantry = pantry

    def execute(
        self,
        health_concern: Optional[str] = None,
        exclude_existing: Optional[bool] = None
    ) -> Dict[str, Any]:
        recommendations = [dict(r) for r in self.CATALOG]

        if health_concern and "sleep" in health_concern.lower():
            recommendations = [
                r for r in recommendations
                if "Magnesium" in r["name"] or "sleep" in r["reason"].lower()
            ]

        if exclude_existing is not False:
            owned = {item.name.lower() for item in self.pantry.list_items()}
            recommendations = [r for r in recommendations if r["name"].lower() not in owned]

        return {
            "recommendations": recommendations,
            "total": len(recommendations),
            "basedOn": health_concern or "general wellness",
        }
