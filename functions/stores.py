"""Local storage collaborators the assistant functions read from."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class PantryItem(BaseModel):
    """A supplement or medication the user keeps."""
    id: str
    name: str
    tags: List[str] = Field(default_factory=list)
    notes: str = ""
    date_added: datetime = Field(default_factory=datetime.now)


class Routine(BaseModel):
    """A wellness routine ("thriving")."""
    id: str
    name: str
    description: str = ""
    type: str = "wellness"
    duration: Optional[str] = None
    frequency: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    is_active: bool = True
    steps: List[Dict[str, Any]] = Field(default_factory=list)
    expected_outcomes: List[str] = Field(default_factory=list)
    safety_notes: List[str] = Field(default_factory=list)


class JournalEntry(BaseModel):
    """One check-in within a health journey."""
    id: str
    timestamp: datetime
    notes: str = ""
    symptoms: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    pain_level: Optional[int] = None
    mood: Optional[str] = None


class Journey(BaseModel):
    """A tracked health journey and its journal entries."""
    id: str
    title: str
    type: str
    entries: List[JournalEntry] = Field(default_factory=list)


class PantryStore(ABC):
    """Abstract pantry storage."""

    @abstractmethod
    def list_items(self) -> List[PantryItem]:
        pass


class RoutineStore(ABC):
    """Abstract routine storage."""

    @abstractmethod
    def list_routines(self) -> List[Routine]:
        pass


class JourneyStore(ABC):
    """Abstract journey storage."""

    @abstractmethod
    def list_journeys(self) -> List[Journey]:
        pass


class InMemoryPantryStore(PantryStore):
    def __init__(self, items: Optional[List[PantryItem]] = None):
        self.items = list(items or [])

    def add(self, item: PantryItem):
        self.items.append(item)

    def list_items(self) -> List[PantryItem]:
        return list(self.items)


class InMemoryRoutineStore(RoutineStore):
    def __init__(self, routines: Optional[List[Routine]] = None):
        self.routines = list(routines or [])

    def list_routines(self) -> List[Routine]:
        return list(self.routines)


class InMemoryJourneyStore(JourneyStore):
    def __init__(self, journeys: Optional[List[Journey]] = None):
        self.journeys = list(journeys or [])

    def list_journeys(self) -> List[Journey]:
        return list(self.journeys)
