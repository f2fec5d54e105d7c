"""Tests for the assistant's local functions."""

import json
from datetime import datetime, timedelta

from functions import (
    FunctionExecutor,
    InMemoryJourneyStore,
    InMemoryPantryStore,
    InMemoryRoutineStore,
    JournalEntry,
    Journey,
    PantryItem,
    Routine,
)
from schemas.events import FunctionCall


def call(name, arguments=None, call_id="call_1"):
    return FunctionCall.from_wire({
        "id": call_id,
        "function": {"name": name, "arguments": json.dumps(arguments or {})},
    })


class TestFunctionExecutor:
    """Test function dispatch and the built-in functions."""

    def setup_method(self):
        """Set up test fixtures."""
        now = datetime.now()
        self.pantry = InMemoryPantryStore([
            PantryItem(id="p1", name="Magnesium Glycinate", tags=["mineral", "sleep"]),
            PantryItem(id="p2", name="Ibuprofen", tags=["medication"], notes="for headaches"),
        ])
        self.routines = InMemoryRoutineStore([
            Routine(id="r1", name="Evening Sleep Routine", steps=[{"title": "Dim lights"}]),
            Routine(id="r2", name="Old Routine", is_active=False),
        ])
        self.journeys = InMemoryJourneyStore([
            Journey(id="j1", title="Back pain", type="pain", entries=[
                JournalEntry(id="e1", timestamp=now - timedelta(days=2), notes="Sore after lifting", pain_level=6),
                JournalEntry(id="e2", timestamp=now - timedelta(days=1), symptoms=["Sore lower back"]),
                JournalEntry(id="e3", timestamp=now - timedelta(days=90), notes="sore"),
            ]),
        ])
        self.executor = FunctionExecutor.with_stores(self.pantry, self.routines, self.journeys)

    def _run(self, name, arguments=None):
        output = self.executor.execute([call(name, arguments)])[0]
        assert output.tool_call_id == "call_1"
        return json.loads(output.output)

    def test_definitions(self):
        names = [d["function"]["name"] for d in self.executor.definitions()]
        assert names == [
            "get_pantry_items",
            "get_thriving_progress",
            "search_health_history",
            "get_supplement_recommendations",
        ]

    def test_outputs_keep_request_order(self):
        outputs = self.executor.execute([
            call("get_pantry_items", call_id="a"),
            call("no_such_function", call_id="b"),
            call("get_thriving_progress", {"thriving_id": "all"}, call_id="c"),
        ])
        assert [o.tool_call_id for o in outputs] == ["a", "b", "c"]

    def test_unknown_function(self):
        assert self._run("no_such_function") == {"error": "Unknown function: no_such_function"}

    def test_invalid_arguments_json(self):
        bad = FunctionCall.from_wire({"id": "call_1", "name": "get_pantry_items", "arguments": "{oops"})
        output = json.loads(self.executor.execute([bad])[0].output)
        assert "error" in output

    def test_unexpected_argument(self):
        assert "error" in self._run("get_pantry_items", {"colour": "blue"})

    def test_pantry_items(self):
        result = self._run("get_pantry_items")
        assert result["total"] == 2
        assert result["items"][0]["name"] == "Magnesium Glycinate"

    def test_pantry_items_filters(self):
        assert self._run("get_pantry_items", {"category": "medication"})["total"] == 1
        assert self._run("get_pantry_items", {"search": "headache"})["items"][0]["id"] == "p2"
        assert len(self._run("get_pantry_items", {"limit": 1})["items"]) == 1

    def test_thriving_progress_all(self):
        result = self._run("get_thriving_progress", {"thriving_id": "all"})
        assert result["total"] == 1
        assert result["thrivings"][0]["progress"] == 50

    def test_thriving_progress_single_with_steps(self):
        result = self._run("get_thriving_progress", {"thriving_id": "r1", "include_steps": True})
        assert result["title"] == "Evening Sleep Routine"
        assert result["steps"] == [{"title": "Dim lights"}]

    def test_thriving_not_found(self):
        assert self._run("get_thriving_progress", {"thriving_id": "missing"}) == {
            "error": True, "message": "Routine not found"
        }

    def test_search_health_history(self):
        result = self._run("search_health_history", {"query": "sore"})

        assert result["total"] == 2
        assert [e["entryId"] for e in result["entries"]] == ["e2", "e1"]

    def test_search_health_history_by_type(self):
        assert self._run("search_health_history", {"query": "sore", "journey_type": "sleep"})["total"] == 0

    def test_supplement_recommendations_exclude_pantry(self):
        result = self._run("get_supplement_recommendations")
        names = [r["name"] for r in result["recommendations"]]

        assert "Magnesium Glycinate" not in names
        assert result["basedOn"] == "general wellness"

    def test_supplement_recommendations_for_sleep(self):
        result = self._run("get_supplement_recommendations", {
            "health_concern": "poor sleep",
            "exclude_existing": False,
        })
        assert [r["name"] for r in result["recommendations"]] == ["Magnesium Glycinate"]
        assert result["basedOn"] == "poor sleep"
