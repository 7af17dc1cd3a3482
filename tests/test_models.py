"""
Tests for the entity records
"""
import pytest
from pydantic import ValidationError

from calagent.agent.schemas import RoutingDecision
from calagent.models import Event, EventPatch, Task, TaskPatch, TemporalWindow


class TestCanonicalTimestamps:
    """Record timestamps must be 'YYYY-MM-DD HH:MM:SS'"""

    @pytest.mark.parametrize("value", ["last year", "whenever", "2023-11-13", "2023-11-13T10:00:00",
                                       "2023-02-30 10:00:00", ""])
    def test_event_rejects_free_text(self, value):
        with pytest.raises(ValidationError):
            Event(name="x", start=value, end="2023-11-13 11:00:00")
        with pytest.raises(ValidationError):
            EventPatch(id="e1", end=value)

    def test_task_due(self):
        assert Task(content="Buy milk", due="2023-11-13 23:59:59").due == "2023-11-13 23:59:59"
        assert Task(content="Buy milk").due is None
        with pytest.raises(ValidationError):
            Task(content="Buy milk", due="tomorrow")
        with pytest.raises(ValidationError):
            TaskPatch(id="789", due="tomorrow")

    def test_aliases_are_validated(self):
        with pytest.raises(ValidationError):
            Event.model_validate({"name": "x", "from": "soon", "to": "later"})
        with pytest.raises(ValidationError):
            TemporalWindow.model_validate({"from": "today", "to": "2023-11-13 23:59:59"})

    def test_decision_reference(self):
        with pytest.raises(ValidationError):
            RoutingDecision(status="rejected", domain="task", reference="not a date")
