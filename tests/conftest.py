"""
Pytest configuration and fixtures
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytest

from calagent.agent.schemas import ModelRequest, ModelResponse
from calagent.backend import InMemoryBackend
from calagent.models import Event, Task


class StubModel:
    """Deterministic stand-in for the chat model: always answers with `response`."""

    def __init__(self, response: Optional[ModelResponse]):
        self.response = response
        self.requests: List[ModelRequest] = []

    async def __call__(self, request: ModelRequest) -> Optional[ModelResponse]:
        self.requests.append(request)
        return self.response


def make_model(name: Optional[str], arguments: Optional[Dict[str, Any]] = None,
               **kwargs: Any) -> StubModel:
    return StubModel(ModelResponse(name=name, arguments=arguments, **kwargs))


@pytest.fixture
def stub_model():
    """Factory for stub model callables"""
    return make_model


@pytest.fixture
def monday_morning():
    """2023-11-13 is a Monday"""
    return datetime(2023, 11, 13, 9, 0, 0)


@pytest.fixture
def saturday_afternoon():
    """2023-11-11 is a Saturday"""
    return datetime(2023, 11, 11, 15, 0, 0)


@pytest.fixture
def task_snapshot():
    """Todo-list as fetched before an update request"""
    return [
        Task(id="123", content="Write newsletter about GPT-4", project="eduweb"),
        Task(id="456", content="Record a YouTube video about Alice", project="overment"),
        Task(id="789", content="Buy milk"),
    ]


@pytest.fixture
def event_snapshot():
    """Calendar as fetched before an update request"""
    return [
        Event(id="e1", name="Meeting with Bartek", start="2023-11-14 10:00:00",
              end="2023-11-14 11:00:00", location="Office"),
        Event(id="e2", name="Dentist appointment", start="2023-11-15 08:00:00",
              end="2023-11-15 08:30:00"),
        Event(id="e3", name="Team sync", start="2023-11-16 12:00:00",
              end="2023-11-16 12:15:00"),
    ]


@pytest.fixture
def memory_backend():
    """Empty in-memory backend"""
    return InMemoryBackend()
