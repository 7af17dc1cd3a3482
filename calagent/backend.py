from __future__ import annotations

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Sequence

from .config import CANONICAL_FORMAT
from .models import (Domain, EntityPatch, EntityRecord, Event, EventPatch, Task, TaskPatch,
                     TemporalWindow, UpdateOutcome)

logger = logging.getLogger(__name__)


class PartialCreateError(Exception):
  """`create` failed part-way; `created_ids` were stored before the failure."""

  def __init__(self, created_ids: Sequence[str], cause: Exception) -> None:
    super().__init__(str(cause) or type(cause).__name__)
    self.created_ids = list(created_ids)
    self.cause = cause


class EntityBackend(ABC):
  """Storage collaborator behind the dispatcher.

  Calls are synchronous; the dispatcher runs them off the event loop.
  """

  @abstractmethod
  def fetch(self, domain: Domain, window: TemporalWindow, include_all: bool,
            now: datetime) -> List[EntityRecord]:
    """Entities of `domain` inside `window`, ordered by time."""

  @abstractmethod
  def create(self, domain: Domain, records: Sequence[EntityRecord]) -> List[str]:
    """Insert new entities and return their assigned ids, in input order.

    Raises `PartialCreateError` when some records were stored before a failure.
    """

  @abstractmethod
  def update(self, domain: Domain, patches: Sequence[EntityPatch]) -> List[UpdateOutcome]:
    """Apply partial updates keyed by id; one outcome per patch."""


def _check_domain(domain: str) -> None:
  if domain not in ("calendar", "task"):
    raise ValueError(f"Unsupported domain: {domain!r}")


class InMemoryBackend(EntityBackend):
  """Dict-backed store used by default and in tests."""

  def __init__(self) -> None:
    self._lock = threading.Lock()
    self._ids = itertools.count(1)
    self._events: Dict[str, Event] = {}
    self._tasks: Dict[str, Task] = {}

  def _next_id(self) -> str:
    entity_id = str(next(self._ids))
    while entity_id in self._events or entity_id in self._tasks:
      entity_id = str(next(self._ids))
    return entity_id

  def _store(self, domain: str, records: Iterable[EntityRecord]) -> List[str]:
    record_type = Event if domain == "calendar" else Task
    records = list(records)
    # Nothing is stored unless every record fits the domain.
    for record in records:
      if not isinstance(record, record_type):
        raise ValueError(f"Expected {record_type.__name__}, got {type(record).__name__}.")
    store = self._events if domain == "calendar" else self._tasks
    ids: List[str] = []
    for record in records:
      entity_id = record.id or self._next_id()
      store[entity_id] = record.model_copy(update={"id": entity_id})
      ids.append(entity_id)
    return ids

  def seed(self, domain: Domain, records: Iterable[EntityRecord]) -> List[str]:
    """Load existing entities, keeping any ids they already carry."""
    _check_domain(domain)
    with self._lock:
      return self._store(domain, records)

  def records(self, domain: Domain) -> List[EntityRecord]:
    _check_domain(domain)
    with self._lock:
      store = self._events if domain == "calendar" else self._tasks
      return list(store.values())

  def fetch(self, domain: Domain, window: TemporalWindow, include_all: bool,
            now: datetime) -> List[EntityRecord]:
    _check_domain(domain)
    # Canonical timestamps sort lexicographically.
    now_text = now.strftime(CANONICAL_FORMAT)
    with self._lock:
      if domain == "calendar":
        events = [
            event for event in self._events.values()
            if event.start <= window.end and event.end >= window.start and
            (include_all or event.end >= now_text)
        ]
        return sorted(events, key=lambda item: (item.start, item.name))
      tasks = [
          task for task in self._tasks.values()
          if task.due and window.start <= task.due <= window.end and
          (include_all or not task.status)
      ]
      return sorted(tasks, key=lambda item: (item.due or "", item.content))

  def create(self, domain: Domain, records: Sequence[EntityRecord]) -> List[str]:
    _check_domain(domain)
    with self._lock:
      ids = self._store(domain, [record.model_copy(update={"id": None}) for record in records])
    logger.debug("created %d %s entities", len(ids), domain)
    return ids

  def update(self, domain: Domain, patches: Sequence[EntityPatch]) -> List[UpdateOutcome]:
    _check_domain(domain)
    outcomes: List[UpdateOutcome] = []
    with self._lock:
      store = self._events if domain == "calendar" else self._tasks
      for patch in patches:
        current = store.get(patch.id)
        if current is None:
          outcomes.append(UpdateOutcome(id=patch.id, ok=False, error="Entity not found."))
          continue
        if domain == "calendar" and not isinstance(patch, EventPatch):
          raise ValueError(f"Expected an EventPatch, got {type(patch).__name__}.")
        if domain == "task" and not isinstance(patch, TaskPatch):
          raise ValueError(f"Expected a TaskPatch, got {type(patch).__name__}.")
        changes = patch.model_dump(exclude={"id"}, exclude_none=True)
        store[patch.id] = current.model_copy(update=changes)
        outcomes.append(UpdateOutcome(id=patch.id, ok=True))
    return outcomes
