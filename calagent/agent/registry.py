from __future__ import annotations

import logging
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Tuple

from ..config import DEFAULT_TASK_PROJECT, TASK_PROJECTS
from .errors import (DuplicateOperationError, RegistryFrozenError, SchemaError,
                     UnknownOperationError)
from .schemas import KIND_ORDER, ArgumentField, OperationSchema

logger = logging.getLogger(__name__)

DATETIME_HINT = "Always format exactly as YYYY-MM-DD HH:mm:ss"

PROJECT_DESCRIPTION = f"""Automatically detected project name for this task. Should be either:
- "inbox" (default)
- "overment" for tasks related to the YouTube channel, second brain, and all activities related to the private life
- "eduweb" for tasks related to the education, online courses, design & tech, AI, community, writing newsletters and blog posts
- "easy_" for tasks related to the digital products, sales, online business, and marketing

Caution: Similar tasks may occur for different project. Consider their context and use your best judgement. For example "Write a newsletter about Subscriptions" is a task for "easy_", not "eduweb" project. Defaults to "{DEFAULT_TASK_PROJECT}".
"""


class SchemaRegistry:
  """Operations the router may select, keyed by (domain, name).

  The registry is filled once at start-up and then frozen; afterwards it is
  only read, so one instance can serve concurrent requests.
  """

  def __init__(self, schemas: Iterable[OperationSchema] = ()) -> None:
    self._schemas: Dict[Tuple[str, str], OperationSchema] = {}
    self._sequence: List[OperationSchema] = []
    self._by_domain: Dict[str, Tuple[OperationSchema, ...]] = {}
    self._frozen = False
    for schema in schemas:
      self.register(schema)

  @property
  def frozen(self) -> bool:
    return self._frozen

  def register(self, schema: OperationSchema) -> OperationSchema:
    if self._frozen:
      raise RegistryFrozenError(
          f"Cannot register {schema.name!r}: the registry is frozen.")
    key = (schema.domain, schema.name)
    if key in self._schemas:
      raise DuplicateOperationError(schema.domain, schema.name)
    self._schemas[key] = schema
    self._sequence.append(schema)
    self._by_domain.pop(schema.domain, None)
    return schema

  def freeze(self) -> "SchemaRegistry":
    self._frozen = True
    return self

  def domains(self) -> List[str]:
    seen: List[str] = []
    for schema in self._sequence:
      if schema.domain not in seen:
        seen.append(schema.domain)
    return seen

  def schemas_for(self, domain: str) -> Tuple[OperationSchema, ...]:
    cached = self._by_domain.get(domain)
    if cached is not None:
      return cached
    members = [schema for schema in self._sequence if schema.domain == domain]
    if not members:
      raise SchemaError(f"No operations are registered for domain {domain!r}.")
    # sorted() is stable, so registration order breaks ties within a kind.
    ordered = tuple(sorted(members, key=lambda item: KIND_ORDER.index(item.kind)))
    if self._frozen:
      self._by_domain[domain] = ordered
    return ordered

  def find(self, domain: str, name: Optional[str]) -> Optional[OperationSchema]:
    if not name:
      return None
    return self._schemas.get((domain, name))

  def get(self, domain: str, name: str) -> OperationSchema:
    schema = self.find(domain, name)
    if schema is None:
      raise UnknownOperationError(domain, name)
    return schema


# ---------------------------------------------------------------------------
#  Built-in catalog
# ---------------------------------------------------------------------------

def _window_arguments(noun: str, all_hint: str) -> Tuple[ArgumentField, ...]:
  return (
      ArgumentField(
          name="from",
          type="string",
          required=True,
          description=(f"Datetime from which {noun} should be fetched. Format: "
                       "YYYY-MM-DD HH:mm:ss. Defaults to today 00:00:00."),
      ),
      ArgumentField(
          name="to",
          type="string",
          description=(f"Datetime {noun} should be fetched to. Format: "
                       "YYYY-MM-DD HH:mm:ss. Defaults to the end of the 'from' day."),
      ),
      ArgumentField(name="all", type="boolean", description=all_hint),
  )


def _event_fields(for_update: bool) -> Tuple[ArgumentField, ...]:
  fields: List[ArgumentField] = []
  if for_update:
    fields.append(
        ArgumentField(
            name="id",
            type="string",
            description=("Unique event id extracted from the system message by comparing "
                         "the event mentioned in the user message with the list of events "
                         "fetched from the calendar."),
        ))
    fields.append(
        ArgumentField(
            name="target",
            type="string",
            description="How the user refers to the existing event, quoted from the user message.",
        ))
  fields.extend([
      ArgumentField(
          name="name",
          type="string",
          required=True,
          description="Meaningful, yet ultra concise event name, created based on the user message",
      ),
      ArgumentField(
          name="from",
          type="string",
          required=not for_update,
          description=f"Carefully extracted start datetime for this exact event. {DATETIME_HINT}",
      ),
      ArgumentField(
          name="to",
          type="string",
          description=(f"Carefully extracted end datetime for this exact event. {DATETIME_HINT}. "
                       'Defaults to "from" +30m datetime.'),
      ),
      ArgumentField(
          name="location",
          type="string",
          description="Location for this exact event. May be empty.",
      ),
  ])
  return tuple(fields)


def _task_fields(for_update: bool) -> Tuple[ArgumentField, ...]:
  fields: List[ArgumentField] = []
  if for_update:
    fields.append(
        ArgumentField(
            name="id",
            type="string",
            description=("Unique task id extracted from the system message by comparing the "
                         "task mentioned in the user message with the list of task fetched "
                         "from the todo-list."),
        ))
    fields.append(
        ArgumentField(
            name="target",
            type="string",
            description="How the user refers to the existing task, quoted from the user message.",
        ))
  content_hint = ("Meaningful, yet ultra concise, updated task name which content is "
                  "updated/merged based on both the user message and the current todo-list"
                  if for_update else
                  "Meaningful, yet ultra concise task name, created based on the user message")
  fields.extend([
      ArgumentField(name="content", type="string", required=True, description=content_hint),
      ArgumentField(
          name="due",
          type="string",
          required=not for_update,
          description=f"Carefully extracted due datetime for this exact task. {DATETIME_HINT}",
      ),
      ArgumentField(
          name="project",
          type="string",
          description=PROJECT_DESCRIPTION,
          enum=TASK_PROJECTS,
      ),
  ])
  if for_update:
    fields.append(
        ArgumentField(
            name="status",
            type="boolean",
            description=("If true, task should be marked as completed. If false, task should "
                         "be marked as uncompleted. If not present, task status should not "
                         "be changed."),
        ))
  return tuple(fields)


BUILTIN_SCHEMAS: Tuple[OperationSchema, ...] = (
    OperationSchema(
        name="getEvents",
        domain="calendar",
        kind="fetch",
        description=(
            "Fetch user calendar events based on a current date and time. By default it "
            "will fetch events for today 00:00 - 23:59. Dates \"from\" and \"to\" should be "
            "in the future unless user explicitly requests otherwise."),
        arguments=_window_arguments(
            "events",
            'If true, fetch all events, not only upcoming ones. Always defaults to "false"'),
    ),
    OperationSchema(
        name="addEvents",
        domain="calendar",
        kind="create",
        description=("Add list of users events that include concise name, from, to and "
                     "location."),
        arguments=(ArgumentField(
            name="events",
            type="array",
            required=True,
            description="A complete list of events extracted from the user message",
            items=_event_fields(for_update=False),
        ),),
    ),
    OperationSchema(
        name="updateEvents",
        domain="calendar",
        kind="update",
        description=("Update list of users events that include concise name, from, to and "
                     "location. Only events listed in the system message can be updated."),
        arguments=(ArgumentField(
            name="events",
            type="array",
            required=True,
            description="A complete list of events extracted from the user message",
            items=_event_fields(for_update=True),
        ),),
    ),
    OperationSchema(
        name="getTasks",
        domain="task",
        kind="fetch",
        description=(
            "Fetch user tasks based on a current date and time. By default it will fetch "
            "tasks for today 00:00 - 23:59. Dates \"from\" and \"to\" should be in the "
            "future unless user explicitly requests otherwise."),
        arguments=_window_arguments(
            "tasks",
            'If true, fetch all tasks, not only unfinished ones. Always defaults to "false"'),
    ),
    OperationSchema(
        name="addTasks",
        domain="task",
        kind="create",
        description="Add list of users tasks that include concise name, project, and datetime",
        arguments=(ArgumentField(
            name="tasks",
            type="array",
            required=True,
            description="A complete list of tasks extracted from the user message",
            items=_task_fields(for_update=False),
        ),),
    ),
    OperationSchema(
        name="updateTasks",
        domain="task",
        kind="update",
        description=("Update specific tasks from the todo-list mentioned by the user. It may "
                     "be used to update task name, project, status, or due datetime"),
        arguments=(ArgumentField(
            name="tasks",
            type="array",
            required=True,
            description=("A complete list of tasks that needs to be updated, extracted from "
                         "the user message"),
            items=_task_fields(for_update=True),
        ),),
    ),
)


@lru_cache(maxsize=1)
def default_registry() -> SchemaRegistry:
  registry = SchemaRegistry(BUILTIN_SCHEMAS).freeze()
  logger.debug("schema registry ready: %s",
               {domain: [s.name for s in registry.schemas_for(domain)]
                for domain in registry.domains()})
  return registry
