from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .backend import EntityBackend, PartialCreateError
from .config import (CANONICAL_FORMAT, DEFAULT_TASK_PROJECT, DEFAULT_TIMEZONE,
                     GOOGLE_CALENDAR_ID, GOOGLE_TASK_LISTS)
from .models import (Domain, EntityPatch, EntityRecord, Event, EventPatch, Task, TaskPatch,
                     TemporalWindow, UpdateOutcome)
from .utils import _log_debug

logger = logging.getLogger(__name__)

GCAL_SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/tasks",
]
TASK_KEY_SEPARATOR = "::"


def build_services(token_data: Dict[str, Any]) -> Tuple[Any, Any]:
  """Calendar and Tasks services for an already-authorized user token."""
  creds = Credentials.from_authorized_user_info(token_data, GCAL_SCOPES)
  if creds.expired and creds.refresh_token:
    creds.refresh(GoogleRequest())
  calendar_service = build("calendar", "v3", credentials=creds)
  tasks_service = build("tasks", "v1", credentials=creds)
  return calendar_service, tasks_service


def _split_task_key(task_key: str) -> Tuple[Optional[str], str]:
  if TASK_KEY_SEPARATOR in task_key:
    list_id, task_id = task_key.split(TASK_KEY_SEPARATOR, 1)
    return list_id or None, task_id
  return None, task_key


def _convert_gcal_time(obj: Dict[str, Any], is_end: bool, tz: ZoneInfo) -> Optional[str]:
  if not isinstance(obj, dict):
    return None
  dt_value = obj.get("dateTime")
  if isinstance(dt_value, str):
    try:
      dt = datetime.fromisoformat(dt_value.replace("Z", "+00:00"))
    except ValueError:
      return None
    if dt.tzinfo is not None:
      dt = dt.astimezone(tz)
    return dt.strftime(CANONICAL_FORMAT)
  date_value = obj.get("date")
  if isinstance(date_value, str):
    try:
      day = datetime.strptime(date_value, "%Y-%m-%d")
    except ValueError:
      return None
    if not is_end:
      return day.strftime(CANONICAL_FORMAT)
    # All-day end dates are exclusive.
    return (day - timedelta(seconds=1)).strftime(CANONICAL_FORMAT)
  return None


class GoogleBackend(EntityBackend):
  """Google Calendar (events) and Google Tasks (tasks) behind the backend boundary.

  Tasks live in one tasklist per project (`GOOGLE_TASK_LISTS`); task ids are
  returned as `<tasklist>::<task>` so updates can find their list again.
  """

  def __init__(self,
               calendar_service: Any,
               tasks_service: Any,
               *,
               calendar_id: str = GOOGLE_CALENDAR_ID,
               task_lists: Optional[Dict[str, str]] = None,
               timezone_name: str = DEFAULT_TIMEZONE) -> None:
    self.calendar_service = calendar_service
    self.tasks_service = tasks_service
    self.calendar_id = calendar_id
    self.task_lists = dict(task_lists or GOOGLE_TASK_LISTS) or {DEFAULT_TASK_PROJECT: "@default"}
    self.timezone_name = timezone_name
    self.tz = ZoneInfo(timezone_name)

  # -------------------------------------------------------------------------
  #  Helpers
  # -------------------------------------------------------------------------

  def _localize(self, value: str) -> datetime:
    return datetime.strptime(value, CANONICAL_FORMAT).replace(tzinfo=self.tz)

  def _event_time(self, value: str) -> Dict[str, str]:
    return {"dateTime": self._localize(value).isoformat(), "timeZone": self.timezone_name}

  def _list_for_project(self, project: Optional[str]) -> str:
    if project and project in self.task_lists:
      return self.task_lists[project]
    return self.task_lists.get(DEFAULT_TASK_PROJECT) or next(iter(self.task_lists.values()))

  def _project_for_list(self, list_id: str) -> str:
    for project, candidate in self.task_lists.items():
      if candidate == list_id:
        return project
    return DEFAULT_TASK_PROJECT

  @staticmethod
  def _task_due(value: str) -> str:
    # Google Tasks keeps only the date part of `due`.
    return f"{value[:10]}T00:00:00.000Z"

  def _normalize_gcal_event(self, raw: Dict[str, Any]) -> Optional[Event]:
    start = _convert_gcal_time(raw.get("start") or {}, False, self.tz)
    if not start:
      return None
    end = _convert_gcal_time(raw.get("end") or {}, True, self.tz) or start
    return Event(id=raw.get("id"),
                 name=raw.get("summary") or "(no title)",
                 start=start,
                 end=end,
                 location=raw.get("location") or "")

  def _normalize_google_task(self, raw: Dict[str, Any], list_id: str) -> Optional[Task]:
    task_id = raw.get("id")
    if not task_id:
      return None
    due_raw = raw.get("due")
    due = f"{due_raw[:10]} 23:59:59" if isinstance(due_raw, str) and len(due_raw) >= 10 else None
    return Task(id=f"{list_id}{TASK_KEY_SEPARATOR}{task_id}",
                content=raw.get("title") or "",
                due=due,
                project=self._project_for_list(list_id),
                status=raw.get("status") == "completed")

  def _event_body(self, patch: EventPatch) -> Dict[str, Any]:
    body: Dict[str, Any] = {}
    if patch.name is not None:
      body["summary"] = patch.name
    if patch.location is not None:
      body["location"] = patch.location
    if patch.start is not None:
      body["start"] = self._event_time(patch.start)
    if patch.end is not None:
      body["end"] = self._event_time(patch.end)
    return body

  def _task_body(self, patch: TaskPatch) -> Dict[str, Any]:
    body: Dict[str, Any] = {}
    if patch.content is not None:
      body["title"] = patch.content
    if patch.due is not None:
      body["due"] = self._task_due(patch.due)
    if patch.status is True:
      body["status"] = "completed"
    elif patch.status is False:
      body["status"] = "needsAction"
      body["completed"] = None
    return body

  # -------------------------------------------------------------------------
  #  Backend boundary
  # -------------------------------------------------------------------------

  def fetch(self, domain: Domain, window: TemporalWindow, include_all: bool,
            now: datetime) -> List[EntityRecord]:
    if domain == "calendar":
      return self._fetch_events(window, include_all, now)
    if domain == "task":
      return self._fetch_tasks(window, include_all)
    raise ValueError(f"Unsupported domain: {domain!r}")

  def _fetch_events(self, window: TemporalWindow, include_all: bool,
                    now: datetime) -> List[EntityRecord]:
    time_min = window.start_at()
    if not include_all and now > time_min:
      time_min = min(now, window.end_at())
    # timeMax is exclusive.
    time_max = window.end_at() + timedelta(seconds=1)

    events: List[EntityRecord] = []
    page_token: Optional[str] = None
    while True:
      response = self.calendar_service.events().list(
          calendarId=self.calendar_id,
          singleEvents=True,
          orderBy="startTime",
          pageToken=page_token,
          timeMin=time_min.replace(tzinfo=self.tz).isoformat(),
          timeMax=time_max.replace(tzinfo=self.tz).isoformat(),
      ).execute()
      for item in response.get("items", []):
        if item.get("status") == "cancelled":
          continue
        event = self._normalize_gcal_event(item)
        if event is not None:
          events.append(event)
      page_token = response.get("nextPageToken")
      if not page_token:
        break
    _log_debug(f"[GCAL] fetched {len(events)} events {window.start} - {window.end}")
    return events

  def _fetch_tasks(self, window: TemporalWindow, include_all: bool) -> List[EntityRecord]:
    due_min = f"{window.start[:10]}T00:00:00.000Z"
    due_max = f"{(window.end_at() + timedelta(days=1)).strftime('%Y-%m-%d')}T00:00:00.000Z"
    tasks: List[Task] = []
    for list_id in dict.fromkeys(self.task_lists.values()):
      page_token: Optional[str] = None
      while True:
        response = self.tasks_service.tasks().list(
            tasklist=list_id,
            dueMin=due_min,
            dueMax=due_max,
            showCompleted=include_all,
            showHidden=include_all,
            pageToken=page_token,
        ).execute()
        for item in response.get("items", []):
          task = self._normalize_google_task(item, list_id)
          if task is not None:
            tasks.append(task)
        page_token = response.get("nextPageToken")
        if not page_token:
          break
    return sorted(tasks, key=lambda item: (item.due or "", item.content))

  def create(self, domain: Domain, records: Sequence[EntityRecord]) -> List[str]:
    record_type = Event if domain == "calendar" else Task
    for record in records:
      if not isinstance(record, record_type):
        raise ValueError(f"Cannot create {type(record).__name__} in domain {domain!r}.")
    ids: List[str] = []
    for record in records:
      try:
        ids.append(self._insert(record))
      except HttpError as exc:
        logger.warning("google insert failed after %d of %d records: %s", len(ids),
                       len(records), exc)
        raise PartialCreateError(ids, exc) from exc
    return ids

  def _insert(self, record: EntityRecord) -> str:
    if isinstance(record, Event):
      body: Dict[str, Any] = {
          "summary": record.name,
          "start": self._event_time(record.start),
          "end": self._event_time(record.end),
      }
      if record.location:
        body["location"] = record.location
      created = self.calendar_service.events().insert(calendarId=self.calendar_id,
                                                      body=body).execute()
      return created.get("id")
    list_id = self._list_for_project(record.project)
    body = {"title": record.content}
    if record.due:
      body["due"] = self._task_due(record.due)
    created = self.tasks_service.tasks().insert(tasklist=list_id, body=body).execute()
    return f"{list_id}{TASK_KEY_SEPARATOR}{created.get('id')}"

  def update(self, domain: Domain, patches: Sequence[EntityPatch]) -> List[UpdateOutcome]:
    outcomes: List[UpdateOutcome] = []
    for patch in patches:
      try:
        if domain == "calendar" and isinstance(patch, EventPatch):
          self.calendar_service.events().patch(calendarId=self.calendar_id,
                                               eventId=patch.id,
                                               body=self._event_body(patch)).execute()
        elif domain == "task" and isinstance(patch, TaskPatch):
          self._patch_task(patch)
        else:
          raise ValueError(f"Cannot apply {type(patch).__name__} in domain {domain!r}.")
      except HttpError as exc:
        logger.warning("google update failed for %s: %s", patch.id, exc)
        outcomes.append(UpdateOutcome(id=patch.id, ok=False, error=str(exc)))
        continue
      outcomes.append(UpdateOutcome(id=patch.id, ok=True))
    return outcomes

  def _patch_task(self, patch: TaskPatch) -> None:
    list_id, task_id = _split_task_key(patch.id)
    list_id = list_id or self._list_for_project(None)
    if patch.project is not None:
      destination = self._list_for_project(patch.project)
      if destination != list_id:
        moved = self.tasks_service.tasks().move(tasklist=list_id,
                                                task=task_id,
                                                destinationTasklist=destination).execute()
        list_id = destination
        task_id = moved.get("id") or task_id
    body = self._task_body(patch)
    if body:
      self.tasks_service.tasks().patch(tasklist=list_id, task=task_id, body=body).execute()
