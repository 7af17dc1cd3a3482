"""
Tests for the Google Calendar / Google Tasks backend (services mocked)
"""
from datetime import datetime
from unittest.mock import MagicMock, Mock
from zoneinfo import ZoneInfo

import pytest
from googleapiclient.errors import HttpError

from calagent.backend import PartialCreateError
from calagent.gcal import GoogleBackend, _convert_gcal_time
from calagent.models import Event, EventPatch, Task, TaskPatch, TemporalWindow

NOW = datetime(2023, 11, 13, 9, 0, 0)
TODAY = TemporalWindow(start="2023-11-13 00:00:00", end="2023-11-13 23:59:59")
TASK_LISTS = {"inbox": "@default", "eduweb": "list-edu"}


def _backend():
    calendar = MagicMock()
    tasks = MagicMock()
    backend = GoogleBackend(calendar, tasks, calendar_id="primary", task_lists=TASK_LISTS,
                            timezone_name="Europe/Warsaw")
    return backend, calendar, tasks


def _http_error(status=404):
    resp = Mock()
    resp.status = status
    resp.reason = "Not Found"
    return HttpError(resp=resp, content=b"Not Found")


class TestTimeConversion:
    """Google time objects to canonical local timestamps"""

    def test_date_time_is_converted_to_local_zone(self):
        value = _convert_gcal_time({"dateTime": "2023-11-13T09:00:00Z"}, False,
                                   ZoneInfo("Europe/Warsaw"))
        assert value == "2023-11-13 10:00:00"

    def test_all_day_end_is_exclusive(self):
        tz = ZoneInfo("Europe/Warsaw")
        assert _convert_gcal_time({"date": "2023-11-14"}, False, tz) == "2023-11-14 00:00:00"
        assert _convert_gcal_time({"date": "2023-11-15"}, True, tz) == "2023-11-14 23:59:59"
        assert _convert_gcal_time({}, False, tz) is None


class TestEvents:
    """Calendar events"""

    def test_fetch_pages_and_window(self):
        backend, calendar, _ = _backend()
        calendar.events.return_value.list.return_value.execute.side_effect = [
            {"items": [{"id": "a", "summary": "Standup",
                        "start": {"dateTime": "2023-11-13T10:00:00+01:00"},
                        "end": {"dateTime": "2023-11-13T10:15:00+01:00"}}],
             "nextPageToken": "p2"},
            {"items": [{"id": "b", "summary": "Offsite", "start": {"date": "2023-11-13"},
                        "end": {"date": "2023-11-14"}, "location": "Krakow"},
                       {"id": "c", "status": "cancelled"}]},
        ]

        events = backend.fetch("calendar", TODAY, False, NOW)

        assert [event.id for event in events] == ["a", "b"]
        assert events[0].start == "2023-11-13 10:00:00"
        assert events[1].end == "2023-11-13 23:59:59"
        assert events[1].location == "Krakow"
        first_call = calendar.events.return_value.list.call_args_list[0].kwargs
        assert first_call["calendarId"] == "primary"
        assert first_call["timeMin"] == "2023-11-13T09:00:00+01:00"
        assert first_call["timeMax"] == "2023-11-14T00:00:00+01:00"
        assert calendar.events.return_value.list.call_args_list[1].kwargs["pageToken"] == "p2"

    def test_fetch_all_starts_at_window_start(self):
        backend, calendar, _ = _backend()
        calendar.events.return_value.list.return_value.execute.return_value = {"items": []}
        backend.fetch("calendar", TODAY, True, NOW)
        kwargs = calendar.events.return_value.list.call_args.kwargs
        assert kwargs["timeMin"] == "2023-11-13T00:00:00+01:00"

    def test_create_event(self):
        backend, calendar, _ = _backend()
        calendar.events.return_value.insert.return_value.execute.return_value = {"id": "new1"}

        ids = backend.create("calendar", [Event(name="Dinner", start="2023-11-13 19:00:00",
                                                end="2023-11-13 19:30:00")])

        assert ids == ["new1"]
        kwargs = calendar.events.return_value.insert.call_args.kwargs
        assert kwargs["calendarId"] == "primary"
        assert kwargs["body"] == {
            "summary": "Dinner",
            "start": {"dateTime": "2023-11-13T19:00:00+01:00", "timeZone": "Europe/Warsaw"},
            "end": {"dateTime": "2023-11-13T19:30:00+01:00", "timeZone": "Europe/Warsaw"},
        }

    def test_failed_insert_reports_created_ids(self):
        backend, calendar, _ = _backend()
        calendar.events.return_value.insert.return_value.execute.side_effect = [
            {"id": "new1"}, _http_error(status=500)]
        records = [
            Event(name="Dinner", start="2023-11-13 19:00:00", end="2023-11-13 19:30:00"),
            Event(name="Cinema", start="2023-11-13 21:00:00", end="2023-11-13 23:00:00"),
            Event(name="Walk", start="2023-11-14 08:00:00", end="2023-11-14 08:30:00"),
        ]

        with pytest.raises(PartialCreateError) as info:
            backend.create("calendar", records)

        assert info.value.created_ids == ["new1"]
        assert isinstance(info.value.cause, HttpError)
        assert calendar.events.return_value.insert.call_count == 2

    def test_mismatched_record_inserts_nothing(self):
        backend, calendar, _ = _backend()
        with pytest.raises(ValueError):
            backend.create("calendar", [
                Event(name="Dinner", start="2023-11-13 19:00:00", end="2023-11-13 19:30:00"),
                Task(content="Not an event"),
            ])
        calendar.events.return_value.insert.assert_not_called()

    def test_patch_event_sends_only_changes(self):
        backend, calendar, _ = _backend()
        outcomes = backend.update("calendar", [EventPatch(id="a", name="Standup (moved)")])
        assert outcomes[0].ok
        kwargs = calendar.events.return_value.patch.call_args.kwargs
        assert kwargs["eventId"] == "a"
        assert kwargs["body"] == {"summary": "Standup (moved)"}

    def test_http_error_fails_only_that_row(self):
        backend, calendar, _ = _backend()
        calendar.events.return_value.patch.return_value.execute.side_effect = [
            _http_error(), {"id": "b"}]
        outcomes = backend.update("calendar", [EventPatch(id="a", name="x"),
                                               EventPatch(id="b", name="y")])
        assert [outcome.ok for outcome in outcomes] == [False, True]
        assert outcomes[0].error


class TestTasks:
    """Google Tasks, one tasklist per project"""

    def test_create_task_in_project_list(self):
        backend, _, tasks = _backend()
        tasks.tasks.return_value.insert.return_value.execute.return_value = {"id": "t1"}

        ids = backend.create("task", [Task(content="Record course intro",
                                           due="2023-11-14 23:59:59", project="eduweb")])

        assert ids == ["list-edu::t1"]
        kwargs = tasks.tasks.return_value.insert.call_args.kwargs
        assert kwargs["tasklist"] == "list-edu"
        assert kwargs["body"] == {"title": "Record course intro",
                                  "due": "2023-11-14T00:00:00.000Z"}

    def test_unknown_project_goes_to_inbox(self):
        backend, _, tasks = _backend()
        tasks.tasks.return_value.insert.return_value.execute.return_value = {"id": "t2"}
        assert backend.create("task", [Task(content="x", project="overment")]) == ["@default::t2"]

    def test_fetch_tasks_from_every_list(self):
        backend, _, tasks = _backend()
        tasks.tasks.return_value.list.return_value.execute.side_effect = [
            {"items": [{"id": "t1", "title": "Buy milk", "due": "2023-11-13T00:00:00.000Z",
                        "status": "needsAction"}]},
            {"items": [{"id": "t2", "title": "Write lesson", "due": "2023-11-13T00:00:00.000Z",
                        "status": "completed"}]},
        ]

        fetched = backend.fetch("task", TODAY, True, NOW)

        assert [(task.id, task.project, task.status) for task in fetched] == [
            ("@default::t1", "inbox", False), ("list-edu::t2", "eduweb", True)]
        assert fetched[0].due == "2023-11-13 23:59:59"
        kwargs = tasks.tasks.return_value.list.call_args_list[0].kwargs
        assert kwargs["dueMin"] == "2023-11-13T00:00:00.000Z"
        assert kwargs["dueMax"] == "2023-11-14T00:00:00.000Z"
        assert kwargs["showCompleted"] is True

    def test_complete_task(self):
        backend, _, tasks = _backend()
        outcomes = backend.update("task", [TaskPatch(id="@default::t9", status=True)])
        assert outcomes[0].ok
        kwargs = tasks.tasks.return_value.patch.call_args.kwargs
        assert (kwargs["tasklist"], kwargs["task"]) == ("@default", "t9")
        assert kwargs["body"] == {"status": "completed"}
        tasks.tasks.return_value.move.assert_not_called()

    def test_project_change_moves_task(self):
        backend, _, tasks = _backend()
        tasks.tasks.return_value.move.return_value.execute.return_value = {"id": "t9"}

        backend.update("task", [TaskPatch(id="@default::t9", project="eduweb",
                                          content="Write lesson")])

        move = tasks.tasks.return_value.move.call_args.kwargs
        assert move == {"tasklist": "@default", "task": "t9", "destinationTasklist": "list-edu"}
        patch = tasks.tasks.return_value.patch.call_args.kwargs
        assert patch["tasklist"] == "list-edu"
        assert patch["body"] == {"title": "Write lesson"}
