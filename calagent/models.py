from __future__ import annotations

from datetime import datetime
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from .config import CANONICAL_FORMAT, DEFAULT_TASK_PROJECT

Domain = Literal["calendar", "task"]


def _canonical_timestamp(value: str) -> str:
    try:
        datetime.strptime(value, CANONICAL_FORMAT)
    except ValueError as exc:
        raise ValueError(f"expected 'YYYY-MM-DD HH:MM:SS', got {value!r}") from exc
    return value


Timestamp = Annotated[str, AfterValidator(_canonical_timestamp)]  # "YYYY-MM-DD HH:MM:SS"


class Event(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    name: str
    start: Timestamp = Field(alias="from")
    end: Timestamp = Field(alias="to")
    location: str = ""

    def display_text(self) -> str:
        return self.name


class Task(BaseModel):
    id: Optional[str] = None
    content: str
    due: Optional[Timestamp] = None
    project: str = DEFAULT_TASK_PROJECT
    status: Optional[bool] = None  # True: completed, False: uncompleted

    def display_text(self) -> str:
        return self.content


EntityRecord = Union[Event, Task]


class EventPatch(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: Optional[str] = None
    start: Optional[Timestamp] = Field(default=None, alias="from")
    end: Optional[Timestamp] = Field(default=None, alias="to")
    location: Optional[str] = None


class TaskPatch(BaseModel):
    id: str
    content: Optional[str] = None
    due: Optional[Timestamp] = None
    project: Optional[str] = None
    status: Optional[bool] = None


EntityPatch = Union[EventPatch, TaskPatch]


class TemporalWindow(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start: Timestamp = Field(alias="from")
    end: Timestamp = Field(alias="to")
    include_all: bool = Field(default=False, alias="includeAll")

    @model_validator(mode="after")
    def _check_order(self) -> "TemporalWindow":
        if self.start_at() > self.end_at():
            raise ValueError("window start must not be after window end")
        return self

    def start_at(self) -> datetime:
        return datetime.strptime(self.start, CANONICAL_FORMAT)

    def end_at(self) -> datetime:
        return datetime.strptime(self.end, CANONICAL_FORMAT)


class UpdateOutcome(BaseModel):
    id: str
    ok: bool
    error: Optional[str] = None


class BackendResult(BaseModel):
    operation: str
    domain: Domain
    kind: Literal["fetch", "create", "update"]
    events: List[Event] = Field(default_factory=list)
    tasks: List[Task] = Field(default_factory=list)
    created_ids: List[str] = Field(default_factory=list)
    updated: List[UpdateOutcome] = Field(default_factory=list)

    def failed_ids(self) -> List[str]:
        return [item.id for item in self.updated if not item.ok]

    def as_counts(self) -> Dict[str, int]:
        return {
            "fetched": len(self.events) + len(self.tasks),
            "created": len(self.created_ids),
            "updated": sum(1 for item in self.updated if item.ok),
            "failed": len(self.failed_ids()),
        }


class RouteRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: str
    domain: str
    reference: Optional[str] = None
    snapshot: Optional[List[Dict[str, Any]]] = None
    historical: bool = False
