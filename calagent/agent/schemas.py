from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from ..models import Domain, Event, EventPatch, Task, TaskPatch, TemporalWindow, Timestamp

OperationKind = Literal["fetch", "create", "update"]
FieldType = Literal["string", "boolean", "array"]

KIND_ORDER: Tuple[str, ...] = ("fetch", "create", "update")


# ---------------------------------------------------------------------------
#  Operation schemas
# ---------------------------------------------------------------------------

class ArgumentField(BaseModel):
  """One named argument of an operation. Array fields carry record fields in `items`."""
  model_config = ConfigDict(frozen=True)

  name: str = Field(min_length=1)
  type: FieldType
  required: bool = False
  description: str = ""
  enum: Optional[Tuple[str, ...]] = None
  items: Tuple["ArgumentField", ...] = ()

  def json_schema(self) -> Dict[str, Any]:
    if self.type == "array":
      return {
          "type": "array",
          "description": self.description,
          "items": _object_schema(self.items),
      }
    schema: Dict[str, Any] = {"type": self.type, "description": self.description}
    if self.enum:
      schema["enum"] = list(self.enum)
    return schema


def _object_schema(fields: Tuple[ArgumentField, ...]) -> Dict[str, Any]:
  return {
      "type": "object",
      "properties": {field.name: field.json_schema() for field in fields},
      "required": [field.name for field in fields if field.required],
  }


class OperationSchema(BaseModel):
  model_config = ConfigDict(frozen=True)

  name: str = Field(min_length=1)
  domain: Domain
  kind: OperationKind
  description: str
  arguments: Tuple[ArgumentField, ...] = ()

  def field(self, name: str) -> Optional[ArgumentField]:
    for item in self.arguments:
      if item.name == name:
        return item
    return None

  def record_field(self) -> Optional[ArgumentField]:
    """The top-level array-of-record argument (`events`/`tasks`), if any."""
    for item in self.arguments:
      if item.type == "array":
        return item
    return None

  def parameters(self) -> Dict[str, Any]:
    return _object_schema(self.arguments)

  def to_tool(self) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters(),
        },
    }


# ---------------------------------------------------------------------------
#  Model boundary
# ---------------------------------------------------------------------------

class ModelRequest(BaseModel):
  reference: str
  domain: Domain
  schemas: List[OperationSchema]
  messages: List[Dict[str, str]]

  def tools(self) -> List[Dict[str, Any]]:
    return [schema.to_tool() for schema in self.schemas]


class ModelResponse(BaseModel):
  name: Optional[str] = None
  arguments: Optional[Dict[str, Any]] = None
  raw_arguments: str = ""
  meta: Dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
#  Routing decision
# ---------------------------------------------------------------------------

class RouterState(str, Enum):
  AWAITING_INPUT = "awaiting_input"
  SCHEMA_SELECTED = "schema_selected"
  ARGUMENTS_EXTRACTED = "arguments_extracted"
  VALIDATED = "validated"
  DISPATCHABLE = "dispatchable"
  REJECTED = "rejected"


IssueCode = Literal[
    "missing_field",
    "invalid_type",
    "invalid_value",
    "unresolvable_date",
    "past_date",
    "not_found",
    "ambiguous_reference",
    "duplicate_reference",
    "empty_payload",
    "cancelled",
]


class ValidationIssue(BaseModel):
  model_config = ConfigDict(extra="forbid")

  path: str
  code: IssueCode
  detail: str
  row: Optional[int] = None
  mention: Optional[str] = None
  candidates: List[Dict[str, Any]] = Field(default_factory=list)


class FetchArguments(BaseModel):
  kind: Literal["fetch"] = "fetch"
  window: TemporalWindow


class CreateArguments(BaseModel):
  kind: Literal["create"] = "create"
  events: List[Event] = Field(default_factory=list)
  tasks: List[Task] = Field(default_factory=list)

  def row_count(self) -> int:
    return len(self.events) + len(self.tasks)


class UpdateArguments(BaseModel):
  kind: Literal["update"] = "update"
  events: List[EventPatch] = Field(default_factory=list)
  tasks: List[TaskPatch] = Field(default_factory=list)

  def row_count(self) -> int:
    return len(self.events) + len(self.tasks)


OperationArguments = Union[FetchArguments, CreateArguments, UpdateArguments]


class RoutingDecision(BaseModel):
  status: Literal["dispatchable", "rejected"]
  domain: Domain
  reference: Timestamp
  operation: Optional[str] = None
  kind: Optional[OperationKind] = None
  arguments: Optional[OperationArguments] = Field(default=None, discriminator="kind")
  issues: List[ValidationIssue] = Field(default_factory=list)
  dropped: List[ValidationIssue] = Field(default_factory=list)
  trace: List[RouterState] = Field(default_factory=list)

  @property
  def is_dispatchable(self) -> bool:
    return self.status == "dispatchable" and self.arguments is not None

  def message(self) -> str:
    """Caller-facing explanation of why the decision cannot be dispatched as-is."""
    problems = self.dropped + self.issues
    if not problems:
      return ""
    details = "; ".join(issue.detail for issue in problems)
    if self.status == "rejected":
      return f"{self.operation or 'request'} rejected: {details}"
    return f"{self.operation} skipped rows: {details}"
