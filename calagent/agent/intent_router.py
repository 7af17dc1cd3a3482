from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import ValidationError as PydanticValidationError

from ..config import (DEFAULT_EVENT_MINUTES, DEFAULT_TASK_PROJECT, RESOLVER_MIN_MARGIN,
                      RESOLVER_MIN_SCORE, ROUTER_TIMEOUT_SECONDS)
from ..models import EntityRecord, Event, EventPatch, Task, TaskPatch
from ..utils import _clean_id, _clean_str
from .errors import (NoOperationSelectedError, PastDateError, UnresolvableDateError,
                     ValidationError)
from .llm_provider import ModelCall, build_messages, run_function_call
from .normalizer import (coerce_reference, format_canonical, normalize_span, normalize_window,
                         parse_canonical, resolve, resolve_end)
from .registry import SchemaRegistry, default_registry
from .resolver import AmbiguityReport, NotFound, ResolvedEntity, lookup_id
from .resolver import resolve as resolve_mention
from .schemas import (ArgumentField, CreateArguments, FetchArguments, ModelRequest,
                      ModelResponse, OperationArguments, OperationSchema, RouterState,
                      RoutingDecision, UpdateArguments, ValidationIssue)

logger = logging.getLogger(__name__)

_ENTITY_NOUNS = {
    "calendar": "an event",
    "task": "a task",
}
_TRUE_STRINGS = {"true", "yes", "1"}
_FALSE_STRINGS = {"false", "no", "0"}


# ---------------------------------------------------------------------------
#  Payload checks
# ---------------------------------------------------------------------------

def _bool_value(value: Any) -> Optional[bool]:
  if isinstance(value, bool):
    return value
  if isinstance(value, str):
    lowered = value.strip().lower()
    if lowered in _TRUE_STRINGS:
      return True
    if lowered in _FALSE_STRINGS:
      return False
  return None


def _is_blank(value: Any) -> bool:
  return value is None or (isinstance(value, str) and not value.strip())


def _check_scalar(field: ArgumentField, value: Any, path: str,
                  row: Optional[int]) -> List[ValidationIssue]:
  if _is_blank(value):
    if field.required:
      return [ValidationIssue(path=path, code="missing_field", row=row,
                              detail=f"{path} is required.")]
    return []
  if field.type == "boolean":
    if _bool_value(value) is None:
      return [ValidationIssue(path=path, code="invalid_type", row=row,
                              detail=f"{path} must be a boolean, got {value!r}.")]
    return []
  if not isinstance(value, str):
    return [ValidationIssue(path=path, code="invalid_type", row=row,
                            detail=f"{path} must be a string, got {type(value).__name__}.")]
  if field.enum and value.strip() not in field.enum:
    allowed = ", ".join(field.enum)
    return [ValidationIssue(path=path, code="invalid_value", row=row,
                            detail=f"{path} must be one of {allowed}, got {value!r}.")]
  return []


def check_payload(schema: OperationSchema, payload: Dict[str, Any]) -> List[ValidationIssue]:
  """Structural check of a raw payload against the schema's argument fields.

  Unknown keys are ignored; every required field must be present, non-blank
  and of its declared type. Record arrays are checked row by row.
  """
  issues: List[ValidationIssue] = []
  for field in schema.arguments:
    value = payload.get(field.name)
    if field.type != "array":
      issues.extend(_check_scalar(field, value, field.name, None))
      continue
    if value is None:
      if field.required:
        issues.append(ValidationIssue(path=field.name, code="missing_field",
                                      detail=f"{field.name} is required."))
      continue
    if not isinstance(value, list):
      issues.append(ValidationIssue(path=field.name, code="invalid_type",
                                    detail=f"{field.name} must be a list of records."))
      continue
    if not value:
      issues.append(ValidationIssue(path=field.name, code="empty_payload",
                                    detail=f"{field.name} contains no rows."))
      continue
    for index, row in enumerate(value):
      row_path = f"{field.name}[{index}]"
      if not isinstance(row, dict):
        issues.append(ValidationIssue(path=row_path, code="invalid_type", row=index,
                                      detail=f"{row_path} must be a record."))
        continue
      for item in field.items:
        issues.extend(_check_scalar(item, row.get(item.name), f"{row_path}.{item.name}", index))
  return issues


def _date_issue(exc: UnresolvableDateError, path: str, row: Optional[int]) -> ValidationIssue:
  code = "past_date" if isinstance(exc, PastDateError) else "unresolvable_date"
  if isinstance(exc, PastDateError):
    detail = f"{path}: {exc.expression!r} is in the past ({exc.reason})"
  else:
    detail = f"{path}: cannot resolve {exc.expression!r} ({exc.reason})"
  return ValidationIssue(path=path, code=code, detail=detail, row=row)


def _value_issue(exc: ValidationError, path: str, row: Optional[int]) -> ValidationIssue:
  return ValidationIssue(path=path, code="invalid_value", detail=f"{path}: {exc.reason}", row=row)


# ---------------------------------------------------------------------------
#  Snapshot
# ---------------------------------------------------------------------------

def coerce_snapshot(domain: str, snapshot: Optional[Iterable[Any]]) -> List[EntityRecord]:
  """Turn caller-supplied snapshot entries into entity records of `domain`.

  Entries without an id cannot be referenced and are skipped, as are
  entries that do not describe a record of `domain`.
  """
  record_type = Event if domain == "calendar" else Task
  records: List[EntityRecord] = []
  for index, entry in enumerate(snapshot or []):
    if isinstance(entry, dict):
      try:
        entry = record_type.model_validate({**entry, "id": _clean_id(entry.get("id"))})
      except PydanticValidationError as exc:
        logger.warning("skipping snapshot[%d]: not a valid %s (%d errors)", index,
                       record_type.__name__, exc.error_count())
        continue
    if not isinstance(entry, record_type) or not _clean_id(entry.id):
      continue
    records.append(entry)
  return records


def _snapshot_duration(entity: Optional[EntityRecord]) -> timedelta:
  fallback = timedelta(minutes=DEFAULT_EVENT_MINUTES)
  if not isinstance(entity, Event):
    return fallback
  try:
    duration = parse_canonical(entity.end) - parse_canonical(entity.start)
  except ValueError:
    return fallback
  return duration if duration > timedelta(0) else fallback


def _snapshot_start(entity: Optional[EntityRecord]) -> Optional[datetime]:
  if not isinstance(entity, Event):
    return None
  try:
    return parse_canonical(entity.start)
  except ValueError:
    return None


# ---------------------------------------------------------------------------
#  Router
# ---------------------------------------------------------------------------

class IntentRouter:
  """Selects one operation for an utterance and validates its arguments.

  Each call to `route` walks AwaitingInput -> SchemaSelected ->
  ArgumentsExtracted -> Validated -> Dispatchable | Rejected. The router
  holds no per-request state, so one instance serves concurrent requests.
  """

  def __init__(self,
               registry: Optional[SchemaRegistry] = None,
               model: Optional[ModelCall] = None,
               *,
               timeout: Optional[float] = ROUTER_TIMEOUT_SECONDS,
               min_score: float = RESOLVER_MIN_SCORE,
               min_margin: float = RESOLVER_MIN_MARGIN) -> None:
    self.registry = registry or default_registry()
    self.model = model or run_function_call
    self.timeout = timeout
    self.min_score = min_score
    self.min_margin = min_margin

  async def route(self,
                  utterance: str,
                  reference: Any,
                  domain: str,
                  snapshot: Optional[Sequence[Any]] = None,
                  *,
                  historical: bool = False) -> RoutingDecision:
    reference_at = coerce_reference(reference)
    reference_text = format_canonical(reference_at)
    schemas = self.registry.schemas_for(domain)
    known = coerce_snapshot(domain, snapshot)
    trace = [RouterState.AWAITING_INPUT]

    request = ModelRequest(
        reference=reference_text,
        domain=domain,
        schemas=list(schemas),
        messages=build_messages(reference_text, domain, utterance, known),
    )
    try:
      response = await asyncio.wait_for(self.model(request), timeout=self.timeout)
    except asyncio.TimeoutError:
      logger.warning("router model call timed out after %ss", self.timeout)
      return self._cancelled(domain, reference_text, None, trace, "The model call timed out.")

    if response is not None and response.meta.get("cancelled"):
      return self._cancelled(domain, reference_text, response.name, trace,
                             "The model call was cancelled.")
    schema = self._select(domain, response)
    trace.append(RouterState.SCHEMA_SELECTED)

    if response.arguments is None and response.raw_arguments.strip():
      trace.append(RouterState.REJECTED)
      issue = ValidationIssue(path="arguments", code="invalid_type",
                              detail="The argument payload is not a JSON object.")
      return self._decision("rejected", domain, reference_text, schema, None, [issue], [], trace)
    payload = response.arguments or {}
    trace.append(RouterState.ARGUMENTS_EXTRACTED)

    issues = check_payload(schema, payload)
    dropped: List[ValidationIssue] = []
    arguments: Optional[OperationArguments] = None
    if not issues:
      if schema.kind == "fetch":
        arguments = self._build_fetch(payload, reference_at, historical, issues)
      elif schema.kind == "create":
        arguments = self._build_create(schema, payload, reference_at, historical, issues)
      else:
        arguments = self._build_update(schema, domain, payload, reference_at, known, historical,
                                       issues, dropped)
    trace.append(RouterState.VALIDATED)

    if not issues and isinstance(arguments, (CreateArguments, UpdateArguments)):
      if arguments.row_count() == 0:
        field = schema.record_field()
        issues.append(ValidationIssue(
            path=field.name if field else "arguments",
            code="empty_payload",
            detail="No valid rows remain after validation."))

    if issues:
      trace.append(RouterState.REJECTED)
      decision = self._decision("rejected", domain, reference_text, schema, None, issues, dropped,
                                trace)
    else:
      trace.append(RouterState.DISPATCHABLE)
      decision = self._decision("dispatchable", domain, reference_text, schema, arguments, [],
                                dropped, trace)
    logger.info("routed %s/%s status=%s issues=%d dropped=%d", domain, schema.name,
                decision.status, len(decision.issues), len(decision.dropped))
    logger.debug("router trace: %s", [state.value for state in trace])
    return decision

  # -------------------------------------------------------------------------
  #  State transitions
  # -------------------------------------------------------------------------

  def _select(self, domain: str, response: Optional[ModelResponse]) -> OperationSchema:
    if response is None:
      raise NoOperationSelectedError("The model returned an empty response.")
    if not response.name:
      meta = response.meta
      reason = "The model did not select an operation."
      if meta.get("llm_available") is False:
        reason = f"LLM provider is unavailable: {meta.get('llm_error') or 'unknown reason'}"
      elif meta.get("llm_output_empty_or_error"):
        reason = f"LLM call failed: {str(meta.get('llm_error') or '')[:220]}"
      elif meta.get("content"):
        reason = f"The model answered without selecting an operation: {meta['content'][:220]}"
      raise NoOperationSelectedError(reason)
    schema = self.registry.find(domain, response.name)
    if schema is None:
      raise NoOperationSelectedError(
          f"The model selected {response.name!r}, which is not registered for {domain!r}.")
    return schema

  def _decision(self, status: str, domain: str, reference: str,
                schema: Optional[OperationSchema], arguments: Optional[OperationArguments],
                issues: List[ValidationIssue], dropped: List[ValidationIssue],
                trace: List[RouterState]) -> RoutingDecision:
    return RoutingDecision(
        status=status,
        domain=domain,
        reference=reference,
        operation=schema.name if schema else None,
        kind=schema.kind if schema else None,
        arguments=arguments,
        issues=issues,
        dropped=dropped,
        trace=trace,
    )

  def _cancelled(self, domain: str, reference: str, name: Optional[str],
                 trace: List[RouterState], detail: str) -> RoutingDecision:
    trace.append(RouterState.REJECTED)
    schema = self.registry.find(domain, name)
    issue = ValidationIssue(path="model", code="cancelled", detail=detail)
    return self._decision("rejected", domain, reference, schema, None, [issue], [], trace)

  # -------------------------------------------------------------------------
  #  Argument builders
  # -------------------------------------------------------------------------

  def _build_fetch(self, payload: Dict[str, Any], reference: datetime, historical: bool,
                   issues: List[ValidationIssue]) -> Optional[FetchArguments]:
    try:
      window = normalize_window(payload.get("from"),
                                payload.get("to"),
                                reference,
                                include_all=bool(_bool_value(payload.get("all"))),
                                historical=historical)
    except UnresolvableDateError as exc:
      issues.append(_date_issue(exc, exc.field or "from", None))
      return None
    except ValidationError as exc:
      issues.append(_value_issue(exc, exc.path, None))
      return None
    return FetchArguments(window=window)

  def _build_create(self, schema: OperationSchema, payload: Dict[str, Any], reference: datetime,
                    historical: bool, issues: List[ValidationIssue]) -> CreateArguments:
    field = schema.record_field()
    rows = payload[field.name]
    if schema.domain == "calendar":
      events: List[Event] = []
      for index, row in enumerate(rows):
        event = self._new_event(row, index, reference, historical, issues)
        if event is not None:
          events.append(event)
      return CreateArguments(events=events)

    tasks: List[Task] = []
    for index, row in enumerate(rows):
      path = f"tasks[{index}].due"
      try:
        due = format_canonical(resolve(row["due"], reference, bound="end", historical=historical,
                                       granularity="instant"))
      except UnresolvableDateError as exc:
        issues.append(_date_issue(exc, path, index))
        continue
      tasks.append(Task(content=_clean_str(row["content"]),
                        due=due,
                        project=_clean_str(row.get("project")) or DEFAULT_TASK_PROJECT))
    return CreateArguments(tasks=tasks)

  def _new_event(self, row: Dict[str, Any], index: int, reference: datetime, historical: bool,
                 issues: List[ValidationIssue]) -> Optional[Event]:
    try:
      start, end = normalize_span(row["from"], row.get("to"), reference, historical=historical)
    except UnresolvableDateError as exc:
      issues.append(_date_issue(exc, f"events[{index}].{exc.field or 'from'}", index))
      return None
    except ValidationError as exc:
      issues.append(_value_issue(exc, f"events[{index}].{exc.path}", index))
      return None
    return Event(name=_clean_str(row["name"]),
                 start=start,
                 end=end,
                 location=_clean_str(row.get("location")) or "")

  def _build_update(self, schema: OperationSchema, domain: str, payload: Dict[str, Any],
                    reference: datetime, known: Sequence[EntityRecord], historical: bool,
                    issues: List[ValidationIssue],
                    dropped: List[ValidationIssue]) -> UpdateArguments:
    field = schema.record_field()
    claimed: Dict[str, int] = {}
    events: List[EventPatch] = []
    tasks: List[TaskPatch] = []
    for index, row in enumerate(payload[field.name]):
      path = f"{field.name}[{index}]"
      target, miss = self._resolve_row(domain, row, index, path, known)
      if domain == "calendar":
        patch = self._event_patch(row, index, path, target, reference, historical, issues)
      else:
        patch = self._task_patch(row, index, path, reference, historical, issues)
      if patch is None:
        continue
      if miss is not None:
        dropped.append(miss)
        continue
      entity_id = _clean_id(target.id)
      if entity_id in claimed:
        dropped.append(ValidationIssue(
            path=f"{path}.id", code="duplicate_reference", row=index, mention=entity_id,
            detail=f"{path} targets {entity_id} again (already updated by row {claimed[entity_id]})."))
        continue
      claimed[entity_id] = index
      patch.id = entity_id
      if isinstance(patch, EventPatch):
        events.append(patch)
      else:
        tasks.append(patch)
    return UpdateArguments(events=events, tasks=tasks)

  def _resolve_row(self, domain: str, row: Dict[str, Any], index: int, path: str,
                   known: Sequence[EntityRecord]
                   ) -> Tuple[Optional[EntityRecord], Optional[ValidationIssue]]:
    supplied = _clean_id(row.get("id"))
    if supplied:
      entity = lookup_id(supplied, known)
      if entity is not None:
        return entity, None
    text_field = "name" if domain == "calendar" else "content"
    mention = _clean_str(row.get("target")) or _clean_str(row.get(text_field)) or ""
    outcome = resolve_mention(mention, known, min_score=self.min_score,
                              min_margin=self.min_margin)
    if isinstance(outcome, ResolvedEntity):
      return lookup_id(outcome.id, known), None
    noun = _ENTITY_NOUNS.get(domain, "an item")
    if isinstance(outcome, AmbiguityReport):
      options = ", ".join(f"{item.text} ({item.id})" for item in outcome.candidates)
      return None, ValidationIssue(
          path=f"{path}.id", code="ambiguous_reference", row=index, mention=mention,
          candidates=outcome.candidate_payload(),
          detail=f"'{mention}' matches more than one item: {options}.")
    if not isinstance(outcome, NotFound):
      raise TypeError(f"Unexpected resolution result: {type(outcome).__name__}")
    detail = f"I couldn't find {noun} matching '{mention}'."
    if supplied:
      detail = f"{detail} The id {supplied} is not in the current list."
    return None, ValidationIssue(path=f"{path}.id", code="not_found", row=index,
                                 mention=mention, detail=detail)

  def _event_patch(self, row: Dict[str, Any], index: int, path: str,
                   target: Optional[EntityRecord], reference: datetime, historical: bool,
                   issues: List[ValidationIssue]) -> Optional[EventPatch]:
    start_expr = row.get("from")
    end_expr = row.get("to")
    start: Optional[str] = None
    end: Optional[str] = None
    try:
      if not _is_blank(start_expr):
        start_at = resolve(start_expr, reference, historical=historical, granularity="instant")
        start = format_canonical(start_at)
        if _is_blank(end_expr):
          # Moving an event keeps its length.
          end = format_canonical(start_at + _snapshot_duration(target))
      else:
        start_at = _snapshot_start(target)
      if not _is_blank(end_expr):
        end_at = resolve_end(end_expr, start_at or reference, reference, historical=historical)
        if start_at is not None and end_at < start_at:
          raise ValidationError(
              "to", f"{format_canonical(end_at)} precedes {format_canonical(start_at)}.")
        end = format_canonical(end_at)
    except UnresolvableDateError as exc:
      field = "from" if start is None and not _is_blank(start_expr) else "to"
      issues.append(_date_issue(exc, f"{path}.{field}", index))
      return None
    except ValidationError as exc:
      issues.append(_value_issue(exc, f"{path}.{exc.path}", index))
      return None
    location = row.get("location")
    return EventPatch(id="",
                      name=_clean_str(row.get("name")),
                      start=start,
                      end=end,
                      location=None if location is None else _clean_str(location) or "")

  def _task_patch(self, row: Dict[str, Any], index: int, path: str, reference: datetime,
                  historical: bool, issues: List[ValidationIssue]) -> Optional[TaskPatch]:
    due: Optional[str] = None
    if not _is_blank(row.get("due")):
      try:
        due = format_canonical(resolve(row["due"], reference, bound="end", historical=historical,
                                       granularity="instant"))
      except UnresolvableDateError as exc:
        issues.append(_date_issue(exc, f"{path}.due", index))
        return None
    return TaskPatch(id="",
                     content=_clean_str(row.get("content")),
                     due=due,
                     project=_clean_str(row.get("project")),
                     status=_bool_value(row.get("status")))


@lru_cache(maxsize=1)
def default_router() -> IntentRouter:
  return IntentRouter()


async def route(utterance: str,
                reference: Any,
                domain: str,
                snapshot: Optional[Sequence[Any]] = None,
                *,
                historical: bool = False) -> RoutingDecision:
  return await default_router().route(utterance, reference, domain, snapshot,
                                      historical=historical)
