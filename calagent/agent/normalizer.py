from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta
from typing import Any, Literal, Optional, Tuple

from ..config import (CANONICAL_FORMAT, DATETIME_FLEX_RE, DEFAULT_EVENT_MINUTES,
                      ISO_DATE_RE, TONIGHT_HOUR)
from ..models import TemporalWindow
from .errors import PastDateError, UnresolvableDateError, ValidationError

Bound = Literal["start", "end"]
Granularity = Literal["date", "instant"]

_WEEKDAYS = {
    "monday": 0, "mon": 0,
    "tuesday": 1, "tue": 1, "tues": 1,
    "wednesday": 2, "wed": 2,
    "thursday": 3, "thu": 3, "thur": 3, "thurs": 3,
    "friday": 4, "fri": 4,
    "saturday": 5, "sat": 5,
    "sunday": 6, "sun": 6,
}
_WEEKDAY_PATTERN = "|".join(sorted(_WEEKDAYS, key=len, reverse=True))
_UNIT_PATTERN = r"minutes?|mins?|hours?|hrs?|days?|weeks?"

_FILLER = {"at", "on", "by", "the", "around", "about", "of", "o'clock", "oclock"}
_SOFT_TIMES = {
    "noon": time(12, 0),
    "midday": time(12, 0),
    "midnight": time(0, 0),
    "morning": time(9, 0),
    "afternoon": time(15, 0),
    "evening": time(19, 0),
}

_DAY_AFTER_TOMORROW_RE = re.compile(r"\bday after tomorrow\b")
_OVERMORROW_RE = re.compile(r"\bovermorrow\b")
_OFFSET_FUTURE_RE = re.compile(rf"\bin\s+(\d+|an?)\s+({_UNIT_PATTERN})\b")
_OFFSET_PAST_RE = re.compile(rf"\b(\d+|an?)\s+({_UNIT_PATTERN})\s+ago\b")
_ISO_DATE_IN_TEXT_RE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
_WEEKDAY_RE = re.compile(rf"\b(?:(this|next|last|coming)\s+)?({_WEEKDAY_PATTERN})\b")
_NEXT_WEEK_RE = re.compile(r"\bnext\s+week\b")
_DAY_WORD_RE = re.compile(r"\b(today|tonight|tomorrow|yesterday|now)\b")
_AMPM_RE = re.compile(r"\b(\d{1,2})(?::(\d{2}))?\s*(a\.?m\.?|p\.?m\.?)(?=\s|$)")
_CLOCK_RE = re.compile(r"\b(\d{1,2}):(\d{2})(?::(\d{2}))?\b")
_AT_HOUR_RE = re.compile(r"\bat\s+(\d{1,2})\b")
_SOFT_TIME_RE = re.compile(r"\b(?:in\s+the\s+|this\s+)?(" + "|".join(_SOFT_TIMES) + r")\b")

_DURATION_RE = re.compile(
    r"^(?:(\d+(?:\.\d+)?)\s*(?:h|hr|hrs|hour|hours))?\s*"
    r"(?:(\d+)\s*(?:m|min|mins|minute|minutes))?$")
_DURATION_FILLER_RE = re.compile(r"^(?:\+|for\s+|like\s+|about\s+|takes?\s+)+")
_DURATION_WORDS = {
    "half an hour": timedelta(minutes=30),
    "an hour": timedelta(hours=1),
    "one hour": timedelta(hours=1),
    "a couple of hours": timedelta(hours=2),
}


# ---------------------------------------------------------------------------
#  Canonical format helpers
# ---------------------------------------------------------------------------

def format_canonical(value: datetime) -> str:
  return value.strftime(CANONICAL_FORMAT)


def parse_canonical(value: str) -> datetime:
  return datetime.strptime(value, CANONICAL_FORMAT)


def coerce_reference(value: Any) -> datetime:
  """Accept a datetime or a timestamp string as the reference instant.

  Aware datetimes keep their wall-clock time; the zone is the caller's choice.
  """
  if isinstance(value, datetime):
    return value.replace(tzinfo=None, microsecond=0)
  if isinstance(value, str):
    parsed = parse_absolute(value)
    if parsed is not None:
      return parsed
  raise ValidationError("reference", f"Unsupported reference instant: {value!r}")


def start_of_day(value: datetime) -> datetime:
  return datetime.combine(value.date(), time(0, 0, 0))


def end_of_day(value: datetime) -> datetime:
  return datetime.combine(value.date(), time(23, 59, 59))


def default_end(start: datetime, minutes: int = DEFAULT_EVENT_MINUTES) -> datetime:
  return start + timedelta(minutes=minutes)


def parse_absolute(expression: str, bound: Bound = "start") -> Optional[datetime]:
  raw = re.sub(r"\s*:\s*", ":", expression.strip())
  if ISO_DATE_RE.match(raw):
    try:
      day = datetime.strptime(raw, "%Y-%m-%d")
    except ValueError as exc:
      raise UnresolvableDateError(expression, "Invalid calendar date.") from exc
    return end_of_day(day) if bound == "end" else day
  match = DATETIME_FLEX_RE.match(raw)
  if not match:
    return None
  # Any UTC offset is dropped: timestamps are wall-clock in the caller's zone.
  date_part, hour, minute, second, _offset = match.groups()
  try:
    return datetime.strptime(
        f"{date_part} {int(hour):02d}:{minute}:{second or '00'}", CANONICAL_FORMAT)
  except ValueError as exc:
    raise UnresolvableDateError(expression, "Invalid calendar date or time.") from exc


# ---------------------------------------------------------------------------
#  Relative expressions
# ---------------------------------------------------------------------------

def _consume(pattern: re.Pattern, text: str) -> Tuple[Optional[re.Match], str]:
  match = pattern.search(text)
  if not match:
    return None, text
  return match, f"{text[:match.start()]} {text[match.end():]}"


def _unit_delta(amount: str, unit: str) -> timedelta:
  count = 1 if amount in ("a", "an") else int(amount)
  if unit.startswith("min"):
    return timedelta(minutes=count)
  if unit.startswith("h"):
    return timedelta(hours=count)
  if unit.startswith("day"):
    return timedelta(days=count)
  return timedelta(weeks=count)


def _weekday_date(qualifier: Optional[str], weekday: int, today: date) -> date:
  ahead = (weekday - today.weekday()) % 7
  upcoming = today + timedelta(days=ahead)
  if qualifier == "last":
    behind = (today.weekday() - weekday) % 7 or 7
    return today - timedelta(days=behind)
  if qualifier == "next":
    # "next friday" on a wednesday is the friday of next week.
    week_end = today + timedelta(days=6 - today.weekday())
    return upcoming + timedelta(days=7) if upcoming <= week_end else upcoming
  return upcoming


def _to_24h(hour: int, minute: int, meridiem: str) -> time:
  if not 1 <= hour <= 12 or not 0 <= minute <= 59:
    raise ValueError("hour out of range")
  if meridiem.startswith("p") and hour != 12:
    hour += 12
  if meridiem.startswith("a") and hour == 12:
    hour = 0
  return time(hour, minute)


def _extract_time(text: str, expression: str) -> Tuple[Optional[time], str]:
  try:
    match, text = _consume(_AMPM_RE, text)
    if match:
      return _to_24h(int(match.group(1)), int(match.group(2) or 0), match.group(3)), text
    match, text = _consume(_CLOCK_RE, text)
    if match:
      return time(int(match.group(1)), int(match.group(2)), int(match.group(3) or 0)), text
    match, text = _consume(_AT_HOUR_RE, text)
    if match:
      return time(int(match.group(1)), 0), text
  except ValueError as exc:
    raise UnresolvableDateError(expression, "Invalid time of day.") from exc
  match, text = _consume(_SOFT_TIME_RE, text)
  if match:
    return _SOFT_TIMES[match.group(1)], text
  return None, text


def _resolve_relative(expression: str, reference: datetime, anchor: datetime,
                      bound: Bound) -> datetime:
  text = re.sub(r"[,;!?]", " ", expression.lower())
  text = _DAY_AFTER_TOMORROW_RE.sub("overmorrow", text)
  today = reference.date()

  match, text = _consume(_OFFSET_FUTURE_RE, text)
  if match is None:
    match, text = _consume(_OFFSET_PAST_RE, text)
    sign = -1
  else:
    sign = 1
  offset = _unit_delta(match.group(1), match.group(2)) * sign if match else None

  day: Optional[date] = None
  default_time: Optional[time] = None
  if offset is not None and offset % timedelta(days=1):
    instant = reference + offset
    leftover = [token for token in text.split() if token not in _FILLER]
    if leftover:
      raise UnresolvableDateError(expression, f"Unrecognized words: {' '.join(leftover)}")
    return instant
  if offset is not None:
    day = today + offset

  if day is None:
    match, text = _consume(_OVERMORROW_RE, text)
    if match:
      day = today + timedelta(days=2)
  if day is None:
    match, text = _consume(_ISO_DATE_IN_TEXT_RE, text)
    if match:
      try:
        day = date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
      except ValueError as exc:
        raise UnresolvableDateError(expression, "Invalid calendar date.") from exc
  if day is None:
    match, text = _consume(_NEXT_WEEK_RE, text)
    if match:
      day = today + timedelta(days=7 - today.weekday())
  if day is None:
    match, text = _consume(_WEEKDAY_RE, text)
    if match:
      day = _weekday_date(match.group(1), _WEEKDAYS[match.group(2)], today)

  is_now = False
  match, text = _consume(_DAY_WORD_RE, text)
  if match:
    word = match.group(1)
    if day is not None:
      raise UnresolvableDateError(expression, "Conflicting day references.")
    if word == "tomorrow":
      day = today + timedelta(days=1)
    elif word == "yesterday":
      day = today - timedelta(days=1)
    else:
      day = today
      is_now = word == "now"
      if word == "tonight":
        default_time = time(TONIGHT_HOUR, 0)

  clock, text = _extract_time(text, expression)

  leftover = [token for token in text.split() if token not in _FILLER]
  if leftover:
    raise UnresolvableDateError(expression, f"Unrecognized words: {' '.join(leftover)}")

  if day is None and clock is None:
    raise UnresolvableDateError(expression)

  if day is None:
    # A bare time of day belongs to the anchor's date, or the next day once passed.
    instant = datetime.combine(anchor.date(), clock)
    if instant < anchor:
      instant += timedelta(days=1)
    return instant

  if is_now and clock is None:
    return reference
  if clock is None:
    clock = default_time
  if clock is None:
    return (datetime.combine(day, time(23, 59, 59)) if bound == "end"
            else datetime.combine(day, time(0, 0, 0)))
  return datetime.combine(day, clock)


# ---------------------------------------------------------------------------
#  Public API
# ---------------------------------------------------------------------------

def resolve(expression: Any,
            reference: datetime,
            *,
            bound: Bound = "start",
            historical: bool = False,
            anchor: Optional[datetime] = None,
            granularity: Granularity = "date") -> datetime:
  """Resolve an absolute or relative date expression against `reference`.

  Date-only expressions land on 00:00:00 (or 23:59:59 when `bound="end"`).
  Unless `historical` is set, the result may not precede the reference:
  compared by calendar date for day-scoped windows, or by instant with
  `granularity="instant"`. A bare time of day is rolled forward instead.
  """
  if not isinstance(expression, str) or not expression.strip():
    raise UnresolvableDateError(str(expression or ""), "Empty date expression.")
  reference = coerce_reference(reference)
  resolved = parse_absolute(expression, bound)
  if resolved is None:
    resolved = _resolve_relative(expression, reference, anchor or reference, bound)
  if granularity == "instant":
    in_past = resolved < reference
  else:
    in_past = resolved.date() < reference.date()
  if not historical and in_past:
    raise PastDateError(
        expression,
        f"Resolves to {format_canonical(resolved)}, before {format_canonical(reference)}.")
  return resolved


def normalize(expression: Any,
              reference: datetime,
              *,
              bound: Bound = "start",
              historical: bool = False,
              anchor: Optional[datetime] = None) -> str:
  return format_canonical(
      resolve(expression, reference, bound=bound, historical=historical, anchor=anchor))


def parse_duration(expression: Any) -> Optional[timedelta]:
  if not isinstance(expression, str):
    return None
  text = re.sub(r"\s+", " ", expression.strip().lower())
  text = _DURATION_FILLER_RE.sub("", text).strip()
  if text in _DURATION_WORDS:
    return _DURATION_WORDS[text]
  if not text:
    return None
  match = _DURATION_RE.match(text)
  if not match or not (match.group(1) or match.group(2)):
    return None
  hours = float(match.group(1) or 0)
  minutes = int(match.group(2) or 0)
  return timedelta(hours=hours, minutes=minutes)


def resolve_end(expression: Any,
                start: datetime,
                reference: datetime,
                *,
                historical: bool = False) -> datetime:
  """Resolve an end expression; durations ("5 hours") count from `start`."""
  duration = parse_duration(expression)
  if duration is not None:
    return start + duration
  return resolve(expression, reference, bound="end", historical=historical, anchor=start)


def _tagged(field: str, resolver, *args, **kwargs) -> datetime:
  try:
    return resolver(*args, **kwargs)
  except UnresolvableDateError as exc:
    exc.field = exc.field or field
    raise


def normalize_window(start_expression: Any,
                     end_expression: Any,
                     reference: datetime,
                     *,
                     include_all: bool = False,
                     historical: bool = False) -> TemporalWindow:
  """Day-scoped window: a missing start is today, a missing end closes the start's day."""
  reference = coerce_reference(reference)
  if start_expression in (None, ""):
    start = start_of_day(reference)
  else:
    start = _tagged("from", resolve, start_expression, reference, historical=historical)
  if end_expression in (None, ""):
    end = end_of_day(start)
  else:
    end = _tagged("to", resolve_end, end_expression, start, reference, historical=historical)
  if end < start:
    raise ValidationError("to", f"{format_canonical(end)} precedes {format_canonical(start)}.")
  return TemporalWindow(start=format_canonical(start),
                        end=format_canonical(end),
                        include_all=include_all)


def normalize_span(start_expression: Any,
                   end_expression: Any,
                   reference: datetime,
                   *,
                   historical: bool = False,
                   default_duration: Optional[timedelta] = None) -> Tuple[str, str]:
  """Single-event span: a missing end defaults to start + `default_duration` (30m).

  The start must not be earlier than the reference instant.
  """
  reference = coerce_reference(reference)
  start = _tagged("from", resolve, start_expression, reference, historical=historical,
                  granularity="instant")
  if end_expression in (None, ""):
    end = start + (default_duration or timedelta(minutes=DEFAULT_EVENT_MINUTES))
  else:
    end = _tagged("to", resolve_end, end_expression, start, reference, historical=historical)
  if end < start:
    raise ValidationError("to", f"{format_canonical(end)} precedes {format_canonical(start)}.")
  return format_canonical(start), format_canonical(end)
