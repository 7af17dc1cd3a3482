from __future__ import annotations

from typing import List, Optional


class CalAgentError(Exception):
  """Base class for every error raised by the routing core."""


# ---------------------------------------------------------------------------
#  Registry misuse (programmer errors)
# ---------------------------------------------------------------------------

class SchemaError(CalAgentError):
  pass


class DuplicateOperationError(SchemaError):

  def __init__(self, domain: str, name: str) -> None:
    super().__init__(f"Operation {name!r} is already registered for domain {domain!r}.")
    self.domain = domain
    self.name = name


class RegistryFrozenError(SchemaError):
  pass


class UnknownOperationError(SchemaError):

  def __init__(self, domain: str, name: str) -> None:
    super().__init__(f"Operation {name!r} is not registered for domain {domain!r}.")
    self.domain = domain
    self.name = name


# ---------------------------------------------------------------------------
#  Recoverable routing failures
# ---------------------------------------------------------------------------

class NoOperationSelectedError(CalAgentError):

  def __init__(self, reason: str) -> None:
    super().__init__(reason)
    self.reason = reason


class UnresolvableDateError(CalAgentError):

  def __init__(self, expression: str, reason: str = "No calendar anchor found.",
               field: Optional[str] = None) -> None:
    super().__init__(f"Cannot resolve {expression!r}: {reason}")
    self.expression = expression
    self.reason = reason
    self.field = field


class PastDateError(UnresolvableDateError):
  """The expression resolves before the reference date and the request is not historical."""


class ValidationError(CalAgentError):

  def __init__(self, path: str, reason: str) -> None:
    super().__init__(f"{path}: {reason}")
    self.path = path
    self.reason = reason


class DecisionRejectedError(CalAgentError):

  def __init__(self, operation: Optional[str], reason: str) -> None:
    super().__init__(f"Decision for {operation or '(none)'} was rejected: {reason}")
    self.operation = operation
    self.reason = reason


# ---------------------------------------------------------------------------
#  Dispatch boundary
# ---------------------------------------------------------------------------

class BackendError(CalAgentError):
  """A backend call failed. `created_ids` lists entities created before the failure."""

  def __init__(self, operation: str, reason: str,
               created_ids: Optional[List[str]] = None) -> None:
    message = f"Backend call for {operation} failed: {reason}"
    if created_ids:
      message = f"{message} (already created: {', '.join(created_ids)})"
    super().__init__(message)
    self.operation = operation
    self.reason = reason
    self.created_ids = list(created_ids or [])
