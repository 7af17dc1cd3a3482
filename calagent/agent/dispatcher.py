from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from ..backend import EntityBackend, PartialCreateError
from ..models import BackendResult, Event
from .errors import BackendError, DecisionRejectedError
from .normalizer import parse_canonical
from .schemas import CreateArguments, FetchArguments, RoutingDecision, UpdateArguments

logger = logging.getLogger(__name__)


class OperationDispatcher:
  """Turns one dispatchable decision into exactly one backend call."""

  def __init__(self, backend: EntityBackend, *, timeout: Optional[float] = None) -> None:
    self.backend = backend
    self.timeout = timeout

  async def _call(self, operation: str, func: Callable[..., Any], *args: Any) -> Any:
    try:
      return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout)
    except asyncio.TimeoutError as exc:
      raise BackendError(operation, "cancelled: the backend call timed out.") from exc
    except BackendError:
      raise
    except PartialCreateError as exc:
      logger.exception("backend call for %s failed after creating %s", operation, exc.created_ids)
      raise BackendError(operation, str(exc), created_ids=exc.created_ids) from exc
    except Exception as exc:
      logger.exception("backend call for %s failed", operation)
      raise BackendError(operation, str(exc) or type(exc).__name__) from exc

  async def dispatch(self, decision: RoutingDecision) -> BackendResult:
    if not decision.is_dispatchable:
      raise DecisionRejectedError(decision.operation, decision.message() or "not dispatchable")

    operation = decision.operation or ""
    domain = decision.domain
    arguments = decision.arguments
    if decision.kind is not None and decision.kind != arguments.kind:
      raise DecisionRejectedError(
          decision.operation, f"{decision.kind} decision carries {arguments.kind} arguments")
    try:
      now = parse_canonical(decision.reference)
    except (TypeError, ValueError) as exc:
      raise DecisionRejectedError(decision.operation,
                                  f"invalid reference {decision.reference!r}") from exc
    result = BackendResult(operation=operation, domain=domain, kind=arguments.kind)

    if isinstance(arguments, FetchArguments):
      window = arguments.window
      records = await self._call(operation, self.backend.fetch, domain, window,
                                 window.include_all, now)
      for record in records:
        if isinstance(record, Event):
          result.events.append(record)
        else:
          result.tasks.append(record)
    elif isinstance(arguments, CreateArguments):
      records = arguments.events if domain == "calendar" else arguments.tasks
      result.created_ids = list(await self._call(operation, self.backend.create, domain, records))
    elif isinstance(arguments, UpdateArguments):
      patches = arguments.events if domain == "calendar" else arguments.tasks
      result.updated = list(await self._call(operation, self.backend.update, domain, patches))

    logger.info("dispatched %s/%s %s", domain, operation, result.as_counts())
    return result
