from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from .agent.dispatcher import OperationDispatcher
from .agent.errors import (BackendError, CalAgentError, DecisionRejectedError,
                           NoOperationSelectedError, SchemaError, UnresolvableDateError,
                           ValidationError)
from .agent.intent_router import IntentRouter, default_router
from .agent.schemas import RoutingDecision
from .backend import InMemoryBackend
from .config import DEFAULT_TIMEZONE
from .models import BackendResult, RouteRequest

router = APIRouter()
logger = logging.getLogger(__name__)

_dispatcher: Optional[OperationDispatcher] = None


class RunResponse(BaseModel):
  decision: RoutingDecision
  result: Optional[BackendResult] = None


def get_router() -> IntentRouter:
  return default_router()


def get_dispatcher() -> OperationDispatcher:
  global _dispatcher
  if _dispatcher is None:
    _dispatcher = OperationDispatcher(InMemoryBackend())
  return _dispatcher


def _now_reference() -> datetime:
  return datetime.now(ZoneInfo(DEFAULT_TIMEZONE)).replace(tzinfo=None, microsecond=0)


def _http_error(exc: CalAgentError) -> HTTPException:
  if isinstance(exc, (NoOperationSelectedError, UnresolvableDateError, ValidationError)):
    return HTTPException(status_code=422, detail=str(exc))
  if isinstance(exc, DecisionRejectedError):
    return HTTPException(status_code=409, detail=str(exc))
  if isinstance(exc, BackendError):
    return HTTPException(status_code=502, detail=str(exc))
  logger.exception("routing error")
  return HTTPException(status_code=500, detail=str(exc))


def _require_domain(intent_router: IntentRouter, domain: str) -> None:
  if domain not in intent_router.registry.domains():
    raise HTTPException(status_code=404, detail=f"Unknown domain: {domain}")


async def _route(body: RouteRequest, intent_router: IntentRouter) -> RoutingDecision:
  _require_domain(intent_router, body.domain)
  try:
    return await intent_router.route(body.text,
                                     body.reference or _now_reference(),
                                     body.domain,
                                     body.snapshot,
                                     historical=body.historical)
  except SchemaError as exc:
    logger.exception("schema registry misuse")
    raise HTTPException(status_code=500, detail=str(exc))
  except CalAgentError as exc:
    raise _http_error(exc)


@router.get("/operations/{domain}")
def list_operations(domain: str,
                    intent_router: IntentRouter = Depends(get_router)) -> List[Dict[str, Any]]:
  _require_domain(intent_router, domain)
  return [schema.model_dump() for schema in intent_router.registry.schemas_for(domain)]


@router.post("/route", response_model=RoutingDecision)
async def route_text(body: RouteRequest, intent_router: IntentRouter = Depends(get_router)):
  return await _route(body, intent_router)


@router.post("/dispatch", response_model=BackendResult)
async def dispatch_decision(decision: RoutingDecision,
                            dispatcher: OperationDispatcher = Depends(get_dispatcher)):
  try:
    return await dispatcher.dispatch(decision)
  except CalAgentError as exc:
    raise _http_error(exc)


@router.post("/run", response_model=RunResponse)
async def run_text(body: RouteRequest,
                   intent_router: IntentRouter = Depends(get_router),
                   dispatcher: OperationDispatcher = Depends(get_dispatcher)):
  decision = await _route(body, intent_router)
  if not decision.is_dispatchable:
    return RunResponse(decision=decision)
  try:
    result = await dispatcher.dispatch(decision)
  except CalAgentError as exc:
    raise _http_error(exc)
  return RunResponse(decision=decision, result=result)
