from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import openai

from ..config import ROUTER_MODEL, SNAPSHOT_PROMPT_LIMIT
from ..llm import get_async_client
from ..models import EntityRecord, Event
from ..utils import _log_debug
from .schemas import ModelRequest, ModelResponse

logger = logging.getLogger(__name__)

ModelCall = Callable[[ModelRequest], Awaitable[Optional[ModelResponse]]]

SYSTEM_PROMPT_TEMPLATE = """Current datetime: {reference}
Dates should be in the future unless the user explicitly requests otherwise."""

_SNAPSHOT_LABELS = {
    "calendar": "calendar",
    "task": "todo-list",
}


def render_snapshot(domain: str,
                    snapshot: Sequence[EntityRecord],
                    limit: int = SNAPSHOT_PROMPT_LIMIT) -> str:
  lines: List[str] = []
  for entity in snapshot[:limit]:
    if not entity.id:
      continue
    if isinstance(entity, Event):
      text = f"{entity.name}, {entity.start} - {entity.end}"
      if entity.location:
        text = f"{text}, {entity.location}"
    else:
      text = entity.content
      if entity.due:
        text = f"{text}, due {entity.due}"
    lines.append(f"- {text} (ID: {entity.id})")
  if not lines:
    return ""
  label = _SNAPSHOT_LABELS.get(domain, domain)
  body = "\n".join(lines)
  return f'{label}"""\n{body}\n"""'


def build_messages(reference: str,
                   domain: str,
                   utterance: str,
                   snapshot: Optional[Sequence[EntityRecord]] = None) -> List[Dict[str, str]]:
  system_prompt = SYSTEM_PROMPT_TEMPLATE.format(reference=reference)
  rendered = render_snapshot(domain, snapshot or [])
  if rendered:
    system_prompt = f"{system_prompt}\n\n{rendered}"
  return [
      {
          "role": "system",
          "content": system_prompt,
      },
      {
          "role": "user",
          "content": utterance,
      },
  ]


def _decode_arguments(raw: Any) -> Optional[Dict[str, Any]]:
  if isinstance(raw, dict):
    return raw
  if not isinstance(raw, str) or not raw.strip():
    return None
  try:
    decoded = json.loads(raw)
  except json.JSONDecodeError:
    return None
  return decoded if isinstance(decoded, dict) else None


def _extract_function_call(message: Any) -> Tuple[Optional[str], str]:
  tool_calls = getattr(message, "tool_calls", None) or []
  for call in tool_calls:
    function = getattr(call, "function", None)
    name = getattr(function, "name", None)
    if isinstance(name, str) and name.strip():
      return name.strip(), getattr(function, "arguments", None) or ""
  # Older models answer with the deprecated `function_call` field.
  legacy = getattr(message, "function_call", None)
  name = getattr(legacy, "name", None)
  if isinstance(name, str) and name.strip():
    return name.strip(), getattr(legacy, "arguments", None) or ""
  return None, ""


def _print_raw_output(model: str, name: Optional[str], raw_arguments: str) -> None:
  _log_debug(f"[ROUTER LLM RAW] model={model} function={name or '(none)'}")
  _log_debug(raw_arguments if raw_arguments else "(empty)")
  _log_debug("[ROUTER LLM RAW END]")


async def run_function_call(request: ModelRequest) -> Optional[ModelResponse]:
  """Ask the chat model to pick one of the request's operations."""
  try:
    client = get_async_client()
  except RuntimeError as exc:
    return ModelResponse(meta={
        "model": ROUTER_MODEL,
        "llm_available": False,
        "llm_error": str(exc),
    })

  try:
    completion = await client.chat.completions.create(
        model=ROUTER_MODEL,
        messages=request.messages,
        tools=request.tools(),
        tool_choice="auto",
    )
  except openai.APITimeoutError as exc:
    logger.warning("router model timed out: %s", exc)
    return ModelResponse(meta={
        "model": ROUTER_MODEL,
        "llm_available": True,
        "cancelled": True,
        "llm_error": str(exc),
    })
  except openai.OpenAIError as exc:
    logger.warning("router model call failed: %s", exc)
    return ModelResponse(meta={
        "model": ROUTER_MODEL,
        "llm_available": True,
        "llm_output_empty_or_error": True,
        "llm_error": str(exc),
    })

  if not completion.choices:
    return None
  message = completion.choices[0].message
  name, raw_arguments = _extract_function_call(message)
  _print_raw_output(ROUTER_MODEL, name, raw_arguments)
  return ModelResponse(
      name=name,
      arguments=_decode_arguments(raw_arguments),
      raw_arguments=raw_arguments if isinstance(raw_arguments, str) else json.dumps(raw_arguments),
      meta={
          "model": ROUTER_MODEL,
          "llm_available": True,
          "content": (getattr(message, "content", None) or "").strip(),
      },
  )
