from __future__ import annotations

from typing import Optional

from openai import AsyncOpenAI

from .config import OPENAI_API_KEY, ROUTER_TIMEOUT_SECONDS

async_client: Optional[AsyncOpenAI] = None


def get_async_client() -> AsyncOpenAI:
  global async_client
  if async_client is None:
    if not OPENAI_API_KEY:
      raise RuntimeError("OPENAI_API_KEY is not set")
    # Retries are a caller concern; the client performs none.
    async_client = AsyncOpenAI(api_key=OPENAI_API_KEY,
                               timeout=ROUTER_TIMEOUT_SECONDS,
                               max_retries=0)
  return async_client
