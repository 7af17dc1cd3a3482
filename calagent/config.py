from __future__ import annotations

import os
import re

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
LLM_DEBUG = os.getenv("LLM_DEBUG", "0") == "1"

CANONICAL_FORMAT = "%Y-%m-%d %H:%M:%S"
CANONICAL_RE = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}$")
ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
DATETIME_FLEX_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[ T](\d{1,2}):(\d{2})(?::(\d{2}))?(?:\.\d+)?(Z|[+-]\d{2}:?\d{2})?$")

# -------------------------
# Model 설정
# -------------------------
ROUTER_MODEL = os.getenv("ROUTER_MODEL", "gpt-4-1106-preview").strip()
ROUTER_TIMEOUT_SECONDS = float(os.getenv("ROUTER_TIMEOUT_SECONDS", "30"))
SNAPSHOT_PROMPT_LIMIT = int(os.getenv("SNAPSHOT_PROMPT_LIMIT", "40"))

# -------------------------
# 정규화 / 참조 해석 기본값
# -------------------------
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "Europe/Warsaw").strip()
DEFAULT_EVENT_MINUTES = int(os.getenv("DEFAULT_EVENT_MINUTES", "30"))
TONIGHT_HOUR = 20
RESOLVER_MIN_SCORE = float(os.getenv("RESOLVER_MIN_SCORE", "0.35"))
RESOLVER_MIN_MARGIN = float(os.getenv("RESOLVER_MIN_MARGIN", "0.15"))

DEFAULT_TASK_PROJECT = os.getenv("DEFAULT_TASK_PROJECT", "inbox").strip()
TASK_PROJECTS = tuple(
    name.strip()
    for name in os.getenv("TASK_PROJECTS", "inbox,overment,eduweb,easy_").split(",")
    if name.strip())

# -------------------------
# Google Calendar / Tasks 설정
# -------------------------
GOOGLE_CALENDAR_ID = os.getenv("GOOGLE_CALENDAR_ID", "primary")


def _parse_task_lists(raw: str) -> dict[str, str]:
    mapping: dict[str, str] = {}
    for pair in raw.split(","):
        if "=" not in pair:
            continue
        project, list_id = pair.split("=", 1)
        if project.strip() and list_id.strip():
            mapping[project.strip()] = list_id.strip()
    return mapping


GOOGLE_TASK_LISTS = _parse_task_lists(
    os.getenv("GOOGLE_TASK_LISTS", "inbox=@default"))

# -------------------------
# HTTP
# -------------------------
API_BASE = os.getenv("API_BASE", "/api")
HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "8000"))
