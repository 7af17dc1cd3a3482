from __future__ import annotations

import re
from difflib import SequenceMatcher
from typing import Any, Dict, List, Literal, Optional, Sequence, Union

from pydantic import BaseModel, Field

from ..config import RESOLVER_MIN_MARGIN, RESOLVER_MIN_SCORE
from ..models import EntityRecord
from ..utils import _clean_id, normalize_text

WORD_WEIGHT = 0.6
SEQUENCE_WEIGHT = 0.4
AMBIGUITY_CANDIDATE_LIMIT = 5

_WORD_RE = re.compile(r"[^\W_]+", re.UNICODE)
_STOP_WORDS = {
    "a", "an", "the", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "from", "as", "is", "are", "was", "were", "be", "been", "have",
    "has", "had", "do", "does", "did", "will", "would", "should", "could", "can",
    "this", "that", "these", "those", "i", "you", "he", "she", "it", "we", "they",
    "me", "my", "your", "our", "their", "its", "im", "also", "please", "update",
    "change", "move", "task", "tasks", "event", "events", "todo", "list",
}


class ScoredCandidate(BaseModel):
  id: str
  text: str
  score: float = Field(ge=0.0, le=1.0)


class ResolvedEntity(BaseModel):
  kind: Literal["resolved"] = "resolved"
  id: str
  text: str
  score: float = Field(ge=0.0, le=1.0)


class AmbiguityReport(BaseModel):
  kind: Literal["ambiguous"] = "ambiguous"
  mention: str
  candidates: List[ScoredCandidate] = Field(default_factory=list)

  def candidate_payload(self) -> List[Dict[str, Any]]:
    return [item.model_dump() for item in self.candidates]


class NotFound(BaseModel):
  kind: Literal["not_found"] = "not_found"
  mention: str
  best_score: float = 0.0


Resolution = Union[ResolvedEntity, AmbiguityReport, NotFound]


def tokenize(text: str) -> List[str]:
  tokens: List[str] = []
  for raw in _WORD_RE.findall((text or "").lower()):
    if raw in _STOP_WORDS or len(raw) < 2:
      continue
    if len(raw) > 3 and raw.endswith("s") and not raw.endswith("ss"):
      raw = raw[:-1]
    tokens.append(raw)
  return tokens


def similarity(mention: str, text: str) -> float:
  """Lexical overlap blended with character-level similarity, in [0, 1]."""
  mention_tokens = set(tokenize(mention))
  text_tokens = set(tokenize(text))
  word_score = 0.0
  if mention_tokens and text_tokens:
    overlap = len(mention_tokens & text_tokens)
    word_score = overlap / min(len(mention_tokens), len(text_tokens))
  sequence_score = SequenceMatcher(None,
                                   normalize_text(mention).lower(),
                                   normalize_text(text).lower()).ratio()
  return round(WORD_WEIGHT * word_score + SEQUENCE_WEIGHT * sequence_score, 4)


def snapshot_ids(snapshot: Sequence[EntityRecord]) -> List[str]:
  ids: List[str] = []
  for entity in snapshot:
    entity_id = _clean_id(entity.id)
    if entity_id and entity_id not in ids:
      ids.append(entity_id)
  return ids


def lookup_id(value: Any, snapshot: Sequence[EntityRecord]) -> Optional[EntityRecord]:
  """Return the snapshot entity whose id equals `value` verbatim."""
  wanted = _clean_id(value)
  if not wanted:
    return None
  for entity in snapshot:
    if _clean_id(entity.id) == wanted:
      return entity
  return None


def resolve(mention: Any,
            snapshot: Sequence[EntityRecord],
            *,
            min_score: float = RESOLVER_MIN_SCORE,
            min_margin: float = RESOLVER_MIN_MARGIN) -> Resolution:
  """Match a natural-language mention against the snapshot.

  Only ids present in `snapshot` are ever returned. The best candidate wins
  when it clears `min_score` and its lead over the runner-up strictly
  exceeds `min_margin`; otherwise the tied candidates are reported.
  """
  text = normalize_text(mention if isinstance(mention, str) else "")
  if not text:
    return NotFound(mention="")

  verbatim = lookup_id(text, snapshot)
  if verbatim is not None:
    return ResolvedEntity(id=_clean_id(verbatim.id), text=verbatim.display_text(), score=1.0)

  scored: List[ScoredCandidate] = []
  seen: set[str] = set()
  for entity in snapshot:
    entity_id = _clean_id(entity.id)
    if not entity_id or entity_id in seen:
      continue
    seen.add(entity_id)
    display = entity.display_text()
    if normalize_text(display).lower() == text.lower():
      score = 1.0
    else:
      score = similarity(text, display)
    scored.append(ScoredCandidate(id=entity_id, text=display, score=score))

  if not scored:
    return NotFound(mention=text)
  ranked = sorted(scored, key=lambda item: item.score, reverse=True)
  best = ranked[0]
  if best.score < min_score:
    return NotFound(mention=text, best_score=best.score)
  if len(ranked) == 1 or best.score - ranked[1].score > min_margin:
    return ResolvedEntity(id=best.id, text=best.text, score=best.score)

  tied = [item for item in ranked
          if item.score >= min_score and best.score - item.score <= min_margin]
  return AmbiguityReport(mention=text, candidates=tied[:AMBIGUITY_CANDIDATE_LIMIT])
