"""Turn raw provider output into the canonical Belief Graph / Clarification model.

Every provider's output goes through the same coercion pass. The only
per-provider difference is whether JSON has to be dug out of free text first
(``extract_json``) or is already schema-constrained (``parse_structured``).
"""
from __future__ import annotations

import json
from enum import Enum
from typing import Any, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict

from cocreator.errors import ParseError, ValidationError
from cocreator.models.graph import BeliefState, Clarification

_CLOSERS = {"{": "}", "[": "]"}


class NormalizationStrategy(str, Enum):
    STRUCTURED = "structured"  # payload is already well-formed JSON
    EXTRACT = "extract"  # JSON may be wrapped in prose or code fences


# --- Raw structural types: every field optional, nothing trusted ---


class _RawModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class RawAttribute(_RawModel):
    name: Any = None
    presence_in_prompt: Any = None
    value: Any = None


class RawEntity(_RawModel):
    name: Any = None
    presence_in_prompt: Any = None
    description: Any = None
    alternatives: Any = None
    attributes: Any = None


class RawRelationship(_RawModel):
    source: Any = None
    target: Any = None
    label: Any = None
    alternatives: Any = None


class RawBeliefGraph(_RawModel):
    entities: Any = None
    relationships: Any = None
    prompt: Any = None


# --- JSON extraction ---


def _match_span(text: str, start: int) -> Optional[int]:
    """Return the index of the bracket closing ``text[start]``, or None."""
    stack = [_CLOSERS[text[start]]]
    in_string = False
    escaped = False
    for index in range(start + 1, len(text)):
        ch = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in ("}", "]"):
            if ch != stack.pop():
                return None
            if not stack:
                return index
    return None


def find_json_spans(text: str) -> list[str]:
    """All balanced ``{...}``/``[...]`` spans, in order of their opening bracket."""
    spans: list[str] = []
    index = 0
    while index < len(text):
        if text[index] in _CLOSERS:
            end = _match_span(text, index)
            if end is not None:
                spans.append(text[index : end + 1])
                index = end + 1
                continue
        index += 1
    return spans


def extract_json(text: str) -> Any:
    """Parse JSON embedded in free text.

    The first balanced span that parses wins. Without any balanced span the
    whole text is parsed. Never returns partial data.
    """
    spans = find_json_spans(text or "")
    for span in spans:
        try:
            return json.loads(span)
        except json.JSONDecodeError:
            continue
    if spans:
        logger.error(f"Failed to parse JSON from model output: {text[:500]!r}")
        raise ParseError(text)
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError) as exc:
        logger.error(f"Failed to parse JSON from model output: {str(text)[:500]!r}")
        raise ParseError(text or "") from exc


def parse_structured(text: str) -> Any:
    try:
        return json.loads((text or "").strip())
    except json.JSONDecodeError as exc:
        raise ParseError(text or "", "Structured output was not valid JSON") from exc


def parse_payload(text: str, strategy: NormalizationStrategy) -> Any:
    if strategy is NormalizationStrategy.STRUCTURED:
        return parse_structured(text)
    return extract_json(text)


# --- Coercion ---


def to_candidates(value: Any) -> list[dict[str, Any]]:
    """Coerce a list of strings (or ``{name}`` objects) into candidate dicts."""
    if not isinstance(value, list):
        return []
    candidates: list[dict[str, Any]] = []
    for item in value:
        if isinstance(item, str):
            candidates.append({"name": item})
        elif isinstance(item, bool):
            candidates.append({"name": "true" if item else "false"})
        elif isinstance(item, (int, float)):
            candidates.append({"name": str(item)})
        elif isinstance(item, dict) and isinstance(item.get("name"), str):
            candidates.append({"name": item["name"]})
    return candidates


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False


def _required_str(value: Any, field_name: str, owner: str) -> str:
    if isinstance(value, str) and value.strip():
        return value
    raise ValidationError(f"{owner} is missing required field '{field_name}'")


def _dicts(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _normalize_attribute(raw: RawAttribute) -> dict[str, Any]:
    return {
        "name": _required_str(raw.name, "name", "attribute"),
        "presence_in_prompt": _to_bool(raw.presence_in_prompt),
        "value": to_candidates(raw.value),
    }


def _normalize_entity(raw: RawEntity) -> dict[str, Any]:
    return {
        "name": _required_str(raw.name, "name", "entity"),
        "presence_in_prompt": _to_bool(raw.presence_in_prompt),
        "description": raw.description if isinstance(raw.description, str) else "",
        "alternatives": to_candidates(raw.alternatives),
        "attributes": [
            _normalize_attribute(RawAttribute.model_validate(a)) for a in _dicts(raw.attributes)
        ],
    }


def _normalize_relationship(raw: RawRelationship) -> dict[str, Any]:
    return {
        "source": _required_str(raw.source, "source", "relationship"),
        "target": _required_str(raw.target, "target", "relationship"),
        "label": raw.label if isinstance(raw.label, str) else "",
        "alternatives": to_candidates(raw.alternatives),
    }


def normalize_belief_state(raw: Any, prompt: Optional[str] = None) -> BeliefState:
    """Coerce any decoded payload into a BeliefState. Idempotent."""
    if isinstance(raw, BeliefState):
        raw = raw.model_dump()
    graph = RawBeliefGraph.model_validate(raw) if isinstance(raw, dict) else RawBeliefGraph()
    entities = [_normalize_entity(RawEntity.model_validate(e)) for e in _dicts(graph.entities)]
    relationships = [
        _normalize_relationship(RawRelationship.model_validate(r)) for r in _dicts(graph.relationships)
    ]

    names = {e["name"] for e in entities}
    dangling = [r for r in relationships if r["source"] not in names or r["target"] not in names]
    if dangling:
        logger.debug(f"{len(dangling)} relationship(s) reference unknown entities")

    if prompt is None and isinstance(graph.prompt, str):
        prompt = graph.prompt
    return BeliefState.model_validate(
        {"entities": entities, "relationships": relationships, "prompt": prompt}
    )


def normalize_clarifications(raw: Any) -> list[Clarification]:
    if isinstance(raw, dict):
        raw = raw.get("clarifications", raw.get("questions"))
    if not isinstance(raw, list):
        raise ValidationError("Expected a list of clarifications")

    clarifications: list[Clarification] = []
    for item in _dicts(raw):
        question = item.get("question")
        if not isinstance(question, str) or not question.strip():
            continue
        options = [c["name"] for c in to_candidates(item.get("options"))]
        clarifications.append(Clarification(question=question, options=options))
    return clarifications
