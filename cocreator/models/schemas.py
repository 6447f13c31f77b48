"""Response-shape constraints sent to providers that support structured output."""
from __future__ import annotations

from typing import Any

CANDIDATE_LIST: dict[str, Any] = {"type": "ARRAY", "items": {"type": "STRING"}}

ATTRIBUTE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "name": {"type": "STRING"},
        "presence_in_prompt": {"type": "BOOLEAN"},
        "value": CANDIDATE_LIST,
    },
    "required": ["name", "presence_in_prompt", "value"],
}

ENTITY_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "name": {"type": "STRING"},
        "presence_in_prompt": {"type": "BOOLEAN"},
        "description": {"type": "STRING"},
        "alternatives": {**CANDIDATE_LIST, "nullable": True},
        "attributes": {"type": "ARRAY", "items": ATTRIBUTE_SCHEMA},
    },
    "required": ["name", "presence_in_prompt", "description", "attributes"],
}

RELATIONSHIP_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "source": {"type": "STRING"},
        "target": {"type": "STRING"},
        "label": {"type": "STRING"},
        "alternatives": {**CANDIDATE_LIST, "nullable": True},
    },
    "required": ["source", "target", "label"],
}

BELIEF_GRAPH_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "entities": {"type": "ARRAY", "items": ENTITY_SCHEMA},
        "relationships": {"type": "ARRAY", "items": RELATIONSHIP_SCHEMA},
    },
    "required": ["entities", "relationships"],
}

CLARIFICATIONS_SCHEMA: dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "question": {"type": "STRING"},
            "options": CANDIDATE_LIST,
        },
        "required": ["question", "options"],
    },
}
