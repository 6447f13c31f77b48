"""Local tools the native provider may call while building a Belief Graph."""
from __future__ import annotations

from typing import Any, Callable

from loguru import logger

# Declarations in the native provider's schema dialect (upper-case types).
GET_CREATIVE_CONTEXT = {
    "name": "get_creative_context",
    "description": "Get current creative trends, style keywords, and composition advice for a specific mode.",
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "mode": {
                "type": "STRING",
                "description": 'The creative mode: "image", "story", or "video".',
            },
            "topic": {
                "type": "STRING",
                "description": "The main topic of the prompt to narrow down the advice.",
            },
        },
        "required": ["mode", "topic"],
    },
}

SEARCH_TECHNICAL_SPECS = {
    "name": "search_technical_specs",
    "description": "Get deep technical specifications for specific art styles, lens types, or literary genres.",
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "query": {
                "type": "STRING",
                "description": 'The technical term or style name (e.g., "chiaroscuro", "cyberpunk lighting", "hard-boiled noir").',
            },
        },
        "required": ["query"],
    },
}

TOOL_DECLARATIONS: list[dict[str, Any]] = [GET_CREATIVE_CONTEXT, SEARCH_TECHNICAL_SPECS]


def get_creative_context(mode: str = "", topic: str = "") -> dict[str, Any]:
    if mode == "image":
        return {
            "trends": ["Cinematic lighting", "Hyper-detail", "Minimalist composition"],
            "advice": f"For {topic}, focus on textures and global illumination.",
        }
    if mode == "video":
        return {
            "pacing": "Slow pan",
            "dynamic_elements": ["Particle effects", "Light trails"],
        }
    return {
        "tone": "Evocative",
        "pacing": "Fast-start",
        "hook": f"Establish the presence of {topic} in the first paragraph.",
    }


def search_technical_specs(query: str = "") -> str:
    lowered = query.lower()
    if "chiaroscuro" in lowered:
        return "High contrast lighting, deep shadows, single light source, focus on volume."
    if "cyberpunk" in lowered:
        return "Neon palette (pink/cyan), high humidity/rain, retro-futurist tech, urban decay."
    return f"Technical parameters for {query} focus on balance and structural integrity."


TOOL_TABLE: dict[str, Callable[..., Any]] = {
    "get_creative_context": get_creative_context,
    "search_technical_specs": search_technical_specs,
}


def execute_tool(name: str, args: dict[str, Any] | None) -> Any:
    """Run one tool call. Failures are reported back to the model, not raised."""
    logger.info(f"Executing tool: {name} args={args}")
    handler = TOOL_TABLE.get(name)
    if handler is None:
        return {"status": "unknown_tool"}
    try:
        return handler(**(args or {}))
    except TypeError as exc:
        logger.warning(f"Tool {name} rejected arguments {args}: {exc}")
        return {"error": f"Invalid arguments for {name}: {exc}"}
