from __future__ import annotations

from typing import Any, Optional

import httpx
from loguru import logger

from cocreator.config import settings
from cocreator.models.graph import ModelOption, ProviderId

RECOMMENDED_MARKERS = ("claude-3.5", "gpt-4o")


def _ollama_root(base_url: str) -> str:
    root = base_url.rstrip("/")
    if root.endswith("/v1"):
        root = root[: -len("/v1")]
    return root


def _parse_openrouter_models(payload: dict[str, Any]) -> list[ModelOption]:
    return [
        ModelOption(
            id=m["id"],
            name=m.get("name") or m["id"],
            description=m.get("description") or "No description provided.",
            supports_tools=True,
            is_recommended=any(marker in m["id"] for marker in RECOMMENDED_MARKERS),
        )
        for m in payload.get("data", [])
        if isinstance(m, dict) and m.get("id")
    ]


def _parse_groq_models(payload: dict[str, Any]) -> list[ModelOption]:
    return [
        ModelOption(
            id=m["id"],
            name=m["id"],
            description="High-speed inference powered by LPU.",
            supports_tools=True,
        )
        for m in payload.get("data", [])
        if isinstance(m, dict) and m.get("id")
    ]


def _parse_ollama_models(payload: dict[str, Any]) -> list[ModelOption]:
    options: list[ModelOption] = []
    for m in payload.get("models", []):
        if not isinstance(m, dict) or not m.get("name"):
            continue
        size = (m.get("details") or {}).get("parameter_size") or "unknown size"
        options.append(
            ModelOption(
                id=m["name"],
                name=m["name"],
                description=f"Local model: {size}",
                supports_tools=False,
            )
        )
    return options


async def fetch_remote_models(
    provider: ProviderId,
    api_key: Optional[str] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> list[ModelOption]:
    """List the models a provider currently serves.

    Providers without a discovery endpoint, and any failure, yield an empty list.
    """
    try:
        async with httpx.AsyncClient(timeout=30.0, transport=transport) as client:
            if provider is ProviderId.OPENROUTER:
                response = await client.get(f"{settings.openrouter_base_url.rstrip('/')}/models")
                response.raise_for_status()
                return _parse_openrouter_models(response.json())

            if provider is ProviderId.GROQ:
                if not api_key:
                    return []
                response = await client.get(
                    f"{settings.groq_base_url.rstrip('/')}/models",
                    headers={"Authorization": f"Bearer {api_key}"},
                )
                response.raise_for_status()
                return _parse_groq_models(response.json())

            if provider is ProviderId.OLLAMA:
                response = await client.get(f"{_ollama_root(settings.ollama_base_url)}/api/tags")
                response.raise_for_status()
                return _parse_ollama_models(response.json())
    except (httpx.HTTPError, ValueError, KeyError) as exc:
        logger.error(f"Error fetching models for {provider.value}: {exc}")
        return []

    return []
