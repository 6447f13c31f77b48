"""Prompt catalog: every instruction sent to a provider lives in prompts.json.

Keys are dotted paths (``refine.native``). Mode-specific variants sit one level
below a shared key and are picked with ``render_mode_prompt``.
"""
from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any

from cocreator.models.graph import Mode

DEFAULT_PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"

_catalog_path: Path = DEFAULT_PROMPTS_PATH
_catalog: dict[str, Any] | None = None
_catalog_mtime_ns: int | None = None


def use_catalog(path: Path | str | None) -> None:
    """Point the store at another catalog file (None restores the bundled one)."""
    global _catalog_path
    _catalog_path = Path(path) if path else DEFAULT_PROMPTS_PATH
    clear_prompt_cache()


def _catalog_root() -> dict[str, Any]:
    global _catalog, _catalog_mtime_ns
    mtime_ns = _catalog_path.stat().st_mtime_ns
    if _catalog is None or _catalog_mtime_ns != mtime_ns:
        payload = json.loads(_catalog_path.read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError(f"Prompt catalog must be a JSON object: {_catalog_path}")
        _catalog = payload
        _catalog_mtime_ns = mtime_ns
    return _catalog


def lookup(key: str) -> str:
    node: Any = _catalog_root()
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            raise KeyError(f"Prompt key not found: {key}")
        node = node[part]
    if not isinstance(node, str):
        raise TypeError(f"Prompt key must map to a string: {key}")
    return node


def render_prompt(key: str, **values: Any) -> str:
    try:
        return Template(lookup(key)).substitute(**values)
    except KeyError as exc:
        if str(exc.args[0]).startswith("Prompt key"):
            raise
        raise KeyError(f"Missing template value '{exc.args[0]}' for prompt '{key}'") from exc


def render_mode_prompt(key: str, mode: Mode, **values: Any) -> str:
    return render_prompt(f"{key}.{mode.value}", **values)


def clear_prompt_cache() -> None:
    global _catalog, _catalog_mtime_ns
    _catalog = None
    _catalog_mtime_ns = None
