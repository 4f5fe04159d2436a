"""Prompt catalog lookup and rendering.

Prompts live in ``prompts/prompts.json`` under dotted keys. Long prompts are
stored as arrays of lines and joined with newlines before rendering.
"""
from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any


PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"
_cached: tuple[int, dict[str, Any]] | None = None


def _catalog() -> dict[str, Any]:
    global _cached
    mtime_ns = PROMPTS_PATH.stat().st_mtime_ns
    if _cached is None or _cached[0] != mtime_ns:
        payload = json.loads(PROMPTS_PATH.read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError(f"{PROMPTS_PATH.name} must hold a JSON object")
        _cached = (mtime_ns, payload)
    return _cached[1]


def get_prompt(key: str) -> str:
    """Raw template text for a dotted key such as ``extractor.user_prompt``."""
    node: Any = _catalog()
    for part in key.split("."):
        try:
            node = node[part]
        except (KeyError, TypeError):
            raise KeyError(f"Prompt key not found: {key}") from None
    if isinstance(node, list) and all(isinstance(line, str) for line in node):
        node = "\n".join(node)
    if not isinstance(node, str):
        raise TypeError(f"Prompt key must map to text: {key}")
    return node


def render_prompt(key: str, **values: Any) -> str:
    template = Template(get_prompt(key))
    try:
        return template.substitute(values)
    except KeyError as exc:
        raise KeyError(f"Missing template value '{exc.args[0]}' for prompt '{key}'") from exc


def clear_prompt_cache() -> None:
    global _cached
    _cached = None
