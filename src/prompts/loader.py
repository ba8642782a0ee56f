from __future__ import annotations

import json
from pathlib import Path
from typing import Any


def _prompt_path(filename: str) -> Path:
    prompt_dir = Path(__file__).resolve().parent
    path = (prompt_dir / filename).resolve()
    if path.parent != prompt_dir or not path.exists():
        raise RuntimeError(f"Prompt file not found: {filename}")
    return path


def load_prompt(filename: str) -> str:
    """Load a prompt text file shipped with the codebase."""

    return _prompt_path(filename).read_text(encoding="utf-8").strip() + "\n"


def load_tool_manifest(filename: str) -> list[dict[str, Any]]:
    """Load a tool manifest and return its tool definitions."""

    path = _prompt_path(filename)
    try:
        manifest = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"Tool manifest is not valid JSON: {filename}") from exc

    tools = manifest.get("tools") if isinstance(manifest, dict) else None
    if not isinstance(tools, list):
        raise RuntimeError(f"Tool manifest has no tools list: {filename}")
    return tools
