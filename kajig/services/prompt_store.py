"""Prompt catalog lookup.

Prompts live in a JSON tree addressed by dotted keys (``evolution.system_prompt``)
and are rendered with ``string.Template``. The bundled catalog can be replaced
by pointing ``KAJIG_PROMPTS_PATH`` at another file.
"""
from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any

from kajig.config import settings

BUNDLED_PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"

# path -> (mtime_ns, catalog)
_catalogs: dict[Path, tuple[int, dict[str, Any]]] = {}


def catalog_path() -> Path:
    return Path(settings.prompts_path) if settings.prompts_path else BUNDLED_PROMPTS_PATH


def load_catalog(path: Path | None = None) -> dict[str, Any]:
    """Read a catalog, reusing the parsed copy until the file changes on disk."""
    path = path or catalog_path()
    mtime_ns = path.stat().st_mtime_ns
    cached = _catalogs.get(path)
    if cached is not None and cached[0] == mtime_ns:
        return cached[1]

    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"Prompt catalog must be a JSON object: {path}")
    _catalogs[path] = (mtime_ns, payload)
    return payload


def get_template(key: str, path: Path | None = None) -> Template:
    node: Any = load_catalog(path)
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            raise KeyError(f"Prompt key not found: {key}")
        node = node[part]
    if not isinstance(node, str):
        raise TypeError(f"Prompt key must map to a string: {key}")
    return Template(node)


def render_prompt(key: str, **values: Any) -> str:
    template = get_template(key)
    try:
        return template.substitute(**values)
    except KeyError as exc:
        raise KeyError(f"Missing template value '{exc.args[0]}' for prompt '{key}'") from exc
