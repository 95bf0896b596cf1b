from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any


PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"


class PromptCatalog:
    """Prompt templates keyed by dotted path, reloaded when the file changes.

    Entries are either strings or lists of lines; lists are joined with newlines
    so long prompts stay readable in the JSON file.
    """

    def __init__(self, path: Path = PROMPTS_PATH):
        self.path = path
        self._entries: dict[str, Any] | None = None
        self._mtime_ns: int | None = None

    def _entries_snapshot(self) -> dict[str, Any]:
        mtime_ns = self.path.stat().st_mtime_ns
        if self._entries is None or self._mtime_ns != mtime_ns:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(payload, dict):
                raise ValueError(f"Prompt catalog {self.path} must be a JSON object.")
            self._entries = payload
            self._mtime_ns = mtime_ns
        return self._entries

    def template(self, key: str) -> Template:
        node: Any = self._entries_snapshot()
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                raise KeyError(f"Prompt key not found: {key}")
            node = node[part]
        if isinstance(node, list) and all(isinstance(line, str) for line in node):
            node = "\n".join(node)
        if not isinstance(node, str):
            raise TypeError(f"Prompt key must map to a string or list of lines: {key}")
        return Template(node)

    def render(self, key: str, **values: Any) -> str:
        try:
            return self.template(key).substitute(**values)
        except KeyError as exc:
            if str(exc.args[0]).startswith("Prompt key not found"):
                raise
            raise KeyError(f"Missing template value '{exc.args[0]}' for prompt '{key}'") from exc


_default_catalog = PromptCatalog()


def render_prompt(key: str, **values: Any) -> str:
    return _default_catalog.render(key, **values)
