"""Loading a navigator directory (``config.json`` + ``CLAUDE.md``).

Only what session setup needs is read here; knowledge-base validation
belongs to the navigator tooling itself.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

SYSTEM_PROMPT_FILE = "CLAUDE.md"
CONFIG_FILE = "config.json"


class NavigatorLoadError(Exception):
    """The navigator directory is missing or malformed."""


@dataclass(frozen=True, slots=True)
class RelatedNavigator:
    """A peer this navigator may ask questions."""

    name: str
    description: str | None = None


@dataclass(frozen=True, slots=True)
class LoadedNavigator:
    """A navigator ready to back a session."""

    path: Path
    name: str
    system_prompt: str
    description: str | None = None
    config: dict[str, Any] = field(default_factory=dict)
    related: tuple[RelatedNavigator, ...] = ()

    @property
    def harness_type(self) -> str | None:
        harness = self.config.get("harness")
        if isinstance(harness, dict) and isinstance(harness.get("type"), str):
            return harness["type"]
        return None


def read_navigator_config(nav_path: Path) -> dict[str, Any]:
    config_path = nav_path / CONFIG_FILE
    if not config_path.exists():
        return {}
    try:
        data = json.loads(config_path.read_text())
    except json.JSONDecodeError as exc:
        raise NavigatorLoadError(f"Invalid {CONFIG_FILE} in {nav_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise NavigatorLoadError(f"{CONFIG_FILE} in {nav_path} must be an object")
    return data


def load_navigator(nav_path: str | Path, cwd: str | Path | None = None) -> LoadedNavigator:
    """Load the navigator at *nav_path* (relative paths resolve against *cwd*)."""
    path = Path(nav_path).expanduser()
    if not path.is_absolute():
        path = Path(cwd or Path.cwd()) / path
    path = path.resolve()

    if not path.exists():
        raise NavigatorLoadError(f"Navigator directory not found: {path}")
    if not path.is_dir():
        raise NavigatorLoadError(f"Navigator path is not a directory: {path}")

    prompt_path = path / SYSTEM_PROMPT_FILE
    if not prompt_path.exists():
        raise NavigatorLoadError(f"Navigator {SYSTEM_PROMPT_FILE} not found at: {prompt_path}")

    config = read_navigator_config(path)
    related = tuple(
        RelatedNavigator(name=r["name"], description=r.get("description"))
        for r in config.get("relatedNavigators", [])
        if isinstance(r, dict) and isinstance(r.get("name"), str)
    )
    return LoadedNavigator(
        path=path,
        name=config.get("name") or path.name,
        description=config.get("description"),
        system_prompt=prompt_path.read_text(),
        config=config,
        related=related,
    )
