"""Name → directory lookup for navigators.

Stored as ``navigators.json`` in the autonav config directory. A
``AUTONAV_NAV_PATH_<NAME>`` environment variable overrides the file for a
single name.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from autonav.core.config import config_dir

logger = logging.getLogger(__name__)

REGISTRY_FILE = "navigators.json"


def env_var_for(name: str) -> str:
    """Environment variable that overrides the path of navigator *name*."""
    return f"AUTONAV_NAV_PATH_{name.upper().replace('-', '_')}"


class NavigatorRegistry:
    """Maps navigator names to filesystem paths."""

    def __init__(self, directory: str | Path | None = None) -> None:
        self._dir = config_dir(directory)

    @property
    def path(self) -> Path:
        return self._dir / REGISTRY_FILE

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable registry %s: %s", self.path, exc)
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)} if isinstance(data, dict) else {}

    def _write(self, registry: dict[str, str]) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(registry, indent=2) + "\n")

    def register(self, name: str, nav_path: str | Path) -> Path:
        resolved = Path(nav_path).resolve()
        registry = self._read()
        registry[name] = str(resolved)
        self._write(registry)
        return resolved

    def unregister(self, name: str) -> bool:
        registry = self._read()
        if registry.pop(name, None) is None:
            return False
        self._write(registry)
        return True

    def resolve(self, name: str) -> Path | None:
        """Environment override first, then the registry file."""
        if env_path := os.environ.get(env_var_for(name)):
            return Path(env_path).resolve()
        if registered := self._read().get(name):
            return Path(registered)
        return None

    def list(self) -> dict[str, str]:
        return dict(sorted(self._read().items()))
