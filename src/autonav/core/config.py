"""Configuration loading (TOML, env vars, .env)."""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Load .env from current directory (and parents), won't override existing env vars
load_dotenv()

CONFIG_FILE = "config.toml"


def config_dir(explicit: str | Path | None = None) -> Path:
    """Resolve the autonav config directory.

    Priority: explicit argument, ``AUTONAV_CONFIG_DIR``, ``~/.config/autonav``.
    """
    if explicit:
        return Path(explicit).expanduser()
    if env := os.environ.get("AUTONAV_CONFIG_DIR"):
        return Path(env).expanduser()
    return Path.home() / ".config" / "autonav"


def load_env_config() -> dict[str, Any]:
    """Load configuration from environment variables."""
    config: dict[str, Any] = {}

    if harness := os.environ.get("AUTONAV_HARNESS"):
        config["harness"] = harness
    if sandbox := os.environ.get("AUTONAV_SANDBOX"):
        config["sandbox"] = sandbox != "0"
    if os.environ.get("AUTONAV_DEBUG") == "1" or os.environ.get("DEBUG") == "1":
        config["debug"] = True
    config["query_depth"] = query_depth()

    return config


def query_depth() -> int:
    """Current cross-navigator query depth from ``AUTONAV_QUERY_DEPTH``."""
    raw = os.environ.get("AUTONAV_QUERY_DEPTH", "0")
    try:
        return max(0, int(raw))
    except ValueError:
        logger.warning("Ignoring invalid AUTONAV_QUERY_DEPTH=%r", raw)
        return 0


def load_toml_config(directory: str | Path | None = None) -> dict[str, Any]:
    """Load ``config.toml`` from the config directory if it exists."""
    path = config_dir(directory) / CONFIG_FILE
    if not path.exists():
        return {}
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        logger.warning("Could not read %s: %s", path, exc)
        return {}


def load_memento_defaults(directory: str | Path | None = None) -> dict[str, Any]:
    """Load the ``[memento]`` section (model, nav_model, max_turns, max_retries)."""
    section = load_toml_config(directory).get("memento", {})
    return section if isinstance(section, dict) else {}


def load_harness_default(directory: str | Path | None = None) -> str | None:
    """Harness type from the ``[harness]`` section, if any."""
    section = load_toml_config(directory).get("harness", {})
    if isinstance(section, dict) and isinstance(section.get("type"), str):
        return section["type"]
    return None


def toml_value(v: Any) -> str:
    """Format a Python value as a TOML literal."""
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, (int, float)):
        return str(v)
    if isinstance(v, str):
        escaped = v.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    if isinstance(v, (list, tuple)):
        items = ", ".join(toml_value(item) for item in v)
        return f"[{items}]"
    raise TypeError(f"Cannot render {type(v).__name__} as TOML")
