"""Harness selection.

Resolution priority:

1. Explicit type (``--harness`` flag or direct call)
2. ``AUTONAV_HARNESS`` environment variable
3. Navigator ``config.json``: ``harness.type``
4. Default: ``claude-code``
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any

from autonav.harnesses.base import Harness
from autonav.sandbox.nono import NonoSandbox

HARNESS_TYPES = ("claude-code", "chibi", "opencode")
DEFAULT_HARNESS = "claude-code"


def validate_harness_type(value: str) -> str:
    if value not in HARNESS_TYPES:
        raise ValueError(f'Invalid harness type: "{value}". Valid types: {", ".join(HARNESS_TYPES)}')
    return value


def resolve_harness_type(
    explicit: str | None = None,
    navigator_config: Mapping[str, Any] | None = None,
) -> str:
    """Pick the harness type from the first source that names one."""
    if explicit:
        return validate_harness_type(explicit)
    if env_type := os.environ.get("AUTONAV_HARNESS"):
        return validate_harness_type(env_type)
    harness = (navigator_config or {}).get("harness")
    if isinstance(harness, Mapping) and harness.get("type"):
        return validate_harness_type(str(harness["type"]))
    return DEFAULT_HARNESS


def create_harness(harness_type: str, *, sandbox: NonoSandbox | None = None) -> Harness:
    """Instantiate a harness. Backend modules are imported on demand."""
    if harness_type == "claude-code":
        from autonav.harnesses.claude_code import ClaudeCodeHarness

        return ClaudeCodeHarness()
    if harness_type == "chibi":
        from autonav.harnesses.chibi import ChibiHarness

        return ChibiHarness(sandbox=sandbox)
    if harness_type == "opencode":
        from autonav.harnesses.opencode import OpenCodeHarness

        return OpenCodeHarness()
    raise ValueError(f"Unknown harness type: {harness_type}")


def resolve_and_create_harness(
    explicit: str | None = None,
    navigator_config: Mapping[str, Any] | None = None,
    *,
    sandbox: NonoSandbox | None = None,
) -> Harness:
    return create_harness(resolve_harness_type(explicit, navigator_config), sandbox=sandbox)
