"""Agent runtime adapters.

Public surface
--------------
- :class:`Harness` / :class:`HarnessSession`: the session contract
- :class:`ToolServer`: tool group attached via ``mcp_servers``
- :func:`collect_text`: final answer text of a turn
- :func:`collect_result`: whole turn as a :class:`CollectedResult`
- :func:`resolve_and_create_harness`: pick and build an adapter

The adapters themselves (``claude_code``, ``chibi``, ``opencode``) are
imported on demand by the factory.
"""

from __future__ import annotations

from autonav.harnesses.base import (
    CollectedResult,
    Harness,
    HarnessError,
    HarnessSession,
    SessionClosedError,
    ToolServer,
    collect_result,
    collect_text,
)
from autonav.harnesses.factory import (
    HARNESS_TYPES,
    create_harness,
    resolve_and_create_harness,
    resolve_harness_type,
)

__all__ = [
    "CollectedResult",
    "HARNESS_TYPES",
    "Harness",
    "HarnessError",
    "HarnessSession",
    "SessionClosedError",
    "ToolServer",
    "collect_result",
    "collect_text",
    "create_harness",
    "resolve_and_create_harness",
    "resolve_harness_type",
]
