"""autonav: run navigator agents against interchangeable runtimes.

Usage:
    from autonav import AgentConfig, collect_text, resolve_and_create_harness

    harness = resolve_and_create_harness()
    session = harness.run(AgentConfig(model="claude-haiku-4-5"), "Summarize README.md")
    try:
        print(await collect_text(session))
    finally:
        await session.close()
        await harness.close()
"""

from autonav.harnesses.base import (
    Harness,
    HarnessError,
    HarnessSession,
    SessionClosedError,
    ToolServer,
    collect_result,
    collect_text,
)
from autonav.harnesses.factory import create_harness, resolve_and_create_harness, resolve_harness_type
from autonav.memento.loop import MementoLoop, run_memento_loop
from autonav.types.config import AgentConfig, PermissionMode, SandboxConfig
from autonav.types.events import (
    AgentEvent,
    ErrorEvent,
    ResultEvent,
    TextEvent,
    ToolResultEvent,
    ToolUseEvent,
    Usage,
)
from autonav.types.memento import MementoOptions, MementoResult
from autonav.types.plan import ImplementationPlan, ImplementationStep
from autonav.types.tools import ToolDefinition, ToolParam, ToolResult, define_tool

__version__ = "0.3.0"

__all__ = [
    # Harnesses
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
    # Events
    "AgentEvent",
    "ErrorEvent",
    "ResultEvent",
    "TextEvent",
    "ToolResultEvent",
    "ToolUseEvent",
    "Usage",
    # Configuration
    "AgentConfig",
    "PermissionMode",
    "SandboxConfig",
    # Tools
    "ToolDefinition",
    "ToolParam",
    "ToolResult",
    "define_tool",
    # Memento
    "ImplementationPlan",
    "ImplementationStep",
    "MementoLoop",
    "MementoOptions",
    "MementoResult",
    "run_memento_loop",
]
