"""Tools that let one navigator ask another a question.

Each query runs a short sub-session against the target navigator and
returns its answer. The caller's depth is passed explicitly to every tool
factory; a sub-session gets tools built at ``depth + 1``, and anything at
:data:`MAX_QUERY_DEPTH` is refused without starting a backend.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from autonav.core.navigator import LoadedNavigator, NavigatorLoadError, RelatedNavigator, load_navigator
from autonav.core.registry import NavigatorRegistry, env_var_for
from autonav.harnesses.base import Harness, HarnessError, collect_text
from autonav.types.config import AgentConfig
from autonav.types.tools import ToolDefinition, ToolParam, ToolResult, define_tool

logger = logging.getLogger(__name__)

MAX_QUERY_DEPTH = 3
QUERY_MODEL = "claude-haiku-4-5"
QUERY_MAX_TURNS = 10
RELATED_NAVS_SERVER = "autonav-related-navs"
CROSS_NAV_SERVER = "autonav-cross-nav"

QUERY_NAVIGATOR_DESCRIPTION = """\
Ask another navigator a question. Use this when you need information from a different navigator's knowledge base.

The target navigator will receive your question, search its knowledge base, and return an answer. This is useful for cross-domain questions that fall outside your own expertise.

Specify the navigator by its directory path (relative or absolute)."""


def _error(message: str) -> ToolResult:
    return ToolResult.json({"success": False, "error": message}, is_error=True)


def _depth_exceeded() -> ToolResult:
    return _error(
        f"Query depth limit reached (max {MAX_QUERY_DEPTH}). Cannot query another navigator from this depth."
    )


def tool_name_for(navigator_name: str) -> str:
    return f"ask_{navigator_name.replace('-', '_')}"


async def ask_navigator(
    harness: Harness,
    target: LoadedNavigator,
    question: str,
    depth: int,
    registry: NavigatorRegistry | None = None,
) -> str:
    """Run one bounded sub-session against *target* and return its answer.

    The sub-session can in turn ask its own related navigators, one level
    deeper.
    """
    config = AgentConfig(
        model=QUERY_MODEL,
        max_turns=QUERY_MAX_TURNS,
        system_prompt=target.system_prompt,
        cwd=str(target.path),
    )
    nested = create_related_navigator_tools(harness, target.related, depth + 1, registry)
    if nested:
        config.mcp_servers[RELATED_NAVS_SERVER] = harness.create_tool_server(RELATED_NAVS_SERVER, nested)

    logger.debug("Querying navigator %s at depth %d", target.name, depth + 1)
    session = harness.run(config, question)
    try:
        return await collect_text(session)
    finally:
        await session.close()


def _related_tool(
    harness: Harness,
    nav: RelatedNavigator,
    depth: int,
    registry: NavigatorRegistry,
) -> ToolDefinition:
    if nav.description:
        description = (
            f"Ask {nav.name} a question. {nav.name} is: {nav.description}. "
            f"Use this when you need information from {nav.name}'s knowledge base."
        )
    else:
        description = f"Ask {nav.name} a question. Use this when you need information from {nav.name}'s knowledge base."

    async def handler(args: dict[str, Any]) -> ToolResult:
        if depth >= MAX_QUERY_DEPTH:
            return _depth_exceeded()

        nav_path = registry.resolve(nav.name)
        if nav_path is None:
            return _error(
                f'Navigator "{nav.name}" not found. Register it with `autonav init` '
                f"or set {env_var_for(nav.name)} env var."
            )

        try:
            target = load_navigator(nav_path)
            response = await ask_navigator(harness, target, args["question"], depth, registry)
        except (NavigatorLoadError, HarnessError, OSError, KeyError) as exc:
            return _error(f"Failed to query {nav.name}: {exc}")
        return ToolResult.json({"success": True, "navigator": target.name, "response": response})

    return define_tool(
        tool_name_for(nav.name),
        description,
        [
            ToolParam(
                name="question",
                type="string",
                description=f"The question to ask {nav.name}",
                constraints={"minLength": 5},
            )
        ],
        handler,
    )


def create_related_navigator_tools(
    harness: Harness,
    related: Sequence[RelatedNavigator],
    depth: int = 0,
    registry: NavigatorRegistry | None = None,
) -> list[ToolDefinition]:
    """One ``ask_<name>`` tool per related navigator (empty if there are none)."""
    registry = registry or NavigatorRegistry()
    return [_related_tool(harness, nav, depth, registry) for nav in related]


def create_query_navigator_tool(
    harness: Harness,
    depth: int = 0,
    *,
    cwd: str | Path | None = None,
    registry: NavigatorRegistry | None = None,
) -> ToolDefinition:
    """Generic ``query_navigator`` tool taking the target's directory path."""

    async def handler(args: dict[str, Any]) -> ToolResult:
        if depth >= MAX_QUERY_DEPTH:
            return _depth_exceeded()
        try:
            target = load_navigator(args["navigator"], cwd)
            response = await ask_navigator(harness, target, args["question"], depth, registry)
        except (NavigatorLoadError, HarnessError, OSError, KeyError) as exc:
            return _error(f"Failed to query navigator: {exc}")
        return ToolResult.json({"success": True, "navigator": target.name, "response": response})

    return define_tool(
        "query_navigator",
        QUERY_NAVIGATOR_DESCRIPTION,
        [
            ToolParam(
                name="navigator",
                type="string",
                description="Path to the target navigator directory (relative to cwd or absolute)",
            ),
            ToolParam(
                name="question",
                type="string",
                description="The question to ask the target navigator",
                constraints={"minLength": 5},
            ),
        ],
        handler,
    )
