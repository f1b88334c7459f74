"""Tools autonav attaches to navigator sessions."""

from autonav.tools.peers import (
    MAX_QUERY_DEPTH,
    ask_navigator,
    create_query_navigator_tool,
    create_related_navigator_tools,
)

__all__ = [
    "MAX_QUERY_DEPTH",
    "ask_navigator",
    "create_query_navigator_tool",
    "create_related_navigator_tools",
]
