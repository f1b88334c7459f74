"""Basic text output for non-interactive mode."""

from __future__ import annotations

import sys

from autonav.types.events import (
    AgentEvent,
    ErrorEvent,
    ResultEvent,
    TextEvent,
    ToolResultEvent,
    ToolUseEvent,
)


def tool_detail(name: str, args: dict) -> str:
    """Short description of a tool call's most telling argument."""
    if name == "Bash" and "command" in args:
        cmd = str(args["command"])
        return f"$ {cmd}" if len(cmd) <= 120 else f"$ {cmd[:117]}..."
    if name in ("Read", "Write", "Edit") and "file_path" in args:
        return str(args["file_path"])
    if name in ("Glob", "Grep") and "pattern" in args:
        return str(args["pattern"])
    if "question" in args:
        return str(args["question"])[:80]
    return ""


def print_event(event: AgentEvent) -> None:
    """Print an event to stdout/stderr in basic text mode."""
    match event:
        case TextEvent(text=text):
            print(text)
        case ToolUseEvent(name=name, input=args):
            line = f"[Tool: {name}]"
            if detail := tool_detail(name, args):
                line += f" {detail}"
            print(line, file=sys.stderr)
        case ToolResultEvent(content=content, is_error=True):
            print(f"[Error] {content[:200]}", file=sys.stderr)
        case ErrorEvent(message=message):
            print(f"[Error] {message}", file=sys.stderr)
        case ResultEvent(success=success, usage=usage, cost_usd=cost):
            parts = ["Done" if success else "Failed"]
            if usage and usage.total:
                parts.append(f"Tokens: {usage.total:,}")
            if cost:
                parts.append(f"Cost: ${cost:.4f}")
            print(" | ".join(parts), file=sys.stderr)
