"""Configuration types for harness sessions."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any


class PermissionMode(Enum):
    """Permission modes understood by the agent backends."""

    DEFAULT = "default"
    ACCEPT_EDITS = "acceptEdits"
    PLAN = "plan"
    BYPASS = "bypassPermissions"


@dataclass(frozen=True, slots=True)
class SandboxConfig:
    """Filesystem and network restrictions applied to a backend process."""

    enabled: bool | None = None  # None = auto-detect
    read_paths: tuple[str, ...] = ()
    write_paths: tuple[str, ...] = ()
    block_network: bool = False

    @property
    def is_read_only(self) -> bool:
        return bool(self.read_paths) and not self.write_paths


@dataclass(slots=True)
class AgentConfig:
    """Configuration for a single harness session.

    Adapters copy the config on ``run()``; afterwards it only changes through
    ``HarnessSession.update_config``.
    """

    model: str | None = None
    system_prompt: str | None = None
    cwd: str | None = None
    additional_directories: list[str] = field(default_factory=list)
    max_turns: int | None = None
    max_budget_usd: float | None = None
    allowed_tools: list[str] = field(default_factory=list)
    disallowed_tools: list[str] = field(default_factory=list)
    mcp_servers: dict[str, Any] = field(default_factory=dict)
    permission_mode: PermissionMode | None = None
    stderr: Callable[[str], None] | None = None
    sandbox: SandboxConfig | None = None

    def copy(self) -> AgentConfig:
        return replace(
            self,
            additional_directories=list(self.additional_directories),
            allowed_tools=list(self.allowed_tools),
            disallowed_tools=list(self.disallowed_tools),
            mcp_servers=dict(self.mcp_servers),
        )

    def update(self, **changes: Any) -> None:
        """Apply a partial update in place. Unknown keys raise ``TypeError``."""
        known = {f.name for f in fields(self)}
        for key, value in changes.items():
            if key not in known:
                raise TypeError(f"Unknown AgentConfig field: {key}")
            setattr(self, key, value)
