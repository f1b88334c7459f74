"""Command wrapping for the ``nono`` sandbox.

The availability check lives on a :class:`NonoSandbox` instance rather than in
module state; harnesses receive one and tests can pass a stub.
"""

from __future__ import annotations

import asyncio
import logging
import os
import subprocess
import sys
from pathlib import Path

from autonav.types.config import SandboxConfig

logger = logging.getLogger(__name__)

_LINUX_SYSTEM_PATHS = ("/bin", "/usr/bin", "/usr/lib", "/usr/lib64", "/lib", "/lib64")
_DARWIN_SYSTEM_PATHS = ("/bin", "/usr/bin", "/usr/lib", "/usr/libexec", "/opt/homebrew", "/usr/local")


def system_read_paths() -> list[str]:
    """Existing system directories a wrapped command needs to read."""
    candidates = _DARWIN_SYSTEM_PATHS if sys.platform == "darwin" else _LINUX_SYSTEM_PATHS
    return [p for p in candidates if Path(p).exists()]


class NonoSandbox:
    """Wraps backend commands with ``nono run`` when sandboxing applies."""

    def __init__(self, executable: str = "nono", *, check_timeout: float = 3.0) -> None:
        self._executable = executable
        self._check_timeout = check_timeout
        self._available: bool | None = None

    def is_available(self) -> bool:
        """Check once whether ``nono --version`` runs."""
        if self._available is None:
            try:
                subprocess.run(
                    [self._executable, "--version"],
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                    timeout=self._check_timeout,
                    check=True,
                )
                self._available = True
            except (OSError, subprocess.SubprocessError):
                self._available = False
            logger.debug("nono available: %s", self._available)
        return self._available

    async def check(self) -> bool:
        """:meth:`is_available` without blocking the event loop; shares its cache."""
        if self._available is None:
            try:
                proc = await asyncio.create_subprocess_exec(
                    self._executable,
                    "--version",
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.DEVNULL,
                )
            except OSError:
                self._available = False
            else:
                try:
                    self._available = await asyncio.wait_for(proc.wait(), timeout=self._check_timeout) == 0
                except TimeoutError:
                    proc.kill()
                    await proc.wait()
                    self._available = False
            logger.debug("nono available: %s", self._available)
        return self._available

    def is_enabled(self, config: SandboxConfig | None) -> bool:
        """Resolve whether to sandbox.

        An explicit ``enabled`` value wins; ``AUTONAV_SANDBOX=0`` disables
        auto-detection; otherwise sandbox whenever nono is installed.
        """
        if config is not None and config.enabled is not None:
            return config.enabled and self.is_available()
        if os.environ.get("AUTONAV_SANDBOX") == "0":
            return False
        return self.is_available()

    def build_args(self, config: SandboxConfig) -> list[str]:
        if not self.is_enabled(config):
            return []

        args = ["run", "--silent", "--allow-cwd"]
        for p in system_read_paths():
            args += ["--read", p]
        for p in config.read_paths:
            args += ["--read", p]
        for p in config.write_paths:
            args += ["--allow", p]
        if config.block_network:
            args.append("--net-block")
        args.append("--")
        return args

    def wrap_command(
        self,
        command: str,
        args: list[str],
        config: SandboxConfig | None,
    ) -> tuple[str, list[str]]:
        """Return ``(command, args)``, prefixed by nono when sandboxing applies."""
        if config is None:
            return command, list(args)
        sandbox_args = self.build_args(config)
        if not sandbox_args:
            return command, list(args)
        return self._executable, [*sandbox_args, command, *args]


class NoSandbox(NonoSandbox):
    """A sandbox that never wraps, for hosts without nono or for tests."""

    def is_available(self) -> bool:
        return False

    async def check(self) -> bool:
        return False
