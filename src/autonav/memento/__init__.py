"""Memento loop: navigator plans, implementer implements, git remembers."""

from autonav.memento.git import GitClient, GitError, parse_shortstat
from autonav.memento.loop import MementoError, MementoLoop, MementoObserver, run_memento_loop
from autonav.memento.protocol import SUBMIT_PLAN_TOOL, PlanCapture
from autonav.memento.rate_limit import (
    RateLimitInfo,
    format_duration,
    is_transient_connection_error,
    parse_rate_limit_error,
    wait_with_countdown,
)

__all__ = [
    "GitClient",
    "GitError",
    "MementoError",
    "MementoLoop",
    "MementoObserver",
    "PlanCapture",
    "RateLimitInfo",
    "SUBMIT_PLAN_TOOL",
    "format_duration",
    "is_transient_connection_error",
    "parse_rate_limit_error",
    "run_memento_loop",
    "wait_with_countdown",
]
