"""Process sandboxing and scratch directories for backends."""

from autonav.sandbox.home import EphemeralHome
from autonav.sandbox.nono import NonoSandbox, NoSandbox

__all__ = ["EphemeralHome", "NoSandbox", "NonoSandbox"]
