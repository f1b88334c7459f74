"""Throwaway home directories for backend processes."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import uuid
from collections.abc import Callable
from pathlib import Path

logger = logging.getLogger(__name__)


class EphemeralHome:
    """A uniquely named directory removed on :meth:`cleanup`.

    Created under ``AUTONAV_<HARNESS>_HOME`` when set, else the system temp
    directory. If *setup* raises, the directory is removed and the error
    propagates.
    """

    def __init__(self, harness: str, setup: Callable[[Path], None] | None = None) -> None:
        base = os.environ.get(f"AUTONAV_{harness.upper()}_HOME") or tempfile.gettempdir()
        self.path = Path(base) / f"autonav-{harness}-{uuid.uuid4().hex[:8]}"
        self.path.mkdir(parents=True, exist_ok=True)
        if setup is not None:
            try:
                setup(self.path)
            except Exception:
                self.cleanup()
                raise

    def cleanup(self) -> None:
        try:
            shutil.rmtree(self.path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Failed to remove %s: %s", self.path, exc)

    def __enter__(self) -> EphemeralHome:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cleanup()
