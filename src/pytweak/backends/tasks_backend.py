"""Scheduled tasks through ``schtasks.exe``."""

from __future__ import annotations

import csv
import io
import logging
import subprocess
from typing import Callable

from ..elevation import ElevationGate
from ..errors import AccessDeniedError, StoreUnavailableError
from .base import TaskStore

logger = logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]


class SchtasksStore(TaskStore):
    name = "schtasks"

    def __init__(self, *, gate: ElevationGate | None = None, runner: Runner | None = None) -> None:
        super().__init__(gate=gate)
        self.runner = runner or subprocess.run

    def _run(self, argv: list[str]) -> subprocess.CompletedProcess:
        try:
            return self.runner(
                argv,
                capture_output=True,
                text=True,
                check=False,
                creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0),
            )
        except OSError as exc:
            raise StoreUnavailableError(f"cannot run schtasks: {exc}") from exc

    def status(self, task: str) -> str | None:
        """Return the task status column (``Ready``, ``Disabled`` ...) or ``None``."""
        proc = self._run(["schtasks", "/Query", "/TN", task, "/FO", "CSV", "/NH"])
        if proc.returncode != 0:
            return None
        for row in csv.reader(io.StringIO(proc.stdout or "")):
            if len(row) >= 3:
                return row[-1].strip()
        return None

    def exists(self, task: str) -> bool:
        return self.status(task) is not None

    def is_enabled(self, task: str) -> bool:
        status = self.status(task)
        return status is not None and status.lower() != "disabled"

    def set_enabled(self, task: str, enabled: bool, *, elevate: bool = False) -> bool:
        if not self.exists(task):
            logger.debug("task %s not found, skipped", task)
            return False
        argv = ["schtasks", "/Change", "/TN", task, "/ENABLE" if enabled else "/DISABLE"]
        if elevate:
            status = self.gate.run_elevated(argv)
            if status != 0:
                raise AccessDeniedError(f"elevated change of task {task} failed ({status})")
            return True
        proc = self._run(argv)
        if proc.returncode != 0:
            message = (proc.stderr or proc.stdout or "").strip()
            raise AccessDeniedError(f"cannot change task {task}: {message or proc.returncode}")
        return True

    def remove(self, task: str) -> bool:
        proc = self._run(["schtasks", "/Delete", "/TN", task, "/F"])
        return proc.returncode == 0
