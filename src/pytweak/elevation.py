"""Elevated access through a privileged helper process.

The engine never escalates privileges by itself.  It asks an
:class:`Elevator` to either grant write access on one container or to run
a command elevated.  Every request goes through a single
:class:`ElevationGate`, because the helper process handle is shared and
cannot serve two callers at once.
"""

from __future__ import annotations

import logging
import subprocess
import threading
from collections.abc import Sequence
from typing import Callable, Protocol

from .errors import AccessDeniedError
from .locations import Location, Root, normalize_path, path_key

logger = logging.getLogger(__name__)

# Builtin Administrators group, independent of the display language.
ADMINISTRATORS_SID = "S-1-5-32-544"


class Elevator(Protocol):
    def grant_access(self, root: Root, path: str) -> None:
        """Give the current user write access on one container."""

    def run_elevated(self, argv: Sequence[str]) -> int:
        """Run *argv* with elevated rights and return its exit status."""


class DeniedElevator:
    """Elevator used when no helper is configured: refuses everything."""

    def grant_access(self, root: Root, path: str) -> None:
        raise AccessDeniedError(
            "elevation requested but no helper is configured",
            location=Location(root, path),
        )

    def run_elevated(self, argv: Sequence[str]) -> int:
        raise AccessDeniedError(
            f"cannot run {argv[0] if argv else 'command'} elevated: no helper is configured"
        )


def grant_script(root: Root, path: str) -> str:
    """Return the PowerShell snippet that grants Administrators full control."""
    target = f"Registry::{root.long_name}\\{normalize_path(path)}"
    target = target.replace("'", "''")
    return (
        f"$p = '{target}'; "
        "if (-not (Test-Path -LiteralPath $p)) { New-Item -Path $p -Force | Out-Null }; "
        "$acl = Get-Acl -LiteralPath $p; "
        f"$sid = New-Object System.Security.Principal.SecurityIdentifier('{ADMINISTRATORS_SID}'); "
        "$rule = New-Object System.Security.AccessControl.RegistryAccessRule("
        "$sid, 'FullControl', 'ContainerInherit', 'None', 'Allow'); "
        "$acl.SetAccessRule($rule); "
        "Set-Acl -LiteralPath $p -AclObject $acl"
    )


class HelperElevator:
    """Run commands through a privileged helper command line.

    ``helper`` is the argv prefix of the helper, for example a launcher that
    starts its arguments as TrustedInstaller and waits for them.
    """

    def __init__(
        self,
        helper: Sequence[str],
        *,
        runner: Callable[..., subprocess.CompletedProcess] | None = None,
    ) -> None:
        if not helper:
            raise ValueError("helper command line must not be empty")
        self.helper = list(helper)
        self.runner = runner or subprocess.run

    def run_elevated(self, argv: Sequence[str]) -> int:
        cmd = [*self.helper, *argv]
        logger.debug("running elevated: %s", cmd)
        try:
            proc = self.runner(
                cmd,
                capture_output=True,
                text=True,
                check=False,
                creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0),
            )
        except OSError as exc:
            raise AccessDeniedError(f"elevation helper {self.helper[0]!r} failed to start: {exc}") from exc
        return proc.returncode

    def grant_access(self, root: Root, path: str) -> None:
        status = self.run_elevated(
            ["powershell", "-NoProfile", "-NonInteractive", "-Command", grant_script(root, path)]
        )
        if status != 0:
            raise AccessDeniedError(
                f"helper could not grant access (exit status {status})",
                location=Location(root, path),
            )


class ElevationGate:
    """Serialize all elevated work through one lock.

    Grants are remembered per container for the lifetime of the gate and are
    never revoked.
    """

    def __init__(self, elevator: Elevator | None = None) -> None:
        self.elevator: Elevator = elevator if elevator is not None else DeniedElevator()
        self._lock = threading.Lock()
        self._granted: set[tuple[Root, tuple[str, ...]]] = set()

    def is_granted(self, root: Root, path: str) -> bool:
        key = path_key(path)
        with self._lock:
            return any(r is root and key[: len(g)] == g for r, g in self._granted)

    def grant_access(self, root: Root, path: str) -> None:
        key = (root, path_key(path))
        with self._lock:
            if key in self._granted:
                return
            self.elevator.grant_access(root, normalize_path(path))
            self._granted.add(key)
        logger.info("elevated access granted on %s\\%s", root.value, normalize_path(path))

    def run_elevated(self, argv: Sequence[str]) -> int:
        with self._lock:
            return self.elevator.run_elevated(list(argv))
