"""Windows Defender Firewall rules through ``netsh advfirewall``."""

from __future__ import annotations

import logging
import re
import subprocess
from typing import Callable

from ..errors import AccessDeniedError, StoreUnavailableError
from .base import FirewallRule, FirewallStore

logger = logging.getLogger(__name__)

_DELETED_RE = re.compile(r"(\d+)")


class NetshFirewallStore(FirewallStore):
    name = "netsh"

    def __init__(self, *, runner: Callable[..., subprocess.CompletedProcess] | None = None) -> None:
        self.runner = runner or subprocess.run

    def _run(self, *args: str) -> subprocess.CompletedProcess:
        argv = ["netsh", "advfirewall", "firewall", *args]
        try:
            return self.runner(
                argv,
                capture_output=True,
                text=True,
                check=False,
                creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0),
            )
        except OSError as exc:
            raise StoreUnavailableError(f"cannot run netsh: {exc}") from exc

    def exists(self, rule_name: str) -> bool:
        return self._run("show", "rule", f"name={rule_name}").returncode == 0

    def add_rule(self, rule: FirewallRule) -> bool:
        if self.exists(rule.name):
            return False
        args = [
            "add",
            "rule",
            f"name={rule.name}",
            f"dir={rule.direction}",
            f"action={rule.action}",
            "enable=yes",
        ]
        if rule.program:
            args.append(f"program={rule.program}")
        if rule.remote_ip:
            args.append(f"remoteip={rule.remote_ip}")
        if rule.description:
            args.append(f"description={rule.description}")
        proc = self._run(*args)
        if proc.returncode != 0:
            raise AccessDeniedError(
                f"cannot add firewall rule {rule.name}: {(proc.stdout or '').strip()}"
            )
        logger.info("firewall rule %s added", rule.name)
        return True

    def remove_by_name(self, rule_name: str) -> int:
        if not self.exists(rule_name):
            return 0
        proc = self._run("delete", "rule", f"name={rule_name}")
        if proc.returncode != 0:
            raise AccessDeniedError(
                f"cannot delete firewall rule {rule_name}: {(proc.stdout or '').strip()}"
            )
        match = _DELETED_RE.search(proc.stdout or "")
        return int(match.group(1)) if match else 1
