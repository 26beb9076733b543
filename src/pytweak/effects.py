"""Side effects triggered after a batch: process restarts and notices."""

from __future__ import annotations

import logging
import subprocess
import time
from collections.abc import Iterable
from typing import Callable

logger = logging.getLogger(__name__)


class ProcessRestarter:
    """Restart processes by image name (``explorer.exe`` ...).

    The process is killed with ``taskkill`` and started again after
    ``delay`` seconds.  Failures are logged; a restart is a convenience and
    never fails the batch that asked for it.
    """

    def __init__(
        self,
        *,
        runner: Callable[..., subprocess.CompletedProcess] | None = None,
        launcher: Callable[[list[str]], object] | None = None,
        delay: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.runner = runner or subprocess.run
        self.launcher = launcher or subprocess.Popen
        self.delay = delay
        self.sleep = sleep

    def restart(self, image: str) -> bool:
        try:
            self.runner(
                ["taskkill", "/F", "/IM", image],
                capture_output=True,
                text=True,
                check=False,
                creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0),
            )
            self.sleep(self.delay)
            self.launcher([image])
        except OSError as exc:
            logger.warning("could not restart %s: %s", image, exc)
            return False
        logger.info("restarted %s", image)
        return True

    def __call__(self, targets: Iterable[str]) -> None:
        for image in sorted(set(targets)):
            self.restart(image)


def log_notifier(result) -> None:
    """Default batch notifier: one INFO line with the counts."""
    logger.info(
        "batch finished: %d succeeded, %d failed%s",
        result.succeeded,
        result.failed,
        " (cancelled)" if result.cancelled else "",
    )
