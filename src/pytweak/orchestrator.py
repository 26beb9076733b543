"""Sequential bulk apply/remove with progress, cancellation and side effects.

Items are processed strictly one after another: elevated writes share one
privileged helper, so running them concurrently is unsafe.  A failing item
is counted and the batch moves on.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from .cancellation import CancellationToken
from .catalog import ConfigEntry, TweakProbe
from .effects import log_notifier
from .errors import TweakError
from .reconciler import Reconciler

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[str, bool], None]
RestartCallback = Callable[[frozenset], None]


@dataclass
class BulkJob:
    """One user-initiated batch; discarded once the result is built."""

    items: tuple
    elevate: bool = False
    token: CancellationToken = field(default_factory=CancellationToken)
    completed: int = 0


@dataclass(frozen=True)
class BulkResult:
    succeeded: int = 0
    failed: int = 0
    cancelled: bool = False
    failures: tuple[tuple[str, TweakError], ...] = ()

    def __iter__(self):
        return iter((self.succeeded, self.failed))

    @property
    def attempted(self) -> int:
        return self.succeeded + self.failed

    @property
    def partial_failure(self) -> bool:
        return self.succeeded > 0 and self.failed > 0


class BulkOrchestrator:
    """Run reconciler operations over many items.

    After a batch with at least one success, ``on_restart_required`` is
    called exactly once with the set of processes to restart.  The set is
    empty when no succeeded item names a process.  ``notify`` is called
    once for every finished batch.
    """

    def __init__(
        self,
        reconciler: Reconciler,
        *,
        on_restart_required: RestartCallback | None = None,
        notify: Callable[[BulkResult], None] | None = None,
        restart_target: str | None = "explorer.exe",
    ) -> None:
        self.reconciler = reconciler
        self.on_restart_required = on_restart_required
        self.notify = notify or log_notifier
        self.restart_target = restart_target

    def remove_many(
        self,
        entries: Iterable[ConfigEntry],
        progress: ProgressCallback | None = None,
        token: CancellationToken | None = None,
    ) -> BulkResult:
        """Remove the override of every entry, in order.

        Returns a :class:`BulkResult` that unpacks as ``(succeeded, failed)``.
        """
        job = self._job(entries, token)
        return self._run(
            job,
            self.reconciler.remove_override,
            ident=lambda e: e.id,
            restart=lambda e: self.restart_target,
            progress=progress,
        )

    def apply_many(
        self,
        pairs: Iterable[tuple[ConfigEntry, Any]],
        progress: ProgressCallback | None = None,
        token: CancellationToken | None = None,
    ) -> BulkResult:
        job = self._job(pairs, token, elevate_of=lambda p: p[0].elevate)
        return self._run(
            job,
            lambda p: self.reconciler.apply_entry(p[0], p[1]),
            ident=lambda p: p[0].id,
            restart=lambda p: self.restart_target,
            progress=progress,
        )

    def set_probes(
        self,
        pairs: Iterable[tuple[TweakProbe, bool]],
        progress: ProgressCallback | None = None,
        token: CancellationToken | None = None,
    ) -> BulkResult:
        job = self._job(pairs, token, elevate_of=lambda p: p[0].elevate)
        return self._run(
            job,
            lambda p: self.reconciler.set_probe(p[0], p[1]),
            ident=lambda p: p[0].id,
            restart=lambda p: p[0].restart,
            progress=progress,
        )

    # ---- internals ----
    def _job(
        self,
        items: Iterable,
        token: CancellationToken | None,
        elevate_of: Callable[[Any], bool] = lambda e: e.elevate,
    ) -> BulkJob:
        items = tuple(items)
        return BulkJob(
            items=items,
            elevate=bool(items) and all(elevate_of(i) for i in items),
            token=token if token is not None else CancellationToken(),
        )

    def _run(
        self,
        job: BulkJob,
        op: Callable[[T], bool],
        *,
        ident: Callable[[T], str],
        restart: Callable[[T], str | None],
        progress: ProgressCallback | None,
    ) -> BulkResult:
        succeeded = failed = 0
        failures: list[tuple[str, TweakError]] = []
        targets: set[str] = set()
        cancelled = False
        logger.debug("starting batch of %d items (elevated=%s)", len(job.items), job.elevate)
        for item in job.items:
            if job.token.cancelled:
                cancelled = True
                logger.info("batch cancelled after %d of %d items", job.completed, len(job.items))
                break
            item_id = ident(item)
            try:
                ok = bool(op(item))
            except TweakError as exc:
                logger.warning("%s failed: %s", item_id, exc)
                failures.append((item_id, exc))
                ok = False
            if ok:
                succeeded += 1
                target = restart(item)
                if target:
                    targets.add(target)
            else:
                failed += 1
            job.completed += 1
            if progress is not None:
                progress(item_id, ok)

        result = BulkResult(succeeded, failed, cancelled, tuple(failures))
        if succeeded and self.on_restart_required is not None:
            self.on_restart_required(frozenset(targets))
        self.notify(result)
        return result
