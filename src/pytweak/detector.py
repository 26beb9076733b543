"""Read-only classification of catalog items against the live stores."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, TypeVar

from .backends.base import BaseStore, FirewallStore, TaskStore
from .cancellation import CancellationToken, is_cancelled
from .catalog import Catalog, Comparison, ConfigEntry, TweakProbe
from .errors import TweakError
from .locations import Location, Root, StoredValue, ValueKind
from .probe import evaluate, presence_matches, value_matches

logger = logging.getLogger(__name__)

T = TypeVar("T")

BUILD_LOCATION = Location(
    Root.HKLM, "SOFTWARE\\Microsoft\\Windows NT\\CurrentVersion", "CurrentBuildNumber"
)


@dataclass(frozen=True)
class EntryState:
    entry: ConfigEntry
    is_configured: bool
    current_value: Any = None
    actual_kind: ValueKind | None = None

    def __post_init__(self) -> None:
        if self.is_configured != (self.current_value is not None):
            raise ValueError("is_configured must agree with current_value")


@dataclass(frozen=True)
class ProbeState:
    probe: TweakProbe
    enabled: bool


@dataclass(frozen=True)
class CategorySummary:
    total: int = 0
    configured: int = 0


NOT_CONFIGURED = (False, None, None)


def detect_build(store: BaseStore) -> int:
    """Return the running build number, ``0`` when it cannot be read."""
    try:
        stored = store.read(BUILD_LOCATION.root, BUILD_LOCATION.path, BUILD_LOCATION.name)
        return int(str(stored.data)) if stored is not None else 0
    except (TweakError, ValueError) as exc:
        logger.debug("cannot determine build number: %s", exc)
        return 0


class StateDetector:
    """Produce fresh :class:`EntryState` and :class:`ProbeState` snapshots.

    Detection never writes and never raises for store failures: an
    unreadable value is reported exactly like a missing one.
    """

    def __init__(
        self,
        store: BaseStore,
        *,
        tasks: TaskStore | None = None,
        firewall: FirewallStore | None = None,
        build: int | None = None,
    ) -> None:
        self.store = store
        self.tasks = tasks
        self.firewall = firewall
        self._build = build

    @property
    def build(self) -> int:
        if self._build is None:
            self._build = detect_build(self.store)
        return self._build

    # ---- entries ----
    def _read(self, location: Location) -> StoredValue | None:
        try:
            return self.store.read(location.root, location.path, location.name)
        except TweakError as exc:
            logger.debug("read of %s failed, treated as absent: %s", location, exc)
            return None

    def detect(self, entry: ConfigEntry) -> EntryState:
        found = [self._read(loc) for loc in entry.locations]
        present = [s for s in found if s is not None]
        if not present or (entry.combine == "all" and len(present) != len(found)):
            return EntryState(entry, *NOT_CONFIGURED)
        stored = present[0]
        value = stored.data if stored.data is not None else ""
        return EntryState(entry, True, value, stored.kind)

    def scan(self, catalog: Catalog, cancel: CancellationToken | None = None) -> list[EntryState]:
        """Detect every applicable entry in catalog order.

        Cancellation is checked before each entry; what was computed so far
        is returned.
        """
        states: list[EntryState] = []
        for entry in catalog.applicable_entries(self.build):
            if is_cancelled(cancel):
                logger.debug("scan cancelled after %d entries", len(states))
                break
            states.append(self.detect(entry))
        return states

    def configured(self, catalog: Catalog, cancel: CancellationToken | None = None) -> list[EntryState]:
        return [s for s in self.scan(catalog, cancel) if s.is_configured]

    def summary(
        self, catalog: Catalog, cancel: CancellationToken | None = None
    ) -> dict[str, CategorySummary]:
        """Return ``{category: CategorySummary(total, configured)}``."""
        counts: dict[str, CategorySummary] = {}
        for state in self.scan(catalog, cancel):
            prev = counts.get(state.entry.category, CategorySummary())
            counts[state.entry.category] = CategorySummary(
                prev.total + 1, prev.configured + int(state.is_configured)
            )
        return counts

    # ---- probes ----
    def check(self, comparison: Comparison) -> bool:
        if comparison.source in ("value", "exists"):
            stored = self._read(comparison.location)
            if comparison.source == "exists":
                return presence_matches(stored is not None, comparison.invert)
            return value_matches(stored, comparison.trigger, comparison.invert)
        if comparison.source == "task":
            return presence_matches(self._tasks_enabled(comparison.names), comparison.invert)
        return presence_matches(self._rule_exists(comparison.names[0]), comparison.invert)

    def _tasks_enabled(self, names: tuple[str, ...]) -> bool:
        if self.tasks is None:
            return False
        try:
            return self.tasks.any_enabled(names)
        except TweakError as exc:
            logger.debug("task query failed, treated as disabled: %s", exc)
            return False

    def _rule_exists(self, name: str) -> bool:
        if self.firewall is None:
            return False
        try:
            return self.firewall.exists(name)
        except TweakError as exc:
            logger.debug("firewall query failed, treated as absent: %s", exc)
            return False

    def evaluate(self, probe: TweakProbe) -> bool:
        return evaluate(probe, self.check)

    def scan_probes(
        self, catalog: Catalog, cancel: CancellationToken | None = None
    ) -> list[ProbeState]:
        states: list[ProbeState] = []
        for probe in catalog.applicable_probes(self.build):
            if is_cancelled(cancel):
                break
            states.append(ProbeState(probe, self.evaluate(probe)))
        return states


def run_sections(
    sections: Mapping[str, Callable[[], T]], *, max_workers: int = 4
) -> dict[str, T | None]:
    """Run independent scan sections concurrently.

    Each section runs sequentially on its own worker.  A section that raises
    is logged and reported as ``None``.
    """
    results: dict[str, T | None] = {}
    if not sections:
        return results
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(sections)))) as pool:
        futures = {name: pool.submit(fn) for name, fn in sections.items()}
        for name, future in futures.items():
            try:
                results[name] = future.result()
            except Exception:
                logger.exception("scan section %s failed", name)
                results[name] = None
    return results
