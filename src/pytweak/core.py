from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from pathlib import Path
from threading import RLock
from typing import Any

from .backends import get_backend
from .backends.base import BaseStore, FirewallStore, TaskStore
from .backends.firewall_backend import NetshFirewallStore
from .backends.memory_backend import MemoryFirewallStore, MemoryTaskStore
from .backends.tasks_backend import SchtasksStore
from .cancellation import CancellationToken
from .catalog import Catalog, ConfigEntry, TweakProbe, load_catalog
from .config import EngineConfig, load_config
from .detector import CategorySummary, EntryState, ProbeState, StateDetector, run_sections
from .effects import ProcessRestarter
from .elevation import ElevationGate, HelperElevator
from .orchestrator import BulkOrchestrator, BulkResult, ProgressCallback, RestartCallback
from .paths import default_store_file
from .profile import TweakProfile
from .reconciler import DEFAULT, Reconciler
from .settings import SettingsCache

logger = logging.getLogger("pytweak")


def _log_restart(targets: frozenset) -> None:
    logger.info("restart required for: %s", ", ".join(sorted(targets)) or "nothing")


class TweakEngine:
    """Long-lived service object tying catalog, stores and settings together.

    Construct one at startup and hand it to consumers.  Items may be given
    by id or as catalog objects.
    """

    def __init__(
        self,
        store: BaseStore,
        *,
        catalog: Catalog | None = None,
        tasks: TaskStore | None = None,
        firewall: FirewallStore | None = None,
        build: int | None = None,
        settings: SettingsCache | None = None,
        restart_target: str | None = "explorer.exe",
        on_restart_required: RestartCallback | None = None,
        notify: Callable[[BulkResult], None] | None = None,
    ) -> None:
        self.store = store
        self.gate: ElevationGate = store.gate
        self.catalog = catalog if catalog is not None else load_catalog()
        self.on_restart_required = on_restart_required or _log_restart
        self.detector = StateDetector(store, tasks=tasks, firewall=firewall, build=build)
        self.reconciler = Reconciler(store, tasks=tasks, firewall=firewall)
        self.orchestrator = BulkOrchestrator(
            self.reconciler,
            on_restart_required=self.on_restart_required,
            notify=notify,
            restart_target=restart_target,
        )
        self.settings = settings if settings is not None else SettingsCache(store)
        self.pending = TweakProfile()
        self._lock = RLock()

    @classmethod
    def from_config(cls, cfg: EngineConfig | None = None, **kwargs: Any) -> "TweakEngine":
        """Build an engine with the stores selected by *cfg*."""
        cfg = cfg if cfg is not None else load_config()
        gate = ElevationGate(HelperElevator(cfg.helper) if cfg.helper else None)
        options: dict[str, Any] = {"gate": gate}
        if cfg.backend == "yaml":
            options["path"] = cfg.store_path or default_store_file()
        store = get_backend(cfg.backend, **options)
        if cfg.backend == "winreg":  # pragma: no cover - platform specific
            kwargs.setdefault("tasks", SchtasksStore(gate=gate))
            kwargs.setdefault("firewall", NetshFirewallStore())
            kwargs.setdefault("on_restart_required", ProcessRestarter())
        else:
            kwargs.setdefault("tasks", MemoryTaskStore(gate=gate))
            kwargs.setdefault("firewall", MemoryFirewallStore())
        kwargs.setdefault("catalog", load_catalog(cfg.catalog))
        kwargs.setdefault("build", cfg.build)
        kwargs.setdefault("restart_target", cfg.restart_target)
        return cls(store, **kwargs)

    # ---- lookups ----
    def entry(self, item: str | ConfigEntry) -> ConfigEntry:
        return item if isinstance(item, ConfigEntry) else self.catalog.get_entry(item)

    def probe(self, item: str | TweakProbe) -> TweakProbe:
        return item if isinstance(item, TweakProbe) else self.catalog.get_probe(item)

    @property
    def build(self) -> int:
        return self.detector.build

    # ---- detection ----
    def scan(self, cancel: CancellationToken | None = None) -> list[EntryState]:
        return self.detector.scan(self.catalog, cancel)

    def configured(self, cancel: CancellationToken | None = None) -> list[EntryState]:
        return self.detector.configured(self.catalog, cancel)

    def summary(self, cancel: CancellationToken | None = None) -> dict[str, CategorySummary]:
        return self.detector.summary(self.catalog, cancel)

    def state(self, item: str | ConfigEntry) -> EntryState:
        return self.detector.detect(self.entry(item))

    def tweaks(self, cancel: CancellationToken | None = None) -> list[ProbeState]:
        return self.detector.scan_probes(self.catalog, cancel)

    def refresh(
        self, cancel: CancellationToken | None = None, *, extra: dict[str, Callable[[], Any]] | None = None
    ) -> dict[str, Any]:
        """Scan entries and tweaks (plus any *extra* sections) concurrently."""
        sections: dict[str, Callable[[], Any]] = {
            "entries": lambda: self.scan(cancel),
            "tweaks": lambda: self.tweaks(cancel),
        }
        sections.update(extra or {})
        return run_sections(sections)

    # ---- reconciliation ----
    def apply_entry(self, item: str | ConfigEntry, value: Any = DEFAULT) -> bool:
        return self.reconciler.apply_entry(self.entry(item), value)

    def remove_override(self, item: str | ConfigEntry) -> bool:
        return self.reconciler.remove_override(self.entry(item))

    def apply_many(
        self,
        pairs: Iterable[tuple[str | ConfigEntry, Any]],
        progress: ProgressCallback | None = None,
        token: CancellationToken | None = None,
    ) -> BulkResult:
        resolved = [(self.entry(item), value) for item, value in pairs]
        return self.orchestrator.apply_many(resolved, progress, token)

    def remove_many(
        self,
        items: Iterable[str | ConfigEntry] | None = None,
        progress: ProgressCallback | None = None,
        token: CancellationToken | None = None,
    ) -> BulkResult:
        """Remove the given overrides, or every configured one when *items* is ``None``."""
        if items is None:
            entries = [s.entry for s in self.configured(token)]
        else:
            entries = [self.entry(i) for i in items]
        return self.orchestrator.remove_many(entries, progress, token)

    def set_probe(self, item: str | TweakProbe, enabled: bool) -> bool:
        probe = self.probe(item)
        with self._lock:
            self.reconciler.set_probe(probe, enabled)
            self.pending.record(probe, enabled)
        if probe.restart:
            self.on_restart_required(frozenset({probe.restart}))
        return True

    def set_probes(
        self,
        pairs: Iterable[tuple[str | TweakProbe, bool]],
        progress: ProgressCallback | None = None,
        token: CancellationToken | None = None,
    ) -> BulkResult:
        resolved = [(self.probe(item), bool(enabled)) for item, enabled in pairs]
        result = self.orchestrator.set_probes(resolved, progress, token)
        failed = {item_id for item_id, _ in result.failures}
        with self._lock:
            for probe, enabled in resolved[: result.attempted]:
                if probe.id not in failed:
                    self.pending.record(probe, enabled)
        return result

    # ---- profiles ----
    def export_profile(self, path: str | Path, *, pending_only: bool = False) -> Path:
        """Save tweak states: the session's recorded changes or the live state."""
        profile = self.pending if pending_only else TweakProfile.from_states(self.tweaks())
        return profile.save(path)

    def import_profile(
        self,
        path: str | Path,
        progress: ProgressCallback | None = None,
        token: CancellationToken | None = None,
    ) -> BulkResult:
        profile = TweakProfile.load(path)
        return self.set_probes(profile.resolve(self.catalog), progress, token)
