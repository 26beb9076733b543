"""Apply and remove catalog items against the stores."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any

from .backends.base import BaseStore, FirewallStore, TaskStore
from .catalog import Action, ConfigEntry, TweakProbe
from .errors import ReconcileError, StoreUnavailableError, TweakError, ValidationError
from .locations import Location, path_key

logger = logging.getLogger(__name__)


class _Default:
    def __repr__(self) -> str:
        return "DEFAULT"


#: Pass to :meth:`Reconciler.apply_entry` to reset an entry to its default.
DEFAULT: Any = _Default()


class Reconciler:
    """Mutate the stores so that one catalog item reaches a desired state.

    Multi-location work is best effort: every location is attempted and
    the first failure is raised once all of them were tried.  Nothing is
    rolled back.
    """

    def __init__(
        self,
        store: BaseStore,
        *,
        tasks: TaskStore | None = None,
        firewall: FirewallStore | None = None,
    ) -> None:
        self.store = store
        self.tasks = tasks
        self.firewall = firewall

    # ---- entries ----
    def apply_entry(self, entry: ConfigEntry, value: Any = DEFAULT) -> bool:
        """Write *value* to every location of *entry*.

        Passing :data:`DEFAULT`, or the default value itself, resets the
        entry: entries flagged ``delete_for_default`` are removed, the others
        get ``default_value`` written.

        Raises
        ------
        ValidationError
            If *value* does not fit the entry's kind.
        AccessDeniedError, StoreUnavailableError
            If a location could not be written.
        """
        if value is DEFAULT or self._is_default(entry, value):
            if entry.delete_for_default:
                return self.remove_override(entry)
            value = entry.default_value
        data = entry.kind.coerce(value)
        self._each(
            entry.id,
            entry.locations,
            lambda loc: self.store.write(
                loc.root, loc.path, loc.name, data, entry.kind, elevate=entry.elevate
            ),
        )
        logger.info("applied %s = %r", entry.id, data)
        return True

    def _is_default(self, entry: ConfigEntry, value: Any) -> bool:
        if not entry.delete_for_default or entry.default_value is None:
            return False
        try:
            return entry.kind.coerce(value) == entry.default_value
        except ValidationError:
            return False

    def remove_override(self, entry: ConfigEntry) -> bool:
        """Delete the entry's value everywhere, then tidy empty containers.

        Removing an entry that is not configured succeeds and changes
        nothing.  Container cleanup stays inside ``entry.boundary`` and its
        failures are only logged.
        """
        self._each(
            entry.id,
            entry.locations,
            lambda loc: self.store.delete_value(
                loc.root, loc.path, loc.name, elevate=entry.elevate
            ),
        )
        self._cleanup(entry)
        logger.info("removed override %s", entry.id)
        return True

    def _cleanup(self, entry: ConfigEntry) -> None:
        seen: set = set()
        for loc in entry.locations:
            key = (loc.root, path_key(loc.path))
            if key in seen:
                continue
            seen.add(key)
            try:
                self.store.delete_container_if_empty(loc.root, loc.path, entry.boundary)
            except TweakError as exc:
                logger.debug("cleanup of %s\\%s skipped: %s", loc.root.value, loc.path, exc)

    def _each(
        self, target: str, locations: Iterable[Location], fn: Callable[[Location], None]
    ) -> None:
        first: ReconcileError | None = None
        for loc in locations:
            try:
                fn(loc)
            except ReconcileError as exc:
                exc.tagged(target)
                logger.warning("%s: %s failed: %s", target, loc, exc)
                if first is None:
                    first = exc
        if first is not None:
            raise first

    # ---- probes ----
    def set_probe(self, probe: TweakProbe, enabled: bool) -> bool:
        """Run every action of *probe* for the requested state."""
        first: ReconcileError | None = None
        for action in probe.actions:
            try:
                self._perform(probe, action, enabled)
            except ReconcileError as exc:
                exc.tagged(probe.id)
                logger.warning("%s: %s action failed: %s", probe.id, action.target, exc)
                if first is None:
                    first = exc
        if first is not None:
            raise first
        logger.info("switched %s %s", probe.id, "on" if enabled else "off")
        return True

    def _perform(self, probe: TweakProbe, action: Action, enabled: bool) -> None:
        state = enabled != action.invert
        if action.target == "value":
            loc = action.location
            data = action.on if state else action.off
            if data is None:
                self.store.delete_value(loc.root, loc.path, loc.name, elevate=probe.elevate)
            else:
                self.store.write(loc.root, loc.path, loc.name, data, action.kind, elevate=probe.elevate)
        elif action.target == "task":
            if self.tasks is None:
                raise StoreUnavailableError("no scheduled task store configured")
            for name in action.names:
                self.tasks.set_enabled(name, state, elevate=probe.elevate)
        else:
            if self.firewall is None:
                raise StoreUnavailableError("no firewall store configured")
            if state:
                self.firewall.add_rule(action.rule)
            else:
                self.firewall.remove_by_name(action.rule.name)
