from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from threading import RLock
from typing import Any

from ..elevation import ElevationGate
from ..errors import AccessDeniedError, ConfigLoadError, StoreUnavailableError, ValidationError
from ..locations import (
    Root,
    StoredValue,
    ValueKind,
    path_key,
    split_path,
)
from . import register_backend
from .base import BaseStore, FirewallRule, FirewallStore, TaskStore

logger = logging.getLogger(__name__)


class _Node:
    __slots__ = ("name", "values", "children")

    def __init__(self, name: str) -> None:
        self.name = name
        # casefolded name -> (display name, value)
        self.values: dict[str, tuple[str, StoredValue]] = {}
        self.children: dict[str, _Node] = {}


def _under(key: tuple[str, ...], prefixes: Iterable[tuple[str, ...]]) -> bool:
    return any(key[: len(p)] == p for p in prefixes)


@register_backend
class MemoryStore(BaseStore):
    """Thread-safe in-process store.

    Besides plain storage it can simulate the conditions a real registry
    produces: *protected* containers refuse writes until access has been
    granted through the elevation gate, *denied* containers refuse every
    access, and an *unavailable* root cannot be opened at all.

    ``data`` seeds the store using the snapshot layout of :meth:`dump`.
    """

    name = "memory"

    def __init__(
        self,
        *,
        gate: ElevationGate | None = None,
        data: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(gate=gate)
        self._lock = RLock()
        self._roots = {r: _Node(r.value) for r in Root}
        self._protected: set[tuple[Root, tuple[str, ...]]] = set()
        self._granted: set[tuple[Root, tuple[str, ...]]] = set()
        self._denied: set[tuple[Root, tuple[str, ...]]] = set()
        self._unavailable: set[Root] = set()
        if data:
            self.restore(data)

    # ---- simulation controls ----
    def protect(self, root: Root | str, path: str) -> None:
        with self._lock:
            self._protected.add((Root.parse(root), path_key(path)))

    def deny(self, root: Root | str, path: str) -> None:
        with self._lock:
            self._denied.add((Root.parse(root), path_key(path)))

    def set_unavailable(self, root: Root | str, unavailable: bool = True) -> None:
        with self._lock:
            if unavailable:
                self._unavailable.add(Root.parse(root))
            else:
                self._unavailable.discard(Root.parse(root))

    def _check(self, root: Root, path: str, *, writing: bool = False) -> None:
        if root in self._unavailable:
            raise StoreUnavailableError(f"{root.long_name} cannot be opened")
        key = path_key(path)
        if _under(key, (p for r, p in self._denied if r is root)):
            raise AccessDeniedError(f"access to {root.value}\\{path} is denied")
        if writing:
            protected = [p for r, p in self._protected if r is root]
            granted = [p for r, p in self._granted if r is root]
            if _under(key, protected) and not _under(key, granted):
                raise AccessDeniedError(f"{root.value}\\{path} requires elevation")

    def _on_granted(self, root: Root, path: str) -> None:
        with self._lock:
            self._granted.add((root, path_key(path)))

    # ---- tree helpers ----
    def _find(self, root: Root, path: str) -> _Node | None:
        node = self._roots[root]
        for part in split_path(path):
            node = node.children.get(part.casefold())
            if node is None:
                return None
        return node

    def _ensure(self, root: Root, path: str) -> _Node:
        node = self._roots[root]
        for part in split_path(path):
            child = node.children.get(part.casefold())
            if child is None:
                child = node.children[part.casefold()] = _Node(part)
            node = child
        return node

    # ---- BaseStore hooks ----
    def _read(self, root: Root, path: str, name: str) -> StoredValue | None:
        with self._lock:
            self._check(root, path)
            node = self._find(root, path)
            if node is None:
                return None
            item = node.values.get(name.casefold())
            return item[1] if item else None

    def _write(self, root: Root, path: str, name: str, data: Any, kind: ValueKind) -> None:
        with self._lock:
            self._check(root, path, writing=True)
            node = self._ensure(root, path)
            node.values[name.casefold()] = (name, StoredValue(data, kind))
            self._changed()

    def _delete_value(self, root: Root, path: str, name: str) -> None:
        with self._lock:
            node = self._find(root, path)
            if node is None or name.casefold() not in node.values:
                self._check(root, path)
                return
            self._check(root, path, writing=True)
            del node.values[name.casefold()]
            self._changed()

    def _container_exists(self, root: Root, path: str) -> bool:
        with self._lock:
            self._check(root, path)
            return self._find(root, path) is not None

    def _value_names(self, root: Root, path: str) -> list[str]:
        with self._lock:
            self._check(root, path)
            node = self._find(root, path)
            return [display for display, _ in node.values.values()] if node else []

    def _container_names(self, root: Root, path: str) -> list[str]:
        with self._lock:
            self._check(root, path)
            node = self._find(root, path)
            return [child.name for child in node.children.values()] if node else []

    def _delete_container(self, root: Root, path: str) -> None:
        parts = split_path(path)
        with self._lock:
            self._check(root, path, writing=True)
            parent = self._find(root, "\\".join(parts[:-1]))
            if parent is not None:
                parent.children.pop(parts[-1].casefold(), None)
                self._changed()

    def _changed(self) -> None:
        """Hook called after every mutation while the lock is held."""

    def _reset(self, data: Mapping[str, Any]) -> None:
        """Replace the whole tree with the snapshot *data*."""
        with self._lock:
            self._roots = {r: _Node(r.value) for r in Root}
            self.restore(data)

    # ---- snapshots ----
    def dump(self) -> dict[str, dict[str, dict[str, dict[str, Any]]]]:
        """Return the tree as ``{root: {path: {name: {kind, data}}}}``.

        Containers holding values are listed, plus empty leaf containers so
        that they survive a round trip.
        """
        out: dict[str, dict[str, dict[str, dict[str, Any]]]] = {}
        with self._lock:
            for root, top in self._roots.items():
                containers = {
                    path: {
                        display: {"kind": value.kind.value, "data": _plain(value)}
                        for display, value in node.values.values()
                    }
                    for path, node in _walk(top)
                    if node.values or not node.children
                }
                if containers:
                    out[root.value] = containers
        return out

    def restore(self, data: Mapping[str, Any]) -> None:
        """Load a snapshot produced by :meth:`dump`, replacing nothing else."""
        if not isinstance(data, Mapping):
            raise ConfigLoadError("store snapshot must be a mapping of roots")
        with self._lock:
            for raw_root, containers in data.items():
                try:
                    root = Root.parse(raw_root)
                except ValidationError as exc:
                    raise ConfigLoadError(str(exc)) from exc
                if not isinstance(containers, Mapping):
                    raise ConfigLoadError(f"{raw_root}: expected a mapping of containers")
                for path, values in containers.items():
                    node = self._ensure(root, str(path))
                    for name, raw in (values or {}).items():
                        node.values[str(name).casefold()] = (str(name), _stored(raw, root, path, name))


def _walk(node: _Node, prefix: tuple[str, ...] = ()) -> Iterator[tuple[str, _Node]]:
    for child in node.children.values():
        here = prefix + (child.name,)
        yield "\\".join(here), child
        yield from _walk(child, here)


def _plain(value: StoredValue) -> Any:
    if value.kind is ValueKind.BINARY:
        return bytes(value.data).hex()
    return value.data


def _stored(raw: Any, root: Root, path: str, name: str) -> StoredValue:
    if not isinstance(raw, Mapping) or "kind" not in raw:
        raise ConfigLoadError(f"{root.value}\\{path}\\{name}: expected {{kind, data}}")
    try:
        kind = ValueKind.parse(raw["kind"])
        return StoredValue(kind.coerce(raw.get("data")), kind)
    except ValidationError as exc:
        raise ConfigLoadError(f"{root.value}\\{path}\\{name}: {exc}") from exc


# ---------------------------------------------------------------------------
# Adjacent stores
# ---------------------------------------------------------------------------


class MemoryTaskStore(TaskStore):
    """In-process scheduled tasks: ``{name: enabled}``.

    Tasks listed in ``protected`` can only be changed with ``elevate=True``;
    the change is then routed through the elevation gate like the real
    ``schtasks`` call would be.
    """

    name = "memory"

    def __init__(
        self,
        tasks: Mapping[str, bool] | None = None,
        *,
        protected: Iterable[str] = (),
        gate: ElevationGate | None = None,
    ) -> None:
        super().__init__(gate=gate)
        self._lock = RLock()
        self._tasks = {k.casefold(): (k, bool(v)) for k, v in (tasks or {}).items()}
        self._protected = {p.casefold() for p in protected}

    def exists(self, task: str) -> bool:
        with self._lock:
            return task.casefold() in self._tasks

    def is_enabled(self, task: str) -> bool:
        with self._lock:
            item = self._tasks.get(task.casefold())
            return bool(item and item[1])

    def set_enabled(self, task: str, enabled: bool, *, elevate: bool = False) -> bool:
        with self._lock:
            item = self._tasks.get(task.casefold())
            if item is None:
                logger.debug("task %s not found, skipped", task)
                return False
            if task.casefold() in self._protected:
                if not elevate:
                    raise AccessDeniedError(f"task {task} requires elevation")
                argv = ["schtasks", "/Change", "/TN", item[0], "/ENABLE" if enabled else "/DISABLE"]
                status = self.gate.run_elevated(argv)
                if status != 0:
                    raise AccessDeniedError(f"elevated change of {task} failed ({status})")
            self._tasks[task.casefold()] = (item[0], bool(enabled))
            return True

    def remove(self, task: str) -> bool:
        with self._lock:
            return self._tasks.pop(task.casefold(), None) is not None


class MemoryFirewallStore(FirewallStore):
    name = "memory"

    def __init__(self, rules: Iterable[FirewallRule] = ()) -> None:
        self._lock = RLock()
        self.rules: list[FirewallRule] = list(rules)

    def exists(self, rule_name: str) -> bool:
        with self._lock:
            return any(r.name.casefold() == rule_name.casefold() for r in self.rules)

    def add_rule(self, rule: FirewallRule) -> bool:
        with self._lock:
            if self.exists(rule.name):
                return False
            self.rules.append(rule)
            return True

    def remove_by_name(self, rule_name: str) -> int:
        with self._lock:
            keep = [r for r in self.rules if r.name.casefold() != rule_name.casefold()]
            removed = len(self.rules) - len(keep)
            self.rules = keep
            return removed
