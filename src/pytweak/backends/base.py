from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from ..elevation import ElevationGate
from ..errors import AccessDeniedError, ReconcileError
from ..locations import (
    Location,
    Root,
    StoredValue,
    ValueKind,
    normalize_path,
    parent_path,
    split_path,
    within_boundary,
)

logger = logging.getLogger(__name__)


class BaseStore(ABC):
    """Abstract hierarchical key-value store.

    Public methods normalise their arguments, tag failures with the location
    that failed and handle elevation; subclasses implement the ``_`` hooks
    against already normalised ``(root, path, name)`` triples.
    """

    name: str = ""

    def __init__(self, *, gate: ElevationGate | None = None) -> None:
        self.gate = gate if gate is not None else ElevationGate()

    # ---- reads ----
    def read(self, root: Root | str, path: str, name: str = "") -> StoredValue | None:
        """Return the stored value or ``None`` when it does not exist.

        Raises
        ------
        AccessDeniedError, StoreUnavailableError
            For genuine access failures.  Detection treats them as absent.
        """
        root, path = Root.parse(root), normalize_path(path)
        with _tagged(root, path, name):
            return self._read(root, path, name)

    def container_exists(self, root: Root | str, path: str) -> bool:
        root, path = Root.parse(root), normalize_path(path)
        with _tagged(root, path):
            return self._container_exists(root, path)

    def value_names(self, root: Root | str, path: str) -> list[str]:
        root, path = Root.parse(root), normalize_path(path)
        with _tagged(root, path):
            if not self._container_exists(root, path):
                return []
            return self._value_names(root, path)

    def container_names(self, root: Root | str, path: str) -> list[str]:
        root, path = Root.parse(root), normalize_path(path)
        with _tagged(root, path):
            if not self._container_exists(root, path):
                return []
            return self._container_names(root, path)

    # ---- writes ----
    def write(
        self,
        root: Root | str,
        path: str,
        name: str,
        value: Any,
        kind: ValueKind | str,
        *,
        elevate: bool = False,
    ) -> None:
        """Write *value* coerced to *kind*.

        When the container refuses the write and *elevate* is set, access on
        that container alone is acquired through the elevation gate and the
        write is retried once.
        """
        root, path = Root.parse(root), normalize_path(path)
        kind = ValueKind.parse(kind)
        data = kind.coerce(value)
        with _tagged(root, path, name):
            try:
                self._write(root, path, name, data, kind)
            except AccessDeniedError:
                if not elevate:
                    raise
                self.acquire(root, path)
                self._write(root, path, name, data, kind)

    def delete_value(
        self, root: Root | str, path: str, name: str = "", *, elevate: bool = False
    ) -> None:
        """Delete a value; deleting an absent value does nothing."""
        root, path = Root.parse(root), normalize_path(path)
        with _tagged(root, path, name):
            try:
                self._delete_value(root, path, name)
            except AccessDeniedError:
                if not elevate:
                    raise
                self.acquire(root, path)
                self._delete_value(root, path, name)

    def delete_container_if_empty(
        self, root: Root | str, path: str, boundary: str
    ) -> bool:
        """Remove the container at *path* if it holds nothing.

        The parent of the container must equal or lie below *boundary*, and
        a top level container is never removed.  Returns ``True`` only when
        the container was deleted.
        """
        root, path = Root.parse(root), normalize_path(path)
        if len(split_path(path)) < 2:
            return False
        if not within_boundary(parent_path(path), boundary):
            logger.debug("not cleaning %s\\%s: outside %s", root.value, path, boundary)
            return False
        with _tagged(root, path):
            if not self._container_exists(root, path):
                return False
            if self._value_names(root, path) or self._container_names(root, path):
                return False
            self._delete_container(root, path)
        logger.debug("removed empty container %s\\%s", root.value, path)
        return True

    def acquire(self, root: Root, path: str) -> None:
        self.gate.grant_access(root, path)
        self._on_granted(root, path)

    def _on_granted(self, root: Root, path: str) -> None:
        pass

    # ---- backend hooks ----
    @abstractmethod
    def _read(self, root: Root, path: str, name: str) -> StoredValue | None:
        pass

    @abstractmethod
    def _write(self, root: Root, path: str, name: str, data: Any, kind: ValueKind) -> None:
        pass

    @abstractmethod
    def _delete_value(self, root: Root, path: str, name: str) -> None:
        pass

    @abstractmethod
    def _container_exists(self, root: Root, path: str) -> bool:
        pass

    @abstractmethod
    def _value_names(self, root: Root, path: str) -> list[str]:
        pass

    @abstractmethod
    def _container_names(self, root: Root, path: str) -> list[str]:
        pass

    @abstractmethod
    def _delete_container(self, root: Root, path: str) -> None:
        pass


@contextmanager
def _tagged(root: Root, path: str, name: str = "") -> Iterator[None]:
    """Attach the location to any :class:`ReconcileError` raised inside."""
    try:
        yield
    except ReconcileError as exc:
        if exc.location is None:
            exc.location = Location(root, path, name)
        raise


# ---------------------------------------------------------------------------
# Adjacent boolean stores
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FirewallRule:
    name: str
    direction: str = "out"
    action: str = "block"
    program: str | None = None
    remote_ip: str | None = None
    description: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("firewall rule needs a name")
        if self.direction not in ("in", "out"):
            raise ValueError(f"invalid direction {self.direction!r}")
        if self.action not in ("block", "allow"):
            raise ValueError(f"invalid action {self.action!r}")


class TaskStore(ABC):
    """Scheduled tasks seen as named booleans."""

    name: str = ""

    def __init__(self, *, gate: ElevationGate | None = None) -> None:
        self.gate = gate if gate is not None else ElevationGate()

    @abstractmethod
    def exists(self, task: str) -> bool:
        pass

    @abstractmethod
    def is_enabled(self, task: str) -> bool:
        """Return ``True`` if the task exists and is enabled."""

    @abstractmethod
    def set_enabled(self, task: str, enabled: bool, *, elevate: bool = False) -> bool:
        """Enable or disable *task*; returns ``False`` if it does not exist."""

    @abstractmethod
    def remove(self, task: str) -> bool:
        pass

    def any_enabled(self, tasks) -> bool:
        return any(self.is_enabled(t) for t in tasks)


class FirewallStore(ABC):
    """Firewall rules seen as named booleans (present or absent)."""

    name: str = ""

    @abstractmethod
    def exists(self, rule_name: str) -> bool:
        pass

    @abstractmethod
    def add_rule(self, rule: FirewallRule) -> bool:
        """Add *rule* unless a rule with that name exists; returns ``True`` if added."""

    @abstractmethod
    def remove_by_name(self, rule_name: str) -> int:
        """Remove every rule called *rule_name* and return how many went."""
