"""Declarative catalog of configuration entries and tweak probes.

The catalog is plain data.  Adding a policy or a toggle means adding a
YAML record, never code.  Two shapes exist:

* :class:`ConfigEntry` - one policy-style override written to one or more
  locations.  "Configured" means the value is present.
* :class:`TweakProbe` - a boolean toggle whose state is the OR of its
  :class:`Comparison` records and whose switch is a list of
  :class:`Action` records.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any, Literal

from .backends.base import FirewallRule
from .backends.yaml_backend import require_yaml
from .errors import CatalogError, UnknownEntryError, ValidationError
from .locations import Location, ValueKind

logger = logging.getLogger(__name__)

POLICY_BOUNDARY = "SOFTWARE\\Policies"

ComparisonSource = Literal["value", "exists", "task", "firewall"]
ActionTarget = Literal["value", "task", "firewall"]


@dataclass(frozen=True)
class Applicability:
    """Inclusive build range; ``0`` leaves a side unbounded."""

    min_build: int = 0
    max_build: int = 0

    def __post_init__(self) -> None:
        if self.min_build < 0 or self.max_build < 0:
            raise ValueError("build numbers must not be negative")
        if self.min_build and self.max_build and self.min_build > self.max_build:
            raise ValueError("min_build is greater than max_build")

    def matches(self, build: int) -> bool:
        return (self.min_build == 0 or build >= self.min_build) and (
            self.max_build == 0 or build <= self.max_build
        )


ALWAYS = Applicability()


@dataclass(frozen=True)
class ConfigEntry:
    id: str
    name: str
    locations: tuple[Location, ...]
    kind: ValueKind = ValueKind.DWORD
    description: str = ""
    category: str = "General"
    applicability: Applicability = ALWAYS
    default_value: Any = None
    delete_for_default: bool = True
    elevate: bool = False
    boundary: str = POLICY_BOUNDARY
    combine: Literal["first", "all"] = "first"

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("entry id must not be empty")
        if not self.locations:
            raise ValueError(f"{self.id}: at least one location is required")
        if self.combine not in ("first", "all"):
            raise ValueError(f"{self.id}: combine must be 'first' or 'all'")
        if not self.delete_for_default and self.default_value is None:
            raise ValueError(f"{self.id}: a written default needs default_value")


@dataclass(frozen=True)
class Comparison:
    """One test contributing to a probe.

    ``value`` compares the stored text with ``trigger``, ``exists`` tests
    presence, ``task`` tests whether any of ``names`` is enabled and
    ``firewall`` whether a rule called ``names[0]`` exists.
    """

    source: ComparisonSource = "value"
    location: Location | None = None
    trigger: str | None = None
    invert: bool = False
    names: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.source in ("value", "exists") and self.location is None:
            raise ValueError(f"{self.source} comparison needs a location")
        if self.source in ("task", "firewall") and not self.names:
            raise ValueError(f"{self.source} comparison needs names")
        if self.source not in ("value", "exists", "task", "firewall"):
            raise ValueError(f"unknown comparison source {self.source!r}")


@dataclass(frozen=True)
class Action:
    """What switching a probe on or off does.

    For ``value`` targets ``on``/``off`` is the data to write, ``None``
    deletes the value.  ``task`` targets enable the tasks when switched on
    and ``firewall`` targets add ``rule`` when switched on; ``invert`` flips
    both.
    """

    target: ActionTarget = "value"
    location: Location | None = None
    kind: ValueKind = ValueKind.DWORD
    on: Any = None
    off: Any = None
    names: tuple[str, ...] = ()
    rule: FirewallRule | None = None
    invert: bool = False

    def __post_init__(self) -> None:
        if self.target == "value" and self.location is None:
            raise ValueError("value action needs a location")
        if self.target == "task" and not self.names:
            raise ValueError("task action needs names")
        if self.target == "firewall" and self.rule is None:
            raise ValueError("firewall action needs a rule")
        if self.target not in ("value", "task", "firewall"):
            raise ValueError(f"unknown action target {self.target!r}")


@dataclass(frozen=True)
class TweakProbe:
    id: str
    name: str
    comparisons: tuple[Comparison, ...] = ()
    actions: tuple[Action, ...] = ()
    description: str = ""
    category: str = "system"
    applicability: Applicability = ALWAYS
    elevate: bool = False
    restart: str | None = None

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("probe id must not be empty")


class Catalog:
    """Immutable collection of entries and probes indexed by id."""

    def __init__(
        self,
        entries: Iterable[ConfigEntry] = (),
        probes: Iterable[TweakProbe] = (),
    ) -> None:
        self._entries: dict[str, ConfigEntry] = {}
        self._probes: dict[str, TweakProbe] = {}
        for entry in entries:
            self._add(self._entries, entry)
        for probe in probes:
            self._add(self._probes, probe)

    def _add(self, table: dict, item: ConfigEntry | TweakProbe) -> None:
        if item.id in self._entries or item.id in self._probes:
            raise CatalogError(f"duplicate catalog id {item.id!r}")
        table[item.id] = item

    @property
    def entries(self) -> tuple[ConfigEntry, ...]:
        return tuple(self._entries.values())

    @property
    def probes(self) -> tuple[TweakProbe, ...]:
        return tuple(self._probes.values())

    def __len__(self) -> int:
        return len(self._entries) + len(self._probes)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._entries or item_id in self._probes

    def __iter__(self) -> Iterator[ConfigEntry]:
        return iter(self._entries.values())

    def get_entry(self, entry_id: str) -> ConfigEntry:
        try:
            return self._entries[entry_id]
        except KeyError:
            raise UnknownEntryError(entry_id) from None

    def get_probe(self, probe_id: str) -> TweakProbe:
        try:
            return self._probes[probe_id]
        except KeyError:
            raise UnknownEntryError(probe_id) from None

    def applicable_entries(self, build: int) -> list[ConfigEntry]:
        return [e for e in self._entries.values() if e.applicability.matches(build)]

    def applicable_probes(self, build: int) -> list[TweakProbe]:
        return [p for p in self._probes.values() if p.applicability.matches(build)]

    def categories(self) -> list[str]:
        seen: dict[str, None] = {}
        for entry in self._entries.values():
            seen.setdefault(entry.category, None)
        return list(seen)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _location(raw: Mapping[str, Any], where: str, name_key: str = "name") -> Location:
    name = str(raw.get(name_key, "") or "")
    try:
        if "root" in raw:
            return Location(raw["root"], str(raw.get("path", "")), name)
        return Location.parse(str(raw["key"]), name)
    except KeyError as exc:
        raise CatalogError(f"{where}: location needs 'root'/'path' or 'key'") from exc
    except ValidationError as exc:
        raise CatalogError(f"{where}: {exc}") from exc


def _names(raw: Mapping[str, Any]) -> tuple[str, ...]:
    names = raw.get("names", raw.get("tasks", raw.get("rule", ())))
    if isinstance(names, str):
        return (names,)
    return tuple(str(n) for n in names)


def _applicability(raw: Mapping[str, Any]) -> Applicability:
    return Applicability(int(raw.get("min_build", 0) or 0), int(raw.get("max_build", 0) or 0))


def _entry(raw: Mapping[str, Any]) -> ConfigEntry:
    where = f"entry {raw.get('id', '?')}"
    # inline locations name the value ``value_name``; ``name`` is the title
    if raw.get("locations"):
        locations = tuple(_location(loc, where) for loc in raw["locations"])
    else:
        locations = (_location(raw, where, "value_name"),)
    kind = ValueKind.parse(raw.get("kind", "dword"))
    default = raw.get("default")
    return ConfigEntry(
        id=str(raw.get("id", "")),
        name=str(raw.get("name", raw.get("id", ""))),
        description=str(raw.get("description", "")),
        category=str(raw.get("category", "General")),
        locations=locations,
        kind=kind,
        applicability=_applicability(raw),
        default_value=None if default is None else kind.coerce(default),
        delete_for_default=bool(raw.get("delete_for_default", True)),
        elevate=bool(raw.get("elevate", False)),
        boundary=str(raw.get("boundary", POLICY_BOUNDARY)),
        combine=raw.get("combine", "first"),
    )


def _comparison(raw: Mapping[str, Any], where: str) -> Comparison:
    source = raw.get("source", "value")
    location = _location(raw, where) if source in ("value", "exists") else None
    trigger = raw.get("trigger")
    return Comparison(
        source=source,
        location=location,
        trigger=None if trigger is None else str(trigger),
        invert=bool(raw.get("invert", False)),
        names=_names(raw) if source in ("task", "firewall") else (),
    )


def _action(raw: Mapping[str, Any], where: str) -> Action:
    target = raw.get("target", "value")
    if target == "value":
        return Action(
            target="value",
            location=_location(raw, where),
            kind=ValueKind.parse(raw.get("kind", "dword")),
            on=raw.get("on"),
            off=raw.get("off"),
            invert=bool(raw.get("invert", False)),
        )
    if target == "firewall":
        rule = raw.get("rule")
        if not isinstance(rule, Mapping):
            raise CatalogError(f"{where}: firewall action needs a rule mapping")
        return Action(target="firewall", rule=FirewallRule(**rule), invert=bool(raw.get("invert", False)))
    return Action(target=target, names=_names(raw), invert=bool(raw.get("invert", False)))


def _probe(raw: Mapping[str, Any]) -> TweakProbe:
    where = f"probe {raw.get('id', '?')}"
    return TweakProbe(
        id=str(raw.get("id", "")),
        name=str(raw.get("name", raw.get("id", ""))),
        description=str(raw.get("description", "")),
        category=str(raw.get("category", "system")),
        comparisons=tuple(_comparison(c, where) for c in raw.get("comparisons", ())),
        actions=tuple(_action(a, where) for a in raw.get("actions", ())),
        applicability=_applicability(raw),
        elevate=bool(raw.get("elevate", False)),
        restart=raw.get("restart"),
    )


def catalog_from_data(data: Mapping[str, Any]) -> Catalog:
    """Build a :class:`Catalog` from parsed ``{entries: [...], probes: [...]}``.

    Raises
    ------
    CatalogError
        If any record is malformed or an id is used twice.
    """
    if not isinstance(data, Mapping):
        raise CatalogError("catalog root must be a mapping")
    entries: list[ConfigEntry] = []
    probes: list[TweakProbe] = []
    for raw in data.get("entries") or ():
        try:
            entries.append(_entry(raw))
        except (TypeError, ValueError, ValidationError, AttributeError) as exc:
            raise CatalogError(f"entry {_id_of(raw)}: {exc}") from exc
    for raw in data.get("probes") or ():
        try:
            probes.append(_probe(raw))
        except (TypeError, ValueError, ValidationError, AttributeError) as exc:
            raise CatalogError(f"probe {_id_of(raw)}: {exc}") from exc
    return Catalog(entries, probes)


def _id_of(raw: Any) -> str:
    return str(raw.get("id", "?")) if isinstance(raw, Mapping) else "?"


def load_catalog(path: str | Path | None = None) -> Catalog:
    """Load the bundled catalog, or the YAML file at *path*."""
    yaml = require_yaml()
    if path is None:
        text = (resources.files("pytweak") / "data" / "catalog.yaml").read_text(encoding="utf-8")
        source = "bundled catalog"
    else:
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise CatalogError(f"cannot read catalog {path}: {exc}") from exc
        source = str(path)
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise CatalogError(f"{source}: {exc}") from exc
    catalog = catalog_from_data(data)
    logger.debug("loaded %d entries and %d probes from %s", len(catalog.entries), len(catalog.probes), source)
    return catalog
