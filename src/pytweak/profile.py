"""Tweak profiles: probe id -> desired state, grouped by page.

A profile is recorded while the user flips toggles, saved to a file and
later re-applied through :meth:`BulkOrchestrator.set_probes`.  The file
format follows the suffix: ``.ini``, ``.yaml``/``.yml`` or ``.toml``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path

import tomlkit
from tomlkit.exceptions import ParseError

from .backends.yaml_backend import require_yaml
from .catalog import Catalog, TweakProbe
from .detector import ProbeState
from .errors import ConfigLoadError, UnknownEntryError
from .io_config import read_sections, write_sections
from .settings import BooleanAdapter

logger = logging.getLogger(__name__)

SECTION_TITLES = {
    "privacy": "Confidentiality Tweaks",
    "interface": "Interface Tweaks",
    "services": "Services Tweaks",
    "system": "System Tweaks",
}

ProfileData = dict[str, dict[str, bool]]

_BOOL = BooleanAdapter()


def section_for(category: str) -> str:
    return SECTION_TITLES.get(category.lower(), f"{category.title()} Tweaks")


def _as_bool(value: object, where: str) -> bool:
    try:
        return _BOOL.parse(value)
    except (TypeError, ValueError) as exc:
        raise ConfigLoadError(f"{where}: {exc}") from exc


def _normalise(raw: object, source: str) -> ProfileData:
    if not isinstance(raw, Mapping):
        raise ConfigLoadError(f"{source}: profile root must be a mapping")
    data: ProfileData = {}
    for section, values in raw.items():
        if not isinstance(values, Mapping):
            raise ConfigLoadError(f"{source}: section {section!r} must be a mapping")
        data[str(section)] = {
            str(k): _as_bool(v, f"{source} [{section}] {k}") for k, v in values.items()
        }
    return data


# ---------------------------------------------------------------------------
# Formats
# ---------------------------------------------------------------------------


class ProfileFormat(ABC):
    suffixes: tuple[str, ...] = ()

    @abstractmethod
    def load(self, path: Path) -> ProfileData:
        pass

    @abstractmethod
    def save(self, path: Path, data: ProfileData) -> None:
        pass


_FORMATS: dict[str, type[ProfileFormat]] = {}


def register_format(fmt: type[ProfileFormat]) -> type[ProfileFormat]:
    for suf in fmt.suffixes:
        _FORMATS[suf] = fmt
    return fmt


def get_format_for_path(path: Path) -> ProfileFormat:
    fmt_cls = _FORMATS.get(Path(path).suffix.lower())
    if fmt_cls is None:
        raise ValueError(f"No profile format for {Path(path).suffix!r}")
    return fmt_cls()


@register_format
class IniProfileFormat(ProfileFormat):
    suffixes = (".ini",)

    def load(self, path: Path) -> ProfileData:
        return _normalise(read_sections(path), str(path))

    def save(self, path: Path, data: ProfileData) -> None:
        write_sections(
            path,
            {s: {k: "true" if v else "false" for k, v in vals.items()} for s, vals in data.items()},
        )


@register_format
class YamlProfileFormat(ProfileFormat):
    suffixes = (".yaml", ".yml")

    def load(self, path: Path) -> ProfileData:
        yaml = require_yaml()
        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise ConfigLoadError(f"{path}: {exc}") from exc
        return _normalise(raw, str(path))

    def save(self, path: Path, data: ProfileData) -> None:
        yaml = require_yaml()
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as fh:
            yaml.safe_dump(data, fh, sort_keys=False, allow_unicode=True)
        tmp.replace(path)


@register_format
class TomlProfileFormat(ProfileFormat):
    suffixes = (".toml",)

    def load(self, path: Path) -> ProfileData:
        try:
            doc = tomlkit.parse(path.read_text(encoding="utf-8"))
        except ParseError as exc:
            raise ConfigLoadError(f"{path}: {exc}") from exc
        return _normalise(doc.unwrap(), str(path))

    def save(self, path: Path, data: ProfileData) -> None:
        doc = tomlkit.document()
        doc.add(tomlkit.comment("pytweak profile"))
        for section, values in data.items():
            table = tomlkit.table()
            for key, value in values.items():
                table.add(key, bool(value))
            doc.add(section, table)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(tomlkit.dumps(doc), encoding="utf-8")
        tmp.replace(path)


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


class TweakProfile:
    """Desired probe states grouped by page section."""

    def __init__(self, data: Mapping[str, Mapping[str, bool]] | None = None) -> None:
        self._data: ProfileData = {s: dict(v) for s, v in (data or {}).items()}

    @classmethod
    def from_states(cls, states: Iterable[ProbeState]) -> "TweakProfile":
        profile = cls()
        for state in states:
            profile.record(state.probe, state.enabled)
        return profile

    @classmethod
    def load(cls, path: str | Path) -> "TweakProfile":
        path = Path(path)
        if not path.exists():
            raise ConfigLoadError(f"profile {path} does not exist")
        return cls(get_format_for_path(path).load(path))

    def save(self, path: str | Path) -> Path:
        path = Path(path)
        get_format_for_path(path).save(path, self._data)
        logger.info("saved profile with %d tweaks to %s", len(self), path)
        return path

    def record(self, probe: TweakProbe, enabled: bool) -> None:
        self._data.setdefault(section_for(probe.category), {})[probe.id] = bool(enabled)

    def clear(self) -> None:
        self._data.clear()

    @property
    def is_empty(self) -> bool:
        return not any(self._data.values())

    def __len__(self) -> int:
        return sum(len(v) for v in self._data.values())

    def __iter__(self) -> Iterator[tuple[str, bool]]:
        for values in self._data.values():
            yield from values.items()

    def sections(self) -> ProfileData:
        return {s: dict(v) for s, v in self._data.items()}

    def resolve(self, catalog: Catalog) -> list[tuple[TweakProbe, bool]]:
        """Map ids to catalog probes; unknown ids are logged and skipped."""
        pairs: list[tuple[TweakProbe, bool]] = []
        for probe_id, enabled in self:
            try:
                pairs.append((catalog.get_probe(probe_id), enabled))
            except UnknownEntryError:
                logger.warning("profile references unknown tweak %s, skipped", probe_id)
        return pairs
