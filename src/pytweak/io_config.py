from __future__ import annotations

import configparser
from collections.abc import Mapping
from pathlib import Path

from .errors import ConfigLoadError


def read_sections(path: Path) -> dict[str, dict[str, str]]:
    """Return ``{section: {key: value}}`` for the INI file at *path*.

    Keys keep their case.  A missing file reads as empty.
    """
    parser = configparser.ConfigParser(strict=False, interpolation=None)
    parser.optionxform = str  # type: ignore[assignment]
    data: dict[str, dict[str, str]] = {}
    if path.exists():
        try:
            parser.read(path, encoding="utf-8")
        except configparser.Error as exc:
            raise ConfigLoadError(f"{path}: {exc}") from exc
        for section in parser.sections():
            data[section] = dict(parser.items(section))
    return data


def write_sections(path: Path, data: Mapping[str, Mapping[str, object]]) -> None:
    parser = configparser.ConfigParser(interpolation=None)
    parser.optionxform = str  # type: ignore[assignment]
    for section in data:
        parser.add_section(section)
        for key, value in data[section].items():
            parser.set(section, key, str(value))
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as fh:
        parser.write(fh)
    tmp.replace(path)
