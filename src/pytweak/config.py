"""Engine configuration from ``config.ini`` and ``PYTWEAK_*`` variables.

Precedence, lowest first: built-in defaults, the ``[pytweak]`` section of
the user config file, environment variables, explicit overrides.
"""

from __future__ import annotations

import logging
import os
import shlex
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from .errors import ConfigLoadError
from .io_config import read_sections, write_sections
from .paths import config_file

logger = logging.getLogger(__name__)

SECTION = "pytweak"
ENV_PREFIX = "PYTWEAK_"


def default_backend() -> str:
    return "winreg" if sys.platform.startswith("win") else "memory"


@dataclass
class EngineConfig:
    backend: str = field(default_factory=default_backend)
    store_path: Path | None = None
    helper: list[str] = field(default_factory=list)
    build: int | None = None
    catalog: Path | None = None
    restart_target: str | None = "explorer.exe"
    log_level: str = "WARNING"

    def as_strings(self) -> dict[str, str]:
        out: dict[str, str] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None or value == []:
                continue
            out[f.name] = _join(value) if f.name == "helper" else str(value)
        return out


def _join(argv: list[str]) -> str:
    return " ".join(f'"{a}"' if " " in a else a for a in argv)


KEYS = frozenset(f.name for f in fields(EngineConfig))


def _convert(key: str, raw: Any) -> Any:
    if raw is None:
        return None
    if key in ("store_path", "catalog"):
        return Path(str(raw)).expanduser() if str(raw).strip() else None
    if key == "helper":
        if not isinstance(raw, str):
            return list(raw)
        return [token.strip("\"'") for token in shlex.split(raw, posix=False)]
    if key == "build":
        text = str(raw).strip()
        return int(text) if text else None
    if key == "restart_target":
        text = str(raw).strip()
        return None if text.lower() in ("", "none", "off") else text
    if key == "log_level":
        return str(raw).strip().upper()
    return str(raw).strip()


def _apply(cfg: EngineConfig, raw: Mapping[str, Any], source: str) -> None:
    for key, value in raw.items():
        name = key.lower()
        if name not in KEYS:
            logger.warning("ignoring unknown setting %r from %s", key, source)
            continue
        try:
            setattr(cfg, name, _convert(name, value))
        except ValueError as exc:
            raise ConfigLoadError(f"{source}: invalid value for {name}: {exc}") from exc


def read_env(environ: Mapping[str, str] | None = None) -> dict[str, str]:
    env = os.environ if environ is None else environ
    result: dict[str, str] = {}
    for key, value in env.items():
        if key.startswith(ENV_PREFIX):
            name = key[len(ENV_PREFIX):].lower()
            if name in KEYS:
                result[name] = value
    return result


def load_config(
    path: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    **overrides: Any,
) -> EngineConfig:
    """Return the effective :class:`EngineConfig`.

    Overrides whose value is ``None`` are ignored so that unset CLI flags do
    not mask file or environment values.

    Raises
    ------
    ConfigLoadError
        If the file cannot be parsed or holds an invalid value.
    """
    cfg = EngineConfig()
    path = config_file() if path is None else Path(path)
    sections = read_sections(path)
    _apply(cfg, sections.get(SECTION, {}), str(path))
    _apply(cfg, read_env(environ), "environment")
    _apply(cfg, {k: v for k, v in overrides.items() if v is not None}, "overrides")
    return cfg


def save_config(cfg: EngineConfig, path: Path | None = None) -> Path:
    path = config_file() if path is None else Path(path)
    write_sections(path, {SECTION: cfg.as_strings()})
    return path


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(levelname)s %(name)s: %(message)s",
    )
