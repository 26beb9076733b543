from __future__ import annotations

from pathlib import Path

from ..elevation import ElevationGate
from ..errors import ConfigLoadError, StoreUnavailableError
from . import register_backend
from .memory_backend import MemoryStore


def require_yaml():
    try:
        import yaml  # type: ignore
    except ModuleNotFoundError as exc:
        raise ConfigLoadError("PyYAML is required for the YAML store") from exc
    return yaml


@register_backend
class YamlStore(MemoryStore):
    """Memory store persisted to a YAML snapshot after every mutation.

    The file layout is ``{root: {path: {name: {kind: ..., data: ...}}}}``;
    binary data is written as hex text.
    """

    name = "yaml"

    def __init__(self, path: str | Path, *, gate: ElevationGate | None = None) -> None:
        self.path = Path(path)
        super().__init__(gate=gate, data=self._load())
        self._saved = self.dump()

    def _load(self) -> dict:
        yaml = require_yaml()
        if not self.path.exists():
            return {}
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigLoadError(f"cannot read {self.path}: {exc}") from exc
        if raw.strip() == "":
            return {}
        try:
            data = yaml.safe_load(raw) or {}
        except yaml.YAMLError as exc:
            raise ConfigLoadError(f"{self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigLoadError(f"{self.path}: root of a store snapshot must be a mapping")
        return data

    def _changed(self) -> None:
        """Save the tree; on failure put the last saved state back."""
        yaml = require_yaml()
        snapshot = self.dump()
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as fh:
                yaml.safe_dump(snapshot, fh, sort_keys=True, allow_unicode=True)
            tmp.replace(self.path)
        except OSError as exc:
            self._reset(self._saved)
            raise StoreUnavailableError(f"cannot save {self.path}: {exc}") from exc
        self._saved = snapshot
