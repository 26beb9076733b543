from __future__ import annotations

from typing import Any

try:
    import winreg
except ImportError:  # pragma: no cover - platform specific
    winreg = None

from ..elevation import ElevationGate
from ..errors import AccessDeniedError, ReconcileError, StoreUnavailableError
from ..locations import Root, StoredValue, ValueKind, leaf_name, parent_path
from . import register_backend
from .base import BaseStore

_KIND_TO_REG = {
    ValueKind.DWORD: "REG_DWORD",
    ValueKind.QWORD: "REG_QWORD",
    ValueKind.STRING: "REG_SZ",
    ValueKind.EXPAND_STRING: "REG_EXPAND_SZ",
    ValueKind.MULTI_STRING: "REG_MULTI_SZ",
    ValueKind.BINARY: "REG_BINARY",
}


def _translate(exc: OSError, what: str) -> ReconcileError:
    if isinstance(exc, PermissionError):
        return AccessDeniedError(f"{what}: {exc}")
    return StoreUnavailableError(f"{what}: {exc}")


@register_backend
class WinRegistryStore(BaseStore):  # pragma: no cover - platform specific
    """The Windows registry through :mod:`winreg` (64-bit view by default)."""

    name = "winreg"

    def __init__(self, *, gate: ElevationGate | None = None, view_64: bool = True) -> None:
        if winreg is None:
            raise StoreUnavailableError("the Windows registry is not available on this platform")
        super().__init__(gate=gate)
        self._view = winreg.KEY_WOW64_64KEY if view_64 else 0
        self._reg_types = {kind: getattr(winreg, reg) for kind, reg in _KIND_TO_REG.items()}
        self._kinds = {reg: kind for kind, reg in self._reg_types.items()}

    def _hive(self, root: Root):
        return getattr(winreg, root.long_name)

    def _open(self, root: Root, path: str, access: int):
        return winreg.OpenKeyEx(self._hive(root), path, 0, access | self._view)

    def _read(self, root: Root, path: str, name: str) -> StoredValue | None:
        try:
            with self._open(root, path, winreg.KEY_READ) as key:
                data, reg_type = winreg.QueryValueEx(key, name)
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise _translate(exc, f"reading {root.value}\\{path}") from exc
        kind = self._kinds.get(reg_type, ValueKind.BINARY)
        if kind is ValueKind.BINARY and data is None:
            data = b""
        return StoredValue(data, kind)

    def _write(self, root: Root, path: str, name: str, data: Any, kind: ValueKind) -> None:
        try:
            with winreg.CreateKeyEx(
                self._hive(root), path, 0, winreg.KEY_WRITE | self._view
            ) as key:
                winreg.SetValueEx(key, name, 0, self._reg_types[kind], data)
        except OSError as exc:
            raise _translate(exc, f"writing {root.value}\\{path}") from exc

    def _delete_value(self, root: Root, path: str, name: str) -> None:
        try:
            with self._open(root, path, winreg.KEY_SET_VALUE) as key:
                winreg.DeleteValue(key, name)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise _translate(exc, f"deleting {root.value}\\{path}\\{name}") from exc

    def _container_exists(self, root: Root, path: str) -> bool:
        try:
            with self._open(root, path, winreg.KEY_READ):
                return True
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise _translate(exc, f"opening {root.value}\\{path}") from exc

    def _value_names(self, root: Root, path: str) -> list[str]:
        try:
            with self._open(root, path, winreg.KEY_READ) as key:
                _, n_values, _ = winreg.QueryInfoKey(key)
                return [winreg.EnumValue(key, i)[0] for i in range(n_values)]
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise _translate(exc, f"listing {root.value}\\{path}") from exc

    def _container_names(self, root: Root, path: str) -> list[str]:
        try:
            with self._open(root, path, winreg.KEY_READ) as key:
                n_keys, _, _ = winreg.QueryInfoKey(key)
                return [winreg.EnumKey(key, i) for i in range(n_keys)]
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise _translate(exc, f"listing {root.value}\\{path}") from exc

    def _delete_container(self, root: Root, path: str) -> None:
        try:
            with self._open(root, parent_path(path), winreg.KEY_WRITE) as parent:
                winreg.DeleteKeyEx(parent, leaf_name(path), self._view, 0)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise _translate(exc, f"deleting {root.value}\\{path}") from exc
