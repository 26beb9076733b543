"""Store addressing: roots, value kinds and paths.

Paths are backslash separated, relative to a root and compared
case-insensitively one component at a time, the same way the Windows
registry compares key names.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, NamedTuple

from .errors import ValidationError

SEP = "\\"


class Root(str, Enum):
    HKLM = "HKLM"
    HKCU = "HKCU"
    HKCR = "HKCR"
    HKU = "HKU"
    HKCC = "HKCC"

    @property
    def long_name(self) -> str:
        return _LONG_NAMES[self]

    @classmethod
    def parse(cls, raw: "str | Root") -> "Root":
        """Return the root for ``HKLM``, ``HKLM:`` or ``HKEY_LOCAL_MACHINE``."""
        if isinstance(raw, Root):
            return raw
        text = str(raw).strip().rstrip(":").upper()
        root = _ALIASES.get(text)
        if root is None:
            raise ValidationError(f"unknown store root {raw!r}")
        return root


_LONG_NAMES = {
    Root.HKLM: "HKEY_LOCAL_MACHINE",
    Root.HKCU: "HKEY_CURRENT_USER",
    Root.HKCR: "HKEY_CLASSES_ROOT",
    Root.HKU: "HKEY_USERS",
    Root.HKCC: "HKEY_CURRENT_CONFIG",
}
_ALIASES = {r.value: r for r in Root}
_ALIASES.update({name: r for r, name in _LONG_NAMES.items()})


class ValueKind(str, Enum):
    DWORD = "dword"
    QWORD = "qword"
    STRING = "string"
    EXPAND_STRING = "expand_string"
    MULTI_STRING = "multi_string"
    BINARY = "binary"

    @classmethod
    def parse(cls, raw: "str | ValueKind") -> "ValueKind":
        if isinstance(raw, ValueKind):
            return raw
        text = str(raw).strip().lower().replace("-", "_")
        text = _KIND_ALIASES.get(text, text)
        try:
            return cls(text)
        except ValueError as exc:
            raise ValidationError(f"unknown value kind {raw!r}") from exc

    @property
    def is_integer(self) -> bool:
        return self in (ValueKind.DWORD, ValueKind.QWORD)

    def coerce(self, value: Any) -> Any:
        """Return *value* converted to the Python type stored for this kind.

        Raises
        ------
        ValidationError
            If *value* cannot be represented by this kind.
        """
        try:
            if self.is_integer:
                return self._coerce_int(value)
            if self is ValueKind.BINARY:
                return _coerce_bytes(value)
            if self is ValueKind.MULTI_STRING:
                if isinstance(value, str):
                    return [value]
                if isinstance(value, (list, tuple)) and all(
                    isinstance(v, str) for v in value
                ):
                    return list(value)
                raise TypeError("expected str or list of str")
            if isinstance(value, bool) or not isinstance(value, (str, int)):
                raise TypeError("expected str")
            return str(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"{value!r} is not a valid {self.value}: {exc}") from exc

    def _coerce_int(self, value: Any) -> int:
        if isinstance(value, bool):
            number = int(value)
        elif isinstance(value, int):
            number = value
        elif isinstance(value, str):
            text = value.strip()
            number = int(text, 0) if text[1:2].lower() in ("x", "o", "b") else int(text)
        else:
            raise TypeError("expected int")
        bits = 32 if self is ValueKind.DWORD else 64
        if not 0 <= number < 2**bits:
            raise ValueError(f"out of range for {bits}-bit value")
        return number


_KIND_ALIASES = {
    "reg_dword": "dword",
    "reg_qword": "qword",
    "reg_sz": "string",
    "sz": "string",
    "reg_expand_sz": "expand_string",
    "expandstring": "expand_string",
    "reg_multi_sz": "multi_string",
    "multistring": "multi_string",
    "reg_binary": "binary",
}


def _coerce_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        return bytes.fromhex(value.replace(",", " "))
    if isinstance(value, (list, tuple)):
        return bytes(value)
    raise TypeError("expected bytes or hex text")


class StoredValue(NamedTuple):
    """A value read back from a store together with its kind."""

    data: Any
    kind: ValueKind


def as_text(data: Any) -> str:
    """Return the text form used when comparing stored data.

    ``None`` is the empty string, bytes render as their decimal octets
    concatenated and multi strings are newline joined.
    """
    if data is None:
        return ""
    if isinstance(data, (bytes, bytearray)):
        return "".join(str(b) for b in data)
    if isinstance(data, (list, tuple)):
        return "\n".join(str(v) for v in data)
    if isinstance(data, bool):
        return str(int(data))
    return str(data)


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


def split_path(path: str) -> list[str]:
    return [p for p in str(path).replace("/", SEP).split(SEP) if p]


def normalize_path(path: str) -> str:
    return SEP.join(split_path(path))


def parent_path(path: str) -> str:
    return SEP.join(split_path(path)[:-1])


def leaf_name(path: str) -> str:
    parts = split_path(path)
    return parts[-1] if parts else ""


def path_key(path: str) -> tuple[str, ...]:
    return tuple(p.casefold() for p in split_path(path))


def within_boundary(path: str, prefix: str) -> bool:
    """Return ``True`` if *path* equals *prefix* or lies below it."""
    parts = path_key(path)
    fence = path_key(prefix)
    if not fence:
        return False
    return parts[: len(fence)] == fence


@dataclass(frozen=True)
class Location:
    """A value address: ``root`` + container ``path`` + value ``name``."""

    root: Root
    path: str
    name: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "root", Root.parse(self.root))
        object.__setattr__(self, "path", normalize_path(self.path))

    def __str__(self) -> str:
        full = f"{self.root.value}{SEP}{self.path}"
        return f"{full}{SEP}{self.name}" if self.name else f"{full}{SEP}(Default)"

    @classmethod
    def parse(cls, full_path: str, name: str = "") -> "Location":
        """Build a location from ``HKLM\\Some\\Key`` style text."""
        parts = split_path(full_path)
        if not parts:
            raise ValidationError("empty location")
        return cls(Root.parse(parts[0]), SEP.join(parts[1:]), name)
