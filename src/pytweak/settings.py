"""Application preferences cached in memory and written through to a store.

One :class:`SettingsCache` instance is created at startup and passed to
whoever needs it.  Every :meth:`SettingsCache.set` writes the new value
through and then calls exactly one live-apply hook for that key before
returning.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from threading import RLock
from typing import Any, Protocol

from .backends.base import BaseStore
from .errors import TweakError, UnknownSettingError, ValidationError
from .locations import Root, ValueKind

logger = logging.getLogger(__name__)

SETTINGS_PATH = "Software\\pytweak"
BACKDROPS = ("None", "Mica", "MicaAlt", "Acrylic")
LANGUAGE_ALIASES = {"en": "en-us", "fr": "fr-fr", "nl": "nl-nl"}

LiveApplyHook = Callable[[str, Any], None]


####################
##### ADAPTERS #####
####################

class TypeAdapter(Protocol):
    """Adapter between a preference value and its stored form."""

    kind: ValueKind

    def parse(self, raw: Any) -> Any:
        """Convert stored (or user supplied) *raw* into the Python value.

        Implementations raise :class:`TypeError` or :class:`ValueError` when
        *raw* cannot be converted.
        """

    def serialize(self, value: Any) -> Any:
        """Return the data written to the store for *value*."""


class StringAdapter:
    kind = ValueKind.STRING

    def parse(self, raw: Any) -> str:
        if isinstance(raw, (bytes, list, tuple, dict)) or raw is None:
            raise TypeError("expected str")
        return str(raw)

    def serialize(self, value: Any) -> str:
        return str(value)


class IntegerAdapter:
    kind = ValueKind.DWORD

    def parse(self, raw: Any) -> int:
        if isinstance(raw, bool):
            return int(raw)
        if isinstance(raw, int):
            return raw
        if isinstance(raw, str):
            return int(raw.strip())
        raise TypeError("expected int")

    def serialize(self, value: Any) -> int:
        return int(value)


class BooleanAdapter:
    kind = ValueKind.DWORD

    _TRUE = {"1", "true", "yes", "on"}
    _FALSE = {"0", "false", "no", "off"}

    def parse(self, raw: Any) -> bool:
        if isinstance(raw, (bool, int)):
            return raw != 0
        if isinstance(raw, str):
            text = raw.strip().lower()
            if text in self._TRUE:
                return True
            if text in self._FALSE:
                return False
            raise ValueError(f"invalid boolean {raw!r}")
        raise TypeError("expected bool")

    def serialize(self, value: Any) -> int:
        return 1 if value else 0


class ChoiceAdapter(StringAdapter):
    """String restricted to ``choices``; matching ignores case."""

    def __init__(self, choices: Iterable[str]) -> None:
        self.choices = tuple(choices)

    def parse(self, raw: Any) -> str:
        text = super().parse(raw).strip()
        for choice in self.choices:
            if choice.lower() == text.lower():
                return choice
        raise ValueError(f"{text!r} is not one of {', '.join(self.choices)}")


class ColorAdapter(StringAdapter):
    """``#AARRGGBB`` colour text; ``#RRGGBB`` gets an opaque alpha."""

    _RE = re.compile(r"^#?([0-9a-fA-F]{6}|[0-9a-fA-F]{8})$")

    def parse(self, raw: Any) -> str:
        match = self._RE.match(super().parse(raw).strip())
        if match is None:
            raise ValueError(f"invalid colour {raw!r}")
        digits = match.group(1).upper()
        return "#" + (digits if len(digits) == 8 else "FF" + digits)


class LanguageAdapter(StringAdapter):
    _RE = re.compile(r"^[a-z]{2,3}(-[a-z0-9]{2,8})*$")

    def parse(self, raw: Any) -> str:
        code = super().parse(raw).strip().lower().replace("_", "-")
        code = LANGUAGE_ALIASES.get(code, code)
        if not self._RE.match(code):
            raise ValueError(f"invalid language code {raw!r}")
        return code


TYPE_REGISTRY: dict[type, TypeAdapter] = {
    str: StringAdapter(),
    int: IntegerAdapter(),
    bool: BooleanAdapter(),
}


@dataclass(frozen=True)
class Preference:
    key: str
    default: Any
    adapter: TypeAdapter | None = None

    def __post_init__(self) -> None:
        if self.adapter is None:
            try:
                object.__setattr__(self, "adapter", TYPE_REGISTRY[type(self.default)])
            except KeyError:
                raise ValueError(f"no adapter for {type(self.default).__name__} preference {self.key}") from None


DEFAULT_PREFERENCES = (
    Preference("Backdrop", "Mica", ChoiceAdapter(BACKDROPS)),
    Preference("AccentColor", "#FF0078D4", ColorAdapter()),
    Preference("Language", "en-us", LanguageAdapter()),
)


def _noop_hook(key: str, value: Any) -> None:
    logger.debug("no live-apply hook for %s (value %r)", key, value)


class SettingsCache:
    """Process-lifetime cache in front of one store container."""

    def __init__(
        self,
        store: BaseStore,
        *,
        preferences: Iterable[Preference] = DEFAULT_PREFERENCES,
        root: Root | str = Root.HKCU,
        path: str = SETTINGS_PATH,
        hooks: Mapping[str, LiveApplyHook] | None = None,
        load: bool = True,
    ) -> None:
        self.store = store
        self.root = Root.parse(root)
        self.path = path
        self._lock = RLock()
        self._prefs: dict[str, Preference] = {p.key: p for p in preferences}
        self._values: dict[str, Any] = {k: p.default for k, p in self._prefs.items()}
        self._hooks: dict[str, LiveApplyHook] = {}
        for key, hook in (hooks or {}).items():
            self.on_change(key, hook)
        if load:
            self.load()

    def _pref(self, key: str) -> Preference:
        try:
            return self._prefs[key]
        except KeyError:
            raise UnknownSettingError(key) from None

    def _write(self, pref: Preference, value: Any) -> bool:
        try:
            self.store.write(
                self.root, self.path, pref.key, pref.adapter.serialize(value), pref.adapter.kind
            )
        except TweakError as exc:
            logger.warning("could not save setting %s: %s", pref.key, exc)
            return False
        return True

    def load(self) -> None:
        """Populate the cache from the store and heal missing or bad values.

        Missing keys get their default written.  Stored values that cannot
        be converted fall back to the default, which is written back.
        """
        with self._lock:
            for key, pref in self._prefs.items():
                try:
                    stored = self.store.read(self.root, self.path, key)
                except TweakError as exc:
                    logger.warning("could not read setting %s, using default: %s", key, exc)
                    self._values[key] = pref.default
                    continue
                if stored is None:
                    logger.info("setting %s missing, writing default %r", key, pref.default)
                    self._values[key] = pref.default
                    self._write(pref, pref.default)
                    continue
                try:
                    self._values[key] = pref.adapter.parse(stored.data)
                except (TypeError, ValueError) as exc:
                    logger.warning("setting %s has unusable value %r (%s), using default", key, stored.data, exc)
                    self._values[key] = pref.default
                    self._write(pref, pref.default)

    def get(self, key: str) -> Any:
        pref = self._pref(key)
        with self._lock:
            return self._values.get(key, pref.default)

    def set(self, key: str, value: Any) -> Any:
        """Update *key*, write it through and run its live-apply hook.

        Returns the normalised value.

        Raises
        ------
        UnknownSettingError
            If *key* is not a known preference.
        ValidationError
            If *value* is not valid for *key*; nothing is changed.
        """
        pref = self._pref(key)
        try:
            value = pref.adapter.parse(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"{key}: {exc}") from exc
        with self._lock:
            self._values[key] = value
            self._write(pref, value)
            hook = self._hooks.get(key, _noop_hook)
        hook(key, value)
        return value

    def on_change(self, key: str, hook: LiveApplyHook) -> None:
        """Install the live-apply hook for *key*, replacing any previous one."""
        self._pref(key)
        with self._lock:
            self._hooks[key] = hook

    def keys(self) -> list[str]:
        return list(self._prefs)

    def as_dict(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._values)
