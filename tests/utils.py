from __future__ import annotations

from collections.abc import Sequence

from pytweak.catalog import Action, Comparison, ConfigEntry, TweakProbe
from pytweak.errors import AccessDeniedError
from pytweak.locations import Location, Root, ValueKind

POLICY_KEY = "SOFTWARE\\Policies\\Contoso\\Widget"


class RecordingElevator:
    """Elevator that grants everything and remembers what it was asked."""

    def __init__(self, status: int = 0):
        self.status = status
        self.grants: list[tuple[Root, str]] = []
        self.commands: list[list[str]] = []

    def grant_access(self, root: Root, path: str) -> None:
        self.grants.append((root, path))

    def run_elevated(self, argv: Sequence[str]) -> int:
        self.commands.append(list(argv))
        return self.status


class RefusingElevator:
    def __init__(self):
        self.calls = 0

    def grant_access(self, root: Root, path: str) -> None:
        self.calls += 1
        raise AccessDeniedError("user declined the elevation prompt")

    def run_elevated(self, argv: Sequence[str]) -> int:
        self.calls += 1
        raise AccessDeniedError("user declined the elevation prompt")


def make_entry(
    entry_id: str,
    *,
    path: str = POLICY_KEY,
    root: Root = Root.HKLM,
    name: str | None = None,
    **kwargs,
) -> ConfigEntry:
    """Single-location DWORD entry named after its id."""
    kwargs.setdefault("category", "Test")
    return ConfigEntry(
        id=entry_id,
        name=entry_id,
        locations=(Location(root, path, name or entry_id),),
        **kwargs,
    )


def value_probe(
    probe_id: str,
    names: Sequence[str],
    *,
    trigger: str = "0",
    invert: bool = True,
    on: object = 1,
    off: object = 0,
    path: str = "Control Panel\\Contoso",
    kind: ValueKind = ValueKind.DWORD,
    **kwargs,
) -> TweakProbe:
    """Probe comparing and switching one HKCU value per name."""
    return TweakProbe(
        id=probe_id,
        name=probe_id,
        comparisons=tuple(
            Comparison(location=Location(Root.HKCU, path, n), trigger=trigger, invert=invert)
            for n in names
        ),
        actions=tuple(
            Action(location=Location(Root.HKCU, path, n), kind=kind, on=on, off=off) for n in names
        ),
        **kwargs,
    )
