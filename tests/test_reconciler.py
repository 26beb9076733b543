import logging

import pytest

from pytweak.backends.base import FirewallRule
from pytweak.backends.memory_backend import MemoryFirewallStore, MemoryStore, MemoryTaskStore
from pytweak.catalog import Action, ConfigEntry, TweakProbe
from pytweak.detector import StateDetector
from pytweak.elevation import ElevationGate
from pytweak.errors import AccessDeniedError, StoreUnavailableError, ValidationError
from pytweak.locations import Location, Root, ValueKind
from pytweak.reconciler import DEFAULT, Reconciler
from tests.utils import POLICY_KEY, RecordingElevator, make_entry, value_probe


def test_apply_then_detect_round_trip():
    store = MemoryStore()
    entry = make_entry("AUOptions")
    Reconciler(store).apply_entry(entry, "3")
    state = StateDetector(store, build=0).detect(entry)
    assert state.is_configured and state.current_value == 3


def test_apply_rejects_invalid_value():
    store = MemoryStore()
    with pytest.raises(ValidationError):
        Reconciler(store).apply_entry(make_entry("A"), "not a number")
    assert store.dump() == {}


def test_remove_deletes_value_and_empty_container():
    store = MemoryStore()
    entry = make_entry("A")
    rec = Reconciler(store)
    rec.apply_entry(entry, 1)
    assert rec.remove_override(entry)
    assert not store.container_exists(Root.HKLM, POLICY_KEY)
    assert not StateDetector(store, build=0).detect(entry).is_configured
    # a second removal is a no-op that still succeeds
    after_first = store.dump()
    assert rec.remove_override(entry)
    assert store.dump() == after_first


def test_remove_keeps_container_with_sibling_values():
    store = MemoryStore()
    rec = Reconciler(store)
    rec.apply_entry(make_entry("A"), 1)
    rec.apply_entry(make_entry("B"), 1)
    rec.remove_override(make_entry("A"))
    assert store.value_names(Root.HKLM, POLICY_KEY) == ["B"]


def test_remove_cleans_only_inside_boundary():
    store = MemoryStore()
    entry = make_entry("A", path="SOFTWARE\\Vendor\\Tool")
    rec = Reconciler(store)
    rec.apply_entry(entry, 1)
    rec.remove_override(entry)
    assert store.container_exists(Root.HKLM, "SOFTWARE\\Vendor\\Tool")


def test_default_sentinel_removes_or_writes_default():
    store = MemoryStore()
    rec = Reconciler(store)
    removable = make_entry("Removable", default_value=0)
    rec.apply_entry(removable, 1)
    rec.apply_entry(removable, 0)
    assert store.read(Root.HKLM, POLICY_KEY, "Removable") is None

    written = make_entry("Written", default_value=5, delete_for_default=False)
    rec.apply_entry(written, DEFAULT)
    assert store.read(Root.HKLM, POLICY_KEY, "Written").data == 5


def test_multi_location_apply_is_best_effort():
    store = MemoryStore()
    store.deny(Root.HKCU, "Software\\Policies\\AI")
    entry = ConfigEntry(
        "Recall",
        "Recall",
        (
            Location(Root.HKCU, "Software\\Policies\\AI", "Off"),
            Location(Root.HKLM, "SOFTWARE\\Policies\\AI", "Off"),
        ),
    )
    with pytest.raises(AccessDeniedError) as info:
        Reconciler(store).apply_entry(entry, 1)
    assert info.value.target == "Recall"
    assert info.value.location.root is Root.HKCU
    assert store.read(Root.HKLM, "SOFTWARE\\Policies\\AI", "Off").data == 1


def test_elevated_entry_goes_through_gate():
    elevator = RecordingElevator()
    store = MemoryStore(gate=ElevationGate(elevator))
    store.protect(Root.HKLM, "SOFTWARE\\Policies")
    entry = make_entry("A", elevate=True)
    Reconciler(store).apply_entry(entry, 1)
    assert elevator.grants == [(Root.HKLM, POLICY_KEY)]
    with pytest.raises(AccessDeniedError):
        Reconciler(store).apply_entry(make_entry("B", path="SOFTWARE\\Policies\\Other"), 1)


def test_set_probe_writes_on_and_off_values():
    store = MemoryStore()
    probe = value_probe("mouse", ["Speed", "Threshold"], on="6", off="0", kind=ValueKind.STRING)
    detector = StateDetector(store, build=0)
    rec = Reconciler(store)
    rec.set_probe(probe, False)
    assert detector.evaluate(probe) is False
    rec.set_probe(probe, True)
    assert store.read(Root.HKCU, "Control Panel\\Contoso", "Speed").data == "6"
    assert detector.evaluate(probe) is True


def test_set_probe_none_deletes_value():
    store = MemoryStore()
    probe = TweakProbe(
        "auto_end",
        "auto_end",
        actions=(Action(location=Location(Root.HKCU, "Control Panel\\Desktop", "AutoEndTasks"),
                        kind=ValueKind.STRING, on="1", off=None),),
    )
    rec = Reconciler(store)
    rec.set_probe(probe, True)
    rec.set_probe(probe, False)
    assert store.read(Root.HKCU, "Control Panel\\Desktop", "AutoEndTasks") is None


def test_set_probe_tasks_and_inverted_firewall():
    elevator = RecordingElevator()
    tasks = MemoryTaskStore({"\\U\\Scan": True}, protected=["\\U\\Scan"], gate=ElevationGate(elevator))
    firewall = MemoryFirewallStore()
    rule = FirewallRule("Block updates")
    probe = TweakProbe(
        "updates",
        "updates",
        actions=(
            Action(target="firewall", rule=rule, invert=True),
            Action(target="task", names=("\\U\\Scan", "\\U\\Missing")),
        ),
        elevate=True,
    )
    rec = Reconciler(MemoryStore(), tasks=tasks, firewall=firewall)
    rec.set_probe(probe, False)
    assert firewall.exists("Block updates")
    assert not tasks.is_enabled("\\U\\Scan")
    assert elevator.commands == [["schtasks", "/Change", "/TN", "\\U\\Scan", "/DISABLE"]]

    rec.set_probe(probe, True)
    assert not firewall.exists("Block updates")
    assert tasks.is_enabled("\\U\\Scan")


def test_set_probe_without_task_store_fails_but_runs_other_actions():
    store = MemoryStore()
    probe = TweakProbe(
        "mixed",
        "mixed",
        actions=(
            Action(target="task", names=("\\X",)),
            Action(location=Location(Root.HKCU, "Software\\Contoso", "Flag"), on=1, off=0),
        ),
    )
    with pytest.raises(StoreUnavailableError) as info:
        Reconciler(store).set_probe(probe, True)
    assert info.value.target == "mixed"
    assert store.read(Root.HKCU, "Software\\Contoso", "Flag").data == 1


def test_failed_cleanup_is_logged_not_fatal(monkeypatch, caplog):
    store = MemoryStore()
    entry = make_entry("A")
    rec = Reconciler(store)
    rec.apply_entry(entry, 1)

    def refuse(root, path):
        raise AccessDeniedError(f"{path} is locked")

    monkeypatch.setattr(store, "_delete_container", refuse)
    with caplog.at_level(logging.DEBUG, logger="pytweak.reconciler"):
        assert rec.remove_override(entry) is True
    assert store.read(Root.HKLM, POLICY_KEY, "A") is None
    assert store.container_exists(Root.HKLM, POLICY_KEY)
    assert any("cleanup of" in r.getMessage() and r.levelno == logging.DEBUG for r in caplog.records)
