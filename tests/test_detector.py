import logging

from pytweak.backends.base import FirewallRule
from pytweak.backends.memory_backend import MemoryFirewallStore, MemoryStore, MemoryTaskStore
from pytweak.cancellation import CancellationToken
from pytweak.catalog import Applicability, Catalog, Comparison, ConfigEntry, TweakProbe
from pytweak.detector import BUILD_LOCATION, CategorySummary, StateDetector, detect_build, run_sections
from pytweak.locations import Location, Root, ValueKind
from tests.utils import POLICY_KEY, make_entry


class CountingStore(MemoryStore):
    """Cancels *token* on the n-th read."""

    def __init__(self, token, cancel_at):
        super().__init__()
        self.token = token
        self.cancel_at = cancel_at
        self.reads = 0

    def read(self, root, path, name=""):
        self.reads += 1
        if self.reads == self.cancel_at:
            self.token.cancel()
        return super().read(root, path, name)


def test_detect_reports_written_value():
    store = MemoryStore()
    entry = make_entry("NoAutoUpdate")
    detector = StateDetector(store, build=19045)
    assert detector.detect(entry).is_configured is False

    store.write(Root.HKLM, POLICY_KEY, "NoAutoUpdate", 1, ValueKind.DWORD)
    state = detector.detect(entry)
    assert state.is_configured
    assert state.current_value == 1
    assert state.actual_kind is ValueKind.DWORD


def test_detect_multi_location_first_and_all():
    store = MemoryStore()
    locations = (
        Location(Root.HKLM, "SOFTWARE\\Policies\\AI", "Off"),
        Location(Root.HKCU, "Software\\Policies\\AI", "Off"),
    )
    first = ConfigEntry("First", "First", locations)
    every = ConfigEntry("Every", "Every", locations, combine="all")
    store.write(Root.HKCU, "Software\\Policies\\AI", "Off", 1, "dword")
    detector = StateDetector(store, build=26100)
    assert detector.detect(first).current_value == 1
    assert detector.detect(every).is_configured is False


def test_read_errors_mean_not_configured():
    store = MemoryStore()
    store.write(Root.HKLM, POLICY_KEY, "A", 1, "dword")
    store.deny(Root.HKLM, POLICY_KEY)
    assert StateDetector(store, build=0).detect(make_entry("A")).is_configured is False
    store.set_unavailable(Root.HKLM)
    assert StateDetector(store, build=0).detect(make_entry("A")).is_configured is False


def test_scan_filters_by_build():
    catalog = Catalog(
        [
            make_entry("Plain"),
            make_entry("Recall", applicability=Applicability(min_build=26100)),
        ]
    )
    store = MemoryStore()
    assert [s.entry.id for s in StateDetector(store, build=19045).scan(catalog)] == ["Plain"]
    assert [s.entry.id for s in StateDetector(store, build=26100).scan(catalog)] == ["Plain", "Recall"]


def test_build_is_read_from_store():
    store = MemoryStore()
    assert detect_build(store) == 0
    store.write(BUILD_LOCATION.root, BUILD_LOCATION.path, BUILD_LOCATION.name, "26100", "string")
    assert StateDetector(store).build == 26100
    store.write(BUILD_LOCATION.root, BUILD_LOCATION.path, BUILD_LOCATION.name, "n/a", "string")
    assert detect_build(store) == 0


def test_scan_stops_when_cancelled():
    token = CancellationToken()
    store = CountingStore(token, cancel_at=10)
    catalog = Catalog([make_entry(f"E{i:03d}") for i in range(100)])
    states = StateDetector(store, build=0).scan(catalog, token)
    assert 1 <= len(states) <= 10
    assert store.reads == len(states)


def test_summary_counts_applicable_entries_only():
    store = MemoryStore()
    store.write(Root.HKLM, POLICY_KEY, "A", 1, "dword")
    catalog = Catalog(
        [
            make_entry("A", category="Updates"),
            make_entry("B", category="Updates"),
            make_entry("C", category="Privacy"),
            make_entry("Future", category="Privacy", applicability=Applicability(min_build=99999)),
        ]
    )
    summary = StateDetector(store, build=19045).summary(catalog)
    assert summary == {
        "Updates": CategorySummary(total=2, configured=1),
        "Privacy": CategorySummary(total=1, configured=0),
    }


def test_task_and_firewall_comparisons():
    tasks = MemoryTaskStore({"\\T\\One": False, "\\T\\Two": True})
    firewall = MemoryFirewallStore([FirewallRule("Block updates")])
    detector = StateDetector(MemoryStore(), tasks=tasks, firewall=firewall, build=0)
    assert detector.check(Comparison(source="task", names=("\\T\\One", "\\t\\two")))
    assert not detector.check(Comparison(source="task", names=("\\T\\One",)))
    assert not detector.check(Comparison(source="firewall", names=("Block updates",), invert=True))
    probe = TweakProbe(
        "updates",
        "updates",
        comparisons=(
            Comparison(source="firewall", names=("Block updates",), invert=True),
            Comparison(source="task", names=("\\T\\One",)),
        ),
    )
    assert detector.evaluate(probe) is False
    firewall.remove_by_name("block updates")
    assert detector.evaluate(probe) is True


def test_missing_adjacent_stores_read_as_off():
    detector = StateDetector(MemoryStore(), build=0)
    assert not detector.check(Comparison(source="task", names=("X",)))
    assert not detector.check(Comparison(source="firewall", names=("X",)))


def test_run_sections_isolates_failures(caplog):
    def boom():
        raise RuntimeError("section broke")

    with caplog.at_level(logging.ERROR, logger="pytweak.detector"):
        results = run_sections({"ok": lambda: 42, "bad": boom})
    assert results == {"ok": 42, "bad": None}
    assert "bad" in caplog.text
