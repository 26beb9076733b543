import subprocess

import pytest

from pytweak.backends.base import FirewallRule
from pytweak.backends.firewall_backend import NetshFirewallStore
from pytweak.backends.memory_backend import MemoryTaskStore
from pytweak.backends.tasks_backend import SchtasksStore
from pytweak.elevation import ElevationGate
from pytweak.errors import AccessDeniedError, StoreUnavailableError
from tests.utils import RecordingElevator, RefusingElevator


class ScriptedRunner:
    """Return canned results keyed by the command's first distinguishing word."""

    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    def __call__(self, argv, **kwargs):
        self.calls.append(list(argv))
        for marker, (code, out) in self.responses.items():
            if marker in argv:
                return subprocess.CompletedProcess(argv, code, out, "")
        return subprocess.CompletedProcess(argv, 1, "", "not found")


def test_schtasks_status_and_enabled():
    runner = ScriptedRunner({"/Query": (0, '"\\T\\Scan","N/A","Disabled"\n')})
    store = SchtasksStore(runner=runner)
    assert store.status("\\T\\Scan") == "Disabled"
    assert store.exists("\\T\\Scan")
    assert not store.is_enabled("\\T\\Scan")
    assert runner.calls[0] == ["schtasks", "/Query", "/TN", "\\T\\Scan", "/FO", "CSV", "/NH"]


def test_schtasks_missing_task_is_skipped():
    store = SchtasksStore(runner=ScriptedRunner({}))
    assert not store.is_enabled("\\T\\Gone")
    assert store.set_enabled("\\T\\Gone", False) is False


def test_schtasks_change_direct_and_elevated():
    runner = ScriptedRunner({"/Query": (0, '"\\T\\Scan","N/A","Ready"\n'), "/Change": (0, "SUCCESS")})
    store = SchtasksStore(runner=runner)
    assert store.set_enabled("\\T\\Scan", False)
    assert runner.calls[-1] == ["schtasks", "/Change", "/TN", "\\T\\Scan", "/DISABLE"]

    elevator = RecordingElevator()
    elevated = SchtasksStore(gate=ElevationGate(elevator), runner=runner)
    assert elevated.set_enabled("\\T\\Scan", True, elevate=True)
    assert elevator.commands == [["schtasks", "/Change", "/TN", "\\T\\Scan", "/ENABLE"]]


def test_schtasks_change_failures():
    runner = ScriptedRunner({"/Query": (0, '"\\T\\Scan","N/A","Ready"\n'), "/Change": (1, "ERROR: Access is denied.")})
    with pytest.raises(AccessDeniedError):
        SchtasksStore(runner=runner).set_enabled("\\T\\Scan", False)
    refused = SchtasksStore(gate=ElevationGate(RefusingElevator()), runner=runner)
    with pytest.raises(AccessDeniedError):
        refused.set_enabled("\\T\\Scan", False, elevate=True)


def test_schtasks_unavailable():
    def broken(argv, **kwargs):
        raise FileNotFoundError("schtasks")

    with pytest.raises(StoreUnavailableError):
        SchtasksStore(runner=broken).exists("\\T")


def test_memory_tasks_protected_need_elevation():
    tasks = MemoryTaskStore({"\\T": True}, protected=["\\t"])
    with pytest.raises(AccessDeniedError):
        tasks.set_enabled("\\T", False)
    with pytest.raises(AccessDeniedError):
        tasks.set_enabled("\\T", False, elevate=True)
    assert tasks.is_enabled("\\T")
    failing = MemoryTaskStore({"\\T": True}, protected=["\\T"], gate=ElevationGate(RecordingElevator(status=1)))
    with pytest.raises(AccessDeniedError):
        failing.set_enabled("\\T", False, elevate=True)


def test_netsh_add_and_remove_rule():
    runner = ScriptedRunner({"add": (0, "Ok."), "delete": (0, "Deleted 2 rule(s).\nOk.")})
    store = NetshFirewallStore(runner=runner)
    rule = FirewallRule("Block updates", program="C:\\usoclient.exe", description="blocks")
    assert store.add_rule(rule)
    assert runner.calls[-1] == [
        "netsh", "advfirewall", "firewall", "add", "rule",
        "name=Block updates", "dir=out", "action=block", "enable=yes",
        "program=C:\\usoclient.exe", "description=blocks",
    ]
    # "show" is not scripted, so the rule reads as absent
    assert store.remove_by_name("Block updates") == 0

    present = NetshFirewallStore(runner=ScriptedRunner({"show": (0, "Rule Name: x"), "delete": (0, "Deleted 2 rule(s).")}))
    assert present.remove_by_name("x") == 2
    assert present.add_rule(FirewallRule("x")) is False


def test_firewall_rule_validation():
    with pytest.raises(ValueError):
        FirewallRule("")
    with pytest.raises(ValueError):
        FirewallRule("x", direction="sideways")
