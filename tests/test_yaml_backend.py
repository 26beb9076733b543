from pathlib import Path

import pytest
import yaml

from pytweak.backends import get_backend
from pytweak.backends.yaml_backend import YamlStore
from pytweak.errors import ConfigLoadError, StoreUnavailableError
from pytweak.locations import Root, ValueKind
from pytweak.orchestrator import BulkOrchestrator
from pytweak.reconciler import Reconciler
from tests.utils import POLICY_KEY, make_entry


def test_changes_persist_across_instances(tmp_path: Path) -> None:
    path = tmp_path / "state" / "store.yaml"
    store = YamlStore(path)
    store.write(Root.HKLM, POLICY_KEY, "NoAutoUpdate", 1, ValueKind.DWORD)
    assert path.exists()
    assert not path.with_suffix(".yaml.tmp").exists()

    again = get_backend("yaml", path=path)
    assert again.read(Root.HKLM, POLICY_KEY, "noautoupdate").data == 1

    again.delete_value(Root.HKLM, POLICY_KEY, "NoAutoUpdate")
    data = yaml.safe_load(path.read_text())
    assert data["HKLM"][POLICY_KEY] == {}


def test_missing_or_empty_file_is_empty_store(tmp_path: Path) -> None:
    assert YamlStore(tmp_path / "none.yaml").dump() == {}
    empty = tmp_path / "empty.yaml"
    empty.write_text("")
    assert YamlStore(empty).dump() == {}


def test_malformed_file_raises(tmp_path: Path) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ConfigLoadError):
        YamlStore(path)
    path.write_text("HKLM: [unclosed\n")
    with pytest.raises(ConfigLoadError):
        YamlStore(path)


def _block_saves(path: Path) -> None:
    path.unlink()
    path.mkdir()


def test_failed_save_raises_and_restores_tree(tmp_path: Path) -> None:
    path = tmp_path / "store.yaml"
    store = YamlStore(path)
    store.write(Root.HKLM, POLICY_KEY, "A", 1, ValueKind.DWORD)
    before = store.dump()
    _block_saves(path)

    with pytest.raises(StoreUnavailableError) as info:
        store.write(Root.HKLM, POLICY_KEY, "B", 2, ValueKind.DWORD)
    assert info.value.location.name == "B"
    assert store.dump() == before

    with pytest.raises(StoreUnavailableError):
        store.delete_value(Root.HKLM, POLICY_KEY, "A")
    assert store.read(Root.HKLM, POLICY_KEY, "A").data == 1


def test_failed_saves_do_not_stop_a_batch(tmp_path: Path) -> None:
    path = tmp_path / "store.yaml"
    store = YamlStore(path)
    rec = Reconciler(store)
    entries = [make_entry(f"E{i}") for i in range(3)]
    for entry in entries:
        rec.apply_entry(entry, 1)
    before = store.dump()
    _block_saves(path)

    progress = []
    result = BulkOrchestrator(rec, notify=lambda r: None).remove_many(
        entries, lambda item_id, ok: progress.append((item_id, ok))
    )
    assert tuple(result) == (0, 3)
    assert progress == [("E0", False), ("E1", False), ("E2", False)]
    assert all(isinstance(exc, StoreUnavailableError) for _, exc in result.failures)
    assert store.dump() == before
