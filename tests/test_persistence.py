from __future__ import annotations
import json
import os
from datetime import date

import pytest

from pickem_core import store
from pickem_core.errors import FormatError, StorageError
from pickem_core.history import HistoryManager
from pickem_core.io import encode_payload
from pickem_core.models import EngineConfig, initial_document
from pickem_core.persistence import (
    FileStore, MemoryStore, PersistenceGateway, ProjectFile,
    file_save_capability, quick_save,
)
from pickem_core.test_helpers import FailingStore, ManualTimers


def _attached(backend=None):
    timers = ManualTimers()
    hm = HistoryManager(initial_document())
    gw = PersistenceGateway(backend or MemoryStore(), timer_factory=timers)
    gw.attach(hm)
    return hm, gw, timers


# ----- stores -----
def test_file_store_round_trip(tmp_path):
    fs = FileStore(str(tmp_path / "state"))
    assert fs.get("k") is None
    fs.put("k", b"{}")
    assert fs.get("k") == b"{}"
    assert os.path.exists(fs.path_for("k"))
    assert os.listdir(tmp_path / "state") == ["k.json"]

def test_file_store_write_failure(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("x")
    with pytest.raises(StorageError):
        FileStore(str(blocker)).put("k", b"{}")


# ----- load / save -----
def test_load_nothing_stored():
    assert PersistenceGateway(MemoryStore()).load() is None

def test_save_then_load():
    gw = PersistenceGateway(MemoryStore())
    doc = store.set_row_nick(initial_document(), 0, "Ann")
    gw.save(doc)
    assert gw.load() == doc

def test_load_migrates_legacy_blob():
    backend = MemoryStore()
    backend.put("pickem_editor_state", encode_payload({"rows": [{"nick": "Ann"}]}))
    doc = PersistenceGateway(backend).load()
    assert doc.schemaVersion == 2
    assert doc.active_stage.rows[0].nick == "Ann"

def test_load_corrupt_blob():
    backend = MemoryStore()
    backend.put("pickem_editor_state", b"garbage")
    with pytest.raises(FormatError):
        PersistenceGateway(backend).load()

def test_from_config(tmp_path):
    cfg = EngineConfig(storage_dir=str(tmp_path), storage_key="sheet", autosave_debounce_seconds=0.5)
    gw = PersistenceGateway.from_config(cfg)
    gw.save(initial_document())
    assert gw.debounce_seconds == 0.5
    assert (tmp_path / "sheet.json").exists()


# ----- debounced autosave -----
def test_only_latest_edit_is_written():
    hm, gw, timers = _attached()
    for name in ("a", "b", "c"):
        hm.apply(store.set_row_nick, 0, name)
    assert len(timers.timers) == 3
    assert [t.cancelled for t in timers.timers] == [True, True, False]
    assert timers.last.interval == 1.0
    assert timers.last.daemon

    # a superseded ticket that fires anyway writes nothing
    first = timers.timers[0]
    first.function(*first.args)
    assert gw.store.get(gw.key) is None

    timers.last.fire()
    assert gw.load().active_stage.rows[0].nick == "c"
    assert not gw.pending

def test_snapshot_is_read_when_timer_fires():
    holder = {"doc": initial_document()}
    timers = ManualTimers()
    gw = PersistenceGateway(MemoryStore(), source=lambda: holder["doc"], timer_factory=timers)
    gw.schedule()
    holder["doc"] = store.set_row_nick(holder["doc"], 0, "late")
    timers.last.fire()
    assert gw.load().active_stage.rows[0].nick == "late"

def test_undo_is_autosaved_too():
    hm, gw, timers = _attached()
    hm.apply(store.set_row_nick, 0, "Ann")
    hm.undo()
    timers.last.fire()
    assert gw.load().active_stage.rows[0].nick == "Player 1"

def test_failed_autosave_is_retried():
    backend = FailingStore()
    hm, gw, timers = _attached(backend)
    hm.apply(store.set_row_nick, 0, "Ann")

    timers.last.fire()
    assert isinstance(gw.last_error, StorageError)
    assert backend.attempts == 1
    assert len(timers.live()) == 1

    timers.last.fire()
    assert backend.attempts == 2
    assert hm.current.active_stage.rows[0].nick == "Ann"

    backend.healthy = True
    timers.last.fire()
    assert gw.last_error is None
    assert json.loads(backend.data[gw.key])["stages"][0]["rows"][0]["nick"] == "Ann"
    assert timers.live() == []

def test_newer_edit_replaces_pending_retry():
    backend = FailingStore()
    hm, gw, timers = _attached(backend)
    hm.apply(store.set_row_nick, 0, "Ann")
    timers.last.fire()
    retry = timers.last

    hm.apply(store.set_row_nick, 0, "Bob")
    assert retry.cancelled
    assert len(timers.live()) == 1

def test_flush_and_close():
    hm, gw, timers = _attached()
    hm.apply(store.set_row_nick, 0, "Ann")
    gw.flush()
    assert timers.last.cancelled
    assert gw.load().active_stage.rows[0].nick == "Ann"

    gw.close()
    hm.apply(store.set_row_nick, 0, "Bob")
    assert timers.live() == []
    assert gw.load().active_stage.rows[0].nick == "Ann"

def test_flush_failure_is_reported():
    hm, gw, _ = _attached(FailingStore())
    with pytest.raises(StorageError):
        gw.flush()
    assert gw.last_error is not None


# ----- project file / quick save -----
def test_quick_save_without_file_falls_back_to_download():
    doc = initial_document()
    blob = quick_save(doc, None, date(2024, 5, 1))
    assert blob.filename.endswith(".pickemfull")

def test_quick_save_to_project_file(tmp_path):
    doc = store.set_row_nick(initial_document(), 0, "Ann")
    pf = file_save_capability(str(tmp_path / "league.pickemfull"))
    assert isinstance(pf, ProjectFile)
    assert quick_save(doc, pf) is None
    assert pf.read() == doc

def test_file_save_capability_absent(tmp_path):
    assert file_save_capability("") is None
    assert file_save_capability(str(tmp_path / "missing" / "x.pickemfull")) is None

def test_project_file_write_failure(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("x")
    with pytest.raises(StorageError):
        ProjectFile(str(blocker / "x.pickemfull")).write(initial_document())
