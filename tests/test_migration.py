from __future__ import annotations
import pytest

from pickem_core.errors import FormatError
from pickem_core.migration import IMPORTED_STAGE_NAME, migrate, normalize_slots
from pickem_core.models import initial_document
from pickem_core.test_helpers import quick_row


def _legacy(rows=None, **extra):
    if rows is None:
        rows = [quick_row(i).model_dump(mode="json", by_alias=True) for i in range(10)]
    return {"rows": rows, "stats": [], "correctTeams": {"three0": [], "pass": [], "out": []}, **extra}


def test_legacy_payload_becomes_single_imported_stage():
    doc = migrate(_legacy())
    assert doc.schemaVersion == 2
    assert len(doc.stages) == 1
    assert doc.library == ()
    stage = doc.active_stage
    assert stage.name == IMPORTED_STAGE_NAME
    assert stage.rowCount == len(stage.rows) == 10
    assert [(c.id, c.name) for c in doc.libraryCategories] == [(stage.id, stage.name)]

def test_legacy_bare_list_is_rows():
    doc = migrate([{"nick": "Ann", "three0": ["A"]}])
    row = doc.active_stage.rows[0]
    assert row.nick == "Ann"
    assert row.id == "r-0"
    assert row.three0 == ("A", None)

def test_legacy_rows_get_defaults():
    doc = migrate(_legacy(rows=[
        {"nick": "Ann", "avatarScale": None, "pass": ["A", "A", 7, "B", "C", "D", "E", "F"]},
        {},
    ]))
    ann, blank = doc.active_stage.rows
    assert ann.avatarScale == 100 and ann.avatarPosX == 50 and ann.nickFontSize == 14
    assert ann.pass_ == ("A", None, None, "B", "C", "D")
    assert ann.out == (None, None)
    assert blank.nick == "Player 2"

def test_legacy_settings_and_library():
    doc = migrate(_legacy(
        bgScale=150, avatarsEnabled=False, verticalPad="oops",
        library=[{"id": "i1", "src": "data:1", "name": "One", "categoryId": "old"}],
    ))
    assert doc.bgScale == 150
    assert doc.avatarsEnabled is False
    assert doc.verticalPad == 100
    assert doc.library[0].categoryId is None
    assert doc.library[0].name == "One"

def test_legacy_stats_and_answer_key_are_carried():
    doc = migrate(_legacy(
        stats=[{"nick": "Ann", "three0": ["A", "B"], "score": 1}],
        correctTeams={"three0": ["A"]},
    ))
    stage = doc.active_stage
    assert stage.stats[0].nick == "Ann"
    assert stage.stats[0].id == "stat-0"
    assert stage.correct("three0") == ("A",)
    assert stage.correct("pass") == ()

def test_migrate_is_idempotent():
    for raw in (_legacy(), [{"nick": "x"}], initial_document().to_payload()):
        once = migrate(raw)
        assert migrate(once.to_payload()) == once
        assert migrate(once) == once

def test_current_version_repairs_dangling_references():
    raw = initial_document().to_payload()
    raw["activeStageId"] = "gone"
    raw["library"] = [{"id": "x", "src": "data:x", "categoryId": "gone"}]
    doc = migrate(raw)
    assert doc.activeStageId == doc.stages[0].id
    assert doc.library[0].categoryId is None

def test_current_version_fills_new_fields_and_keeps_extras():
    raw = initial_document().to_payload()
    del raw["nickColWidth"]
    raw["theme"] = "dark"
    raw["stages"][0]["rows"][0]["color"] = "red"
    del raw["stages"][0]["rows"][1]["nickFontSize"]
    raw["stages"][0]["rowCount"] = 99

    doc = migrate(raw)
    assert doc.nickColWidth == 120
    assert doc.model_extra == {"theme": "dark"}
    assert doc.active_stage.rows[0].model_extra == {"color": "red"}
    assert doc.active_stage.rows[1].nickFontSize == 14
    assert doc.active_stage.rowCount == 10
    assert migrate(doc.to_payload()) == doc

def test_empty_stages_get_a_default_stage():
    doc = migrate({"schemaVersion": 2, "stages": []})
    assert len(doc.stages) == 1
    assert len(doc.active_stage.rows) == 10

def test_stage_row_count_is_kept_in_range():
    empty = migrate({"schemaVersion": 2, "stages": [{"id": "s", "name": "S", "rows": []}]})
    assert empty.active_stage.rowCount == len(empty.active_stage.rows) == 10

    rows = [{"nick": f"p{i}"} for i in range(45)]
    big = migrate({"schemaVersion": 2, "stages": [{"id": "s", "name": "S", "rows": rows}]})
    assert big.active_stage.rowCount == len(big.active_stage.rows) == 30
    assert big.active_stage.rows[-1].nick == "p29"

def test_corrupt_input_is_rejected():
    with pytest.raises(FormatError):
        migrate("not a document")
    with pytest.raises(FormatError, match="is not a sequence"):
        migrate({"schemaVersion": 2, "stages": [{"id": "s", "name": "S", "rows": "bad"}]})
    with pytest.raises(FormatError):
        migrate({"schemaVersion": "2", "stages": []})
    with pytest.raises(FormatError):
        migrate({"schemaVersion": 3, "stages": []})
    with pytest.raises(FormatError):
        migrate({"settings": {}})

def test_duplicate_stage_ids_are_rejected():
    stage = {"id": "s1", "name": "A"}
    with pytest.raises(FormatError):
        migrate({"schemaVersion": 2, "stages": [stage, dict(stage)]})

def test_normalize_slots():
    assert normalize_slots(None, "three0") == (None, None)
    assert normalize_slots(["A", "", "B"], "three0") == ("A", None)
