from __future__ import annotations
import json
from datetime import date

import pytest

from pickem_core import store
from pickem_core.errors import FormatError, ValidationError
from pickem_core.io import (
    decode_payload, export_document, export_rows, export_stats,
    import_document, slot_columns, stats_frame, stats_to_csv_bytes,
)
from pickem_core.models import initial_document
from pickem_core.test_helpers import doc_with_rows, quick_row

DAY = date(2024, 5, 1)


def _two_stage_doc():
    doc = store.add_stage(initial_document(), "Playoffs")
    doc = store.set_row_nick(doc, 0, "Ann")
    return store.set_pick(doc, 0, "pass", 2, "A")


def test_full_export_round_trip():
    doc = _two_stage_doc()
    blob = export_document(doc, DAY)
    assert blob.filename == "pickem_full_state_v2_2024-05-01.pickemfull"
    assert blob.mime == "application/json"
    payload = json.loads(blob.data)
    assert payload["schemaVersion"] == 2
    assert "pass" in payload["stages"][1]["rows"][0]
    assert import_document(blob.data) == doc

def test_rows_import_replaces_only_active_rows():
    source = _two_stage_doc()
    blob = export_rows(source, DAY)
    assert blob.filename == "pickem_rows_Playoffs_2024-05-01.pickem"

    target = store.add_stage(initial_document())
    target = store.toggle_correct_team(target, "out", "Q")
    result = import_document(blob.data, "rows", target)
    assert result.active_stage.rows == source.active_stage.rows
    assert result.active_stage.correct("out") == ("Q",)
    assert result.stages[0] == target.stages[0]

def test_rows_import_accepts_bare_list():
    target = initial_document()
    data = json.dumps([{"nick": "Ann", "out": ["X", "X"]}])
    result = import_document(data, "rows", target)
    assert result.active_stage.rowCount == 1
    assert result.active_stage.rows[0].out == ("X", None)

def test_rows_import_rejects_oversized_tables():
    current = initial_document()
    data = json.dumps({"rows": [{"nick": f"p{i}"} for i in range(45)]})
    with pytest.raises(FormatError, match="at most 30"):
        import_document(data, "rows", current)
    assert import_document(json.dumps([{"nick": "p"}] * 30), "rows", current).active_stage.rowCount == 30

def test_stats_import_replaces_ledger_and_answer_key():
    source = doc_with_rows([quick_row(0, "Ann", three0=["A"])], correct={"three0": ["A"]})
    source, _ = store.commit_rows_to_stats(source)
    blob = export_stats(source, DAY)

    result = import_document(blob.data, "stats", initial_document())
    assert [e.nick for e in result.active_stage.stats] == ["Ann"]
    assert result.active_stage.correct("three0") == ("A",)
    assert len(result.active_stage.rows) == 10

def test_bad_imports_raise_format_error():
    current = initial_document()
    with pytest.raises(FormatError):
        import_document(b"{not json", "full")
    with pytest.raises(FormatError):
        import_document(b'{"stats": []}', "rows", current)
    with pytest.raises(FormatError):
        import_document(b'{"rows": []}', "stats", current)
    with pytest.raises(FormatError, match="rows is empty"):
        import_document(b'{"rows": []}', "rows", current)
    with pytest.raises(FormatError):
        decode_payload(b"\xff\xfe")

def test_import_target_checks():
    with pytest.raises(ValidationError):
        import_document(b"{}", "library")
    with pytest.raises(ValidationError):
        import_document(b'{"rows": []}', "rows")

def test_stats_frame_and_csv():
    doc = doc_with_rows([quick_row(0, "Ann", three0=["data:a"]), quick_row(1, "Bob")])
    doc = store.add_assets(doc, [store.make_asset("Alpha", "data:a", asset_id="a")])
    doc = store.toggle_correct_team(doc, "three0", "data:a")
    doc, _ = store.commit_rows_to_stats(doc)

    df = stats_frame(doc.active_stage, doc.library)
    assert list(df.columns) == ["id", "Player", "Score"] + slot_columns()
    assert len(slot_columns()) == 10
    assert list(df["Player"]) == ["Ann", "Bob"]
    ann = df.iloc[0]
    assert ann["Score"] == 1
    assert ann["3-0 (1)"] == "Alpha"
    assert ann["3-0 (2)"] == ""

    csv = stats_to_csv_bytes(doc.active_stage, doc.library).decode("utf-8")
    assert csv.splitlines()[0].startswith("Player,Score,3-0 (1)")
