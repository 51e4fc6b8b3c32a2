from __future__ import annotations
import io
import json
import logging
from datetime import date
from typing import Optional, Sequence, Union

import pandas as pd
from pydantic import BaseModel

from .analytics import asset_names, scored_stats
from .constants import (
    AREAS, AREA_SLOTS, AREA_TITLES, EXPORT_MIME, FULL_EXPORT_SUFFIX,
    SCHEMA_VERSION, SLICE_EXPORT_SUFFIX,
)
from .errors import FormatError, ValidationError
from .migration import migrate, parse_rows, parse_stats
from .models import Document, LibraryAsset, Stage
from .store import replace_rows, replace_stats

logger = logging.getLogger(__name__)

IMPORT_TARGETS = ("full", "rows", "stats")


class ExportBlob(BaseModel):
    filename: str
    data: bytes
    mime: str = EXPORT_MIME


# -----------------------
# JSON encoding
# -----------------------
def encode_payload(payload) -> bytes:
    return json.dumps(payload, ensure_ascii=False, indent=2).encode("utf-8")


def encode_document(doc: Document) -> bytes:
    return encode_payload(doc.to_payload())


def decode_payload(data: Union[bytes, str]):
    try:
        if isinstance(data, (bytes, bytearray)):
            data = data.decode("utf-8")
        return json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise FormatError(f"File is not valid JSON: {e}") from e


def _stamp(today: Optional[date]) -> str:
    return (today or date.today()).isoformat()


def _slug(name: str) -> str:
    return "_".join(name.split()) or "stage"


# -----------------------
# Export (user-triggered downloads)
# -----------------------
def export_document(doc: Document, today: Optional[date] = None) -> ExportBlob:
    """Whole project; the filename carries schema version and date (not parsed back)."""
    return ExportBlob(
        filename=f"pickem_full_state_v{SCHEMA_VERSION}_{_stamp(today)}{FULL_EXPORT_SUFFIX}",
        data=encode_document(doc),
    )


def export_rows(doc: Document, today: Optional[date] = None) -> ExportBlob:
    stage = doc.active_stage
    payload = {"rows": [r.model_dump(mode="json", by_alias=True) for r in stage.rows]}
    return ExportBlob(
        filename=f"pickem_rows_{_slug(stage.name)}_{_stamp(today)}{SLICE_EXPORT_SUFFIX}",
        data=encode_payload(payload),
    )


def export_stats(doc: Document, today: Optional[date] = None) -> ExportBlob:
    stage = doc.active_stage
    payload = {
        "stats": [e.model_dump(mode="json", by_alias=True) for e in stage.stats],
        "correctTeams": {area: list(stage.correct(area)) for area in AREAS},
    }
    return ExportBlob(
        filename=f"pickem_stats_{_slug(stage.name)}_{_stamp(today)}{SLICE_EXPORT_SUFFIX}",
        data=encode_payload(payload),
    )


# -----------------------
# Import
# -----------------------
def import_document(data: Union[bytes, str], target: str = "full",
                    current: Optional[Document] = None) -> Document:
    """Parse an exported file.

    ``full`` returns a migrated document; ``rows`` and ``stats`` replace only
    that slice of the active stage of ``current``. Raises FormatError and
    leaves ``current`` untouched on bad input.
    """
    if target not in IMPORT_TARGETS:
        raise ValidationError(f"Unknown import target {target!r}; expected one of {IMPORT_TARGETS}.")
    payload = decode_payload(data)

    if target == "full":
        doc = migrate(payload)
        logger.info("Imported project with %d stage(s)", len(doc.stages))
        return doc

    if current is None:
        raise ValidationError(f"A {target!r} import needs the current document.")
    if target == "rows":
        rows = parse_rows(payload)
        logger.info("Imported %d row(s) into stage %r", len(rows), current.active_stage.name)
        return replace_rows(current, rows)

    stats, teams = parse_stats(payload)
    logger.info("Imported %d stats entries into stage %r", len(stats), current.active_stage.name)
    return replace_stats(current, stats, teams)


# -----------------------
# Tabular views
# -----------------------
def slot_columns() -> list:
    return [f"{AREA_TITLES[a]} ({i + 1})" for a in AREAS for i in range(AREA_SLOTS[a])]


def stats_frame(stage: Stage, library: Sequence[LibraryAsset] = (),
                search: str = "", key: str = "score", direction: str = "descending") -> pd.DataFrame:
    """Ranked ledger as a table: nick, score, then one column per slot (asset names)."""
    names = asset_names(library)
    records = []
    for e in scored_stats(stage, search, key, direction):
        rec = {"id": e.id, "Player": e.nick, "Score": e.score}
        picks = [x for a in AREAS for x in e.picks(a)]
        for col, src in zip(slot_columns(), picks):
            rec[col] = names.get(src, src) if src else ""
        records.append(rec)
    return pd.DataFrame(records, columns=["id", "Player", "Score"] + slot_columns())


def stats_to_csv_bytes(stage: Stage, library: Sequence[LibraryAsset] = ()) -> bytes:
    df = stats_frame(stage, library).drop(columns=["id"])
    buf = io.StringIO()
    df.to_csv(buf, index=False)
    return buf.getvalue().encode("utf-8")
