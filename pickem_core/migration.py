"""
Schema versioning: upgrades any previously persisted or imported payload to
the current Document shape.

Each version transition is one function in ``MIGRATIONS`` (``n -> n + 1``),
applied in order; the result of the last step is then merged field by field
over the defaults of the current schema. Adding schema version 3 means adding
``upgrade_v2_to_v3`` and bumping ``SCHEMA_VERSION``.
"""
from __future__ import annotations
import logging
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from .constants import (
    AREAS, AREA_SLOTS, BOOL_SETTINGS, DEFAULT_AVATAR_POS, DEFAULT_AVATAR_SCALE,
    DEFAULT_NICK_FONT_SIZE, DEFAULT_SETTINGS, MAX_ROW_COUNT, SCHEMA_VERSION, TEXT_SETTINGS,
    default_nick, default_row_id,
)
from .errors import FormatError
from .models import Document, Row, StatEntry, default_rows, new_stage_id

logger = logging.getLogger(__name__)

IMPORTED_STAGE_NAME = "Stage 1 (Imported)"
IMPORTED_STAGE_ID = "s-imported-0"

_NUMERIC_ROW_FIELDS = {
    "avatarScale": DEFAULT_AVATAR_SCALE,
    "avatarPosX": DEFAULT_AVATAR_POS,
    "avatarPosY": DEFAULT_AVATAR_POS,
    "nickFontSize": DEFAULT_NICK_FONT_SIZE,
}


# -----------------------
# Shape checks
# -----------------------
def _mapping(obj, what: str) -> dict:
    if not isinstance(obj, dict):
        raise FormatError(f"{what} is not an object")
    return obj


def _sequence(obj, what: str, default=None) -> list:
    if obj is None and default is not None:
        return list(default)
    if not isinstance(obj, (list, tuple)):
        raise FormatError(f"{what} is not a sequence")
    return list(obj)


def _number(value, default: int) -> int:
    # value ?? default; anything non-numeric also falls back
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value))
        except ValueError:
            return default
    return default


def _text(value, default: str = "") -> str:
    return value if isinstance(value, str) else default


# -----------------------
# Field-level normalization
# -----------------------
def normalize_slots(value, area: str) -> Tuple[Optional[str], ...]:
    """Fixed-length slot tuple; a repeated asset inside the area is dropped."""
    size = AREA_SLOTS[area]
    items = list(value)[:size] if isinstance(value, (list, tuple)) else []
    seen = set()
    out: List[Optional[str]] = []
    for x in items:
        if isinstance(x, str) and x and x not in seen:
            seen.add(x)
            out.append(x)
        else:
            out.append(None)
    out.extend([None] * (size - len(out)))
    return tuple(out)


def normalize_row(raw, index: int) -> dict:
    r = _mapping(raw, f"row {index}")
    row = dict(r)
    row.pop("pass_", None)
    row["id"] = str(r.get("id") or default_row_id(index))
    row["nick"] = str(r["nick"]) if r.get("nick") is not None else default_nick(index)
    row["avatar"] = _text(r.get("avatar"))
    for key, default in _NUMERIC_ROW_FIELDS.items():
        row[key] = _number(r.get(key), default)
    for area in AREAS:
        row[area] = normalize_slots(r.get(area), area)
    return row


def normalize_stat(raw, index: int) -> dict:
    entry = normalize_row(raw, index)
    if not raw.get("id"):
        entry["id"] = f"stat-{index}"
    entry["score"] = _number(raw.get("score"), 0)
    committed = raw.get("committedAt")
    entry["committedAt"] = committed if isinstance(committed, str) else None
    return entry


def normalize_correct_teams(raw) -> Dict[str, Tuple[str, ...]]:
    if raw is None:
        return {area: () for area in AREAS}
    teams = _mapping(raw, "correctTeams")
    out = {}
    for area in AREAS:
        vals = _sequence(teams.get(area), f"correctTeams.{area}", default=())
        # ordered set of asset refs
        out[area] = tuple(dict.fromkeys(v for v in vals if isinstance(v, str) and v))
    return out


def normalize_rows(raw, what: str = "rows") -> List[dict]:
    return [normalize_row(r, i) for i, r in enumerate(_sequence(raw, what))]


def normalize_stats(raw, what: str = "stats") -> List[dict]:
    return [normalize_stat(s, i) for i, s in enumerate(_sequence(raw, what, default=()))]


def normalize_stage(raw, index: int) -> dict:
    s = _mapping(raw, f"stage {index}")
    stage = dict(s)
    stage["id"] = str(s.get("id") or new_stage_id(index))
    name = s.get("name")
    stage["name"] = name if isinstance(name, str) and name.strip() else f"Stage {index + 1}"
    rows = [] if s.get("rows") is None else normalize_rows(s.get("rows"), f"stages[{index}].rows")
    if not rows:
        rows = [r.model_dump(by_alias=True) for r in default_rows()]
    elif len(rows) > MAX_ROW_COUNT:
        logger.info("Stage %r has %d rows; keeping the first %d", stage["name"], len(rows), MAX_ROW_COUNT)
        rows = rows[:MAX_ROW_COUNT]
    stage["rows"] = rows
    stage["rowCount"] = len(rows)
    stage["stats"] = normalize_stats(s.get("stats"), f"stages[{index}].stats")
    stage["correctTeams"] = normalize_correct_teams(s.get("correctTeams"))
    return stage


def normalize_asset(raw, index: int, stage_ids) -> dict:
    a = _mapping(raw, f"library asset {index}")
    src = a.get("src")
    if not isinstance(src, str) or not src:
        raise FormatError(f"library asset {index} has no src")
    asset = dict(a)
    asset["src"] = src
    asset["id"] = str(a.get("id") or src)
    asset["name"] = _text(a.get("name"))
    cat = a.get("categoryId")
    asset["categoryId"] = cat if cat in stage_ids else None
    return asset


def normalize_settings(raw: dict) -> dict:
    out = {}
    for key, default in DEFAULT_SETTINGS.items():
        value = raw.get(key)
        if key in BOOL_SETTINGS:
            out[key] = value if isinstance(value, bool) else default
        elif key in TEXT_SETTINGS:
            out[key] = _text(value, default)
        else:
            out[key] = _number(value, default)
    return out


# -----------------------
# Version transitions
# -----------------------
def upgrade_v1_to_v2(raw: dict) -> dict:
    """Flat single-sheet payload -> staged document with one imported stage."""
    if not isinstance(raw.get("rows"), (list, tuple)) and raw.get("library") is None:
        raise FormatError("legacy document has neither a rows sequence nor a library")
    rows = raw.get("rows")
    if rows is None:
        rows = [r.model_dump(by_alias=True) for r in default_rows()]
    stage = {
        "id": IMPORTED_STAGE_ID,
        "name": IMPORTED_STAGE_NAME,
        "rows": rows,
        "stats": raw.get("stats") if isinstance(raw.get("stats"), (list, tuple)) else [],
        "correctTeams": raw.get("correctTeams"),
    }
    library = [
        {**_mapping(a, f"library asset {i}"), "categoryId": None}
        for i, a in enumerate(_sequence(raw.get("library"), "library", default=()))
    ]
    return {
        **normalize_settings(raw),
        "schemaVersion": 2,
        "stages": [stage],
        "activeStageId": IMPORTED_STAGE_ID,
        "library": library,
        "libraryCategories": [],
    }


MIGRATIONS: Dict[int, Callable[[dict], dict]] = {
    1: upgrade_v1_to_v2,
}

_LEGACY_KEYS = ("rows", "stats", "correctTeams")


def detect_version(raw: dict) -> int:
    version = raw.get("schemaVersion")
    if version is None:
        return 1
    if isinstance(version, bool) or not isinstance(version, int):
        raise FormatError("schemaVersion is not an integer")
    return max(version, 1)


def _merge_current(data: dict) -> Document:
    stages = [normalize_stage(s, i) for i, s in enumerate(_sequence(data.get("stages"), "stages", default=()))]
    ids = [s["id"] for s in stages]
    if len(set(ids)) != len(ids):
        raise FormatError("stages contain duplicate ids")
    if not stages:
        logger.info("Document has no stages; creating a default stage.")
        stages = [normalize_stage({}, 0)]
        ids = [stages[0]["id"]]

    active = data.get("activeStageId")
    if active not in ids:
        active = ids[0]

    stage_ids = set(ids)
    library = [
        normalize_asset(a, i, stage_ids)
        for i, a in enumerate(_sequence(data.get("library"), "library", default=()))
    ]

    extras = {
        k: v for k, v in data.items()
        if k not in Document.model_fields and k not in _LEGACY_KEYS
    }
    payload = {
        **extras,
        **normalize_settings(data),
        "schemaVersion": SCHEMA_VERSION,
        "stages": stages,
        "activeStageId": active,
        "library": library,
        "libraryCategories": [{"id": s["id"], "name": s["name"]} for s in stages],
    }
    try:
        return Document.model_validate(payload)
    except PydanticValidationError as e:
        raise FormatError(f"document does not match the schema: {e}") from e


def migrate(raw) -> Document:
    """Upgrade ``raw`` (any known persisted shape) to a current Document.

    A bare list is taken as the rows of a legacy sheet. Raises FormatError
    for corrupt input or a schema newer than this engine understands.
    """
    if isinstance(raw, Document):
        raw = raw.to_payload()
    if isinstance(raw, (list, tuple)):
        raw = {"rows": list(raw)}
    data = _mapping(raw, "document")

    version = detect_version(data)
    if version > SCHEMA_VERSION:
        raise FormatError(f"schemaVersion {version} is newer than supported ({SCHEMA_VERSION})")
    while version < SCHEMA_VERSION:
        logger.info("Migrating document from schema v%d to v%d", version, version + 1)
        data = MIGRATIONS[version](data)
        version += 1
    return _merge_current(data)


# -----------------------
# Partial payloads
# -----------------------
def parse_rows(raw) -> Tuple[Row, ...]:
    """``{"rows": [...]}`` or a bare list -> validated rows."""
    if isinstance(raw, dict):
        if "rows" not in raw:
            raise FormatError("rows payload has no rows")
        raw = raw["rows"]
    rows = normalize_rows(raw)
    if not rows:
        raise FormatError("rows is empty")
    if len(rows) > MAX_ROW_COUNT:
        raise FormatError(f"rows has {len(rows)} entries; a stage holds at most {MAX_ROW_COUNT}")
    try:
        return tuple(Row.model_validate(r) for r in rows)
    except PydanticValidationError as e:
        raise FormatError(f"rows do not match the schema: {e}") from e


def parse_stats(raw) -> Tuple[Tuple[StatEntry, ...], Dict[str, Tuple[str, ...]]]:
    """``{"stats": [...], "correctTeams": {...}}`` -> (entries, answer key)."""
    data = _mapping(raw, "stats payload")
    has_stats = isinstance(data.get("stats"), (list, tuple))
    if not has_stats and not isinstance(data.get("correctTeams"), dict):
        raise FormatError("stats payload has neither stats nor correctTeams")
    stats = normalize_stats(data.get("stats") if has_stats else [])
    teams = normalize_correct_teams(data.get("correctTeams"))
    try:
        return tuple(StatEntry.model_validate(s) for s in stats), teams
    except PydanticValidationError as e:
        raise FormatError(f"stats do not match the schema: {e}") from e
