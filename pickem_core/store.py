"""
Document Store: pure mutators over the Document.

Every function takes the current Document (plus arguments) and returns the
next one; the input is never modified. A mutator either returns a Document
that satisfies every invariant or raises (ValidationError, PreconditionError,
DuplicatePickError) and the caller keeps the previous value. Row and answer
key operations apply to the active stage.
"""
from __future__ import annotations
import uuid
from datetime import datetime
from typing import Callable, Iterable, Optional, Tuple, Union

from .analytics import commit_to_stats, is_placeholder_row
from .constants import (
    AREAS, AREA_SLOTS, AVATAR_POS_LIMITS, AVATAR_SCALE_LIMITS, BOOL_SETTINGS,
    DEFAULT_AVATAR_POS, DEFAULT_AVATAR_SCALE, DEFAULT_SETTINGS, DESIGN_SETTINGS,
    MAX_ROW_COUNT, MIN_ROW_COUNT, NICK_FONT_LIMITS, SETTINGS_LIMITS, TEXT_SETTINGS,
    clamp, default_nick, default_row_id, empty_slots, to_int,
)
from .errors import DuplicatePickError, PreconditionError, ValidationError
from .models import (
    Category, CommitReport, Document, LibraryAsset, Row, Stage,
    initial_document, new_row, new_stage,
)

# -----------------------
# Category synchronization
# -----------------------
def sync_categories(doc: Document) -> Document:
    """Rebuild libraryCategories from stages; same object back if unchanged."""
    projection = tuple((s.id, s.name) for s in doc.stages)
    if projection == tuple((c.id, c.name) for c in doc.libraryCategories):
        return doc
    cats = tuple(Category(id=sid, name=name) for sid, name in projection)
    return doc.model_copy(update={"libraryCategories": cats})


# -----------------------
# Internal helpers
# -----------------------
def _with_stages(doc: Document, stages, **update) -> Document:
    return sync_categories(doc.model_copy(update={"stages": tuple(stages), **update}))


def _replace_stage(doc: Document, stage: Stage) -> Document:
    return doc.model_copy(update={
        "stages": tuple(stage if s.id == stage.id else s for s in doc.stages),
    })


def _update_active(doc: Document, fn: Callable[[Stage], Stage]) -> Document:
    stage = doc.active_stage
    updated = fn(stage)
    if updated is stage:
        return doc
    return _replace_stage(doc, updated)


def _with_rows(stage: Stage, rows) -> Stage:
    rows = tuple(rows)
    return stage.model_copy(update={"rows": rows, "rowCount": len(rows)})


def _check_row(stage: Stage, index: int) -> Row:
    if not isinstance(index, int) or not 0 <= index < len(stage.rows):
        raise ValidationError(f"Row index {index!r} is out of range (0..{len(stage.rows) - 1}).")
    return stage.rows[index]


def _check_area(area: str):
    if area not in AREA_SLOTS:
        raise ValidationError(f"Unknown area {area!r}; expected one of {', '.join(AREAS)}.")


def _replace_row(stage: Stage, index: int, row: Row) -> Stage:
    rows = list(stage.rows)
    rows[index] = row
    return _with_rows(stage, rows)


# -----------------------
# Stages
# -----------------------
def add_stage(doc: Document, name: Optional[str] = None) -> Document:
    """Append a stage with default rows and make it active."""
    stage = new_stage(name, len(doc.stages))
    return _with_stages(doc, doc.stages + (stage,), activeStageId=stage.id)


def delete_stage(doc: Document, stage_id: str) -> Document:
    if doc.stage_by_id(stage_id) is None:
        raise ValidationError(f"Unknown stage {stage_id!r}.")
    if len(doc.stages) <= 1:
        raise PreconditionError("The last stage cannot be deleted.")
    stages = [s for s in doc.stages if s.id != stage_id]
    active = stages[0].id if doc.activeStageId == stage_id else doc.activeStageId
    library = tuple(
        a.model_copy(update={"categoryId": None}) if a.categoryId == stage_id else a
        for a in doc.library
    )
    return _with_stages(doc, stages, activeStageId=active, library=library)


def rename_stage(doc: Document, stage_id: str, name: str) -> Document:
    stage = doc.stage_by_id(stage_id)
    if stage is None:
        raise ValidationError(f"Unknown stage {stage_id!r}.")
    # blank rename keeps the previous name
    if not name or not name.strip() or name == stage.name:
        return doc
    return sync_categories(_replace_stage(doc, stage.model_copy(update={"name": name})))


def set_active_stage(doc: Document, stage_id: str) -> Document:
    if doc.stage_by_id(stage_id) is None:
        raise ValidationError(f"Unknown stage {stage_id!r}.")
    if doc.activeStageId == stage_id:
        return doc
    return doc.model_copy(update={"activeStageId": stage_id})


# -----------------------
# Rows
# -----------------------
def set_row_count(doc: Document, count) -> Document:
    n = to_int(count, None)
    if n is None:
        raise ValidationError(f"Row count {count!r} is not a number.")
    n = clamp(n, MIN_ROW_COUNT, MAX_ROW_COUNT)

    def fn(stage: Stage) -> Stage:
        cur = len(stage.rows)
        if n == cur and stage.rowCount == cur:
            return stage
        if n > cur:
            rows = stage.rows + tuple(new_row(cur + i) for i in range(n - cur))
        else:
            rows = stage.rows[:n]
        return _with_rows(stage, rows)

    return _update_active(doc, fn)


def move_row(doc: Document, index: int, direction: int) -> Document:
    """Swap a row with its neighbour; moves past either end are no-ops."""
    def fn(stage: Stage) -> Stage:
        target = index + direction
        if not (0 <= index < len(stage.rows)) or not (0 <= target < len(stage.rows)) or target == index:
            return stage
        rows = list(stage.rows)
        rows[index], rows[target] = rows[target], rows[index]
        return _with_rows(stage, rows)

    return _update_active(doc, fn)


def clear_row_picks(doc: Document, index: int) -> Document:
    """Reset nick to the positional default and empty every slot; avatar stays."""
    def fn(stage: Stage) -> Stage:
        row = _check_row(stage, index)
        cleared = row.model_copy(update={
            "nick": default_nick(index),
            "three0": empty_slots("three0"),
            "pass_": empty_slots("pass"),
            "out": empty_slots("out"),
        })
        return _replace_row(stage, index, cleared)

    return _update_active(doc, fn)


def set_pick(doc: Document, row_index: int, area: str, slot_index: int, asset: Optional[str]) -> Document:
    _check_area(area)
    if not isinstance(slot_index, int) or not 0 <= slot_index < AREA_SLOTS[area]:
        raise ValidationError(f"Slot {slot_index!r} is out of range for area {area!r}.")
    if asset is not None and not isinstance(asset, str):
        raise ValidationError(f"Pick {asset!r} is not an asset reference.")
    value = asset or None

    def fn(stage: Stage) -> Stage:
        row = _check_row(stage, row_index)
        slots = list(row.picks(area))
        if slots[slot_index] == value:
            return stage
        if value is not None and value in slots:
            raise DuplicatePickError(area, value, row_index)
        slots[slot_index] = value
        return _replace_row(stage, row_index, row.with_picks(area, slots))

    return _update_active(doc, fn)


def clear_pick(doc: Document, row_index: int, area: str, slot_index: int) -> Document:
    return set_pick(doc, row_index, area, slot_index, None)


def set_row_nick(doc: Document, index: int, nick: str) -> Document:
    def fn(stage: Stage) -> Stage:
        row = _check_row(stage, index)
        if row.nick == nick:
            return stage
        return _replace_row(stage, index, row.model_copy(update={"nick": str(nick)}))

    return _update_active(doc, fn)


def set_row_avatar(doc: Document, index: int, src: Optional[str]) -> Document:
    """New avatar resets its framing; ``None`` removes it."""
    def fn(stage: Stage) -> Stage:
        row = _check_row(stage, index)
        return _replace_row(stage, index, row.model_copy(update={
            "avatar": src or "",
            "avatarScale": DEFAULT_AVATAR_SCALE,
            "avatarPosX": DEFAULT_AVATAR_POS,
            "avatarPosY": DEFAULT_AVATAR_POS,
        }))

    return _update_active(doc, fn)


def set_avatar_framing(doc: Document, index: int, scale, pos_x, pos_y) -> Document:
    def fn(stage: Stage) -> Stage:
        row = _check_row(stage, index)
        return _replace_row(stage, index, row.model_copy(update={
            "avatarScale": clamp(to_int(scale, row.avatarScale), *AVATAR_SCALE_LIMITS),
            "avatarPosX": clamp(to_int(pos_x, row.avatarPosX), *AVATAR_POS_LIMITS),
            "avatarPosY": clamp(to_int(pos_y, row.avatarPosY), *AVATAR_POS_LIMITS),
        }))

    return _update_active(doc, fn)


def adjust_nick_font_size(doc: Document, index: int, delta: int) -> Document:
    def fn(stage: Stage) -> Stage:
        row = _check_row(stage, index)
        size = clamp(row.nickFontSize + to_int(delta), *NICK_FONT_LIMITS)
        if size == row.nickFontSize:
            return stage
        return _replace_row(stage, index, row.model_copy(update={"nickFontSize": size}))

    return _update_active(doc, fn)


def restore_row_from_stats(doc: Document, entry_id: str) -> Document:
    """Copy a stats entry back into the table.

    Lands in the first placeholder row, or is appended when there is none.
    """
    def fn(stage: Stage) -> Stage:
        entry = next((e for e in stage.stats if e.id == entry_id), None)
        if entry is None:
            raise ValidationError(f"Unknown stats entry {entry_id!r}.")
        data = entry.model_dump(by_alias=True, exclude={"score", "committedAt"})
        rows = list(stage.rows)
        target = next((i for i, r in enumerate(rows) if is_placeholder_row(r)), None)
        if target is None:
            data["id"] = default_row_id(len(rows))
            rows.append(Row.model_validate(data))
        else:
            data["id"] = rows[target].id
            rows[target] = Row.model_validate(data)
        return _with_rows(stage, rows)

    return _update_active(doc, fn)


# -----------------------
# Answer key & stats ledger
# -----------------------
def toggle_correct_team(doc: Document, area: str, asset: str) -> Document:
    _check_area(area)
    if not asset:
        raise ValidationError("An answer-key entry needs an asset reference.")

    def fn(stage: Stage) -> Stage:
        current = stage.correct(area)
        if asset in current:
            picked = tuple(x for x in current if x != asset)
        else:
            picked = current + (asset,)
        return stage.model_copy(update={"correctTeams": {**stage.correctTeams, area: picked}})

    return _update_active(doc, fn)


def clear_stats(doc: Document) -> Document:
    return _update_active(doc, lambda s: s.model_copy(update={"stats": ()}) if s.stats else s)


def delete_stat_entry(doc: Document, entry_id: str) -> Document:
    def fn(stage: Stage) -> Stage:
        kept = tuple(e for e in stage.stats if e.id != entry_id)
        if len(kept) == len(stage.stats):
            return stage
        return stage.model_copy(update={"stats": kept})

    return _update_active(doc, fn)


def rename_stat_entry(doc: Document, entry_id: str, nick: str) -> Document:
    def fn(stage: Stage) -> Stage:
        if not any(e.id == entry_id for e in stage.stats):
            raise ValidationError(f"Unknown stats entry {entry_id!r}.")
        stats = tuple(e.model_copy(update={"nick": nick}) if e.id == entry_id else e for e in stage.stats)
        return stage.model_copy(update={"stats": stats})

    return _update_active(doc, fn)


def replace_rows(doc: Document, rows: Iterable[Row]) -> Document:
    """Swap in a validated rows slice (partial import)."""
    rows = tuple(rows)
    if not MIN_ROW_COUNT <= len(rows) <= MAX_ROW_COUNT:
        raise ValidationError(f"A stage holds {MIN_ROW_COUNT} to {MAX_ROW_COUNT} rows, got {len(rows)}.")
    return _update_active(doc, lambda s: _with_rows(s, rows))


def replace_stats(doc: Document, stats, correct_teams) -> Document:
    """Swap in a validated ledger and answer key (partial import)."""
    teams = {area: tuple(correct_teams.get(area, ())) for area in AREAS}
    return _update_active(doc, lambda s: s.model_copy(update={"stats": tuple(stats), "correctTeams": teams}))


def commit_rows_to_stats(doc: Document, now: Optional[datetime] = None) -> Tuple[Document, CommitReport]:
    stage, report = commit_to_stats(doc.active_stage, now=now)
    if report.added == 0:
        return doc, report
    return _replace_stage(doc, stage), report


# -----------------------
# Library
# -----------------------
def make_asset(name: str, src: str, asset_id: Optional[str] = None) -> LibraryAsset:
    """Wrap an ingested image (already encoded by the caller) as a library asset."""
    return LibraryAsset(id=asset_id or f"{name}-{uuid.uuid4().hex[:12]}", src=src, name=name)


def add_assets(doc: Document, assets: Iterable[Union[LibraryAsset, dict]]) -> Document:
    existing = {a.id for a in doc.library}
    stage_ids = {s.id for s in doc.stages}
    added = []
    for item in assets:
        asset = item if isinstance(item, LibraryAsset) else LibraryAsset.model_validate(item)
        if not asset.src:
            raise ValidationError(f"Asset {asset.id!r} has no content reference.")
        if asset.id in existing:
            raise ValidationError(f"Asset id {asset.id!r} is already in the library.")
        if asset.categoryId is not None and asset.categoryId not in stage_ids:
            raise ValidationError(f"Asset {asset.id!r} points at unknown category {asset.categoryId!r}.")
        existing.add(asset.id)
        added.append(asset)
    if not added:
        return doc
    return doc.model_copy(update={"library": doc.library + tuple(added)})


def remove_asset(doc: Document, asset_id: str) -> Document:
    library = tuple(a for a in doc.library if a.id != asset_id)
    if len(library) == len(doc.library):
        return doc
    return doc.model_copy(update={"library": library})


def _update_asset(doc: Document, asset_id: str, **update) -> Document:
    if not any(a.id == asset_id for a in doc.library):
        raise ValidationError(f"Unknown asset {asset_id!r}.")
    library = tuple(a.model_copy(update=update) if a.id == asset_id else a for a in doc.library)
    return doc.model_copy(update={"library": library})


def rename_asset(doc: Document, asset_id: str, name: str) -> Document:
    if not name or not name.strip():
        return doc
    return _update_asset(doc, asset_id, name=name)


def move_asset_to_category(doc: Document, asset_id: str, category_id: Optional[str]) -> Document:
    if category_id is not None and doc.stage_by_id(category_id) is None:
        raise ValidationError(f"Unknown category {category_id!r}.")
    return _update_asset(doc, asset_id, categoryId=category_id)


# -----------------------
# Settings
# -----------------------
def set_setting(doc: Document, key: str, value) -> Document:
    """Numeric settings are clamped into range, never rejected."""
    if key in SETTINGS_LIMITS:
        lo, hi = SETTINGS_LIMITS[key]
        new = clamp(to_int(value, getattr(doc, key)), lo, hi)
    elif key in BOOL_SETTINGS:
        new = bool(value)
    elif key in TEXT_SETTINGS:
        new = "" if value is None else str(value)
    else:
        raise ValidationError(f"Unknown setting {key!r}.")
    if getattr(doc, key) == new:
        return doc
    return doc.model_copy(update={key: new})


def reset_design(doc: Document) -> Document:
    return doc.model_copy(update={k: DEFAULT_SETTINGS[k] for k in DESIGN_SETTINGS})


def reset_all(doc: Optional[Document] = None) -> Document:
    return initial_document()
