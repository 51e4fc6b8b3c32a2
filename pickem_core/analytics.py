"""
Read-side computations over a stage: scoring, ranking, duplicate detection,
pick frequencies and popularity extremes.

Everything here is a pure function of its arguments and cheap enough to run on
every read, so callers never need to keep derived state in sync with the
document.
"""
from __future__ import annotations
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Tuple

from .constants import (
    AREAS, AREA_SLOTS, ASCENDING, DEFAULT_NICK_PREFIX, DESCENDING,
    UNCATEGORIZED, UNKNOWN_ASSET_NAME,
)
from .errors import ValidationError
from .models import CommitReport, Document, LibraryAsset, PopularPick, Row, Stage, StatEntry

# -----------------------
# Scoring
# -----------------------
def score(row: Row, correct_teams: Mapping[str, Iterable[str]]) -> int:
    """Number of picks that appear in the answer key of their own area."""
    total = 0
    for area in AREAS:
        correct = set(correct_teams.get(area, ()) or ())
        total += sum(1 for x in set(row.picks(area)) if x and x in correct)
    return total


def rank(stats: Sequence[StatEntry], key: str = "score", direction: str = DESCENDING) -> List[StatEntry]:
    """Stable sort; entries with equal keys keep their ledger order."""
    if direction not in (ASCENDING, DESCENDING):
        raise ValidationError(f"Unknown sort direction {direction!r}.")

    if key == "nick":
        def sort_key(e):
            return e.nick or ""
    else:
        def sort_key(e):
            v = getattr(e, key, None)
            return v if isinstance(v, (int, float)) and not isinstance(v, bool) else 0

    # sorted(reverse=True) keeps equal elements in their original order
    return sorted(stats, key=sort_key, reverse=direction == DESCENDING)


def scored_stats(stage: Stage, search: str = "", key: str = "score",
                 direction: str = DESCENDING) -> List[StatEntry]:
    """Ledger rescored with the current answer key, filtered by nick, ranked."""
    entries = [e.model_copy(update={"score": score(e, stage.correctTeams)}) for e in stage.stats]
    term = (search or "").strip().lower()
    if term:
        entries = [e for e in entries if term in e.nick.lower()]
    return rank(entries, key, direction)


# -----------------------
# Committing rows to the ledger
# -----------------------
def is_duplicate(row: Row, entry: Row) -> bool:
    """Same trimmed, case-insensitive nick and identical picks in every area."""
    if (row.nick or "").strip().lower() != (entry.nick or "").strip().lower():
        return False
    return all(tuple(row.picks(a)) == tuple(entry.picks(a)) for a in AREAS)


def is_placeholder_row(row: Row) -> bool:
    """Untouched row: default nick, no avatar, no picks."""
    return row.nick.startswith(DEFAULT_NICK_PREFIX) and not row.avatar and row.has_no_picks()


def commit_to_stats(stage: Stage, now: Optional[datetime] = None) -> Tuple[Stage, CommitReport]:
    now = now or datetime.now(timezone.utc)
    stamp = int(now.timestamp() * 1000)
    report = CommitReport()
    added: List[StatEntry] = []

    for i, row in enumerate(stage.rows):
        if is_placeholder_row(row):
            report.skipped += 1
            continue
        if any(is_duplicate(row, e) for e in stage.stats):
            report.duplicates.append(row.nick)
            continue
        data = row.model_dump(by_alias=True)
        data.update({
            "id": f"{row.id}-{stamp}-{i}-{uuid.uuid4().hex[:6]}",
            "score": score(row, stage.correctTeams),
            "committedAt": now.isoformat(),
        })
        added.append(StatEntry.model_validate(data))

    report.added = len(added)
    if not added:
        return stage, report
    return stage.model_copy(update={"stats": stage.stats + tuple(added)}), report


# -----------------------
# Popularity
# -----------------------
def frequency(stats: Sequence[Row], area: str) -> Dict[str, int]:
    """asset -> number of picks in ``area``; insertion order is first-seen order."""
    counts: Dict[str, int] = {}
    for entry in stats:
        for x in entry.picks(area):
            if x:
                counts[x] = counts.get(x, 0) + 1
    return counts


def area_frequencies(stats: Sequence[Row]) -> Dict[str, Dict[str, int]]:
    return {area: frequency(stats, area) for area in AREAS}


# -----------------------
# Table cells
# -----------------------
class Cell(NamedTuple):
    src: Optional[str]
    area: str
    slot: int
    correct: bool


def ordered_cells(
    row: Row,
    correct_teams: Mapping[str, Iterable[str]],
    highlight: bool = False,
    popularity: bool = False,
    counts: Optional[Mapping[str, Mapping[str, int]]] = None,
) -> List[Cell]:
    """A row's picks as display cells, area by area.

    With either toggle on, each area is re-ordered: empty cells last, then
    (popularity) most picked first, then (highlight) correct picks first.
    Equal cells keep slot order.
    """
    counts = counts or {}
    cells: List[Cell] = []
    for area in AREAS:
        correct = set(correct_teams.get(area, ()) or ())
        area_cells = [Cell(x, area, i, bool(x) and x in correct) for i, x in enumerate(row.picks(area))]
        if highlight or popularity:
            def sort_key(c, area=area):
                popular = -counts.get(area, {}).get(c.src, 0) if popularity else 0
                return (not c.src, popular, highlight and not c.correct)
            area_cells.sort(key=sort_key)
        cells.extend(area_cells)
    return cells


def popularity_extremes(
    freq: Mapping[str, int],
    k: int,
    total_entries: int,
    names: Optional[Mapping[str, str]] = None,
) -> Tuple[List[Optional[PopularPick]], List[Optional[PopularPick]]]:
    """Top-k and bottom-k picks, each list padded with ``None`` to exactly k.

    Ties keep first-seen order in both lists.
    """
    names = names or {}
    denom = max(1, total_entries)
    picks = [
        PopularPick(
            src=src,
            count=count,
            name=names.get(src, UNKNOWN_ASSET_NAME),
            percentage=count / denom * 100,
            totalEntries=denom,
        )
        for src, count in freq.items()
    ]
    top: List[Optional[PopularPick]] = sorted(picks, key=lambda p: -p.count)[:k]
    bottom: List[Optional[PopularPick]] = sorted(picks, key=lambda p: p.count)[:k]
    top += [None] * (k - len(top))
    bottom += [None] * (k - len(bottom))
    return top, bottom


def category_popularity(stats: Sequence[Row], names: Optional[Mapping[str, str]] = None) -> Dict[str, Dict[str, list]]:
    out = {"popular": {}, "unpopular": {}}
    for area in AREAS:
        top, bottom = popularity_extremes(frequency(stats, area), AREA_SLOTS[area], len(stats), names)
        out["popular"][area] = top
        out["unpopular"][area] = bottom
    return out


# -----------------------
# Library views
# -----------------------
def asset_names(library: Sequence[LibraryAsset]) -> Dict[str, str]:
    return {a.src: a.name for a in library if a.src and a.name}


def categorized_library(doc: Document, search: str = "") -> List[dict]:
    """Assets grouped under "Uncategorized" and then each stage's category.

    With a search term only matching assets are kept and empty groups dropped.
    """
    groups = [{"id": None, "name": UNCATEGORIZED, "assets": []}]
    groups += [{"id": c.id, "name": c.name, "assets": []} for c in doc.libraryCategories]
    by_id = {g["id"]: g for g in groups}
    term = (search or "").strip().lower()
    for asset in doc.library:
        if term and term not in (asset.name or "").lower():
            continue
        by_id.get(asset.categoryId, groups[0])["assets"].append(asset)
    if term:
        groups = [g for g in groups if g["assets"]]
    return groups
