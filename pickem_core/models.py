from __future__ import annotations
import uuid
from typing import Dict, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import (
    AREAS, AREA_FIELDS, DEFAULT_AVATAR_POS, DEFAULT_AVATAR_SCALE, DEFAULT_NICK_FONT_SIZE,
    DEFAULT_ROW_COUNT, DEFAULT_SETTINGS, SCHEMA_VERSION,
    default_nick, default_row_id, empty_slots,
)

Slots = Tuple[Optional[str], ...]


def empty_correct_teams() -> Dict[str, Tuple[str, ...]]:
    return {area: () for area in AREAS}


class Record(BaseModel):
    # frozen: every edit is a model_copy; extra: unknown keys survive a round trip
    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)


class Row(Record):
    id: str
    nick: str = ""
    avatar: str = ""
    avatarScale: int = DEFAULT_AVATAR_SCALE
    avatarPosX: int = DEFAULT_AVATAR_POS
    avatarPosY: int = DEFAULT_AVATAR_POS
    three0: Slots = Field(default_factory=lambda: empty_slots("three0"))
    pass_: Slots = Field(default_factory=lambda: empty_slots("pass"), alias="pass")
    out: Slots = Field(default_factory=lambda: empty_slots("out"))
    nickFontSize: int = DEFAULT_NICK_FONT_SIZE

    def picks(self, area: str) -> Slots:
        return getattr(self, AREA_FIELDS[area])

    def with_picks(self, area: str, slots) -> "Row":
        return self.model_copy(update={AREA_FIELDS[area]: tuple(slots)})

    def has_no_picks(self) -> bool:
        return all(not x for area in AREAS for x in self.picks(area))


class StatEntry(Row):
    """Frozen copy of a row at the moment it was committed, plus its score."""
    score: int = 0
    committedAt: Optional[str] = None


class LibraryAsset(Record):
    id: str
    src: str
    name: str = ""
    categoryId: Optional[str] = None


class Category(Record):
    id: str
    name: str


class Stage(Record):
    id: str
    name: str
    rows: Tuple[Row, ...] = ()
    rowCount: int = 0
    stats: Tuple[StatEntry, ...] = ()
    correctTeams: Dict[str, Tuple[str, ...]] = Field(default_factory=empty_correct_teams)

    def correct(self, area: str) -> Tuple[str, ...]:
        return tuple(self.correctTeams.get(area, ()))


class Document(Record):
    schemaVersion: int = SCHEMA_VERSION
    stages: Tuple[Stage, ...]
    activeStageId: str
    library: Tuple[LibraryAsset, ...] = ()
    libraryCategories: Tuple[Category, ...] = ()

    bg: str = DEFAULT_SETTINGS["bg"]
    bgImg: str = DEFAULT_SETTINGS["bgImg"]
    bgScale: int = DEFAULT_SETTINGS["bgScale"]
    bgPosX: int = DEFAULT_SETTINGS["bgPosX"]
    bgPosY: int = DEFAULT_SETTINGS["bgPosY"]
    verticalPad: int = DEFAULT_SETTINGS["verticalPad"]
    horizontalPad: int = DEFAULT_SETTINGS["horizontalPad"]
    borderRadius: int = DEFAULT_SETTINGS["borderRadius"]
    avatarsEnabled: bool = DEFAULT_SETTINGS["avatarsEnabled"]
    highlightPicksEnabled: bool = DEFAULT_SETTINGS["highlightPicksEnabled"]
    popularitySortEnabled: bool = DEFAULT_SETTINGS["popularitySortEnabled"]
    nickColWidth: int = DEFAULT_SETTINGS["nickColWidth"]
    tableOffsetY: int = DEFAULT_SETTINGS["tableOffsetY"]
    transparentBackgroundEnabled: bool = DEFAULT_SETTINGS["transparentBackgroundEnabled"]

    @property
    def active_stage(self) -> Stage:
        return self.stage_by_id(self.activeStageId) or self.stages[0]

    def stage_by_id(self, stage_id: Optional[str]) -> Optional[Stage]:
        for s in self.stages:
            if s.id == stage_id:
                return s
        return None

    def to_payload(self) -> dict:
        """JSON-ready dict in the persisted blob shape."""
        return self.model_dump(mode="json", by_alias=True)


# -----------------------
# Results / reports
# -----------------------
class CommitReport(BaseModel):
    added: int = 0
    duplicates: List[str] = Field(default_factory=list)
    skipped: int = 0

    @property
    def message(self) -> str:
        if self.added == 0 and self.duplicates:
            return ("Every player in the table is already in the stats; nothing added. "
                    f"(Duplicates: {', '.join(self.duplicates)})")
        if self.added == 0:
            return "The table is empty (or only holds default rows). Nothing to add."
        msg = f"Added {self.added} entries."
        if self.duplicates:
            msg += " Duplicates not added: " + ", ".join(self.duplicates) + "."
        return msg


class PopularPick(BaseModel):
    src: str
    count: int
    name: str
    percentage: float
    totalEntries: int


class EngineConfig(BaseModel):
    storage_dir: str = ".data"
    storage_key: str = "pickem_editor_state"
    autosave_debounce_seconds: float = 1.0
    max_history: int = 50
    log_level: str = "INFO"

    @field_validator("max_history")
    @classmethod
    def _positive_history(cls, v):
        if v < 1:
            raise ValueError("max_history must be at least 1")
        return v

    @field_validator("autosave_debounce_seconds")
    @classmethod
    def _non_negative_debounce(cls, v):
        if v < 0:
            raise ValueError("autosave_debounce_seconds must not be negative")
        return v


# -----------------------
# Factories
# -----------------------
def new_stage_id(index: int = 0) -> str:
    return f"s-{uuid.uuid4().hex[:10]}-{index}"


def new_row(index: int) -> Row:
    return Row(id=default_row_id(index), nick=default_nick(index))


def default_rows(count: int = DEFAULT_ROW_COUNT) -> Tuple[Row, ...]:
    return tuple(new_row(i) for i in range(count))


def new_stage(name: Optional[str] = None, index: int = 0, stage_id: Optional[str] = None) -> Stage:
    rows = default_rows()
    return Stage(
        id=stage_id or new_stage_id(index),
        name=name or f"Stage {index + 1}",
        rows=rows,
        rowCount=len(rows),
    )


def initial_document() -> Document:
    stage = new_stage(None, 0)
    return Document(
        stages=(stage,),
        activeStageId=stage.id,
        libraryCategories=(Category(id=stage.id, name=stage.name),),
    )
