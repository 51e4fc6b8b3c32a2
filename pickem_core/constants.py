from __future__ import annotations
from typing import Dict, Optional, Tuple

SCHEMA_VERSION = 2

# ---------------------
# Areas (pick categories)
# ---------------------
AREAS: Tuple[str, ...] = ("three0", "pass", "out")
AREA_SLOTS: Dict[str, int] = {"three0": 2, "pass": 6, "out": 2}
AREA_TITLES: Dict[str, str] = {"three0": "3-0", "pass": "Advance", "out": "0-3"}

# attribute names on Row/StatEntry ("pass" is a keyword)
AREA_FIELDS: Dict[str, str] = {"three0": "three0", "pass": "pass_", "out": "out"}

# ---------------------
# Rows
# ---------------------
DEFAULT_ROW_COUNT = 10
MIN_ROW_COUNT = 1
MAX_ROW_COUNT = 30

DEFAULT_AVATAR_SCALE = 100
DEFAULT_AVATAR_POS = 50
DEFAULT_NICK_FONT_SIZE = 14

AVATAR_SCALE_LIMITS = (50, 400)
AVATAR_POS_LIMITS = (0, 100)
NICK_FONT_LIMITS = (8, 32)

DEFAULT_NICK_PREFIX = "Player "

# ---------------------
# Document settings
# ---------------------
DEFAULT_SETTINGS: Dict[str, object] = {
    "bg": "#101018",
    "bgImg": "",
    "bgScale": 115,
    "bgPosX": 50,
    "bgPosY": 50,
    "verticalPad": 100,
    "horizontalPad": 40,
    "borderRadius": 0,
    "avatarsEnabled": True,
    "highlightPicksEnabled": False,
    "popularitySortEnabled": False,
    "nickColWidth": 120,
    "tableOffsetY": 0,
    "transparentBackgroundEnabled": False,
}

SETTINGS_LIMITS: Dict[str, Tuple[int, int]] = {
    "bgScale": (50, 200),
    "bgPosX": (0, 100),
    "bgPosY": (0, 100),
    "verticalPad": (0, 200),
    "horizontalPad": (0, 200),
    "borderRadius": (0, 50),
    "tableOffsetY": (-300, 300),
    "nickColWidth": (50, 400),
}

BOOL_SETTINGS = (
    "avatarsEnabled",
    "highlightPicksEnabled",
    "popularitySortEnabled",
    "transparentBackgroundEnabled",
)

TEXT_SETTINGS = ("bg", "bgImg")

# fields restored by "reset design"
DESIGN_SETTINGS = (
    "bg", "bgImg", "bgScale", "bgPosX", "bgPosY",
    "verticalPad", "horizontalPad", "borderRadius", "tableOffsetY",
)

# ---------------------
# Stats / ranking
# ---------------------
RANK_KEYS = ("score", "nick")
ASCENDING = "ascending"
DESCENDING = "descending"

UNCATEGORIZED = "Uncategorized"
UNKNOWN_ASSET_NAME = "Unknown"

# ---------------------
# Export
# ---------------------
FULL_EXPORT_SUFFIX = ".pickemfull"
SLICE_EXPORT_SUFFIX = ".pickem"
EXPORT_MIME = "application/json"


# ---------------------
# Helpers
# ---------------------
def clamp(value, lo, hi):
    return min(max(value, lo), hi)


def to_int(value, default: Optional[int] = 0) -> Optional[int]:
    """Lenient integer coercion for numeric inputs coming from widgets."""
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        try:
            return int(float(value))
        except (TypeError, ValueError, OverflowError):
            return default


def default_nick(index: int) -> str:
    return f"{DEFAULT_NICK_PREFIX}{index + 1}"


def default_row_id(index: int) -> str:
    return f"r-{index}"


def empty_slots(area: str) -> Tuple[None, ...]:
    return (None,) * AREA_SLOTS[area]
