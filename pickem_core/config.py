from __future__ import annotations
import os
import textwrap
from typing import Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from .errors import FormatError
from .models import EngineConfig

# ===== Engine defaults =====
DEFAULT_CONFIG = {
    "storage_dir": ".data",
    "storage_key": "pickem_editor_state",
    "autosave_debounce_seconds": 1.0,   # only the state 1s after the last edit is written
    "max_history": 50,
    "log_level": "INFO",
}

DEFAULT_CONFIG_PATH = "pickem.yaml"

DEFAULT_CONFIG_YAML = textwrap.dedent("""\
# Pick'em editor engine settings
storage_dir: .data
storage_key: pickem_editor_state
autosave_debounce_seconds: 1.0
max_history: 50
log_level: INFO
""")


def ensure_config_exists(path: str = DEFAULT_CONFIG_PATH):
    if not os.path.exists(path):
        with open(path, "w", encoding="utf-8") as f:
            f.write(DEFAULT_CONFIG_YAML)


def parse_config(text: str) -> EngineConfig:
    try:
        obj = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise FormatError(f"Config is not valid YAML: {e}") from e
    if obj is None:
        obj = {}
    if not isinstance(obj, dict):
        raise FormatError("Config must be a mapping of settings.")
    merged = {**DEFAULT_CONFIG, **obj}
    try:
        return EngineConfig(**merged)
    except PydanticValidationError as e:
        raise FormatError(f"Invalid config: {e}") from e


def load_config(path: Optional[str] = None) -> EngineConfig:
    """Read YAML overrides from ``path``; a missing file means all defaults."""
    if path is None or not os.path.exists(path):
        return EngineConfig(**DEFAULT_CONFIG)
    with open(path, "r", encoding="utf-8") as f:
        return parse_config(f.read())
