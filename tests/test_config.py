from __future__ import annotations
import pytest

from pickem_core.config import DEFAULT_CONFIG, ensure_config_exists, load_config, parse_config
from pickem_core.errors import DuplicatePickError, FormatError, PickemError, StorageError, ValidationError


def test_defaults_without_file(tmp_path):
    cfg = load_config(str(tmp_path / "missing.yaml"))
    assert cfg.model_dump() == DEFAULT_CONFIG
    assert load_config().max_history == 50

def test_overrides_merge_over_defaults():
    cfg = parse_config("max_history: 10\nautosave_debounce_seconds: 0.25\n")
    assert cfg.max_history == 10
    assert cfg.autosave_debounce_seconds == 0.25
    assert cfg.storage_key == "pickem_editor_state"
    assert parse_config("").max_history == 50

def test_invalid_config():
    for text in ("- a\n- b\n", "max_history: 0\n", "autosave_debounce_seconds: -1\n", "a: [1,"):
        with pytest.raises(FormatError):
            parse_config(text)

def test_ensure_config_exists(tmp_path):
    path = str(tmp_path / "pickem.yaml")
    ensure_config_exists(path)
    assert load_config(path).model_dump() == DEFAULT_CONFIG
    with open(path, "w", encoding="utf-8") as f:
        f.write("log_level: DEBUG\n")
    ensure_config_exists(path)
    assert load_config(path).log_level == "DEBUG"

def test_error_taxonomy():
    err = DuplicatePickError("pass", "A", 0)
    assert isinstance(err, ValidationError)
    assert isinstance(err, ValueError)
    assert isinstance(StorageError("x"), OSError)
    assert issubclass(FormatError, PickemError)
