"""
pickem_core package: document models, schema migration, pure store mutators,
undo/redo history, persistence and read-side analytics for pick'em sheets.
"""
__all__ = [
    "constants",
    "errors",
    "models",
    "config",
    "migration",
    "store",
    "history",
    "analytics",
    "io",
    "persistence",
]
