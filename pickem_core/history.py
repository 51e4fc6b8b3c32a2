"""
Bounded, linear undo/redo over immutable Document snapshots.

The manager is the single owner of the live document. ``current`` is always
``history[index]``; a commit after one or more undos discards the redo branch.
State is held as one immutable ``HistoryState`` value that is swapped in a
single assignment, so a reader on another thread (the autosave timer) always
sees a consistent (history, index) pair.
"""
from __future__ import annotations
import logging
from typing import Callable, List, NamedTuple, Tuple

from .models import Document

logger = logging.getLogger(__name__)

MAX_HISTORY = 50

Listener = Callable[[Document], None]


class HistoryState(NamedTuple):
    history: Tuple[Document, ...]
    index: int

    @property
    def current(self) -> Document:
        return self.history[self.index]


def snapshot(doc: Document) -> Document:
    """Detached deep copy bound to the schema (nested dicts included)."""
    return doc.model_copy(deep=True)


def same_content(a: Document, b: Document) -> bool:
    return a is b or a.model_dump() == b.model_dump()


def commit_state(state: HistoryState, doc: Document, max_history: int = MAX_HISTORY) -> HistoryState:
    if same_content(doc, state.current):
        return state
    history = state.history[: state.index + 1] + (snapshot(doc),)
    index = len(history) - 1
    if len(history) > max_history:
        drop = len(history) - max_history
        history = history[drop:]
        index -= drop
    return HistoryState(history, index)


def undo_state(state: HistoryState) -> HistoryState:
    if state.index <= 0:
        return state
    return HistoryState(state.history, state.index - 1)


def redo_state(state: HistoryState) -> HistoryState:
    if state.index >= len(state.history) - 1:
        return state
    return HistoryState(state.history, state.index + 1)


class HistoryManager:
    def __init__(self, initial: Document, max_history: int = MAX_HISTORY):
        if max_history < 1:
            raise ValueError("max_history must be at least 1")
        self.max_history = max_history
        self._state = HistoryState((snapshot(initial),), 0)
        self._listeners: List[Listener] = []

    # ---- read side ----
    @property
    def state(self) -> HistoryState:
        return self._state

    @property
    def current(self) -> Document:
        return self._state.current

    @property
    def index(self) -> int:
        return self._state.index

    @property
    def history(self) -> Tuple[Document, ...]:
        return self._state.history

    @property
    def can_undo(self) -> bool:
        return self._state.index > 0

    @property
    def can_redo(self) -> bool:
        return self._state.index < len(self._state.history) - 1

    # ---- transitions ----
    def _swap(self, new: HistoryState) -> bool:
        if new is self._state:
            return False
        self._state = new
        logger.debug("History at %d of %d", new.index + 1, len(new.history))
        for listener in list(self._listeners):
            listener(new.current)
        return True

    def commit(self, doc: Document) -> bool:
        """Record ``doc`` as the new current value. False when nothing changed."""
        return self._swap(commit_state(self._state, doc, self.max_history))

    def undo(self) -> bool:
        return self._swap(undo_state(self._state))

    def redo(self) -> bool:
        return self._swap(redo_state(self._state))

    def reset(self, doc: Document):
        """Start a fresh single-entry history (after a load or full import)."""
        self._swap(HistoryState((snapshot(doc),), 0))

    def apply(self, mutator: Callable, *args, **kwargs):
        """Run ``mutator(current, *args)`` and commit its document.

        Mutators returning ``(document, report)`` have the document committed
        and the whole tuple handed back. A raising mutator changes nothing.
        """
        result = mutator(self.current, *args, **kwargs)
        doc = result[0] if isinstance(result, tuple) else result
        self.commit(doc)
        return result

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
