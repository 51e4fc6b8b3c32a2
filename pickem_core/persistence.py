"""
Durable storage of the live document.

``PersistenceGateway`` bridges a ``HistoryManager`` and a key-value store: each
change of ``current`` bumps an edit counter and (re)arms one cancellable
timer; only the timer armed by the latest edit writes, and it reads the
document when it fires. Writes never block editing.
"""
from __future__ import annotations
import logging
import os
import tempfile
import threading
from datetime import date
from typing import Callable, Dict, Optional, Protocol

from .errors import FormatError, StorageError
from .io import ExportBlob, decode_payload, encode_document, export_document
from .migration import migrate
from .models import Document, EngineConfig

logger = logging.getLogger(__name__)

DEFAULT_KEY = "pickem_editor_state"


def _atomic_write(path: str, data: bytes):
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=directory, suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
    except OSError:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


# -----------------------
# Key-value stores
# -----------------------
class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[bytes]: ...

    def put(self, key: str, blob: bytes) -> None: ...


class MemoryStore:
    def __init__(self):
        self.data: Dict[str, bytes] = {}

    def get(self, key: str) -> Optional[bytes]:
        return self.data.get(key)

    def put(self, key: str, blob: bytes):
        self.data[key] = bytes(blob)


class FileStore:
    """One JSON file per key inside ``directory``."""

    def __init__(self, directory: str):
        self.directory = directory

    def path_for(self, key: str) -> str:
        return os.path.join(self.directory, f"{key}.json")

    def get(self, key: str) -> Optional[bytes]:
        path = self.path_for(key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as e:
            raise StorageError(f"Could not read {path}: {e}") from e

    def put(self, key: str, blob: bytes):
        path = self.path_for(key)
        try:
            _atomic_write(path, blob)
        except OSError as e:
            raise StorageError(f"Could not write {path}: {e}") from e


# -----------------------
# Gateway
# -----------------------
class PersistenceGateway:
    def __init__(self, store: KeyValueStore, key: str = DEFAULT_KEY, debounce_seconds: float = 1.0,
                 source: Optional[Callable[[], Document]] = None,
                 timer_factory=threading.Timer):
        self.store = store
        self.key = key
        self.debounce_seconds = debounce_seconds
        self._source = source
        self._timer_factory = timer_factory
        self._timer = None
        self._edit_counter = 0
        self._closed = False
        self.saved_edit = 0
        self.last_error: Optional[StorageError] = None

    @classmethod
    def from_config(cls, config: EngineConfig, **kwargs) -> "PersistenceGateway":
        return cls(FileStore(config.storage_dir), key=config.storage_key,
                   debounce_seconds=config.autosave_debounce_seconds, **kwargs)

    # ---- explicit load/save ----
    def load(self) -> Optional[Document]:
        """Stored document, migrated to the current schema; None when nothing is stored."""
        blob = self.store.get(self.key)
        if blob is None:
            return None
        try:
            doc = migrate(decode_payload(blob))
        except FormatError as e:
            logger.error("Stored document under %r is unreadable: %s", self.key, e)
            raise
        logger.info("Loaded document (%d stage(s)) from storage", len(doc.stages))
        return doc

    def save(self, doc: Document):
        try:
            self.store.put(self.key, encode_document(doc))
        except StorageError:
            raise
        except OSError as e:
            raise StorageError(str(e)) from e

    # ---- autosave ----
    def attach(self, history) -> Callable[[], None]:
        """Autosave every change of ``history.current``; returns the unsubscribe hook."""
        self._source = lambda: history.current
        return history.subscribe(lambda _doc: self.schedule())

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def schedule(self):
        """Restart the debounce window for the latest edit."""
        if self._closed:
            return
        self._edit_counter += 1
        self._arm(self._edit_counter)

    def _arm(self, ticket: int):
        if self._timer is not None:
            self._timer.cancel()
        timer = self._timer_factory(self.debounce_seconds, self._fire, args=(ticket,))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _fire(self, ticket: int):
        if ticket != self._edit_counter or self._closed:
            return
        self._timer = None
        try:
            self.save(self._source())
        except StorageError as e:
            self.last_error = e
            logger.warning("Autosave failed, retrying in %.1fs: %s", self.debounce_seconds, e)
            if ticket == self._edit_counter and not self._closed:
                self._arm(ticket)
            return
        self.last_error = None
        self.saved_edit = ticket
        logger.debug("Autosaved edit #%d", ticket)

    def flush(self):
        """Write the current document now and drop the pending timer."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._source is None:
            return
        try:
            self.save(self._source())
        except StorageError as e:
            self.last_error = e
            raise
        self.last_error = None
        self.saved_edit = self._edit_counter

    def close(self):
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


# -----------------------
# Project file (optional capability)
# -----------------------
class ProjectFile:
    """A user-chosen file the whole project is written to on quick save."""

    def __init__(self, path: str):
        self.path = path

    def write(self, doc: Document):
        try:
            _atomic_write(self.path, encode_document(doc))
        except OSError as e:
            raise StorageError(f"Lost access to {self.path}: {e}") from e

    def read(self) -> Document:
        try:
            with open(self.path, "rb") as f:
                blob = f.read()
        except OSError as e:
            raise StorageError(f"Could not read {self.path}: {e}") from e
        return migrate(decode_payload(blob))


def file_save_capability(path: Optional[str]) -> Optional[ProjectFile]:
    """ProjectFile for ``path`` when its directory is writable, else None."""
    if not path:
        return None
    directory = os.path.dirname(os.path.abspath(path))
    if not os.path.isdir(directory) or not os.access(directory, os.W_OK):
        return None
    return ProjectFile(path)


def quick_save(doc: Document, project_file: Optional[ProjectFile],
               today: Optional[date] = None) -> Optional[ExportBlob]:
    """Write to the project file; without one, hand back the export download."""
    if project_file is None:
        logger.info("No project file available; falling back to export download")
        return export_document(doc, today)
    project_file.write(doc)
    logger.info("Saved project to %s", project_file.path)
    return None
