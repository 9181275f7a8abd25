# securevote/storage.py
import fcntl
import json
import logging
import os
import tempfile
import threading
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from .errors import LedgerPersistenceError
from .models.record_model import VoteRecord

logger = logging.getLogger(__name__)


class LedgerStore:
    """Persistence capability for one ledger.

    Backends implement `load` and `save`. `lock` serializes writers for this
    ledger identity; the chain engine holds it around every read-modify-write.

    `save(records, expected_tail=...)` names the tail hash the caller read
    (GENESIS for an empty ledger). Backends whose lock cannot reach other
    processes use it to refuse a write that would drop someone else's entry.
    """

    def __init__(self):
        self.lock = threading.RLock()

    def load(self) -> List[VoteRecord]:
        raise NotImplementedError

    def save(self, records: Sequence[VoteRecord], expected_tail: Optional[str] = None) -> None:
        raise NotImplementedError

    def export(self) -> Dict[str, Any]:
        """Wrap the current sequence in the transfer document."""
        with self.lock:
            records = self.load()
        return {"ledger": [r.model_dump() for r in records]}


class MemoryLedgerStore(LedgerStore):
    def __init__(self, records: Sequence[VoteRecord] = ()):
        super().__init__()
        self._records = tuple(records)

    def load(self) -> List[VoteRecord]:
        return list(self._records)

    def save(self, records: Sequence[VoteRecord], expected_tail: Optional[str] = None) -> None:
        self._records = tuple(records)


class LedgerFileLock:
    """Re-entrant lock for one ledger file, shared by every handle on it.

    Threads in this process queue on an RLock; other processes are kept out
    with an exclusive flock on `<ledger>.lock`, held while the outermost
    `with` block runs.
    """

    def __init__(self, path: str):
        self.path = path + ".lock"
        self._thread_lock = threading.RLock()
        self._depth = 0
        self._f = None

    def __enter__(self):
        self._thread_lock.acquire()
        if self._depth == 0:
            try:
                os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
                self._f = open(self.path, "a+")
                fcntl.flock(self._f.fileno(), fcntl.LOCK_EX)
            except OSError as e:
                if self._f is not None:
                    self._f.close()
                    self._f = None
                self._thread_lock.release()
                logger.error(f"Failed to lock ledger file {self.path}: {e}")
                raise LedgerPersistenceError(f"cannot lock ledger file {self.path}") from e
        self._depth += 1
        return self

    def __exit__(self, exc_type, exc, tb):
        self._depth -= 1
        try:
            if self._depth == 0:
                try:
                    fcntl.flock(self._f.fileno(), fcntl.LOCK_UN)
                finally:
                    self._f.close()
                    self._f = None
        finally:
            self._thread_lock.release()
        return False


_file_locks: Dict[str, LedgerFileLock] = {}
_file_locks_guard = threading.Lock()


def file_lock_for(path: str) -> LedgerFileLock:
    """Return the lock for the ledger at `path`, creating it on first use."""
    key = os.path.realpath(path)
    with _file_locks_guard:
        lock = _file_locks.get(key)
        if lock is None:
            lock = _file_locks[key] = LedgerFileLock(key)
        return lock


class JsonFileLedgerStore(LedgerStore):
    """Ledger kept as a single JSON document on disk.

    Writes replace the file in one step (temp file + fsync + rename), so a
    reader never sees a half-written sequence. A file that cannot be parsed
    is reported, never reset. Every handle on the same file shares one
    `LedgerFileLock`, which also excludes other processes.
    """

    def __init__(self, path: str):
        super().__init__()
        self.path = path
        self.lock = file_lock_for(path)

    def load(self) -> List[VoteRecord]:
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return [VoteRecord.model_validate(r) for r in data["ledger"]]
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValidationError) as e:
            logger.error(f"Failed to read ledger file {self.path}: {e}")
            raise LedgerPersistenceError(f"cannot read ledger file {self.path}") from e

    def save(self, records: Sequence[VoteRecord], expected_tail: Optional[str] = None) -> None:
        data = {"ledger": [r.model_dump() for r in records]}
        directory = os.path.dirname(self.path) or "."
        tmp = None
        try:
            os.makedirs(directory, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", delete=False, dir=directory, suffix=".tmp"
            ) as tf:
                tmp = tf.name
                json.dump(data, tf, ensure_ascii=False, indent=2)
                tf.flush()
                os.fsync(tf.fileno())
            os.replace(tmp, self.path)
        except OSError as e:
            logger.error(f"Failed to write ledger file {self.path}: {e}")
            if tmp and os.path.exists(tmp):
                os.remove(tmp)
            raise LedgerPersistenceError(f"cannot write ledger file {self.path}") from e


def build_store(backend: str, **options) -> LedgerStore:
    """Pick a store backend by name (`memory`, `json` or `mongo`)."""
    if backend == "memory":
        return MemoryLedgerStore()
    if backend == "json":
        return JsonFileLedgerStore(options["path"])
    if backend == "mongo":
        # pymongo is only needed for this backend
        from .storage_mongo import MongoLedgerStore
        return MongoLedgerStore(
            uri=options["mongo_uri"],
            db_name=options["mongo_db"],
            ledger_id=options.get("ledger_id", "default"),
        )
    raise ValueError(f"Unknown ledger backend: {backend!r}")
