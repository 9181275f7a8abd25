import json
import threading
from types import SimpleNamespace

import pytest
from pymongo.errors import DuplicateKeyError, PyMongoError

from securevote import chain
from securevote.config import GENESIS
from securevote.errors import LedgerConflictError, LedgerPersistenceError
from securevote.storage import JsonFileLedgerStore, MemoryLedgerStore, build_store
from securevote.storage_mongo import MongoLedgerStore
from tests.conftest import FailingStore, make_payload


class FakeCollection:
    def __init__(self, fail=False):
        self.docs = {}
        self.fail = fail

    def find_one(self, query):
        if self.fail:
            raise PyMongoError("connection refused")
        doc = self.docs.get(query["_id"])
        return json.loads(json.dumps(doc)) if doc is not None else None

    def replace_one(self, query, doc, upsert=False):
        if self.fail:
            raise PyMongoError("connection refused")
        key = query["_id"]
        stored = self.docs.get(key)
        new_doc = {"_id": key, **json.loads(json.dumps(doc))}
        if stored is not None and all(stored.get(k) == v for k, v in query.items()):
            self.docs[key] = new_doc
            return SimpleNamespace(acknowledged=True, matched_count=1, upserted_id=None)
        if not upsert:
            return SimpleNamespace(acknowledged=True, matched_count=0, upserted_id=None)
        if stored is not None:
            raise DuplicateKeyError("E11000 duplicate key error")
        self.docs[key] = new_doc
        return SimpleNamespace(acknowledged=True, matched_count=0, upserted_id=key)


def test_memory_store_starts_empty_and_snapshots():
    store = MemoryLedgerStore()
    assert store.load() == []
    chain.append(store, make_payload())
    snapshot = store.load()
    snapshot.clear()
    assert len(store.load()) == 1


def test_export_wraps_ledger(filled_store):
    doc = filled_store.export()
    assert list(doc) == ["ledger"]
    assert len(doc["ledger"]) == 4
    assert set(doc["ledger"][0]) == {"voterIdMasked", "candidate", "salt", "timestamp", "prevHash", "hash"}


def test_json_store_round_trip(tmp_path, filled_store):
    path = tmp_path / "nested" / "ledger.json"
    store = JsonFileLedgerStore(str(path))
    assert store.load() == []

    store.save(filled_store.load())
    assert store.load() == filled_store.load()
    assert json.loads(path.read_text(encoding="utf-8")) == filled_store.export()
    # no temp files left behind
    assert [p.name for p in path.parent.iterdir()] == ["ledger.json"]


def test_json_store_append_and_verify(tmp_path):
    store = JsonFileLedgerStore(str(tmp_path / "ledger.json"))
    for n in range(3):
        chain.append(store, make_payload("Ben Carter", n))
    reopened = JsonFileLedgerStore(str(tmp_path / "ledger.json"))
    assert len(reopened.load()) == 3
    assert chain.verify_store(reopened).ok is True


def test_json_store_reports_corrupt_file_without_resetting(tmp_path):
    path = tmp_path / "ledger.json"
    path.write_text("{not json", encoding="utf-8")
    store = JsonFileLedgerStore(str(path))
    with pytest.raises(LedgerPersistenceError):
        store.load()
    assert path.read_text(encoding="utf-8") == "{not json"


def test_json_store_write_failure_is_surfaced(tmp_path):
    # target path is a directory, so the final rename fails
    target = tmp_path / "ledger.json"
    target.mkdir()
    store = JsonFileLedgerStore(str(target))
    with pytest.raises(LedgerPersistenceError):
        store.save([])
    assert list(tmp_path.iterdir()) == [target]


def test_append_surfaces_persistence_failure():
    store = FailingStore()
    chain.append(store, make_payload())
    store.fail_writes = True
    with pytest.raises(LedgerPersistenceError):
        chain.append(store, make_payload(n=1))
    assert len(store.load()) == 1


def test_mongo_store_round_trip(filled_store):
    collection = FakeCollection()
    store = MongoLedgerStore(ledger_id="election-1", collection=collection)
    assert store.load() == []

    chain.import_ledger(store, filled_store.load())
    assert store.load() == filled_store.load()
    assert collection.docs["election-1"]["ledger"] == filled_store.export()["ledger"]

    record = chain.append(store, make_payload("Chloe Singh", 50))
    assert store.load()[-1] == record
    assert chain.verify_store(store).ok is True


def test_mongo_store_keeps_ledgers_apart(filled_store):
    collection = FakeCollection()
    a = MongoLedgerStore(ledger_id="a", collection=collection)
    b = MongoLedgerStore(ledger_id="b", collection=collection)
    a.save(filled_store.load())
    assert b.load() == []


def test_mongo_store_wraps_driver_errors():
    store = MongoLedgerStore(collection=FakeCollection(fail=True))
    with pytest.raises(LedgerPersistenceError):
        store.load()
    with pytest.raises(LedgerPersistenceError):
        store.save([])


def test_build_store(tmp_path):
    assert isinstance(build_store("memory"), MemoryLedgerStore)
    store = build_store("json", path=str(tmp_path / "l.json"))
    assert isinstance(store, JsonFileLedgerStore)
    with pytest.raises(ValueError):
        build_store("sqlite")


def test_json_store_handles_on_one_file_share_a_lock(tmp_path):
    a = JsonFileLedgerStore(str(tmp_path / "ledger.json"))
    b = JsonFileLedgerStore(str(tmp_path / "." / "ledger.json"))
    other = JsonFileLedgerStore(str(tmp_path / "other.json"))
    assert a.lock is b.lock
    assert a.lock is not other.lock


def test_json_store_lock_is_reentrant(tmp_path):
    store = JsonFileLedgerStore(str(tmp_path / "ledger.json"))
    with store.lock:
        chain.append(store, make_payload())
    assert chain.verify_store(store).ok is True


def test_concurrent_appends_through_separate_handles(tmp_path):
    path = str(tmp_path / "ledger.json")
    handles = [JsonFileLedgerStore(path) for _ in range(4)]

    def worker(store, t):
        for n in range(10):
            chain.append(store, make_payload("Alice Johnson", t * 100 + n))

    threads = [threading.Thread(target=worker, args=(h, t)) for t, h in enumerate(handles)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    ledger = JsonFileLedgerStore(path).load()
    assert len(ledger) == 40
    assert chain.verify(ledger).ok is True


def test_mongo_store_refuses_stale_write(filled_store):
    collection = FakeCollection()
    a = MongoLedgerStore(ledger_id="election-1", collection=collection)
    b = MongoLedgerStore(ledger_id="election-1", collection=collection)
    first, second = filled_store.load()[:2]

    b.save([first], expected_tail=GENESIS)
    with pytest.raises(LedgerConflictError):
        a.save([first], expected_tail=GENESIS)

    b.save([first, second], expected_tail=first.hash)
    with pytest.raises(LedgerConflictError):
        a.save([first, second], expected_tail=first.hash)
    assert b.load() == [first, second]


def test_mongo_append_racing_another_writer_is_refused():
    collection = FakeCollection()
    other = MongoLedgerStore(ledger_id="election-1", collection=collection)

    class InterleavedStore(MongoLedgerStore):
        """Lets another writer append between this handle's read and write."""

        raced = False

        def load(self):
            records = super().load()
            if not self.raced:
                self.raced = True
                chain.append(other, make_payload("Ben Carter", 1))
            return records

    slow = InterleavedStore(ledger_id="election-1", collection=collection)
    with pytest.raises(LedgerConflictError):
        chain.append(slow, make_payload("Alice Johnson", 0))

    ledger = other.load()
    assert [r.candidate for r in ledger] == ["Ben Carter"]
    assert chain.verify(ledger).ok is True

    # a retry sees the new tail and succeeds
    chain.append(slow, make_payload("Alice Johnson", 0))
    assert [r.candidate for r in other.load()] == ["Ben Carter", "Alice Johnson"]
    assert chain.verify_store(other).ok is True
