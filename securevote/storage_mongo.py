# storage_mongo.py
import logging
from typing import List, Optional, Sequence

from pydantic import ValidationError
from pymongo import MongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

from .config import GENESIS, LEDGER_COLLECTION_NAME
from .errors import LedgerConflictError, LedgerPersistenceError
from .models.record_model import VoteRecord
from .storage import LedgerStore

logger = logging.getLogger(__name__)


class MongoLedgerStore(LedgerStore):
    """Ledger kept as one MongoDB document: {"_id": ledger_id, "ledger": [...], "tail": hash}.

    Single-document writes are atomic in MongoDB, so `save` swaps the whole
    sequence at once. `lock` only covers this process, so a save that names
    `expected_tail` is applied only while the stored tail still matches it;
    otherwise LedgerConflictError is raised and nothing is written.
    """

    def __init__(
        self,
        uri: Optional[str] = None,
        db_name: Optional[str] = None,
        ledger_id: str = "default",
        collection=None,
    ):
        super().__init__()
        self.ledger_id = ledger_id
        self.client = None
        if collection is not None:
            self.collection = collection
            return
        try:
            self.client = MongoClient(uri)
            self.collection = self.client[db_name][LEDGER_COLLECTION_NAME]
            # Test connection
            self.client.server_info()
            logger.info(f"Connected to MongoDB at {uri}, database: {db_name}")
        except PyMongoError as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise LedgerPersistenceError("cannot connect to MongoDB") from e

    def load(self) -> List[VoteRecord]:
        try:
            doc = self.collection.find_one({"_id": self.ledger_id})
        except PyMongoError as e:
            logger.error(f"Error reading ledger {self.ledger_id}: {e}")
            raise LedgerPersistenceError(f"cannot read ledger {self.ledger_id}") from e
        if not doc:
            return []
        try:
            return [VoteRecord.model_validate(r) for r in doc.get("ledger", [])]
        except ValidationError as e:
            logger.error(f"Stored ledger {self.ledger_id} is unreadable: {e}")
            raise LedgerPersistenceError(f"stored ledger {self.ledger_id} is unreadable") from e

    def save(self, records: Sequence[VoteRecord], expected_tail: Optional[str] = None) -> None:
        doc = {
            "ledger": [r.model_dump() for r in records],
            "tail": records[-1].hash if records else GENESIS,
        }
        query = {"_id": self.ledger_id}
        # An empty ledger may not have a document yet, so only that case upserts.
        upsert = expected_tail is None or expected_tail == GENESIS
        if expected_tail is not None:
            query["tail"] = expected_tail
        try:
            result = self.collection.replace_one(query, doc, upsert=upsert)
        except DuplicateKeyError as e:
            logger.warning(f"Ledger {self.ledger_id} was written by another writer")
            raise LedgerConflictError(f"ledger {self.ledger_id} changed during write") from e
        except PyMongoError as e:
            logger.error(f"Error writing ledger {self.ledger_id}: {e}")
            raise LedgerPersistenceError(f"cannot write ledger {self.ledger_id}") from e
        if not result.acknowledged:
            raise LedgerPersistenceError(f"write to ledger {self.ledger_id} was not acknowledged")
        if result.matched_count == 0 and result.upserted_id is None:
            logger.warning(f"Ledger {self.ledger_id} was written by another writer")
            raise LedgerConflictError(f"ledger {self.ledger_id} changed during write")

    def close(self):
        """Close MongoDB connection"""
        if self.client is not None:
            self.client.close()
            logger.info("MongoDB connection closed")
