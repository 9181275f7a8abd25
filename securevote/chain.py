# securevote/chain.py
"""Hash-chain engine for the vote ledger.

Each record commits to its own fields and to the hash of the record before
it, so editing, dropping or reordering any stored vote breaks verification
at that record's index. The engine keeps no state: the tail comes from the
store on every append.
"""
import hashlib
import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ValidationError

from .config import GENESIS, RECEIPT_MIN_PREFIX
from .errors import LedgerFormatError
from .models.record_model import VerificationResult, VotePayload, VoteRecord
from .storage import LedgerStore

logger = logging.getLogger(__name__)

# Digest input order. `hash` is never part of it.
CANONICAL_FIELDS = ("voterIdMasked", "candidate", "salt", "timestamp", "prevHash")
_INT_FIELDS = {"timestamp"}


def _encode_value(name: str, value: Any) -> str:
    if name in _INT_FIELDS:
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"{name} must be an integer, got {type(value).__name__}")
        return str(value)
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a string, got {type(value).__name__}")
    return json.dumps(value, ensure_ascii=False)


def canonicalize(record: Union[BaseModel, Mapping[str, Any]]) -> bytes:
    """Serialize the digested fields in fixed order.

    Layout: {"voterIdMasked":...,"candidate":...,"salt":...,"timestamp":N,"prevHash":...}
    with JSON-quoted strings, a decimal integer timestamp and no whitespace.
    Quoting keeps adjacent fields from running together. Any extra keys
    (including `hash`) are ignored.
    """
    fields = record.model_dump() if isinstance(record, BaseModel) else record
    parts = [
        f"{json.dumps(name)}:{_encode_value(name, fields[name])}"
        for name in CANONICAL_FIELDS
    ]
    return ("{" + ",".join(parts) + "}").encode("utf-8")


def digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def record_hash(record: Union[BaseModel, Mapping[str, Any]]) -> str:
    return digest(canonicalize(record))


def append(store: LedgerStore, payload: VotePayload) -> VoteRecord:
    """Chain `payload` onto the store's tail and persist it.

    Raises LedgerPersistenceError if the store cannot be read or written; in
    that case nothing was recorded.
    """
    with store.lock:
        ledger = store.load()
        prev_hash = ledger[-1].hash if ledger else GENESIS
        body = {**payload.model_dump(), "prevHash": prev_hash}
        record = VoteRecord(**body, hash=record_hash(body))
        store.save([*ledger, record], expected_tail=prev_hash)
    logger.info(f"Appended ledger entry #{len(ledger) + 1} ({record.hash[:12]})")
    return record


def verify(ledger: Sequence[VoteRecord]) -> VerificationResult:
    """Check digests and linkage from index 0; stop at the first bad record."""
    for i, record in enumerate(ledger):
        try:
            actual = record_hash(record)
        except UnicodeEncodeError:
            # Text with lone surrogates has no UTF-8 form, so it has no digest.
            return VerificationResult(ok=False, failingIndex=i)
        if actual != record.hash:
            return VerificationResult(ok=False, failingIndex=i)
        expected_prev = GENESIS if i == 0 else ledger[i - 1].hash
        if record.prevHash != expected_prev:
            return VerificationResult(ok=False, failingIndex=i)
    return VerificationResult(ok=True)


def verify_store(store: LedgerStore) -> VerificationResult:
    with store.lock:
        snapshot = store.load()
    result = verify(snapshot)
    if not result.ok:
        logger.warning(f"Stored ledger failed integrity at index {result.failingIndex}")
    return result


def parse_ledger_document(obj: Any) -> List[VoteRecord]:
    """Validate an import payload: {"ledger": [...]} or a bare list of records."""
    if isinstance(obj, dict):
        if "ledger" not in obj:
            raise LedgerFormatError("missing 'ledger' field")
        obj = obj["ledger"]
    if not isinstance(obj, list):
        raise LedgerFormatError("ledger must be an array")

    records = []
    for i, entry in enumerate(obj):
        if not isinstance(entry, dict):
            raise LedgerFormatError(f"entry {i} is not an object", index=i)
        try:
            record = VoteRecord.model_validate(entry)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise LedgerFormatError(f"entry {i} is malformed ({fields})", index=i) from e
        try:
            for value in record.model_dump().values():
                if isinstance(value, str):
                    value.encode("utf-8")
        except UnicodeEncodeError as e:
            raise LedgerFormatError(f"entry {i} contains text that is not valid UTF-8", index=i) from e
        records.append(record)
    return records


def import_ledger(store: LedgerStore, candidate: Sequence[VoteRecord]) -> VerificationResult:
    """Replace the store's contents with `candidate` only if it verifies."""
    result = verify(candidate)
    if not result.ok:
        logger.warning(f"Rejected ledger import: integrity failure at index {result.failingIndex}")
        return result
    with store.lock:
        current = store.load()
        store.save(list(candidate), expected_tail=current[-1].hash if current else GENESIS)
    logger.info(f"Imported ledger with {len(candidate)} entries")
    return result


def tally(ledger: Sequence[VoteRecord], candidates: Sequence[str]) -> Dict[str, int]:
    counts = {c: 0 for c in candidates}
    for record in ledger:
        if record.candidate in counts:
            counts[record.candidate] += 1
    return counts


def find_receipt(ledger: Sequence[VoteRecord], receipt: str) -> Optional[Tuple[int, VoteRecord]]:
    """Look up a vote by full receipt hash or by a display prefix of it.

    A prefix shared by more than one record matches nothing.
    """
    receipt = receipt.strip().lower()
    if len(receipt) < RECEIPT_MIN_PREFIX:
        return None
    matches = []
    for i, record in enumerate(ledger):
        if record.hash == receipt:
            return i, record
        if record.hash.startswith(receipt):
            matches.append((i, record))
    if len(matches) == 1:
        return matches[0]
    return None
