# securevote/crud.py
import logging
import threading
import time
from typing import Optional, Sequence, Set

from . import chain
from .models.record_model import VotePayload, VoteRecord
from .security import mask_voter_id, new_salt
from .storage import LedgerStore

logger = logging.getLogger(__name__)


class UnknownCandidateError(ValueError):
    pass


class AlreadyVotedError(Exception):
    pass


class VoteGate:
    """One vote per verified session.

    Each OTP-verified session may cast a single ballot. This is not
    double-vote prevention across sessions or servers.
    """

    def __init__(self):
        self._used: Set[str] = set()
        self._lock = threading.Lock()

    def claim(self, session_id: str) -> bool:
        with self._lock:
            if session_id in self._used:
                return False
            self._used.add(session_id)
            return True

    def release(self, session_id: str) -> None:
        with self._lock:
            self._used.discard(session_id)

    def has_voted(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._used


def cast_vote(
    store: LedgerStore,
    gate: VoteGate,
    voter_id: str,
    session_id: str,
    candidate: str,
    candidates: Sequence[str],
    timestamp_ms: Optional[int] = None,
) -> VoteRecord:
    """Record a ballot for an OTP-verified voter and return the new record.

    The raw voter id is masked here and never reaches the ledger. If the
    store fails, the session keeps its right to vote and the error
    propagates.
    """
    if candidate not in candidates:
        raise UnknownCandidateError(f"Unknown candidate: {candidate}")
    if not voter_id:
        raise ValueError("voter id required")
    if not gate.claim(session_id):
        raise AlreadyVotedError("This session has already voted.")

    payload = VotePayload(
        voterIdMasked=mask_voter_id(voter_id),
        candidate=candidate,
        salt=new_salt(),
        timestamp=timestamp_ms if timestamp_ms is not None else int(time.time() * 1000),
    )
    try:
        record = chain.append(store, payload)
    except Exception:
        gate.release(session_id)
        raise
    logger.info(f"Vote recorded for {payload.voterIdMasked}")
    return record
