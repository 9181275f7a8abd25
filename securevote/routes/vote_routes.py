import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .. import chain
from ..config import RECEIPT_DISPLAY_LEN
from ..crud import AlreadyVotedError, UnknownCandidateError, cast_vote
from ..errors import LedgerFormatError, LedgerPersistenceError
from ..models.record_model import VerificationResult
from ..schemas import BallotIn, CastVoteOut, LedgerDocument, ReceiptOut, ResultsOut
from ..security import decode_access_token

logger = logging.getLogger(__name__)

vote_router = APIRouter(prefix="/api", tags=["Vote"])
ledger_router = APIRouter(prefix="/api/ledger", tags=["Ledger"])

bearer = HTTPBearer(auto_error=False)


def current_session(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> dict:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not verified.")
    claims = decode_access_token(credentials.credentials)
    if claims is None:
        raise HTTPException(status_code=401, detail="Invalid or expired session.")
    return claims


def _snapshot(request: Request):
    store = request.app.state.ledger_store
    try:
        with store.lock:
            return store.load()
    except LedgerPersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))


# ------------------------------
# Ballot
# ------------------------------
@vote_router.get("/candidates")
def get_candidates(request: Request):
    return {"candidates": request.app.state.candidates}


@vote_router.post("/vote/cast", response_model=CastVoteOut)
def cast(ballot: BallotIn, request: Request, session: dict = Depends(current_session)):
    """
    Appends the ballot to the ledger and returns the record hash as receipt.
    """
    state = request.app.state
    try:
        record = cast_vote(
            state.ledger_store,
            state.vote_gate,
            voter_id=session["sub"],
            session_id=session["jti"],
            candidate=ballot.candidate,
            candidates=state.candidates,
        )
    except UnknownCandidateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AlreadyVotedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except LedgerPersistenceError as e:
        # the vote was NOT recorded
        raise HTTPException(status_code=503, detail=str(e))

    return CastVoteOut(
        receipt=record.hash,
        receiptShort=record.hash[:RECEIPT_DISPLAY_LEN],
        record=record,
    )


@vote_router.get("/results", response_model=ResultsOut)
def get_results(request: Request):
    ledger = _snapshot(request)
    counts = chain.tally(ledger, request.app.state.candidates)
    return ResultsOut(tally=counts, total=sum(counts.values()))


# ------------------------------
# Ledger transfer & integrity
# ------------------------------
@ledger_router.get("", response_model=LedgerDocument)
def export_ledger(request: Request):
    try:
        return request.app.state.ledger_store.export()
    except LedgerPersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))


@ledger_router.post("/import", response_model=VerificationResult)
def import_ledger(request: Request, payload: Any = Body(...)):
    """
    Replaces the ledger with the uploaded one, but only if it verifies.
    Malformed uploads get 422, tampered ones 409; either way the current
    ledger is left as it was.
    """
    try:
        candidate = chain.parse_ledger_document(payload)
    except LedgerFormatError as e:
        raise HTTPException(status_code=422, detail={"error": str(e), "index": e.index})

    try:
        result = chain.import_ledger(request.app.state.ledger_store, candidate)
    except LedgerPersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))

    if not result.ok:
        raise HTTPException(
            status_code=409,
            detail={"error": "integrity_failure", "failingIndex": result.failingIndex},
        )
    return result


@ledger_router.get("/verify", response_model=VerificationResult, response_model_exclude_none=True)
def verify_ledger(request: Request):
    try:
        return chain.verify_store(request.app.state.ledger_store)
    except LedgerPersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))


@ledger_router.get("/receipt/{receipt}", response_model=ReceiptOut, response_model_exclude_none=True)
def lookup_receipt(receipt: str, request: Request):
    found = chain.find_receipt(_snapshot(request), receipt)
    if found is None:
        return ReceiptOut(found=False)
    index, record = found
    return ReceiptOut(found=True, index=index, record=record)
