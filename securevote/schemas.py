from typing import Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field

from .models.record_model import VoteRecord


class OtpRequest(BaseModel):
    voterId: str = Field(..., min_length=1)
    email: EmailStr


class OtpVerifyRequest(BaseModel):
    voterId: str = Field(..., min_length=1)
    code: str = Field(..., pattern=r"^\d{6}$")


class OtpRequestOut(BaseModel):
    ok: bool = True
    exp: int
    demoCode: Optional[str] = None


class OtpVerifyOut(BaseModel):
    ok: bool = True
    accessToken: str
    tokenType: str = "bearer"


class BallotIn(BaseModel):
    candidate: str = Field(..., min_length=1)


class CastVoteOut(BaseModel):
    ok: bool = True
    receipt: str
    receiptShort: str
    record: VoteRecord


class ResultsOut(BaseModel):
    tally: Dict[str, int]
    total: int


class LedgerDocument(BaseModel):
    ledger: List[VoteRecord]


class ReceiptOut(BaseModel):
    found: bool
    index: Optional[int] = None
    record: Optional[VoteRecord] = None
