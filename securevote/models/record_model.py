from typing import Optional

from pydantic import BaseModel, ConfigDict


class VotePayload(BaseModel):
    """What the vote workflow hands to the chain engine.

    The voter id must already be masked and the salt freshly generated.
    """
    model_config = ConfigDict(strict=True, extra="forbid", frozen=True)

    voterIdMasked: str
    candidate: str
    salt: str
    timestamp: int  # ms since epoch


class VoteRecord(VotePayload):
    prevHash: str
    hash: str


class VerificationResult(BaseModel):
    ok: bool
    failingIndex: Optional[int] = None
