import re
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from .config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, SECRET_KEY

# OTP codes are short-lived; pbkdf2 keeps verification fast enough per request
otp_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


# Redact a voter id before it goes anywhere near the ledger
def mask_voter_id(voter_id: str) -> str:
    if not voter_id:
        return ""
    clean = _NON_ALNUM.sub("", voter_id)
    if len(clean) <= 4:
        return "****"
    return clean[:2] + "***" + clean[-2:]


# Fresh per-record salt
def new_salt() -> str:
    return secrets.token_hex(16)


def generate_otp() -> str:
    return f"{secrets.randbelow(900000) + 100000}"


def hash_otp(code: str) -> str:
    return otp_context.hash(code)


def verify_otp(code: str, hashed_code: str) -> bool:
    return otp_context.verify(code, hashed_code)


# Create JWT access token for a voter who passed the OTP check
def create_access_token(voter_id: str, expires_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode = {"sub": voter_id, "jti": uuid.uuid4().hex, "exp": expire}
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Optional[dict]:
    """Return the token claims, or None if the token is invalid or expired."""
    try:
        claims = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if not claims.get("sub") or not claims.get("jti"):
        return None
    return claims
