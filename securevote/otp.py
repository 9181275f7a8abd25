# securevote/otp.py
"""One-time passcodes keyed by voter id.

A code is valid for OTP_TTL_SECONDS after issuance and can be used once.
Only a hash of the code is kept.

Wrong guesses are counted per voter, not per code, so asking for a new code
does not buy more guesses. After OTP_MAX_ATTEMPTS failures the voter is
locked out until OTP_LOCKOUT_SECONDS have passed since the last failure.
A pending code cannot be replaced within OTP_RESEND_COOLDOWN_SECONDS.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .config import (
    OTP_LOCKOUT_SECONDS,
    OTP_MAX_ATTEMPTS,
    OTP_RESEND_COOLDOWN_SECONDS,
    OTP_TTL_SECONDS,
)
from .security import generate_otp, hash_otp, verify_otp

logger = logging.getLogger(__name__)

# Failure reasons reported by OtpGate.verify and OtpThrottled
NO_OTP = "no_otp"
EXPIRED = "expired"
INVALID = "invalid"
TOO_MANY_ATTEMPTS = "too_many_attempts"
RESEND_COOLDOWN = "resend_cooldown"


class OtpThrottled(Exception):
    """A code was requested while the voter is locked out or in cooldown."""

    def __init__(self, reason: str, retry_after: int):
        super().__init__(reason)
        self.reason = reason
        self.retry_after = retry_after


@dataclass
class OtpIssue:
    code: str
    expires_at: int  # epoch seconds


@dataclass
class OtpResult:
    ok: bool
    reason: Optional[str] = None


@dataclass
class _Entry:
    code_hash: str
    issued_at: int
    expires_at: int
    email: str


@dataclass
class _Failures:
    count: int
    last_at: int


class OtpGate:
    def __init__(
        self,
        ttl_seconds: int = OTP_TTL_SECONDS,
        max_attempts: int = OTP_MAX_ATTEMPTS,
        lockout_seconds: int = OTP_LOCKOUT_SECONDS,
        resend_cooldown_seconds: int = OTP_RESEND_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_attempts = max_attempts
        self.lockout_seconds = lockout_seconds
        self.resend_cooldown_seconds = resend_cooldown_seconds
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._failures: Dict[str, _Failures] = {}
        self._lock = threading.Lock()

    def _now(self) -> int:
        return int(self._clock())

    def _failure_count(self, voter_id: str, now: int) -> int:
        # Caller holds self._lock
        failures = self._failures.get(voter_id)
        if failures is None:
            return 0
        if now - failures.last_at >= self.lockout_seconds:
            del self._failures[voter_id]
            return 0
        return failures.count

    def _lockout_remaining(self, voter_id: str, now: int) -> int:
        if self._failure_count(voter_id, now) < self.max_attempts:
            return 0
        return self._failures[voter_id].last_at + self.lockout_seconds - now

    def issue(self, voter_id: str, email: str) -> OtpIssue:
        """Create a fresh code for `voter_id`, replacing any pending one.

        Raises OtpThrottled while the voter is locked out or the pending code
        is still inside its resend cooldown.
        """
        self.purge_expired()
        now = self._now()
        with self._lock:
            locked_for = self._lockout_remaining(voter_id, now)
            if locked_for > 0:
                raise OtpThrottled(TOO_MANY_ATTEMPTS, locked_for)
            pending = self._entries.get(voter_id)
            if pending is not None:
                wait = pending.issued_at + self.resend_cooldown_seconds - now
                if wait > 0:
                    raise OtpThrottled(RESEND_COOLDOWN, wait)
            code = generate_otp()
            entry = _Entry(
                code_hash=hash_otp(code),
                issued_at=now,
                expires_at=now + self.ttl_seconds,
                email=email,
            )
            self._entries[voter_id] = entry
        return OtpIssue(code=code, expires_at=entry.expires_at)

    def verify(self, voter_id: str, code: str) -> OtpResult:
        now = self._now()
        with self._lock:
            if self._lockout_remaining(voter_id, now) > 0:
                self._entries.pop(voter_id, None)
                return OtpResult(False, TOO_MANY_ATTEMPTS)
            entry = self._entries.get(voter_id)
            if entry is None:
                return OtpResult(False, NO_OTP)
            if now > entry.expires_at:
                del self._entries[voter_id]
                return OtpResult(False, EXPIRED)
            if not verify_otp(code, entry.code_hash):
                count = self._failure_count(voter_id, now) + 1
                self._failures[voter_id] = _Failures(count=count, last_at=now)
                if count >= self.max_attempts:
                    del self._entries[voter_id]
                    logger.warning("OTP locked out after too many wrong attempts")
                    return OtpResult(False, TOO_MANY_ATTEMPTS)
                return OtpResult(False, INVALID)
            # One-time use
            del self._entries[voter_id]
            self._failures.pop(voter_id, None)
        return OtpResult(True)

    def purge_expired(self) -> int:
        """Drop codes past their expiry and stale failure counts; returns how many codes were removed."""
        now = self._now()
        with self._lock:
            stale = [vid for vid, e in self._entries.items() if now > e.expires_at]
            for vid in stale:
                del self._entries[vid]
            for vid in list(self._failures):
                self._failure_count(vid, now)
        return len(stale)
