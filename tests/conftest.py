import pytest
from fastapi.testclient import TestClient

from securevote import chain
from securevote.errors import LedgerPersistenceError
from securevote.mailer import OtpMailer
from securevote.main import create_app
from securevote.models.record_model import VotePayload
from securevote.otp import OtpGate
from securevote.storage import MemoryLedgerStore

CANDIDATES = ["Alice Johnson", "Ben Carter", "Chloe Singh"]


class FailingStore(MemoryLedgerStore):
    """Memory store whose writes can be switched off."""

    def __init__(self):
        super().__init__()
        self.fail_writes = False

    def save(self, records, expected_tail=None):
        if self.fail_writes:
            raise LedgerPersistenceError("storage unavailable")
        super().save(records, expected_tail)


def make_payload(candidate="Alice Johnson", n=0, voter="vo***45"):
    return VotePayload(
        voterIdMasked=voter,
        candidate=candidate,
        salt=f"salt-{n}",
        timestamp=1700000000000 + n,
    )


@pytest.fixture
def store():
    return MemoryLedgerStore()


@pytest.fixture
def filled_store(store):
    for n, candidate in enumerate(["Alice Johnson", "Ben Carter", "Alice Johnson", "Chloe Singh"]):
        chain.append(store, make_payload(candidate, n))
    return store


@pytest.fixture
def app(store):
    return create_app(
        ledger_store=store,
        otp_gate=OtpGate(),
        mailer=OtpMailer(host=None, demo_mode=True),
        candidates=CANDIDATES,
    )


@pytest.fixture
def client(app):
    return TestClient(app)


def login(client, voter_id="voter-12345"):
    """Run the demo OTP flow and return auth headers for a fresh session."""
    res = client.post("/api/otp/request", json={"voterId": voter_id, "email": "voter@mail.com"})
    assert res.status_code == 200
    code = res.json()["demoCode"]
    res = client.post("/api/otp/verify", json={"voterId": voter_id, "code": code})
    assert res.status_code == 200
    return {"Authorization": f"Bearer {res.json()['accessToken']}"}
