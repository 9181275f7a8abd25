# main.py
import logging
from typing import Optional, Sequence

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import config
from .crud import VoteGate
from .mailer import OtpMailer
from .otp import OtpGate
from .routes.otp_routes import router as otp_router
from .routes.vote_routes import ledger_router, vote_router
from .storage import LedgerStore, build_store

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)


def create_app(
    ledger_store: Optional[LedgerStore] = None,
    otp_gate: Optional[OtpGate] = None,
    mailer: Optional[OtpMailer] = None,
    candidates: Optional[Sequence[str]] = None,
) -> FastAPI:
    """Wire the service together; every collaborator can be swapped for tests."""
    app = FastAPI(title="SecureVote - OTP-gated hash-chain ledger API")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if ledger_store is None:
        ledger_store = build_store(
            config.LEDGER_BACKEND,
            path=config.LEDGER_PATH,
            mongo_uri=config.MONGO_URI,
            mongo_db=config.MONGO_DB,
            ledger_id=config.LEDGER_ID,
        )
        logger.info(f"Using {config.LEDGER_BACKEND} ledger backend")

    app.state.ledger_store = ledger_store
    app.state.otp_gate = otp_gate or OtpGate()
    app.state.mailer = mailer or OtpMailer()
    app.state.vote_gate = VoteGate()
    app.state.candidates = list(candidates or config.CANDIDATES)

    app.include_router(otp_router)
    app.include_router(vote_router)
    app.include_router(ledger_router)
    return app


app = create_app()
