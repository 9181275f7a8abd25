# securevote/config.py
# Central place for thresholds and constants
import os
from dotenv import load_dotenv

# Load environment variables from a local .env if one exists
load_dotenv()

# Sentinel prevHash of the first ledger record
GENESIS = "GENESIS"

# Receipt prefix length shown to voters (full hash is kept for verification)
RECEIPT_DISPLAY_LEN = 16

# Shortest receipt prefix accepted for inclusion lookups
RECEIPT_MIN_PREFIX = 8

# --- Ledger storage ---
# memory | json | mongo
LEDGER_BACKEND = os.getenv("LEDGER_BACKEND", "json").lower()
LEDGER_PATH = os.getenv("LEDGER_PATH", "data/ledger.json")
LEDGER_ID = os.getenv("LEDGER_ID", "default")

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "voting_system")
LEDGER_COLLECTION_NAME = "ledgers"

# --- Ballot ---
CANDIDATES = [
    c.strip()
    for c in os.getenv("CANDIDATES", "Alice Johnson,Ben Carter,Chloe Singh").split(",")
    if c.strip()
]

# --- OTP gate ---
OTP_TTL_SECONDS = int(os.getenv("OTP_TTL_SECONDS", "120"))  # 2 minutes
OTP_MAX_ATTEMPTS = int(os.getenv("OTP_MAX_ATTEMPTS", "5"))
# Failed attempts count per voter across re-issued codes; the lockout clears
# OTP_LOCKOUT_SECONDS after the last failure or on a correct code.
OTP_LOCKOUT_SECONDS = int(os.getenv("OTP_LOCKOUT_SECONDS", "900"))
OTP_RESEND_COOLDOWN_SECONDS = int(os.getenv("OTP_RESEND_COOLDOWN_SECONDS", "30"))
# Codes are shown to the client when no mail server is configured
DEMO_MODE = os.getenv("DEMO_MODE", "true").lower() == "true"

# --- Security & JWT Config ---
# In production, use secure, environment-variable-based secrets
SECRET_KEY = os.getenv("SECRET_KEY", "a_very_secret_key_for_dev_only")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

# --- Mail ---
SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_SECURE = os.getenv("SMTP_SECURE", "false").lower() == "true"
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASS = os.getenv("SMTP_PASS")
MAIL_FROM = os.getenv("MAIL_FROM", "no-reply@secure-vote.local")

# --- HTTP ---
CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
    if o.strip()
]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
