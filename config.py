# config.py
import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./oor_redeem.db")

# Shared secret for the X-ADMIN-KEY header. If unset, admin is blocked.
ADMIN_KEY = os.getenv("ADMIN_KEY")

APP_TIMEZONE = os.getenv("APP_TIMEZONE", "Asia/Jakarta")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", "3000"))

MAIL_LOOKUP_URL = os.getenv("MAIL_LOOKUP_URL", "")
MAIL_LOOKUP_API_KEY = os.getenv("MAIL_LOOKUP_API_KEY", "")
MAIL_LOOKUP_TIMEOUT = float(os.getenv("MAIL_LOOKUP_TIMEOUT", "15"))

CLAIM_MAX_ATTEMPTS = int(os.getenv("CLAIM_MAX_ATTEMPTS", "4"))
CLAIM_WRITE_BACKOFF = float(os.getenv("CLAIM_WRITE_BACKOFF", "0.1"))
CLAIM_RACE_BACKOFF = float(os.getenv("CLAIM_RACE_BACKOFF", "0.08"))

MAIL_FETCH_HOLD_SECONDS = int(os.getenv("MAIL_FETCH_HOLD_SECONDS", "90"))
MAIL_FETCH_ATTEMPTS = int(os.getenv("MAIL_FETCH_ATTEMPTS", "3"))

DEFAULT_LEASE_HOURS = int(os.getenv("DEFAULT_LEASE_HOURS", "6"))
