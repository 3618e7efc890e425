import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./circlein.db")

# Firebase Configuration
FIREBASE_PROJECT_ID = os.getenv("FIREBASE_PROJECT_ID")
# Service account JSON for firebase-admin (custom token minting)
FIREBASE_CREDENTIALS_PATH = os.getenv("FIREBASE_CREDENTIALS_PATH")
# Google's public keys rotate a few times a day
PUBLIC_KEY_CACHE_TTL = int(os.getenv("PUBLIC_KEY_CACHE_TTL", "3600"))

# Shared secret for the external cron caller. Sweeps are open when unset.
CRON_SECRET = os.getenv("CRON_SECRET")

# Base URL of the web app, used for links inside emails
APP_URL = os.getenv("APP_URL", "http://localhost:3000")

# Email Configuration
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "CircleIn <noreply@circlein.app>")
SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USERNAME = os.getenv("SMTP_USERNAME")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() == "true"
# Resend is used when no SMTP host is configured or SMTP fails
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_BATCH_SIZE = 10
EMAIL_BATCH_PAUSE_SECONDS = 1.0

# Optional Redis backing for the TTL cache
REDIS_URL = os.getenv("REDIS_URL")

# Reminder window: a reminder goes out when a confirmed booking starts
# REMINDER_LEAD_MINUTES from now, give or take REMINDER_WINDOW_MINUTES.
# Every reminder endpoint reads these two values.
REMINDER_LEAD_MINUTES = int(os.getenv("REMINDER_LEAD_MINUTES", "60"))
REMINDER_WINDOW_MINUTES = int(os.getenv("REMINDER_WINDOW_MINUTES", "5"))
# A run that claimed a reminder but never finished loses the claim after this long
REMINDER_CLAIM_LEASE_MINUTES = int(os.getenv("REMINDER_CLAIM_LEASE_MINUTES", "10"))

# Pause between per-document writes in sweeps (rate-limit mitigation)
EXPIRY_SWEEP_DELAY_MS = int(os.getenv("EXPIRY_SWEEP_DELAY_MS", "50"))

# No-show handling and waitlist promotion deadlines
NO_SHOW_GRACE_MINUTES = int(os.getenv("NO_SHOW_GRACE_MINUTES", "25"))
CONFIRMATION_WINDOW_HOURS = int(os.getenv("CONFIRMATION_WINDOW_HOURS", "48"))
NO_SHOW_CONFIRMATION_WINDOW_MINUTES = int(os.getenv("NO_SHOW_CONFIRMATION_WINDOW_MINUTES", "30"))

# No-show accountability: repeat no-shows suspend booking, and every
# resident carries a waitlist priority score (lower is promoted first)
NO_SHOW_SUSPENSION_THRESHOLD = int(os.getenv("NO_SHOW_SUSPENSION_THRESHOLD", "3"))
SUSPENSION_DAYS = int(os.getenv("SUSPENSION_DAYS", "30"))
BASE_PRIORITY_SCORE = 50

# Destructive admin operations
CLEAR_BOOKINGS_CONFIRMATION_TOKEN = "CLEAR_ALL_BOOKINGS_CONFIRMED"  # noqa: S105 - not a secret
DELETE_COMMUNITY_CONFIRMATION_TOKEN = "DELETE_EVERYTHING"  # noqa: S105 - not a secret
# Bulk deletes commit at most this many rows at a time
DELETE_CHUNK_SIZE = 500

# Access codes
ACCESS_CODE_LENGTH = 8
ACCESS_CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
MAX_CODE_ATTEMPTS = 100
MAX_CODES_PER_REQUEST = 50

# Recurring bookings
MAX_RECURRING_OCCURRENCES = 12

ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
