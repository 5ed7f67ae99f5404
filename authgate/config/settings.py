"""Authentication policy configuration."""

import os
from dotenv import load_dotenv

load_dotenv()

# Progressive IP lockout
MAX_FAILED_ATTEMPTS = int(os.getenv("MAX_FAILED_ATTEMPTS", "5"))
BLOCK_DURATIONS_SECONDS = tuple(
    int(value) for value in os.getenv("BLOCK_DURATIONS_SECONDS", "15,60,900").split(",")
)

# Session tokens
SESSION_TOKEN_TTL_SECONDS = int(os.getenv("SESSION_TOKEN_TTL_SECONDS", "3600"))  # 1 hour
SESSION_TOKEN_BYTES = int(os.getenv("SESSION_TOKEN_BYTES", "32"))

# Second factor (TOTP)
TOTP_ISSUER_NAME = os.getenv("TOTP_ISSUER_NAME", "AuthGate")
TOTP_VALID_WINDOW = int(os.getenv("TOTP_VALID_WINDOW", "1"))  # adjacent 30s steps
PENDING_SECOND_FACTOR_TTL_SECONDS = int(os.getenv("PENDING_SECOND_FACTOR_TTL_SECONDS", "300"))

# Third factor (emailed code)
EMAIL_CHALLENGE_TTL_SECONDS = int(os.getenv("EMAIL_CHALLENGE_TTL_SECONDS", "900"))  # 15 minutes
EMAIL_CODE_DIGITS = int(os.getenv("EMAIL_CODE_DIGITS", "6"))
CHALLENGE_STORE_BACKEND = os.getenv("CHALLENGE_STORE_BACKEND", "sql")
CHALLENGE_EXPIRY_GRACE_SECONDS = int(os.getenv("CHALLENGE_EXPIRY_GRACE_SECONDS", "300"))

# Signing and encryption
SECRET_KEY = os.getenv("SECRET_KEY", "your-secret-key-change-this-in-production")
ALGORITHM = "HS256"
ENCRYPTION_KEY = os.getenv("ENCRYPTION_KEY")

# Outbound e-mail API
EMAIL_API_URL = os.getenv("EMAIL_API_URL", "")
EMAIL_API_KEY = os.getenv("EMAIL_API_KEY", "")
EMAIL_SENDER_ADDRESS = os.getenv("EMAIL_SENDER_ADDRESS", "no-reply@example.com")
EMAIL_SENDER_NAME = os.getenv("EMAIL_SENDER_NAME", "AuthGate")
EMAIL_API_TIMEOUT_SECONDS = float(os.getenv("EMAIL_API_TIMEOUT_SECONDS", "10"))

# Reverse proxies whose X-Forwarded-For / X-Real-IP headers are believed.
# Comma-separated addresses or CIDR ranges; empty means use the socket peer.
TRUSTED_PROXIES = tuple(
    entry.strip() for entry in os.getenv("TRUSTED_PROXIES", "").split(",") if entry.strip()
)

# Guessing limits for the extra factors
EMAIL_CHALLENGE_MAX_ATTEMPTS = int(os.getenv("EMAIL_CHALLENGE_MAX_ATTEMPTS", "5"))
TOTP_MAX_FAILURES_PER_HOUR = int(os.getenv("TOTP_MAX_FAILURES_PER_HOUR", "10"))
TOTP_MAX_FAILURES_PER_DAY = int(os.getenv("TOTP_MAX_FAILURES_PER_DAY", "50"))
