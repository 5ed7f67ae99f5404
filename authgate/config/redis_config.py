"""Redis connection used by the e-mail challenge store."""

import os
from typing import Optional

import redis
from dotenv import load_dotenv

load_dotenv()

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD")
REDIS_MAX_CONNECTIONS = int(os.getenv("REDIS_MAX_CONNECTIONS", "10"))
REDIS_SOCKET_TIMEOUT_SECONDS = float(os.getenv("REDIS_SOCKET_TIMEOUT_SECONDS", "5"))

EMAIL_CHALLENGE_KEY_PREFIX = "mfa_email_challenge:"
EMAIL_CHALLENGE_ATTEMPTS_KEY_PREFIX = "mfa_email_challenge_attempts:"

_client: Optional[redis.Redis] = None


def get_redis_client() -> redis.Redis:
    """Shared client; its pool is built on first use."""
    global _client
    if _client is None:
        pool = redis.ConnectionPool.from_url(
            REDIS_URL,
            password=REDIS_PASSWORD,
            max_connections=REDIS_MAX_CONNECTIONS,
            decode_responses=True,
            socket_timeout=REDIS_SOCKET_TIMEOUT_SECONDS,
            socket_connect_timeout=REDIS_SOCKET_TIMEOUT_SECONDS,
        )
        _client = redis.Redis(connection_pool=pool)
    return _client


def close_redis_connections() -> None:
    global _client
    if _client is not None:
        _client.connection_pool.disconnect()
        _client = None


def ping_redis() -> bool:
    try:
        return bool(get_redis_client().ping())
    except redis.exceptions.RedisError:
        return False


class RedisKeyBuilder:
    """Key names for AuthGate records."""

    @staticmethod
    def email_challenge_key(challenge_id: str) -> str:
        return f"{EMAIL_CHALLENGE_KEY_PREFIX}{challenge_id}"

    @staticmethod
    def email_challenge_attempts_key(challenge_id: str) -> str:
        return f"{EMAIL_CHALLENGE_ATTEMPTS_KEY_PREFIX}{challenge_id}"
