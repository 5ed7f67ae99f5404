"""
Time-limited storage for emailed one-time codes
Two backends: the SQL database and Redis
"""

import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Protocol

import redis
from sqlalchemy import delete, select, update
from sqlalchemy.orm import sessionmaker

from ..config.redis_config import RedisKeyBuilder
from ..config.settings import CHALLENGE_EXPIRY_GRACE_SECONDS
from ..core.exceptions import StoreUnavailableError
from ..core.time import ensure_utc
from ..database import session_scope
from ..models.mfa import MfaEmailChallenge

STORE_NAME = "mfa_email_challenges"


@dataclass(frozen=True)
class EmailChallenge:
    challenge_id: str
    account_id: str
    code: str
    destination: str
    issued_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def matches(self, code: str) -> bool:
        return hmac.compare_digest(self.code.encode(), (code or "").encode())


class ChallengeStore(Protocol):
    """Keyed storage for ``EmailChallenge`` records."""

    def save(self, challenge: EmailChallenge) -> None: ...

    def get(self, challenge_id: str) -> Optional[EmailChallenge]: ...

    def delete(self, challenge_id: str) -> None: ...

    def record_mismatch(self, challenge_id: str) -> int:
        """Count one wrong code; returns the new total, 0 if the challenge is gone."""
        ...

    def consume(self, challenge_id: str, code: str, now: datetime) -> bool:
        """Atomically delete the challenge iff ``code`` matches and it is unexpired."""
        ...

    def purge_expired(self, now: datetime) -> int: ...


class SqlChallengeStore:
    """Challenge store backed by the ``mfa_email_challenges`` table."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def save(self, challenge: EmailChallenge) -> None:
        with session_scope(self.session_factory, STORE_NAME) as db:
            db.add(MfaEmailChallenge(
                id=challenge.challenge_id,
                account_id=challenge.account_id,
                code=challenge.code,
                destination=challenge.destination,
                issued_at=challenge.issued_at,
                expires_at=challenge.expires_at
            ))

    def get(self, challenge_id: str) -> Optional[EmailChallenge]:
        with session_scope(self.session_factory, STORE_NAME) as db:
            row = db.execute(
                select(MfaEmailChallenge).where(MfaEmailChallenge.id == challenge_id)
            ).scalar_one_or_none()
            if row is None:
                return None
            return EmailChallenge(
                challenge_id=row.id,
                account_id=row.account_id,
                code=row.code,
                destination=row.destination,
                issued_at=ensure_utc(row.issued_at),
                expires_at=ensure_utc(row.expires_at)
            )

    def delete(self, challenge_id: str) -> None:
        with session_scope(self.session_factory, STORE_NAME) as db:
            db.execute(delete(MfaEmailChallenge).where(MfaEmailChallenge.id == challenge_id))

    def record_mismatch(self, challenge_id: str) -> int:
        with session_scope(self.session_factory, STORE_NAME) as db:
            db.execute(
                update(MfaEmailChallenge)
                .where(MfaEmailChallenge.id == challenge_id)
                .values(failed_attempts=MfaEmailChallenge.failed_attempts + 1)
            )
            attempts = db.execute(
                select(MfaEmailChallenge.failed_attempts).where(MfaEmailChallenge.id == challenge_id)
            ).scalar_one_or_none()
        return attempts or 0

    def consume(self, challenge_id: str, code: str, now: datetime) -> bool:
        # Single conditional delete: only one concurrent caller can see rowcount 1
        with session_scope(self.session_factory, STORE_NAME) as db:
            deleted = db.execute(
                delete(MfaEmailChallenge).where(
                    MfaEmailChallenge.id == challenge_id,
                    MfaEmailChallenge.code == code,
                    MfaEmailChallenge.expires_at > now
                )
            ).rowcount
        return deleted == 1

    def purge_expired(self, now: datetime) -> int:
        with session_scope(self.session_factory, STORE_NAME) as db:
            return db.execute(
                delete(MfaEmailChallenge).where(MfaEmailChallenge.expires_at <= now)
            ).rowcount


# KEYS[1] challenge key; KEYS[2] mismatch counter key; ARGV[1] code; ARGV[2] now (epoch seconds)
_CONSUME_SCRIPT = """
local raw = redis.call('GET', KEYS[1])
if not raw then
    return 0
end
local data = cjson.decode(raw)
if data['code'] ~= ARGV[1] then
    return 0
end
if tonumber(data['expires_at']) <= tonumber(ARGV[2]) then
    return 0
end
redis.call('DEL', KEYS[1], KEYS[2])
return 1
"""

# KEYS[1] challenge key; KEYS[2] mismatch counter key. The counter expires with the challenge.
_MISMATCH_SCRIPT = """
local ttl = redis.call('PTTL', KEYS[1])
if ttl <= 0 then
    return 0
end
local attempts = redis.call('INCR', KEYS[2])
redis.call('PEXPIRE', KEYS[2], ttl)
return attempts
"""


class RedisChallengeStore:
    """
    Challenge store backed by Redis

    Keys live for the challenge lifetime plus a grace period so that an
    expired challenge can still be reported as expired rather than unknown.
    """

    def __init__(
        self,
        client: redis.Redis,
        grace_seconds: int = CHALLENGE_EXPIRY_GRACE_SECONDS
    ):
        self.client = client
        self.grace_seconds = grace_seconds
        self.key_builder = RedisKeyBuilder()
        self._consume_script = client.register_script(_CONSUME_SCRIPT)
        self._mismatch_script = client.register_script(_MISMATCH_SCRIPT)

    def _keys(self, challenge_id: str) -> list:
        return [
            self.key_builder.email_challenge_key(challenge_id),
            self.key_builder.email_challenge_attempts_key(challenge_id)
        ]

    @staticmethod
    def _serialize(challenge: EmailChallenge) -> str:
        return json.dumps({
            "challenge_id": challenge.challenge_id,
            "account_id": challenge.account_id,
            "code": challenge.code,
            "destination": challenge.destination,
            "issued_at": challenge.issued_at.timestamp(),
            "expires_at": challenge.expires_at.timestamp(),
        })

    @staticmethod
    def _deserialize(raw: str) -> EmailChallenge:
        data = json.loads(raw)
        return EmailChallenge(
            challenge_id=data["challenge_id"],
            account_id=data["account_id"],
            code=data["code"],
            destination=data["destination"],
            issued_at=datetime.fromtimestamp(data["issued_at"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(data["expires_at"], tz=timezone.utc)
        )

    def save(self, challenge: EmailChallenge) -> None:
        lifetime = int((challenge.expires_at - challenge.issued_at).total_seconds())
        try:
            self.client.setex(
                self.key_builder.email_challenge_key(challenge.challenge_id),
                max(1, lifetime + self.grace_seconds),
                self._serialize(challenge)
            )
        except redis.exceptions.RedisError as exc:
            raise StoreUnavailableError(STORE_NAME) from exc

    def get(self, challenge_id: str) -> Optional[EmailChallenge]:
        try:
            raw = self.client.get(self.key_builder.email_challenge_key(challenge_id))
        except redis.exceptions.RedisError as exc:
            raise StoreUnavailableError(STORE_NAME) from exc
        if not raw:
            return None
        return self._deserialize(raw)

    def delete(self, challenge_id: str) -> None:
        try:
            self.client.delete(
                self.key_builder.email_challenge_key(challenge_id),
                self.key_builder.email_challenge_attempts_key(challenge_id)
            )
        except redis.exceptions.RedisError as exc:
            raise StoreUnavailableError(STORE_NAME) from exc

    def consume(self, challenge_id: str, code: str, now: datetime) -> bool:
        try:
            result = self._consume_script(
                keys=self._keys(challenge_id),
                args=[code, now.timestamp()]
            )
        except redis.exceptions.RedisError as exc:
            raise StoreUnavailableError(STORE_NAME) from exc
        return int(result or 0) == 1

    def record_mismatch(self, challenge_id: str) -> int:
        try:
            result = self._mismatch_script(keys=self._keys(challenge_id))
        except redis.exceptions.RedisError as exc:
            raise StoreUnavailableError(STORE_NAME) from exc
        return int(result or 0)

    def purge_expired(self, now: datetime) -> int:
        # Redis evicts keys on TTL
        return 0
