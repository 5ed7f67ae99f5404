"""
Progressive IP lockout for the login endpoint
Counts failed logins per client IP and escalates block durations
"""

import math
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Iterator, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from ..auth.results import BlockStatus
from ..config.settings import MAX_FAILED_ATTEMPTS, BLOCK_DURATIONS_SECONDS
from ..core.locks import KeyedLocks
from ..core.logging import SecurityLogger, get_logger
from ..core.time import Clock, ensure_utc, utcnow
from ..database import session_scope
from ..models.ip_attempt import IpLoginAttempt

STORE_NAME = "ip_login_attempts"


class IpAttemptTracker:
    """
    Per-IP progressive lockout state machine

    Every read-modify-write of an ``IpLoginAttempt`` row runs under a per-IP
    lock inside one transaction that selects the row ``FOR UPDATE``.
    ``is_currently_blocked`` is a query with a side effect: an expired
    temporary block is cleared when it is observed.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        max_failed_attempts: int = MAX_FAILED_ATTEMPTS,
        block_durations: Sequence[int] = BLOCK_DURATIONS_SECONDS,
        clock: Clock = utcnow,
        logger: Optional[SecurityLogger] = None
    ):
        self.session_factory = session_factory
        self.max_failed_attempts = max_failed_attempts
        self.block_durations = tuple(block_durations)
        self.clock = clock
        self.logger = logger or get_logger(__name__)
        self._locks = KeyedLocks()

    @contextmanager
    def _locked_record(self, ip: str, create: bool = False) -> Iterator[Optional[IpLoginAttempt]]:
        """Yield the row for ``ip`` locked for update; commit on exit."""
        with self._locks.hold(ip):
            with session_scope(self.session_factory, STORE_NAME) as db:
                record = self._load(db, ip, for_update=True)
                if record is None and create:
                    record = IpLoginAttempt(
                        ip_address=ip,
                        failed_attempts=0,
                        blocked=False,
                        block_count=0
                    )
                    db.add(record)
                yield record

    @staticmethod
    def _load(db: Session, ip: str, for_update: bool = False) -> Optional[IpLoginAttempt]:
        query = select(IpLoginAttempt).where(IpLoginAttempt.ip_address == ip)
        if for_update:
            query = query.with_for_update()
        return db.execute(query).scalar_one_or_none()

    def block_duration_for(self, block_count: int) -> Optional[timedelta]:
        """Duration of the block at escalation level ``block_count``; None is permanent."""
        if 1 <= block_count <= len(self.block_durations):
            return timedelta(seconds=self.block_durations[block_count - 1])
        return None

    # --- state transitions (caller holds the row lock) ---

    @staticmethod
    def _increment(record: IpLoginAttempt, now: datetime) -> None:
        record.failed_attempts = (record.failed_attempts or 0) + 1
        record.last_attempt_at = now

    def _apply_block_if_due(self, record: IpLoginAttempt, now: datetime) -> bool:
        if (record.failed_attempts or 0) < self.max_failed_attempts:
            return False

        record.block_count = (record.block_count or 0) + 1
        record.failed_attempts = 0
        record.blocked = True
        duration = self.block_duration_for(record.block_count)
        record.blocked_until = now + duration if duration is not None else None

        self.logger.warning(
            "Client IP blocked after repeated failed logins",
            extra={
                "ip_address": record.ip_address,
                "block_level": record.block_count,
                "permanent": duration is None,
                "blocked_for_seconds": int(duration.total_seconds()) if duration is not None else None,
            }
        )
        return True

    def _still_blocked(self, record: IpLoginAttempt, now: datetime) -> bool:
        if not record.blocked:
            return False

        blocked_until = ensure_utc(record.blocked_until)
        if blocked_until is None:
            return True

        if now > blocked_until:
            # Lazy unblock; escalation level survives
            record.blocked = False
            record.blocked_until = None
            record.failed_attempts = 0
            self.logger.info(
                "Temporary IP block expired",
                extra={"ip_address": record.ip_address, "block_level": record.block_count}
            )
            return False

        return True

    @staticmethod
    def _reset(record: IpLoginAttempt, now: datetime) -> None:
        record.failed_attempts = 0
        record.blocked = False
        record.blocked_until = None
        record.block_count = 0
        record.last_attempt_at = now

    # --- public contract ---

    def record_failure(self, ip: str) -> None:
        """Count one failed attempt from ``ip``, creating its record on first use."""
        with self._locked_record(ip, create=True) as record:
            self._increment(record, self.clock())

    def evaluate_and_maybe_block(self, ip: str) -> bool:
        """Apply the next escalation level if the threshold is reached.

        Returns True only when a block was applied by this call.
        """
        with self._locked_record(ip) as record:
            if record is None:
                return False
            return self._apply_block_if_due(record, self.clock())

    def register_failure(self, ip: str) -> bool:
        """``record_failure`` followed by ``evaluate_and_maybe_block`` as one atomic step."""
        with self._locked_record(ip, create=True) as record:
            now = self.clock()
            self._increment(record, now)
            return self._apply_block_if_due(record, now)

    def check_blocked(self, ip: str) -> BlockStatus:
        """Lazy-unblock check returning the state it observed under the row lock.

        Side effect: a temporary block whose time has passed is cleared and
        its failed-attempt counter reset, keeping ``block_count``.
        """
        with self._locked_record(ip) as record:
            now = self.clock()
            if record is not None:
                self._still_blocked(record, now)
            return self._snapshot(ip, record, now)

    def is_currently_blocked(self, ip: str) -> bool:
        """Whether ``ip`` is blocked now. Same side effect as ``check_blocked``."""
        return self.check_blocked(ip).blocked

    def reset_on_success(self, ip: str) -> None:
        """Forget all failures and escalation history for ``ip``."""
        with self._locked_record(ip) as record:
            if record is None:
                return
            self._reset(record, self.clock())

    def retry_after(self, ip: str) -> Optional[int]:
        """Seconds until the current block lifts; None if permanent or not blocked."""
        return self.block_status(ip).retry_after

    @staticmethod
    def _snapshot(ip: str, record: Optional[IpLoginAttempt], now: datetime) -> BlockStatus:
        if record is None:
            return BlockStatus(
                ip_address=ip,
                blocked=False,
                permanent=False,
                retry_after=None,
                block_count=0,
                failed_attempts=0
            )

        blocked_until = ensure_utc(record.blocked_until)
        permanent = bool(record.blocked) and blocked_until is None
        active = permanent or (bool(record.blocked) and now <= blocked_until)
        retry_after = None
        if active and not permanent:
            retry_after = max(0, math.ceil((blocked_until - now).total_seconds()))

        return BlockStatus(
            ip_address=ip,
            blocked=active,
            permanent=permanent,
            retry_after=retry_after,
            block_count=record.block_count or 0,
            failed_attempts=record.failed_attempts or 0,
            blocked_until=blocked_until
        )

    def block_status(self, ip: str) -> BlockStatus:
        """Snapshot of the lockout state; never mutates the record."""
        with session_scope(self.session_factory, STORE_NAME) as db:
            return self._snapshot(ip, self._load(db, ip), self.clock())
