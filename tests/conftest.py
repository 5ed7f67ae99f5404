import pytest
import os
import tempfile
from datetime import datetime, timedelta, timezone
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from authgate.auth.credentials import SqlCredentialRepository
from authgate.auth.dependencies import build_authentication_service
from authgate.auth.mfa_service import MfaChallengeService
from authgate.models.base import Base
from authgate.services.challenge_store import SqlChallengeStore
from authgate.services.ip_attempt_tracker import IpAttemptTracker
from authgate.services.token_manager import TokenManager
import authgate.models  # noqa: F401


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 2, 9, 30, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class RecordingDelivery:
    """Collects one-time codes instead of sending e-mail."""

    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def send_one_time_code(self, destination, code):
        if self.fail:
            raise ConnectionError("mail provider unreachable")
        self.sent.append((destination, code))

    @property
    def last_code(self):
        return self.sent[-1][1]


@pytest.fixture(scope="function")
def session_factory():
    """Create a temporary database for testing"""
    db_fd, db_path = tempfile.mkstemp()
    test_database_url = f"sqlite:///{db_path}"

    engine = create_engine(test_database_url, connect_args={"check_same_thread": False})
    TestingSessionLocal = sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
    )

    Base.metadata.create_all(bind=engine)

    yield TestingSessionLocal

    # Cleanup
    engine.dispose()
    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def delivery():
    return RecordingDelivery()


@pytest.fixture
def failing_delivery():
    return RecordingDelivery(fail=True)


@pytest.fixture
def accounts(session_factory):
    return SqlCredentialRepository(session_factory)


@pytest.fixture
def tracker(session_factory, clock):
    return IpAttemptTracker(session_factory, clock=clock)


@pytest.fixture
def token_manager(session_factory, clock):
    return TokenManager(session_factory, clock=clock)


@pytest.fixture
def mfa_service(session_factory, token_manager, delivery, clock):
    return MfaChallengeService(
        session_factory,
        token_manager=token_manager,
        challenge_store=SqlChallengeStore(session_factory),
        code_delivery=delivery,
        clock=clock
    )


@pytest.fixture
def auth_service(session_factory, delivery, clock):
    return build_authentication_service(
        session_factory,
        code_delivery=delivery,
        challenge_store=SqlChallengeStore(session_factory),
        clock=clock
    )


@pytest.fixture
def alice(accounts):
    """Password-only account."""
    return accounts.create_account("alice@example.com", "correct horse battery")
