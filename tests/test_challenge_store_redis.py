"""Tests for the Redis-backed e-mail challenge store."""
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import redis

from authgate.core.exceptions import StoreUnavailableError
from authgate.services.challenge_store import EmailChallenge, RedisChallengeStore

ISSUED = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def mock_redis_client():
    """Mock Redis client."""
    client = MagicMock()
    client.consume_script = MagicMock(return_value=1)
    client.mismatch_script = MagicMock(return_value=1)
    client.register_script.side_effect = [client.consume_script, client.mismatch_script]
    return client


@pytest.fixture
def store(mock_redis_client):
    return RedisChallengeStore(mock_redis_client, grace_seconds=300)


@pytest.fixture
def challenge():
    return EmailChallenge(
        challenge_id="c-1",
        account_id="acc-1",
        code="482913",
        destination="alice@example.com",
        issued_at=ISSUED,
        expires_at=ISSUED + timedelta(minutes=15)
    )


class TestRedisChallengeStore:

    def test_save_sets_ttl_with_grace(self, store, mock_redis_client, challenge):
        store.save(challenge)

        key, ttl, raw = mock_redis_client.setex.call_args[0]
        assert key == "mfa_email_challenge:c-1"
        assert ttl == 900 + 300
        assert json.loads(raw)["code"] == "482913"

    def test_get_round_trips_times(self, store, mock_redis_client, challenge):
        store.save(challenge)
        mock_redis_client.get.return_value = mock_redis_client.setex.call_args[0][2]

        assert store.get("c-1") == challenge

    def test_get_missing(self, store, mock_redis_client):
        mock_redis_client.get.return_value = None
        assert store.get("c-1") is None

    def test_consume_uses_script(self, store, mock_redis_client):
        now = ISSUED + timedelta(minutes=1)

        assert store.consume("c-1", "482913", now) is True

        mock_redis_client.consume_script.assert_called_once_with(
            keys=["mfa_email_challenge:c-1", "mfa_email_challenge_attempts:c-1"],
            args=["482913", now.timestamp()]
        )

    def test_consume_lost(self, store, mock_redis_client):
        mock_redis_client.consume_script.return_value = 0
        assert store.consume("c-1", "482913", ISSUED) is False

    def test_delete(self, store, mock_redis_client):
        store.delete("c-1")
        mock_redis_client.delete.assert_called_once_with(
            "mfa_email_challenge:c-1", "mfa_email_challenge_attempts:c-1"
        )

    def test_record_mismatch_returns_running_count(self, store, mock_redis_client):
        mock_redis_client.mismatch_script.return_value = 3

        assert store.record_mismatch("c-1") == 3
        mock_redis_client.mismatch_script.assert_called_once_with(
            keys=["mfa_email_challenge:c-1", "mfa_email_challenge_attempts:c-1"]
        )

    def test_record_mismatch_on_missing_challenge(self, store, mock_redis_client):
        mock_redis_client.mismatch_script.return_value = 0
        assert store.record_mismatch("c-1") == 0

    def test_record_mismatch_store_down(self, store, mock_redis_client):
        mock_redis_client.mismatch_script.side_effect = redis.exceptions.ConnectionError("down")

        with pytest.raises(StoreUnavailableError):
            store.record_mismatch("c-1")

    def test_purge_is_left_to_ttl(self, store, mock_redis_client):
        assert store.purge_expired(ISSUED) == 0
        mock_redis_client.scan_iter.assert_not_called()

    def test_redis_errors_become_store_unavailable(self, store, mock_redis_client, challenge):
        mock_redis_client.setex.side_effect = redis.exceptions.ConnectionError("down")
        mock_redis_client.get.side_effect = redis.exceptions.TimeoutError("slow")

        with pytest.raises(StoreUnavailableError):
            store.save(challenge)
        with pytest.raises(StoreUnavailableError):
            store.get("c-1")


class TestEmailChallenge:

    def test_expiry_boundary(self, challenge):
        assert challenge.is_expired(challenge.expires_at - timedelta(seconds=1)) is False
        assert challenge.is_expired(challenge.expires_at) is True

    def test_matches(self, challenge):
        assert challenge.matches("482913")
        assert not challenge.matches("482914")
        assert not challenge.matches(None)
