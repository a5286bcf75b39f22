"""
Unit tests for settings validation.
"""

import pytest
from pydantic import ValidationError

from leasequeue.config import Settings
from leasequeue.worker.main import Worker


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.poll_interval_seconds == 1.0
        assert settings.lease_lifetime_seconds == 30.0
        assert settings.send_cycle_limit == 5
        assert settings.heartbeat_interval_seconds < settings.lease_lifetime_seconds

    def test_topics_from_comma_string(self):
        settings = Settings(_env_file=None, topics="emails, reports,")

        assert settings.topics == ["emails", "reports"]

    def test_topics_from_environment(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("LEASEQUEUE_TOPICS", "a,b")

        assert Settings(_env_file=None).topics == ["a", "b"]

    @pytest.mark.parametrize(
        "overrides",
        [
            {"poll_interval_seconds": 0},
            {"poll_interval_seconds": -1},
            {"lease_lifetime_seconds": 0},
            {"send_cycle_limit": 0},
            {"topics": ["ok", " "]},
            {"log_format": "xml"},
        ],
    )
    def test_invalid_values_rejected(self, overrides: dict):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **overrides)

    def test_heartbeat_must_be_shorter_than_lease(self):
        """Test a heartbeat interval that cannot keep a lease alive is rejected."""
        with pytest.raises(ValidationError):
            Settings(
                _env_file=None,
                lease_lifetime_seconds=5,
                heartbeat_interval_seconds=5,
            )


class TestWorkerSettings:
    """Tests for building a worker from a settings mapping."""

    def test_mapping_is_validated(self, database_url: str):
        worker = Worker({"database_url": database_url, "topics": ["t1"]})

        assert worker.topics == ["t1"]
        assert worker.store is None
        assert worker.currently_polling is False

    def test_invalid_mapping_raises_before_connect(self, database_url: str):
        """Test a bad configuration fails synchronously."""
        with pytest.raises(ValidationError):
            Worker({"database_url": database_url, "poll_interval_seconds": -1})

    def test_owner_is_random_hex(self, test_settings):
        first = Worker(test_settings)
        second = Worker(test_settings)

        assert len(first.owner) == 128
        int(first.owner, 16)
        assert first.owner != second.owner
