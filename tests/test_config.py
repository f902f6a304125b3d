"""Tests for settings validation."""

import pytest
from pydantic import ValidationError

from linkwatch.core.config import Settings


class TestFetchTimeouts:
    def test_defaults_are_consistent(self):
        s = Settings()

        assert s.device_fetch_timeout < s.poll_interval
        assert s.realtime_fetch_timeout < s.realtime_poll_interval

    def test_fetch_timeout_must_be_shorter_than_tick(self):
        with pytest.raises(ValidationError, match="DEVICE_FETCH_TIMEOUT"):
            Settings(poll_interval=60, device_fetch_timeout=300)

    def test_fetch_timeout_equal_to_tick_is_rejected(self):
        with pytest.raises(ValidationError):
            Settings(poll_interval=60, device_fetch_timeout=60)

    def test_realtime_timeout_must_be_shorter_than_its_interval(self):
        with pytest.raises(ValidationError, match="REALTIME_FETCH_TIMEOUT"):
            Settings(realtime_poll_interval=1.0, realtime_fetch_timeout=2.0)

    def test_environment_aliases(self, monkeypatch):
        monkeypatch.setenv("POLL_INTERVAL", "30")
        monkeypatch.setenv("DEVICE_FETCH_TIMEOUT", "10")

        s = Settings()

        assert s.poll_interval == 30
        assert s.device_fetch_timeout == 10
