# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

import pytest

from app.core.config import Settings


@pytest.mark.unit
class TestSettings:
    """Test configuration settings"""

    def test_default_settings(self):
        """Test default settings values"""
        s = Settings()

        assert s.API_PREFIX == "/api"
        assert s.ENABLE_API_DOCS is True
        assert s.SOCKETIO_NAMESPACE == "/"

    def test_realtime_timing_defaults(self):
        """Sweep, dedup and resubscribe timings"""
        s = Settings()

        assert s.DEADLINE_SWEEP_INTERVAL_SECONDS == 300
        assert s.DEADLINE_SWEEP_WINDOW_MINUTES == 60
        assert s.DUE_DATE_DEDUP_HOURS == 12
        assert s.CHANGE_FEED_RETRY_DELAY_SECONDS == 5.0

    def test_ai_defaults(self):
        s = Settings()

        assert s.AI_PROVIDER == "default"
        assert s.AI_CONTEXT_WINDOW_SIZE == 10
        assert s.AI_CACHE_TTL == 3600
        assert s.AI_RATE_LIMIT_MAX == 20

    def test_settings_from_env_variables(self, monkeypatch):
        """Test loading settings from environment variables"""
        monkeypatch.setenv("AI_PROVIDER", "openai")
        monkeypatch.setenv("AI_CONTEXT_WINDOW_SIZE", "4")
        monkeypatch.setenv("SCHEDULER_ENABLED", "false")

        s = Settings()

        assert s.AI_PROVIDER == "openai"
        assert s.AI_CONTEXT_WINDOW_SIZE == 4
        assert s.SCHEDULER_ENABLED is False

    def test_empty_api_key_is_unset(self, monkeypatch):
        monkeypatch.setenv("AI_API_KEY", "")
        monkeypatch.setenv("AI_API_ENDPOINT", "")

        s = Settings()

        assert s.AI_API_KEY is None
        assert s.AI_API_ENDPOINT is None

    def test_settings_redis_url(self):
        s = Settings()

        assert s.REDIS_URL.startswith("redis://")
