"""Tests for Sentry initialization."""

import os
from typing import Any
from unittest.mock import MagicMock, patch

from tiergate.sentry import (
    DEFAULT_TRACES_SAMPLE_RATE,
    DEV_TRACES_SAMPLE_RATE,
    init_sentry,
    scrub_event,
)


class TestInitSentry:
    """Tests for init_sentry."""

    def test_without_dsn_returns_false(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            assert init_sentry() is False

    @patch("tiergate.sentry.sentry_sdk.init")
    @patch("tiergate.sentry.sentry_sdk.set_tag")
    def test_with_dsn(self, mock_set_tag: MagicMock, mock_init: MagicMock) -> None:
        assert init_sentry("billing-worker", dsn="https://key@sentry.io/123") is True

        mock_init.assert_called_once()
        mock_set_tag.assert_called_with("service", "billing-worker")
        assert mock_init.call_args[1]["send_default_pii"] is False

    @patch("tiergate.sentry.sentry_sdk.init")
    @patch("tiergate.sentry.sentry_sdk.set_tag")
    def test_env_dsn(self, mock_set_tag: MagicMock, mock_init: MagicMock) -> None:
        with patch.dict(os.environ, {"SENTRY_DSN": "https://env@sentry.io/456"}):
            assert init_sentry() is True
        assert mock_init.call_args[1]["dsn"] == "https://env@sentry.io/456"

    @patch("tiergate.sentry.sentry_sdk.init")
    @patch("tiergate.sentry.sentry_sdk.set_tag")
    def test_sample_rates_by_environment(
        self, mock_set_tag: MagicMock, mock_init: MagicMock
    ) -> None:
        init_sentry(dsn="https://key@sentry.io/123", environment="production")
        assert mock_init.call_args[1]["traces_sample_rate"] == DEFAULT_TRACES_SAMPLE_RATE

        init_sentry(dsn="https://key@sentry.io/123", environment="development")
        assert mock_init.call_args[1]["traces_sample_rate"] == DEV_TRACES_SAMPLE_RATE

        init_sentry(dsn="https://key@sentry.io/123", traces_sample_rate=0.05)
        assert mock_init.call_args[1]["traces_sample_rate"] == 0.05


class TestScrubEvent:
    """Tests for the before_send hook."""

    def test_masks_sensitive_extra(self) -> None:
        event: Any = {"extra": {"EXCHANGE_RATE_API_KEY": "abc", "user_id": "user-123"}}

        result = scrub_event(event, {})

        assert result is not None
        assert result["extra"]["EXCHANGE_RATE_API_KEY"] == "[Filtered]"
        assert result["extra"]["user_id"] == "user-123"

    def test_event_without_extra(self) -> None:
        assert scrub_event({"message": "x"}, {}) == {"message": "x"}  # type: ignore[arg-type]
