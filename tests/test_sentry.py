"""Tests for Sentry configuration."""
import os
from unittest.mock import MagicMock, patch

import pytest

from hcbilling.config.sentry import (
    SentrySettings,
    add_breadcrumb,
    capture_exception,
    filter_sensitive_data,
    init_sentry,
)


@pytest.mark.unit
class TestSentrySettings:
    """Tests for SentrySettings class."""

    def test_defaults(self):
        """Test PII is off and alerts are on by default."""
        with patch.dict(os.environ, {}, clear=True):
            settings = SentrySettings(_env_file=None)

        assert settings.dsn is None
        assert settings.environment == "development"
        assert settings.send_default_pii is False
        assert settings.alert_on_errors is True
        assert settings.alert_on_warnings is False

    def test_from_env(self):
        env_vars = {
            "SENTRY_DSN": "https://test@sentry.io/123",
            "SENTRY_ENVIRONMENT": "production",
            "SENTRY_TRACES_SAMPLE_RATE": "0.5",
        }
        with patch.dict(os.environ, env_vars, clear=True):
            settings = SentrySettings(_env_file=None)

        assert settings.dsn == "https://test@sentry.io/123"
        assert settings.environment == "production"
        assert settings.traces_sample_rate == 0.5


@pytest.mark.unit
class TestInitSentry:
    """Tests for init_sentry function."""

    def test_no_dsn(self):
        """Test nothing is initialized without a DSN."""
        with patch("hcbilling.config.sentry.settings") as mock_settings, patch(
            "hcbilling.config.sentry.sentry_sdk"
        ) as mock_sdk:
            mock_settings.dsn = None
            init_sentry()

        mock_sdk.init.assert_not_called()

    def test_skipped_under_tests(self):
        with patch("hcbilling.config.sentry.settings") as mock_settings, patch(
            "hcbilling.config.sentry.sentry_sdk"
        ) as mock_sdk:
            mock_settings.dsn = "https://test@sentry.io/123"
            init_sentry()

        mock_sdk.init.assert_not_called()

    def test_init_with_filter(self):
        """Test the event filter is installed outside of tests."""
        with patch("hcbilling.config.sentry.settings") as mock_settings, patch(
            "hcbilling.config.sentry.sentry_sdk"
        ) as mock_sdk, patch.dict(os.environ, {"TESTING": "false"}):
            mock_settings.dsn = "https://test@sentry.io/123"
            mock_settings.send_default_pii = False
            mock_settings.enable_before_send_filter = True
            init_sentry()

        kwargs = mock_sdk.init.call_args.kwargs
        assert kwargs["dsn"] == "https://test@sentry.io/123"
        assert kwargs["send_default_pii"] is False
        assert kwargs["before_send"] is filter_sensitive_data


@pytest.mark.unit
class TestFilterSensitiveData:
    """Tests for filter_sensitive_data function."""

    def test_removes_headers(self):
        """Test only content type and user agent headers are kept."""
        event = {
            "request": {
                "headers": {
                    "authorization": "Bearer token123",
                    "cookie": "session=abc",
                    "Content-Type": "application/json",
                    "user-agent": "curl",
                }
            }
        }

        result = filter_sensitive_data(event, {})

        assert result["request"]["headers"] == {"Content-Type": "application/json", "user-agent": "curl"}

    def test_removes_patient_names(self):
        """Test patient names are dropped from extra and breadcrumbs."""
        event = {
            "extra": {"client_name": "DOE, JANE", "access_token": "abc", "payment_ref": "EFT12345"},
            "breadcrumbs": {"values": [{"data": {"patient_last_name": "DOE", "charge_line": "4521"}}]},
        }

        result = filter_sensitive_data(event, {})

        assert result["extra"] == {"payment_ref": "EFT12345"}
        assert result["breadcrumbs"]["values"][0]["data"] == {"charge_line": "4521"}

    def test_user_reduced_to_id(self):
        result = filter_sensitive_data({"user": {"id": "u1", "email": "a@example.com"}}, {})

        assert result["user"] == {"id": "u1"}

    def test_event_without_data(self):
        event = {"message": "test error"}

        assert filter_sensitive_data(event, {}) == {"message": "test error"}


@pytest.mark.unit
class TestCapture:
    """Tests for capture_exception and add_breadcrumb."""

    def test_capture_exception_sets_scope(self):
        mock_scope = MagicMock()
        with patch("hcbilling.config.sentry.sentry_sdk") as mock_sdk:
            mock_sdk.new_scope.return_value.__enter__.return_value = mock_scope
            mock_sdk.capture_exception.return_value = "event-id-123"
            error = ValueError("boom")

            event_id = capture_exception(error, level="warning", context={"request": {"path": "/"}}, tags={"code": "X"})

        assert event_id == "event-id-123"
        assert mock_scope.level == "warning"
        mock_scope.set_context.assert_called_once_with("request", {"path": "/"})
        mock_scope.set_tag.assert_called_once_with("code", "X")
        mock_sdk.capture_exception.assert_called_once_with(error)

    def test_add_breadcrumb(self):
        with patch("hcbilling.config.sentry.sentry_sdk") as mock_sdk:
            add_breadcrumb("Uploaded file", category="upload")

        mock_sdk.add_breadcrumb.assert_called_once_with(
            message="Uploaded file", category="upload", level="info", data={}
        )
