"""Tests for structured logging, settings validation and the email notifier."""
import json
import logging
import smtplib
import pytest
from unittest.mock import MagicMock, patch

from healthportal.core.config import DEFAULT_JWT_SECRET, Settings
from healthportal.core.logging import REDACTED, ContextLogger, JSONFormatter, LogTimer, get_logger, redact
from healthportal.domain.user import User, UserRole
from healthportal.services.notifications import EmailNotifier


def make_record(**extra):
    record = logging.LogRecord("healthportal.test", logging.INFO, __file__, 10, "Login attempt", (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def user():
    return User(
        id="user-001",
        email="ann@example.com",
        password_hash="hash",
        first_name="Ann",
        last_name="Lee",
        role=UserRole.PATIENT,
    )


class TestStructuredLogging:
    """Test JSON output and redaction."""

    def test_json_formatter_includes_custom_fields(self):
        output = json.loads(JSONFormatter().format(make_record(user_id="user-001", duration_ms=12.5)))

        assert output["msg"] == "Login attempt"
        assert output["service"] == "healthportal-auth"
        assert output["level"] == "INFO"
        assert output["user_id"] == "user-001"
        assert output["duration_ms"] == 12.5

    def test_json_formatter_redacts_credentials(self):
        output = json.loads(JSONFormatter().format(make_record(password="secret123", refresh_token="abc")))

        assert output["password"] == REDACTED
        assert output["refresh_token"] == REDACTED
        assert "secret123" not in json.dumps(output)

    def test_redact_is_case_insensitive(self):
        assert redact({"Authorization": "Bearer x", "user_id": "1"}) == {"Authorization": REDACTED, "user_id": "1"}

    def test_context_logger_adds_context(self):
        logger = get_logger("healthportal.test", {"request_id": "req-1"})
        assert isinstance(logger, ContextLogger)

        msg, kwargs = logger.process("hello", {"extra": {"user_id": "1"}})
        assert kwargs["extra"] == {"user_id": "1", "request_id": "req-1"}

    def test_log_timer_reports_abort(self):
        logger = MagicMock()
        with pytest.raises(ValueError):
            with LogTimer(logger, "user_authentication"):
                raise ValueError("boom")

        message = logger.info.call_args[0][0]
        assert message.startswith("user_authentication aborted")


class TestSettingsValidation:
    """Test startup checks on secrets and cost factor."""

    def test_equal_secrets_refused(self):
        settings = Settings(JWT_SECRET_KEY="same", JWT_REFRESH_SECRET_KEY="same")

        with pytest.raises(ValueError):
            settings.validate_required_settings()

    def test_default_secret_refused_in_production(self):
        settings = Settings(ENVIRONMENT="production", JWT_SECRET_KEY=DEFAULT_JWT_SECRET, JWT_REFRESH_SECRET_KEY="prod-refresh")

        with pytest.raises(ValueError):
            settings.validate_required_settings()

    def test_bcrypt_rounds_bounds(self):
        with pytest.raises(ValueError):
            Settings(BCRYPT_ROUNDS=3).validate_required_settings()

    def test_test_settings_are_valid(self, settings):
        settings.validate_required_settings()
        assert settings.bcrypt_rounds == 4
        assert settings.token_revocation_enabled is False

    def test_smtp_config_only_when_host_set(self):
        assert Settings(SMTP_HOST=None).smtp_config is None
        config = Settings(SMTP_HOST="smtp.example.com", SMTP_USERNAME="u", SMTP_PASSWORD="p").smtp_config
        assert config["host"] == "smtp.example.com"
        assert config["username"] == "u"


class TestEmailNotifier:
    """Test reset and verification emails."""

    def test_logs_instead_of_sending_without_smtp(self, user):
        with patch("healthportal.services.notifications.smtplib.SMTP") as mock_smtp:
            assert EmailNotifier().send_password_reset(user, "tok", 60) is True

        mock_smtp.assert_not_called()

    def test_sends_reset_link(self, user):
        notifier = EmailNotifier(
            smtp_config={"host": "smtp.example.com", "port": 587, "from_email": "noreply@example.com"},
            frontend_url="https://portal.example.com/",
        )
        with patch("healthportal.services.notifications.smtplib.SMTP") as mock_smtp:
            assert notifier.send_password_reset(user, "tok-123", 60) is True

        server = mock_smtp.return_value.__enter__.return_value
        message = server.send_message.call_args[0][0]
        assert message["To"] == "ann@example.com"
        assert "https://portal.example.com/reset-password?token=tok-123" in message.get_payload()[0].get_payload()
        mock_smtp.assert_called_once_with("smtp.example.com", 587, timeout=10)

    def test_smtp_failure_returns_false(self, user):
        notifier = EmailNotifier(smtp_config={"host": "smtp.example.com"})
        with patch("healthportal.services.notifications.smtplib.SMTP", side_effect=smtplib.SMTPException("down")):
            assert notifier.send_email_verification(user, "tok") is False
