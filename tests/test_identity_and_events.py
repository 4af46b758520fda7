"""Tests for the JWT identity adapter, the event dispatcher and console email mode."""

import time
from unittest.mock import MagicMock, patch

import jwt
import pytest

from sitecare.domain.errors import NotFound, Unauthenticated, WeakPasswordError
from sitecare.infrastructure.identity.jwt_identity import JwtIdentityProvider
from sitecare.services.email_service import EmailService
from sitecare.services.event_dispatcher import EventDispatcher


@pytest.fixture
def identity(store):
    return JwtIdentityProvider(users=store, secret="s3cret")


class TestJwtIdentityProvider:
    """Tests for bearer verification and password management."""

    def test_verify_returns_subject(self, identity):
        token = jwt.encode({"sub": "acct_1", "exp": int(time.time()) + 60}, "s3cret", algorithm="HS256")
        assert identity.verify(token) == "acct_1"

    def test_token_without_expiry_is_rejected(self, identity):
        token = jwt.encode({"sub": "acct_1"}, "s3cret", algorithm="HS256")
        with pytest.raises(Unauthenticated):
            identity.verify(token)

    def test_audience_enforced_when_configured(self, store):
        provider = JwtIdentityProvider(users=store, secret="s3cret", audience="sitecare")
        claims = {"sub": "acct_1", "exp": int(time.time()) + 60}
        wrong = jwt.encode({**claims, "aud": "other"}, "s3cret", algorithm="HS256")
        right = jwt.encode({**claims, "aud": "sitecare"}, "s3cret", algorithm="HS256")

        with pytest.raises(Unauthenticated):
            provider.verify(wrong)
        assert provider.verify(right) == "acct_1"

    def test_password_update(self, identity):
        identity.create_user("Owner@Example.com", "first-pass", user_id="acct_1")
        identity.update_password("acct_1", "second-pass")

        assert identity.check_password("owner@example.com", "second-pass")
        assert not identity.check_password("owner@example.com", "first-pass")

    def test_weak_password(self, identity):
        identity.create_user("owner@example.com", "first-pass", user_id="acct_1")
        with pytest.raises(WeakPasswordError) as exc_info:
            identity.update_password("acct_1", "abc")
        assert exc_info.value.code == "weak-password"

    def test_password_over_72_bytes_is_weak(self, identity):
        identity.create_user("owner@example.com", "first-pass", user_id="acct_1")
        with pytest.raises(WeakPasswordError) as exc_info:
            identity.update_password("acct_1", "x" * 80)
        assert exc_info.value.code == "weak-password"
        assert identity.check_password("owner@example.com", "first-pass")

    def test_unknown_user(self, identity):
        with pytest.raises(NotFound):
            identity.update_password("acct_missing", "long-enough")


class TestEventDispatcher:
    """Tests for best-effort listener fan-out."""

    def test_failing_listener_does_not_stop_others(self):
        dispatcher = EventDispatcher()
        broken = MagicMock(side_effect=RuntimeError("sink down"))
        healthy = MagicMock()
        dispatcher.add_listener(broken)
        dispatcher.add_listener(healthy)

        dispatcher.emit("subscription.created", {"accountId": "acct_1"})

        healthy.assert_called_once_with("subscription.created", {"accountId": "acct_1"})

    def test_remove_listener(self):
        dispatcher = EventDispatcher()
        listener = MagicMock()
        dispatcher.add_listener(listener)
        dispatcher.remove_listener(listener)

        dispatcher.emit("subscription.created", {})

        listener.assert_not_called()


def test_console_mode_logs_link_instead_of_sending(caplog):
    service = EmailService(
        smtp_host="smtp.example.com",
        smtp_username="user",
        smtp_password="pw",
        from_email="noreply@example.com",
        console_mode=True,
    )

    with caplog.at_level("INFO", logger="sitecare.services.email_service"):
        assert service.send_password_reset_email("owner@example.com", "https://app/reset-password?token=abc")

    assert "https://app/reset-password?token=abc" in caplog.text


def test_smtp_delivery_failure_returns_false():
    service = EmailService(
        smtp_host="smtp.example.com",
        smtp_username="user",
        smtp_password="pw",
        from_email="noreply@example.com",
    )

    with patch("sitecare.services.email_service.smtplib.SMTP") as smtp:
        smtp.return_value.__enter__.return_value.send_message.side_effect = OSError("connection reset")
        assert service.send_password_reset_email("owner@example.com", "https://app/reset") is False

    with patch("sitecare.services.email_service.smtplib.SMTP") as smtp:
        assert service.send_password_reset_email("owner@example.com", "https://app/reset") is True
        sent = smtp.return_value.__enter__.return_value.send_message.call_args.args[0]
        assert sent["To"] == "owner@example.com"
