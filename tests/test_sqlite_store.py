"""Tests for the SQLite account, reset-token and user store."""

from datetime import datetime, timedelta, timezone

import pytest

from sitecare.domain.errors import NotFound
from sitecare.domain.models import ResetToken


class TestAccounts:
    """Tests for account documents and dotted field-path updates."""

    def test_ensure_account_is_idempotent(self, store):
        first = store.ensure_account("acct_1", "Owner@Example.com")
        second = store.ensure_account("acct_1", "other@example.com")

        assert first.email == "owner@example.com"
        assert second.email == "owner@example.com"
        assert second.subscription_data == {}

    def test_dotted_update_leaves_sibling_fields_alone(self, store):
        store.ensure_account("acct_1")
        store.update_account_fields("acct_1", {"company": {"name": "Acme", "site": "acme.test"}})
        store.update_account_fields(
            "acct_1",
            {"subscription.tier": "premium", "subscription.status": "active"},
        )
        store.update_account_fields("acct_1", {"subscription.status": "past_due"})

        account = store.get_account("acct_1")
        assert account.subscription_data == {"tier": "premium", "status": "past_due"}
        assert account.company == {"name": "Acme", "site": "acme.test"}

    def test_update_stores_nested_objects_bools_and_nulls(self, store):
        store.ensure_account("acct_1")
        store.update_account_fields(
            "acct_1",
            {
                "subscription.discount": {"couponCode": "SAVE20", "percentOff": 20, "amountOff": None},
                "subscription.cancelAtPeriodEnd": True,
                "subscription.cancellationReason": None,
                "subscription.lastEventAt": 1700000000,
            },
        )

        data = store.get_account("acct_1").subscription_data
        assert data["discount"] == {"couponCode": "SAVE20", "percentOff": 20, "amountOff": None}
        assert data["cancelAtPeriodEnd"] is True
        assert data["cancellationReason"] is None
        assert data["lastEventAt"] == 1700000000

    def test_datetimes_are_stored_as_iso_strings(self, store):
        store.ensure_account("acct_1")
        moment = datetime(2025, 6, 1, 12, 30, tzinfo=timezone.utc)
        store.update_account_fields("acct_1", {"subscription.canceledAt": moment})

        assert store.get_account("acct_1").subscription_data["canceledAt"] == "2025-06-01T12:30:00+00:00"

    def test_subscription_view(self, store):
        store.ensure_account("acct_1")
        store.update_account_fields(
            "acct_1",
            {"subscription.tier": "advanced", "subscription.periodEnd": "2026-01-01T00:00:00+00:00"},
        )

        subscription = store.get_account("acct_1").subscription
        assert subscription.tier == "advanced"
        assert subscription.period_end == datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_lookup_by_customer_ref(self, store):
        store.ensure_account("acct_1")
        store.ensure_account("acct_2")
        store.update_account_fields("acct_2", {"billing_customer_ref": "cus_2"})

        assert store.get_account_by_customer_ref("cus_2").account_id == "acct_2"
        assert store.get_account_by_customer_ref("cus_missing") is None

    def test_lookup_falls_back_to_subscription_customer(self, store):
        store.ensure_account("acct_1")
        store.update_account_fields("acct_1", {"subscription.stripeCustomerId": "cus_legacy"})

        assert store.get_account_by_customer_ref("cus_legacy").account_id == "acct_1"

    def test_update_missing_account_raises(self, store):
        with pytest.raises(NotFound):
            store.update_account_fields("nobody", {"subscription.tier": "premium"})

    @pytest.mark.parametrize(
        "path",
        ["plan", "subscription.tier; DROP TABLE accounts", "subscription.", "email.nested"],
    )
    def test_rejects_unknown_or_malformed_paths(self, store, path):
        store.ensure_account("acct_1")
        with pytest.raises(ValueError):
            store.update_account_fields("acct_1", {path: "x"})


def _token(value="a" * 64, **overrides):
    now = datetime.now(timezone.utc)
    fields = dict(
        token=value,
        token_id="b" * 32,
        email="owner@example.com",
        account_id="acct_1",
        created_at=now,
        expires_at=now + timedelta(hours=1),
    )
    fields.update(overrides)
    return ResetToken(**fields)


class TestResetTokens:
    """Tests for reset-token storage."""

    def test_round_trip(self, store):
        store.create_reset_token(_token())

        record = store.get_reset_token("a" * 64)
        assert record.token_id == "b" * 32
        assert record.used is False
        assert record.used_at is None
        assert not record.is_expired()

    def test_unknown_token(self, store):
        assert store.get_reset_token("f" * 64) is None

    def test_mark_used_only_once(self, store):
        store.create_reset_token(_token())
        now = datetime.now(timezone.utc)

        assert store.mark_reset_token_used("a" * 64, now) is True
        assert store.mark_reset_token_used("a" * 64, now) is False
        record = store.get_reset_token("a" * 64)
        assert record.used is True
        assert record.used_at is not None

    def test_revert_clears_used(self, store):
        store.create_reset_token(_token())
        store.mark_reset_token_used("a" * 64, datetime.now(timezone.utc))

        store.revert_reset_token("a" * 64)

        record = store.get_reset_token("a" * 64)
        assert record.used is False
        assert record.used_at is None

    def test_expired_token(self, store):
        past = datetime.now(timezone.utc) - timedelta(hours=2)
        store.create_reset_token(_token(created_at=past, expires_at=past + timedelta(hours=1)))

        assert store.get_reset_token("a" * 64).is_expired()


class TestUsers:
    """Tests for identity credential records."""

    def test_create_and_fetch(self, store):
        user = store.create_user("Owner@Example.com", "hash", display_name="Ada Lovelace", user_id="acct_1")

        assert user.id == "acct_1"
        assert store.get_user_by_email("owner@example.com").id == "acct_1"
        assert store.get_user_by_id("acct_1").first_name == "Ada"

    def test_update_password(self, store):
        store.create_user("owner@example.com", "old", user_id="acct_1")

        store.update_user_password("acct_1", "new")

        assert store.get_user_by_id("acct_1").password_hash == "new"

    def test_update_password_for_missing_user(self, store):
        with pytest.raises(NotFound):
            store.update_user_password("nobody", "hash")
