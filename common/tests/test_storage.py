"""
Tests for the storage backends.

Both backends run through the same cases via the parametrized ``storage``
fixture.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from common.errors import DuplicateRecordError
from common.storage import InMemoryStorage, create_storage


def _connection(provider, buyer, status="pending_buyer_review", **extra):
    return {
        "provider_id": provider["id"],
        "buyer_id": buyer["id"],
        "status": status,
        "initiator": "provider",
        **extra,
    }


def _transaction(status="pending", **extra):
    return {
        "type": "lead_payout",
        "status": status,
        "amount": Decimal("50.00"),
        "fee_amount": Decimal("0"),
        "net_amount": Decimal("50.00"),
        "metadata": {},
        **extra,
    }


class TestUsers:
    """Tests for user records."""

    def test_lookup_by_email_ignores_case(self, storage, provider):
        found = storage.get_user_by_email("PROVIDER@example.com")
        assert found["id"] == provider["id"]

    def test_duplicate_email_rejected(self, storage, provider):
        with pytest.raises(DuplicateRecordError):
            storage.add_user({"email": "provider@example.com", "role": "provider"})

    def test_update_by_stripe_account(self, storage, provider):
        storage.update_user(provider["id"], {"stripe_account_id": "acct_1"})

        assert storage.update_users_by_stripe_account("acct_1", {"stripe_onboarding_complete": True}) == 1
        assert storage.update_users_by_stripe_account("acct_missing", {"stripe_onboarding_complete": True}) == 0
        assert storage.get_user(provider["id"])["stripe_onboarding_complete"] is True


class TestConnectionStorage:
    """Tests for connection rows and the compare-and-set update."""

    def test_pair_is_unique(self, storage, provider, buyer):
        storage.insert_connection(_connection(provider, buyer))

        with pytest.raises(DuplicateRecordError):
            storage.insert_connection(_connection(provider, buyer, status="pending_provider_accept"))

    def test_update_applies_when_status_matches(self, storage, provider, buyer):
        conn = storage.insert_connection(_connection(provider, buyer))

        updated = storage.update_connection(conn["id"], "pending_buyer_review", {"status": "pending_provider_accept"})

        assert updated["status"] == "pending_provider_accept"

    def test_update_refused_when_status_moved(self, storage, provider, buyer):
        conn = storage.insert_connection(_connection(provider, buyer, status="active"))

        assert storage.update_connection(conn["id"], "pending_buyer_review", {"status": "terminated"}) is None
        # Verify nothing changed
        assert storage.get_connection(conn["id"])["status"] == "active"

    def test_list_by_side_and_status(self, storage, provider, buyer, outsider):
        now = datetime.now(timezone.utc)
        older = storage.insert_connection(_connection(provider, buyer, created_at=now - timedelta(minutes=5)))
        newer = storage.insert_connection(_connection(provider, outsider, status="active", created_at=now))

        assert [c["id"] for c in storage.list_connections(provider["id"], "provider")] == [newer["id"], older["id"]]
        assert [c["id"] for c in storage.list_connections(provider["id"], "provider", ["active"])] == [newer["id"]]
        assert storage.list_connections(buyer["id"], "provider") == []


class TestLeadStorage:
    """Tests for guarded lead payout updates."""

    def test_lead_defaults_to_pending(self, storage, provider):
        lead = storage.add_lead({"provider_id": provider["id"]})
        assert lead["payout_status"] == "pending"

    def test_guarded_update(self, storage, provider):
        lead = storage.add_lead({"provider_id": provider["id"], "payout_status": "completed"})

        assert storage.update_lead(lead["id"], {"payout_status": "processing"}, ["pending", "failed"]) is None
        assert storage.update_lead(lead["id"], {"payout_status": "failed"}, ["completed"])["payout_status"] == "failed"

    def test_unknown_lead(self, storage):
        assert storage.update_lead("missing", {"payout_status": "failed"}) is None


class TestTransactionStorage:
    """Tests for transaction rows."""

    def test_payment_id_is_unique(self, storage):
        storage.insert_transaction(_transaction(stripe_payment_id="pi_1"))

        with pytest.raises(DuplicateRecordError):
            storage.insert_transaction(_transaction(stripe_payment_id="pi_1"))

    def test_failed_row_does_not_block_a_retry(self, storage):
        storage.insert_transaction(_transaction(status="failed", stripe_payment_id="pi_1"))

        storage.insert_transaction(_transaction(stripe_payment_id="pi_1"))

        # Verify a second live row is still rejected
        with pytest.raises(DuplicateRecordError):
            storage.insert_transaction(_transaction(status="completed", stripe_payment_id="pi_1"))
        assert storage.find_transaction_by_payment_id("pi_1", ["pending", "completed"])["status"] == "pending"

    def test_rows_without_payment_id_do_not_collide(self, storage):
        storage.insert_transaction(_transaction())
        storage.insert_transaction(_transaction())

    def test_metadata_round_trips(self, storage):
        txn = storage.insert_transaction(_transaction(stripe_payment_id="pi_2", metadata={"note": "x"}))

        updated = storage.update_transaction(txn["id"], ["pending"], {"metadata": {"note": "y"}})

        assert updated["metadata"] == {"note": "y"}
        assert storage.find_transaction_by_payment_id("pi_2")["metadata"] == {"note": "y"}

    def test_account_listing_newest_first_and_capped(self, storage, provider, buyer):
        now = datetime.now(timezone.utc)
        ids = []
        for i in range(3):
            txn = storage.insert_transaction(_transaction(
                to_account_id=provider["id"], from_account_id=buyer["id"],
                created_at=now + timedelta(seconds=i),
            ))
            ids.append(txn["id"])
        storage.insert_transaction(_transaction(to_account_id="someone-else", created_at=now))

        rows = storage.list_transactions_for_account(provider["id"], 2)

        assert [r["id"] for r in rows] == [ids[2], ids[1]]
        assert len(storage.list_transactions_for_account(buyer["id"], 100)) == 3


class TestCreateStorage:
    """Tests for backend selection from the database URL."""

    def test_memory_url(self):
        assert isinstance(create_storage("memory://"), InMemoryStorage)

    def test_empty_url_means_not_configured(self):
        assert create_storage("") is None

    def test_sql_url(self):
        from common.db import SqlStorage
        assert isinstance(create_storage("sqlite://"), SqlStorage)
