"""
Unit Tests for the Transaction Ledger

Tests cover:
1. Recording transactions
2. Duplicate prevention on the processor payment id
3. Forward-only status transitions
4. Listing
"""

from decimal import Decimal

import pytest

from common.errors import DuplicateRecordError, NotFoundError
from ledger.models import TransactionStatus, TransactionType
from ledger.service import TransactionLedger, to_major_units, to_minor_units


class TestRecord:
    """Tests for appending rows."""

    def test_record_defaults(self, storage, provider, buyer):
        ledger = TransactionLedger(storage)

        txn = ledger.record(
            amount=Decimal("50.00"),
            from_account_id=buyer["id"],
            to_account_id=provider["id"],
            lead_id="lead-1",
            stripe_payment_id="pi_1",
        )

        # Verify defaults
        assert txn.type == TransactionType.LEAD_PAYOUT
        assert txn.status == TransactionStatus.PENDING
        assert txn.fee_amount == Decimal("0")
        assert txn.net_amount == Decimal("50.00")
        assert txn.completed_at is None

        # Verify persisted
        assert ledger.get(txn.id).stripe_payment_id == "pi_1"

    def test_net_amount_subtracts_fee(self, storage):
        txn = TransactionLedger(storage).record(amount=Decimal("100.00"), fee_amount=Decimal("2.50"))
        assert txn.net_amount == Decimal("97.50")

    def test_duplicate_payment_id_rejected(self, storage):
        ledger = TransactionLedger(storage)
        ledger.record(amount=Decimal("10"), stripe_payment_id="pi_dup")

        with pytest.raises(DuplicateRecordError):
            ledger.record(amount=Decimal("10"), stripe_payment_id="pi_dup")

    def test_completed_row_gets_completed_at(self, storage):
        txn = TransactionLedger(storage).record(amount=Decimal("10"), status=TransactionStatus.COMPLETED)
        assert txn.completed_at is not None

    def test_simulated_without_storage(self):
        txn = TransactionLedger(None).record(amount=Decimal("25.00"), lead_id="lead-9")

        assert txn.id.startswith("txn_sim_")
        assert txn.status == TransactionStatus.PENDING

    def test_unknown_transaction(self, storage):
        with pytest.raises(NotFoundError):
            TransactionLedger(storage).get("missing")


class TestStatusTransitions:
    """Status only moves forward."""

    def test_complete_pending(self, storage):
        ledger = TransactionLedger(storage)
        txn = ledger.record(amount=Decimal("10"))

        done = ledger.complete(txn.id, stripe_transfer_id="tr_1")

        assert done.status == TransactionStatus.COMPLETED
        assert done.stripe_transfer_id == "tr_1"
        assert done.completed_at is not None

    def test_complete_is_noop_when_not_pending(self, storage):
        ledger = TransactionLedger(storage)
        txn = ledger.record(amount=Decimal("10"))
        ledger.complete(txn.id)

        assert ledger.complete(txn.id) is None

    def test_fail_pending_records_reason(self, storage):
        ledger = TransactionLedger(storage)
        txn = ledger.record(amount=Decimal("10"), metadata={"source": "test"})

        failed = ledger.fail(txn.id, reason="card_declined")

        assert failed.status == TransactionStatus.FAILED
        assert failed.metadata == {"source": "test", "failure_reason": "card_declined"}

    def test_completed_fails_only_as_reversal(self, storage):
        ledger = TransactionLedger(storage)
        txn = ledger.record(amount=Decimal("10"))
        ledger.complete(txn.id)

        assert ledger.fail(txn.id) is None
        assert ledger.fail(txn.id, allow_reversal=True).status == TransactionStatus.FAILED

    @pytest.mark.parametrize("allow_reversal", [False, True])
    def test_failed_is_final(self, storage, allow_reversal):
        ledger = TransactionLedger(storage)
        txn = ledger.record(amount=Decimal("10"), status=TransactionStatus.FAILED)

        assert ledger.fail(txn.id, allow_reversal=allow_reversal) is None
        assert ledger.complete(txn.id) is None
        assert ledger.get(txn.id).status == TransactionStatus.FAILED


class TestQueries:
    """Tests for lookups and listing."""

    def test_latest_for_lead_filters_status(self, storage):
        ledger = TransactionLedger(storage)
        pending = ledger.record(amount=Decimal("10"), lead_id="lead-1")
        ledger.record(amount=Decimal("10"), lead_id="lead-1", status=TransactionStatus.FAILED)

        assert ledger.latest_for_lead("lead-1", [TransactionStatus.PENDING]).id == pending.id
        assert ledger.latest_for_lead("lead-2") is None

    def test_find_by_payment_id(self, storage):
        ledger = TransactionLedger(storage)
        txn = ledger.record(amount=Decimal("10"), stripe_payment_id="pi_find")

        assert ledger.find_by_payment_id("pi_find").id == txn.id
        assert ledger.find_by_payment_id("pi_other") is None

    def test_list_for_account_without_storage(self):
        assert TransactionLedger(None).list_for_account("anyone") == []

    def test_list_for_account_respects_limit(self, storage, provider):
        ledger = TransactionLedger(storage)
        for _ in range(5):
            ledger.record(amount=Decimal("1"), to_account_id=provider["id"])

        assert len(ledger.list_for_account(provider["id"], limit=3)) == 3


class TestAmounts:
    def test_minor_units_to_major(self):
        assert to_major_units(5000) == Decimal("50.00")
        assert to_major_units(1999) == Decimal("19.99")
        assert to_major_units(1) == Decimal("0.01")

    def test_major_units_to_minor(self):
        assert to_minor_units(Decimal("50")) == 5000
        assert to_minor_units(Decimal("19.99")) == 1999
