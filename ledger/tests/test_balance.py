"""Tests for the balance calculator and the transaction API."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import text

from common.db import SqlStorage
from common.storage import InMemoryStorage
from ledger.models import TransactionStatus
from ledger.service import (
    BalanceCalculator,
    LedgerScanBalanceStrategy,
    MaterializedBalanceStrategy,
    TransactionLedger,
)


def _pay(ledger, amount, status, to=None, frm=None):
    return ledger.record(amount=Decimal(amount), status=status, to_account_id=to, from_account_id=frm)


class TestLedgerScan:
    """Tests for the derived-from-ledger strategy."""

    def test_scan_rules(self, storage, provider, buyer):
        ledger = TransactionLedger(storage)
        _pay(ledger, "50.00", TransactionStatus.COMPLETED, to=provider["id"], frm=buyer["id"])
        _pay(ledger, "25.00", TransactionStatus.PENDING, to=provider["id"], frm=buyer["id"])
        _pay(ledger, "99.00", TransactionStatus.FAILED, to=provider["id"], frm=buyer["id"])
        _pay(ledger, "10.00", TransactionStatus.COMPLETED, frm=provider["id"])

        balance = BalanceCalculator(storage).calculate(provider["id"], "provider")

        assert balance.total_earnings == Decimal("50.00")
        assert balance.pending_balance == Decimal("25.00")
        assert balance.total_payouts == Decimal("10.00")
        assert balance.available_balance == Decimal("40.00")
        assert balance.account_type == "provider"

    def test_sender_side_counts_payouts(self, storage, provider, buyer):
        ledger = TransactionLedger(storage)
        _pay(ledger, "50.00", TransactionStatus.COMPLETED, to=provider["id"], frm=buyer["id"])
        _pay(ledger, "20.00", TransactionStatus.PENDING, to=provider["id"], frm=buyer["id"])

        balance = BalanceCalculator(storage).calculate(buyer["id"])

        assert balance.total_payouts == Decimal("50.00")
        assert balance.pending_balance == Decimal("0")
        assert balance.available_balance == Decimal("-50.00")

    def test_available_is_exact(self, storage, provider):
        ledger = TransactionLedger(storage)
        for amount in ("19.99", "0.01", "30.10", "0.33"):
            _pay(ledger, amount, TransactionStatus.COMPLETED, to=provider["id"])
        for amount in ("10.05", "0.07"):
            _pay(ledger, amount, TransactionStatus.COMPLETED, frm=provider["id"])

        balance = BalanceCalculator(storage).calculate(provider["id"])

        assert balance.total_earnings == Decimal("50.43")
        assert balance.total_payouts == Decimal("10.12")
        assert balance.available_balance == Decimal("40.31")

    def test_scan_is_capped(self, storage, provider):
        ledger = TransactionLedger(storage)
        for _ in range(3):
            _pay(ledger, "10.00", TransactionStatus.COMPLETED, to=provider["id"])

        balance = LedgerScanBalanceStrategy(storage, scan_limit=2).compute(provider["id"], None)

        assert balance.total_earnings == Decimal("20.00")


class TestMaterialized:
    """Tests for the materialized-view strategy and strategy selection."""

    def test_view_preferred_when_present(self, provider):
        storage = InMemoryStorage(balance_views={
            provider["id"]: {
                "account_type": "provider",
                "available_balance": "120.00",
                "pending_balance": "5.00",
                "total_earnings": "150.00",
                "total_payouts": "30.00",
            }
        })
        _pay(TransactionLedger(storage), "1.00", TransactionStatus.COMPLETED, to=provider["id"])

        balance = BalanceCalculator(storage).calculate(provider["id"])

        assert balance.available_balance == Decimal("120.00")
        assert balance.total_earnings == Decimal("150.00")

    def test_falls_back_to_scan_without_row(self):
        storage = InMemoryStorage(balance_views={})
        _pay(TransactionLedger(storage), "7.50", TransactionStatus.COMPLETED, to="user-1")

        assert BalanceCalculator(storage).calculate("user-1").available_balance == Decimal("7.50")

    def test_capability_check(self):
        assert MaterializedBalanceStrategy(InMemoryStorage()).compute("user-1", None) is None

    def test_sql_view(self):
        storage = SqlStorage("sqlite://")
        user = storage.add_user({"email": "v@example.com", "role": "provider"})
        with storage.engine.begin() as conn:
            conn.execute(text(
                "CREATE VIEW account_balances AS SELECT id AS user_id, role AS account_type, "
                "12.5 AS available_balance, 0 AS pending_balance, "
                "12.5 AS total_earnings, 0 AS total_payouts FROM users"
            ))

        balance = BalanceCalculator(storage).calculate(user["id"])

        assert balance.available_balance == Decimal("12.5")
        assert balance.account_type == "provider"

    def test_zero_balance_without_storage(self):
        balance = BalanceCalculator(None).calculate("user-1", "buyer")

        assert balance.available_balance == Decimal("0")
        assert balance.total_earnings == Decimal("0")
        assert balance.account_type == "buyer"


class TestTransactionApi:
    """Tests for /api/transactions."""

    def test_list_is_camel_case_newest_first(self, client, storage, auth_headers, provider, buyer):
        now = datetime.now(timezone.utc)
        first, second = (
            storage.insert_transaction({
                "type": "lead_payout", "status": "pending", "amount": Decimal(amount), "fee_amount": Decimal("0"),
                "net_amount": Decimal(amount), "to_account_id": provider["id"], "from_account_id": buyer["id"],
                "metadata": {}, "created_at": now + timedelta(seconds=offset),
            })
            for amount, offset in (("10", 0), ("20", 1))
        )

        response = client.get("/api/transactions", headers=auth_headers(provider))

        assert response.status_code == 200
        rows = response.json()["transactions"]
        assert [r["id"] for r in rows] == [second["id"], first["id"]]
        assert rows[0]["toAccountId"] == provider["id"]
        assert "netAmount" in rows[0]

    def test_balance(self, client, storage, auth_headers, provider):
        _pay(TransactionLedger(storage), "30.00", TransactionStatus.COMPLETED, to=provider["id"])

        body = client.get("/api/transactions/balance", headers=auth_headers(provider)).json()

        assert Decimal(str(body["balance"]["availableBalance"])) == Decimal("30.00")
        assert body["balance"]["accountType"] == "provider"

    def test_without_database(self, make_client, auth_headers, provider):
        client = make_client(None)

        listing = client.get("/api/transactions", headers=auth_headers(provider)).json()
        balance = client.get("/api/transactions/balance", headers=auth_headers(provider)).json()

        assert listing == {"transactions": [], "message": "Database not configured"}
        assert Decimal(str(balance["balance"]["availableBalance"])) == Decimal("0")

    def test_requires_session(self, client):
        assert client.get("/api/transactions").status_code == 401
