import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Sequence

from common.errors import NotFoundError
from common.storage import Storage, new_id

from .models import (
    AccountBalance,
    Transaction,
    TransactionStatus,
    TransactionType,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
DEFAULT_SCAN_LIMIT = 1000
DEFAULT_LIST_LIMIT = 100


def to_major_units(minor_amount: int) -> Decimal:
    """Processor amounts are integer cents."""
    return (Decimal(minor_amount) / 100).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _as_decimal(value) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0")


class TransactionLedger:
    """
    Append-style record of money movement.

    Rows are never deleted and their status only moves forward:
    pending → completed, pending → failed, and completed → failed for a
    reversal. Conditional updates return ``None`` instead of raising when
    the row is no longer in the expected state, so replays are no-ops.
    """

    def __init__(self, storage: Optional[Storage] = None):
        self.storage = storage

    def record(
        self,
        amount: Decimal,
        type: TransactionType = TransactionType.LEAD_PAYOUT,
        status: TransactionStatus = TransactionStatus.PENDING,
        fee_amount: Decimal = Decimal("0"),
        from_account_id: Optional[str] = None,
        to_account_id: Optional[str] = None,
        lead_id: Optional[str] = None,
        connection_id: Optional[str] = None,
        stripe_payment_id: Optional[str] = None,
        stripe_transfer_id: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> Transaction:
        now = datetime.now(timezone.utc)
        data = {
            "id": new_id(),
            "type": type.value,
            "status": status.value,
            "amount": amount,
            "fee_amount": fee_amount,
            "net_amount": amount - fee_amount,
            "from_account_id": from_account_id,
            "to_account_id": to_account_id,
            "lead_id": lead_id,
            "connection_id": connection_id,
            "stripe_payment_id": stripe_payment_id,
            "stripe_transfer_id": stripe_transfer_id,
            "description": description,
            "metadata": metadata or {},
            "created_at": now,
            "completed_at": now if status == TransactionStatus.COMPLETED else None,
        }

        if self.storage is None:
            data["id"] = f"txn_sim_{int(now.timestamp() * 1000)}"
            logger.info("Database not configured - simulated transaction %s", data["id"])
            return Transaction(**data)

        record = self.storage.insert_transaction(data)
        logger.info(
            "Recorded %s transaction %s (%s) amount=%s lead=%s",
            data["type"], record["id"], data["status"], amount, lead_id,
        )
        return Transaction(**record)

    def get(self, transaction_id: str) -> Transaction:
        record = self.storage.get_transaction(transaction_id) if self.storage else None
        if not record:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return Transaction(**record)

    def find_by_payment_id(
        self, stripe_payment_id: str, statuses: Optional[Sequence[TransactionStatus]] = None
    ) -> Optional[Transaction]:
        wanted = [s.value for s in statuses] if statuses is not None else None
        record = self.storage.find_transaction_by_payment_id(stripe_payment_id, wanted)
        return Transaction(**record) if record else None

    def latest_for_lead(
        self, lead_id: str, statuses: Optional[Sequence[TransactionStatus]] = None
    ) -> Optional[Transaction]:
        wanted = [s.value for s in statuses] if statuses is not None else None
        records = self.storage.list_transactions_for_lead(lead_id, wanted)
        return Transaction(**records[0]) if records else None

    def complete(self, transaction_id: str, **changes) -> Optional[Transaction]:
        changes.update(status=TransactionStatus.COMPLETED.value, completed_at=datetime.now(timezone.utc))
        record = self.storage.update_transaction(
            transaction_id, [TransactionStatus.PENDING.value], changes
        )
        return Transaction(**record) if record else None

    def fail(
        self,
        transaction_id: str,
        reason: Optional[str] = None,
        allow_reversal: bool = False,
        metadata: Optional[dict] = None,
    ) -> Optional[Transaction]:
        current = self.get(transaction_id)
        if not current.can_fail(allow_reversal):
            return None

        merged = {**current.metadata, **(metadata or {})}
        if reason:
            merged["failure_reason"] = reason
        record = self.storage.update_transaction(
            transaction_id,
            [current.status.value],
            {"status": TransactionStatus.FAILED.value, "metadata": merged},
        )
        return Transaction(**record) if record else None

    def list_for_account(self, user_id: str, limit: int = DEFAULT_LIST_LIMIT) -> list[Transaction]:
        if self.storage is None:
            return []
        return [Transaction(**r) for r in self.storage.list_transactions_for_account(user_id, limit)]


class BalanceStrategy(ABC):
    name: str = "abstract"

    @abstractmethod
    def compute(self, user_id: str, account_type: Optional[str]) -> Optional[AccountBalance]:
        """Return the balance, or ``None`` when this strategy cannot answer."""


class MaterializedBalanceStrategy(BalanceStrategy):
    """Reads the precomputed per-user aggregate when the store has one."""

    name = "materialized"

    def __init__(self, storage: Storage):
        self.storage = storage

    def compute(self, user_id: str, account_type: Optional[str]) -> Optional[AccountBalance]:
        if not self.storage.supports_balance_view:
            return None
        row = self.storage.get_balance_view(user_id)
        if not row:
            return None
        return AccountBalance(
            account_id=user_id,
            account_type=row.get("account_type") or account_type,
            available_balance=_as_decimal(row.get("available_balance")),
            pending_balance=_as_decimal(row.get("pending_balance")),
            total_earnings=_as_decimal(row.get("total_earnings")),
            total_payouts=_as_decimal(row.get("total_payouts")),
            last_updated=datetime.now(timezone.utc),
        )


class LedgerScanBalanceStrategy(BalanceStrategy):
    """
    Derives the balance from the most recent ``scan_limit`` transactions
    touching the user. Accounts with more rows than the limit get an
    approximate figure.
    """

    name = "derived-from-ledger"

    def __init__(self, storage: Storage, scan_limit: int = DEFAULT_SCAN_LIMIT):
        self.storage = storage
        self.scan_limit = scan_limit

    def compute(self, user_id: str, account_type: Optional[str]) -> Optional[AccountBalance]:
        rows = self.storage.list_transactions_for_account(user_id, self.scan_limit)
        if len(rows) >= self.scan_limit:
            logger.warning("Balance scan for %s hit the %d row cap", user_id, self.scan_limit)

        total_earnings = Decimal("0")
        total_payouts = Decimal("0")
        pending_balance = Decimal("0")

        for t in rows:
            if t.get("to_account_id") == user_id:
                if t["status"] == TransactionStatus.COMPLETED.value:
                    total_earnings += _as_decimal(t["net_amount"])
                elif t["status"] == TransactionStatus.PENDING.value:
                    pending_balance += _as_decimal(t["net_amount"])
            if t.get("from_account_id") == user_id and t["status"] == TransactionStatus.COMPLETED.value:
                total_payouts += _as_decimal(t["amount"])

        return AccountBalance(
            account_id=user_id,
            account_type=account_type,
            available_balance=total_earnings - total_payouts,
            pending_balance=pending_balance,
            total_earnings=total_earnings,
            total_payouts=total_payouts,
            last_updated=datetime.now(timezone.utc),
        )


class BalanceCalculator:
    def __init__(
        self,
        storage: Optional[Storage] = None,
        strategies: Optional[list[BalanceStrategy]] = None,
        scan_limit: int = DEFAULT_SCAN_LIMIT,
    ):
        self.storage = storage
        if strategies is None and storage is not None:
            strategies = [
                MaterializedBalanceStrategy(storage),
                LedgerScanBalanceStrategy(storage, scan_limit),
            ]
        self.strategies = strategies or []

    def calculate(self, user_id: str, account_type: Optional[str] = None) -> AccountBalance:
        for strategy in self.strategies:
            balance = strategy.compute(user_id, account_type)
            if balance is not None:
                logger.debug("Balance for %s from %s strategy", user_id, strategy.name)
                return balance

        return AccountBalance(
            account_id=user_id,
            account_type=account_type,
            last_updated=datetime.now(timezone.utc),
        )
