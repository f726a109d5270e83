"""
Storage backends.

Records travel as plain dicts keyed by column name; services wrap them in
pydantic models. Every conditional write is a single compare-and-set so
that concurrent requests are arbitrated by the stored state.
"""
import copy
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Iterable, Optional
from uuid import uuid4

from .errors import DuplicateRecordError

MEMORY_URL = "memory://"
FAILED = "failed"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class Storage(ABC):
    supports_balance_view: bool = False

    # users
    @abstractmethod
    def add_user(self, data: dict) -> dict: ...

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[dict]: ...

    @abstractmethod
    def get_user_by_email(self, email: str) -> Optional[dict]: ...

    @abstractmethod
    def update_user(self, user_id: str, changes: dict) -> Optional[dict]: ...

    @abstractmethod
    def update_users_by_stripe_account(self, stripe_account_id: str, changes: dict) -> int: ...

    # connections
    @abstractmethod
    def insert_connection(self, data: dict) -> dict: ...

    @abstractmethod
    def get_connection(self, connection_id: str) -> Optional[dict]: ...

    @abstractmethod
    def get_connection_by_parties(self, provider_id: str, buyer_id: str) -> Optional[dict]: ...

    @abstractmethod
    def list_connections(self, user_id: str, role: str, statuses: Optional[Iterable[str]] = None) -> list[dict]: ...

    @abstractmethod
    def update_connection(self, connection_id: str, expected_status: str, changes: dict) -> Optional[dict]:
        """Apply ``changes`` only if the stored status still equals ``expected_status``."""

    # leads
    @abstractmethod
    def add_lead(self, data: dict) -> dict: ...

    @abstractmethod
    def get_lead(self, lead_id: str) -> Optional[dict]: ...

    @abstractmethod
    def update_lead(
        self, lead_id: str, changes: dict, expected_payout_statuses: Optional[Iterable[str]] = None
    ) -> Optional[dict]: ...

    # transactions
    @abstractmethod
    def insert_transaction(self, data: dict) -> dict: ...

    @abstractmethod
    def get_transaction(self, transaction_id: str) -> Optional[dict]: ...

    @abstractmethod
    def find_transaction_by_payment_id(
        self, stripe_payment_id: str, statuses: Optional[Iterable[str]] = None
    ) -> Optional[dict]:
        """Newest row for the payment, optionally restricted to ``statuses``."""

    @abstractmethod
    def list_transactions_for_lead(self, lead_id: str, statuses: Optional[Iterable[str]] = None) -> list[dict]: ...

    @abstractmethod
    def update_transaction(
        self, transaction_id: str, expected_statuses: Iterable[str], changes: dict
    ) -> Optional[dict]: ...

    @abstractmethod
    def list_transactions_for_account(self, user_id: str, limit: int) -> list[dict]: ...

    def get_balance_view(self, user_id: str) -> Optional[dict]:
        return None


def _newest_first(records: Iterable[dict], key: str = "created_at") -> list[dict]:
    # stable sort over reversed insertion order keeps ties newest first
    return sorted(reversed(list(records)), key=lambda r: r[key], reverse=True)


class InMemoryStorage(Storage):
    def __init__(self, balance_views: Optional[dict[str, dict]] = None):
        self._lock = threading.RLock()
        self.users: dict[str, dict] = {}
        self.connections: dict[str, dict] = {}
        self.leads: dict[str, dict] = {}
        self.transactions: dict[str, dict] = {}
        self.balance_views = balance_views

    @property
    def supports_balance_view(self) -> bool:
        return self.balance_views is not None

    def _insert(self, table: dict, data: dict) -> dict:
        record = dict(data)
        record.setdefault("id", new_id())
        record.setdefault("created_at", utcnow())
        table[record["id"]] = record
        return copy.deepcopy(record)

    @staticmethod
    def _get(table: dict, key: str) -> Optional[dict]:
        record = table.get(key)
        return copy.deepcopy(record) if record else None

    def add_user(self, data: dict) -> dict:
        with self._lock:
            data = {"stripe_account_id": None, "stripe_onboarding_complete": False, **data}
            if any(u["email"] == data["email"] for u in self.users.values()):
                raise DuplicateRecordError(f"User {data['email']} already exists")
            return self._insert(self.users, data)

    def get_user(self, user_id: str) -> Optional[dict]:
        with self._lock:
            return self._get(self.users, user_id)

    def get_user_by_email(self, email: str) -> Optional[dict]:
        with self._lock:
            for user in self.users.values():
                if user["email"].lower() == email.lower():
                    return copy.deepcopy(user)
        return None

    def update_user(self, user_id: str, changes: dict) -> Optional[dict]:
        with self._lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.update(changes)
            return copy.deepcopy(user)

    def update_users_by_stripe_account(self, stripe_account_id: str, changes: dict) -> int:
        with self._lock:
            matched = [u for u in self.users.values() if u.get("stripe_account_id") == stripe_account_id]
            for user in matched:
                user.update(changes)
            return len(matched)

    def insert_connection(self, data: dict) -> dict:
        with self._lock:
            for existing in self.connections.values():
                if existing["provider_id"] == data["provider_id"] and existing["buyer_id"] == data["buyer_id"]:
                    raise DuplicateRecordError("Connection already exists for this provider and buyer")
            return self._insert(self.connections, data)

    def get_connection(self, connection_id: str) -> Optional[dict]:
        with self._lock:
            return self._get(self.connections, connection_id)

    def get_connection_by_parties(self, provider_id: str, buyer_id: str) -> Optional[dict]:
        with self._lock:
            for conn in self.connections.values():
                if conn["provider_id"] == provider_id and conn["buyer_id"] == buyer_id:
                    return copy.deepcopy(conn)
        return None

    def list_connections(self, user_id: str, role: str, statuses: Optional[Iterable[str]] = None) -> list[dict]:
        side = "provider_id" if role == "provider" else "buyer_id"
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            rows = [
                copy.deepcopy(c) for c in self.connections.values()
                if c[side] == user_id and (wanted is None or c["status"] in wanted)
            ]
        return _newest_first(rows)

    def update_connection(self, connection_id: str, expected_status: str, changes: dict) -> Optional[dict]:
        with self._lock:
            conn = self.connections.get(connection_id)
            if not conn or conn["status"] != expected_status:
                return None
            conn.update(changes)
            return copy.deepcopy(conn)

    def add_lead(self, data: dict) -> dict:
        with self._lock:
            data = {
                "payout_status": "pending", "stripe_transfer_id": None,
                "payout_completed_at": None, **data,
            }
            return self._insert(self.leads, data)

    def get_lead(self, lead_id: str) -> Optional[dict]:
        with self._lock:
            return self._get(self.leads, lead_id)

    def update_lead(
        self, lead_id: str, changes: dict, expected_payout_statuses: Optional[Iterable[str]] = None
    ) -> Optional[dict]:
        with self._lock:
            lead = self.leads.get(lead_id)
            if not lead:
                return None
            if expected_payout_statuses is not None and lead["payout_status"] not in set(expected_payout_statuses):
                return None
            lead.update(changes)
            return copy.deepcopy(lead)

    def insert_transaction(self, data: dict) -> dict:
        with self._lock:
            # at most one live (not failed) row per processor payment
            payment_id = data.get("stripe_payment_id")
            if payment_id and data.get("status") != FAILED and any(
                t.get("stripe_payment_id") == payment_id and t["status"] != FAILED
                for t in self.transactions.values()
            ):
                raise DuplicateRecordError(f"Transaction for payment {payment_id} already recorded")
            return self._insert(self.transactions, data)

    def get_transaction(self, transaction_id: str) -> Optional[dict]:
        with self._lock:
            return self._get(self.transactions, transaction_id)

    def find_transaction_by_payment_id(
        self, stripe_payment_id: str, statuses: Optional[Iterable[str]] = None
    ) -> Optional[dict]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            rows = [
                copy.deepcopy(t) for t in self.transactions.values()
                if t.get("stripe_payment_id") == stripe_payment_id and (wanted is None or t["status"] in wanted)
            ]
        rows = _newest_first(rows)
        return rows[0] if rows else None

    def list_transactions_for_lead(self, lead_id: str, statuses: Optional[Iterable[str]] = None) -> list[dict]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            rows = [
                copy.deepcopy(t) for t in self.transactions.values()
                if t.get("lead_id") == lead_id and (wanted is None or t["status"] in wanted)
            ]
        return _newest_first(rows)

    def update_transaction(
        self, transaction_id: str, expected_statuses: Iterable[str], changes: dict
    ) -> Optional[dict]:
        with self._lock:
            txn = self.transactions.get(transaction_id)
            if not txn or txn["status"] not in set(expected_statuses):
                return None
            txn.update(changes)
            return copy.deepcopy(txn)

    def list_transactions_for_account(self, user_id: str, limit: int) -> list[dict]:
        with self._lock:
            rows = [
                copy.deepcopy(t) for t in self.transactions.values()
                if t.get("from_account_id") == user_id or t.get("to_account_id") == user_id
            ]
        return _newest_first(rows)[:limit]

    def get_balance_view(self, user_id: str) -> Optional[dict]:
        if self.balance_views is None:
            return None
        with self._lock:
            return self._get(self.balance_views, user_id)


def create_storage(database_url: str) -> Optional[Storage]:
    """Pick a backend from the configured URL; ``None`` when no database is configured."""
    url = (database_url or "").strip()
    if not url:
        return None
    if url == MEMORY_URL:
        return InMemoryStorage()
    from .db import SqlStorage
    return SqlStorage(url)
