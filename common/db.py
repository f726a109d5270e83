from typing import Iterable, Optional

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint,
    create_engine, func, inspect, or_, select, text, true, update,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import DuplicateRecordError
from .storage import Storage, new_id, utcnow

Base = declarative_base()


class User(Base):
    __tablename__ = "users"
    id = Column(String(36), primary_key=True)
    email = Column(String(255), unique=True, nullable=False)
    role = Column(String(20), nullable=False)
    display_name = Column(String(255))
    business_name = Column(String(255))
    stripe_account_id = Column(String(255), index=True)
    stripe_onboarding_complete = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class Connection(Base):
    __tablename__ = "connections"
    __table_args__ = (UniqueConstraint("provider_id", "buyer_id"),)
    id = Column(String(36), primary_key=True)
    provider_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    buyer_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(30), nullable=False)
    initiator = Column(String(20), nullable=False)
    rate_per_lead = Column(Numeric(10, 2))
    payment_timing = Column(String(20))
    weekly_lead_cap = Column(Integer)
    monthly_lead_cap = Column(Integer)
    termination_notice_days = Column(Integer, nullable=False, default=7)
    message = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False)
    accepted_at = Column(DateTime(timezone=True))
    terms_updated_at = Column(DateTime(timezone=True))


class Lead(Base):
    __tablename__ = "leads"
    id = Column(String(36), primary_key=True)
    provider_id = Column(String(36), ForeignKey("users.id"), index=True)
    buyer_id = Column(String(36), ForeignKey("users.id"), index=True)
    connection_id = Column(String(36), ForeignKey("connections.id"))
    payout_amount = Column(Numeric(10, 2))
    payout_status = Column(String(20), nullable=False, default="pending")
    stripe_transfer_id = Column(String(255))
    payout_completed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False)


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        # at most one live (not failed) row per processor payment
        Index(
            "uq_transactions_live_payment", "stripe_payment_id", unique=True,
            sqlite_where=text("status != 'failed'"), postgresql_where=text("status != 'failed'"),
        ),
    )
    id = Column(String(36), primary_key=True)
    type = Column(String(30), nullable=False)
    status = Column(String(20), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    fee_amount = Column(Numeric(10, 2), nullable=False, default=0)
    net_amount = Column(Numeric(12, 2), nullable=False)
    from_account_id = Column(String(36), index=True)
    to_account_id = Column(String(36), index=True)
    lead_id = Column(String(36), index=True)
    connection_id = Column(String(36))
    stripe_payment_id = Column(String(255))
    stripe_transfer_id = Column(String(255))
    description = Column(Text)
    metadata_ = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True))


def _attribute_names(model) -> dict[str, str]:
    return {attr.columns[0].name: attr.key for attr in inspect(model).column_attrs}


def _values(model, data: dict) -> dict:
    names = _attribute_names(model)
    return {names[k]: v for k, v in data.items() if k in names}


def _update_values(model, data: dict) -> dict:
    names = _attribute_names(model)
    return {getattr(model, names[k]): v for k, v in data.items() if k in names}


def _to_dict(row) -> Optional[dict]:
    if row is None:
        return None
    return {column: getattr(row, key) for column, key in _attribute_names(type(row)).items()}


class SqlStorage(Storage):
    def __init__(self, url: str, create_tables: bool = True):
        kwargs = {"pool_pre_ping": True}
        if url.startswith("sqlite"):
            kwargs = {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql://", 1)
        self.engine = create_engine(url, **kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        if create_tables:
            Base.metadata.create_all(bind=self.engine)
        self._has_balance_view = None

    @property
    def supports_balance_view(self) -> bool:
        if self._has_balance_view is None:
            self._has_balance_view = "account_balances" in inspect(self.engine).get_view_names()
        return self._has_balance_view

    def _insert(self, model, data: dict) -> dict:
        data = {"id": new_id(), "created_at": utcnow(), **data}
        row = model(**_values(model, data))
        try:
            with self.SessionLocal.begin() as db:
                db.add(row)
        except IntegrityError as e:
            raise DuplicateRecordError(f"{model.__tablename__} record conflicts with an existing row") from e
        return _to_dict(row)

    def _get(self, model, key: str) -> Optional[dict]:
        with self.SessionLocal() as db:
            return _to_dict(db.get(model, key))

    def _first(self, stmt) -> Optional[dict]:
        with self.SessionLocal() as db:
            return _to_dict(db.execute(stmt).scalars().first())

    def _all(self, stmt) -> list[dict]:
        with self.SessionLocal() as db:
            return [_to_dict(r) for r in db.execute(stmt).scalars().all()]

    def _compare_and_set(self, model, key: str, condition, changes: dict) -> Optional[dict]:
        with self.SessionLocal.begin() as db:
            result = db.execute(
                update(model).where(model.id == key, condition).values(_update_values(model, changes))
            )
            if result.rowcount != 1:
                return None
            return _to_dict(db.get(model, key))

    def add_user(self, data: dict) -> dict:
        return self._insert(User, data)

    def get_user(self, user_id: str) -> Optional[dict]:
        return self._get(User, user_id)

    def get_user_by_email(self, email: str) -> Optional[dict]:
        return self._first(select(User).where(func.lower(User.email) == email.lower()))

    def update_user(self, user_id: str, changes: dict) -> Optional[dict]:
        return self._compare_and_set(User, user_id, true(), changes)

    def update_users_by_stripe_account(self, stripe_account_id: str, changes: dict) -> int:
        with self.SessionLocal.begin() as db:
            result = db.execute(
                update(User).where(User.stripe_account_id == stripe_account_id).values(_update_values(User, changes))
            )
            return result.rowcount

    def insert_connection(self, data: dict) -> dict:
        return self._insert(Connection, data)

    def get_connection(self, connection_id: str) -> Optional[dict]:
        return self._get(Connection, connection_id)

    def get_connection_by_parties(self, provider_id: str, buyer_id: str) -> Optional[dict]:
        return self._first(
            select(Connection).where(Connection.provider_id == provider_id, Connection.buyer_id == buyer_id)
        )

    def list_connections(self, user_id: str, role: str, statuses: Optional[Iterable[str]] = None) -> list[dict]:
        side = Connection.provider_id if role == "provider" else Connection.buyer_id
        stmt = select(Connection).where(side == user_id)
        if statuses is not None:
            stmt = stmt.where(Connection.status.in_(list(statuses)))
        return self._all(stmt.order_by(Connection.created_at.desc()))

    def update_connection(self, connection_id: str, expected_status: str, changes: dict) -> Optional[dict]:
        return self._compare_and_set(Connection, connection_id, Connection.status == expected_status, changes)

    def add_lead(self, data: dict) -> dict:
        return self._insert(Lead, {"payout_status": "pending", **data})

    def get_lead(self, lead_id: str) -> Optional[dict]:
        return self._get(Lead, lead_id)

    def update_lead(
        self, lead_id: str, changes: dict, expected_payout_statuses: Optional[Iterable[str]] = None
    ) -> Optional[dict]:
        condition = true()
        if expected_payout_statuses is not None:
            condition = Lead.payout_status.in_(list(expected_payout_statuses))
        return self._compare_and_set(Lead, lead_id, condition, changes)

    def insert_transaction(self, data: dict) -> dict:
        return self._insert(Transaction, data)

    def get_transaction(self, transaction_id: str) -> Optional[dict]:
        return self._get(Transaction, transaction_id)

    def find_transaction_by_payment_id(
        self, stripe_payment_id: str, statuses: Optional[Iterable[str]] = None
    ) -> Optional[dict]:
        stmt = select(Transaction).where(Transaction.stripe_payment_id == stripe_payment_id)
        if statuses is not None:
            stmt = stmt.where(Transaction.status.in_(list(statuses)))
        return self._first(stmt.order_by(Transaction.created_at.desc()))

    def list_transactions_for_lead(self, lead_id: str, statuses: Optional[Iterable[str]] = None) -> list[dict]:
        stmt = select(Transaction).where(Transaction.lead_id == lead_id)
        if statuses is not None:
            stmt = stmt.where(Transaction.status.in_(list(statuses)))
        return self._all(stmt.order_by(Transaction.created_at.desc()))

    def update_transaction(
        self, transaction_id: str, expected_statuses: Iterable[str], changes: dict
    ) -> Optional[dict]:
        return self._compare_and_set(
            Transaction, transaction_id, Transaction.status.in_(list(expected_statuses)), changes
        )

    def list_transactions_for_account(self, user_id: str, limit: int) -> list[dict]:
        stmt = (
            select(Transaction)
            .where(or_(Transaction.from_account_id == user_id, Transaction.to_account_id == user_id))
            .order_by(Transaction.created_at.desc())
            .limit(limit)
        )
        return self._all(stmt)

    def get_balance_view(self, user_id: str) -> Optional[dict]:
        if not self.supports_balance_view:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(
                text("SELECT * FROM account_balances WHERE user_id = :user_id"), {"user_id": user_id}
            ).mappings().first()
        return dict(row) if row else None
