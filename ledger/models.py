from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class TransactionType(str, Enum):
    LEAD_PAYOUT = "lead_payout"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Transaction(BaseModel):
    id: str
    type: TransactionType
    status: TransactionStatus
    amount: Decimal
    fee_amount: Decimal = Decimal("0")
    net_amount: Decimal
    currency: str = "USD"
    from_account_id: Optional[str] = None
    to_account_id: Optional[str] = None
    lead_id: Optional[str] = None
    connection_id: Optional[str] = None
    stripe_payment_id: Optional[str] = None
    stripe_transfer_id: Optional[str] = None
    description: Optional[str] = None
    metadata: dict = Field(default_factory=dict)
    created_at: datetime
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)

    def can_complete(self) -> bool:
        return self.status == TransactionStatus.PENDING

    def can_fail(self, allow_reversal: bool = False) -> bool:
        if allow_reversal:
            return self.status in (TransactionStatus.PENDING, TransactionStatus.COMPLETED)
        return self.status == TransactionStatus.PENDING


class AccountBalance(BaseModel):
    account_id: str
    account_type: Optional[str] = None
    available_balance: Decimal = Decimal("0")
    pending_balance: Decimal = Decimal("0")
    total_earnings: Decimal = Decimal("0")
    total_payouts: Decimal = Decimal("0")
    last_updated: datetime

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TransactionListResponse(BaseModel):
    transactions: list[Transaction]
    message: Optional[str] = None


class BalanceResponse(BaseModel):
    balance: AccountBalance
    message: Optional[str] = None
