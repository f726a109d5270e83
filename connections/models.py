from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ConnectionStatus(str, Enum):
    PENDING_BUYER_REVIEW = "pending_buyer_review"
    PENDING_PROVIDER_ACCEPT = "pending_provider_accept"
    ACTIVE = "active"
    DECLINED_BY_PROVIDER = "declined_by_provider"
    REJECTED_BY_BUYER = "rejected_by_buyer"
    TERMINATED = "terminated"


TERMINAL_STATUSES = frozenset({
    ConnectionStatus.DECLINED_BY_PROVIDER,
    ConnectionStatus.REJECTED_BY_BUYER,
    ConnectionStatus.TERMINATED,
})


class PartyRole(str, Enum):
    PROVIDER = "provider"
    BUYER = "buyer"


class PaymentTiming(str, Enum):
    PER_LEAD = "per_lead"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class ConnectionAction(str, Enum):
    SET_TERMS = "set_terms"
    ACCEPT = "accept"
    DECLINE = "decline"
    REJECT = "reject"
    TERMINATE = "terminate"
    UPDATE_TERMS = "update_terms"


DEFAULT_RATE_PER_LEAD = Decimal("50")
MIN_RATE_PER_LEAD = Decimal("5")
MAX_RATE_PER_LEAD = Decimal("500")
DEFAULT_TERMINATION_NOTICE_DAYS = 7


@dataclass(frozen=True)
class Transition:
    action: ConnectionAction
    actor: Optional[PartyRole]  # None: either party
    source: ConnectionStatus
    target: ConnectionStatus


TRANSITIONS: dict[ConnectionAction, Transition] = {
    t.action: t for t in (
        Transition(ConnectionAction.SET_TERMS, PartyRole.BUYER,
                   ConnectionStatus.PENDING_BUYER_REVIEW, ConnectionStatus.PENDING_PROVIDER_ACCEPT),
        Transition(ConnectionAction.ACCEPT, PartyRole.PROVIDER,
                   ConnectionStatus.PENDING_PROVIDER_ACCEPT, ConnectionStatus.ACTIVE),
        Transition(ConnectionAction.DECLINE, PartyRole.PROVIDER,
                   ConnectionStatus.PENDING_PROVIDER_ACCEPT, ConnectionStatus.DECLINED_BY_PROVIDER),
        Transition(ConnectionAction.REJECT, PartyRole.BUYER,
                   ConnectionStatus.PENDING_BUYER_REVIEW, ConnectionStatus.REJECTED_BY_BUYER),
        Transition(ConnectionAction.TERMINATE, None,
                   ConnectionStatus.ACTIVE, ConnectionStatus.TERMINATED),
        Transition(ConnectionAction.UPDATE_TERMS, PartyRole.BUYER,
                   ConnectionStatus.ACTIVE, ConnectionStatus.ACTIVE),
    )
}


class ConnectionTerms(BaseModel):
    rate_per_lead: Optional[Decimal] = Field(default=None, alias="ratePerLead")
    payment_timing: Optional[PaymentTiming] = Field(default=None, alias="paymentTiming")
    weekly_lead_cap: Optional[int] = Field(default=None, alias="weeklyLeadCap", ge=1)
    monthly_lead_cap: Optional[int] = Field(default=None, alias="monthlyLeadCap", ge=1)
    termination_notice_days: Optional[int] = Field(default=None, alias="terminationNoticeDays", ge=1)

    model_config = ConfigDict(populate_by_name=True)


class CreateConnectionRequest(BaseModel):
    buyer_id: Optional[str] = Field(default=None, alias="buyerId")
    provider_email: Optional[str] = Field(default=None, alias="providerEmail")
    message: Optional[str] = Field(default=None, max_length=2000)
    terms: Optional[ConnectionTerms] = None

    model_config = ConfigDict(populate_by_name=True, json_schema_extra={
        "example": {
            "providerEmail": "provider@example.com",
            "message": "We'd like to receive your auto leads",
            "terms": {"ratePerLead": 50, "paymentTiming": "per_lead"},
        }
    })


class ConnectionActionRequest(ConnectionTerms):
    action: str = Field(..., description="One of set_terms, accept, decline, reject, terminate, update_terms")

    model_config = ConfigDict(populate_by_name=True, json_schema_extra={
        "example": {"action": "set_terms", "ratePerLead": 45, "paymentTiming": "weekly"}
    })


class Connection(BaseModel):
    id: str
    provider_id: str
    buyer_id: str
    status: ConnectionStatus
    initiator: PartyRole
    rate_per_lead: Optional[Decimal] = None
    payment_timing: Optional[PaymentTiming] = None
    weekly_lead_cap: Optional[int] = None
    monthly_lead_cap: Optional[int] = None
    termination_notice_days: int = DEFAULT_TERMINATION_NOTICE_DAYS
    message: Optional[str] = None
    created_at: datetime
    accepted_at: Optional[datetime] = None
    terms_updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    def role_of(self, user_id: str) -> Optional[PartyRole]:
        if user_id == self.provider_id:
            return PartyRole.PROVIDER
        if user_id == self.buyer_id:
            return PartyRole.BUYER
        return None

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_transact(self) -> bool:
        return self.status == ConnectionStatus.ACTIVE


class ConnectionView(Connection):
    provider_name: str = "Unknown"
    provider_email: str = ""
    buyer_name: str = "Unknown"
    buyer_email: str = ""


class ConnectionResponse(BaseModel):
    success: bool = True
    connection: Connection


class ConnectionDetailResponse(BaseModel):
    connection: Connection


class ConnectionListResponse(BaseModel):
    connections: list[ConnectionView]
