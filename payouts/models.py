from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class LeadPayoutStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ProcessorEventType(str, Enum):
    ACCOUNT_UPDATED = "account.updated"
    PAYMENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_FAILED = "payment_intent.payment_failed"
    TRANSFER_CREATED = "transfer.created"
    TRANSFER_REVERSED = "transfer.reversed"
    PAYOUT_PAID = "payout.paid"
    PAYOUT_FAILED = "payout.failed"


LEAD_PAYOUT_TYPE = "lead_payout"


class ProcessorEvent(BaseModel):
    """A processor webhook envelope. Only the fields reconciliation reads are typed."""

    id: Optional[str] = None
    type: str
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="ignore")

    @property
    def object(self) -> dict[str, Any]:
        value = self.data.get("object")
        return value if isinstance(value, dict) else {}

    @property
    def metadata(self) -> dict[str, Any]:
        value = self.object.get("metadata")
        return value if isinstance(value, dict) else {}


class ReconciliationResult(BaseModel):
    event_id: Optional[str] = None
    event_type: str
    handled: bool = False
    applied: bool = False
    error: Optional[str] = None


class CreatePaymentRequest(BaseModel):
    lead_id: str = Field(..., alias="leadId", min_length=1)
    provider_id: str = Field(..., alias="providerId", min_length=1)
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    description: Optional[str] = Field(default=None, max_length=500)

    model_config = ConfigDict(populate_by_name=True, json_schema_extra={
        "example": {"leadId": "lead-123", "providerId": "user-456", "amount": 50, "description": "Auto lead"}
    })


class PaymentResponse(BaseModel):
    success: bool = True
    simulated: bool = False
    message: Optional[str] = None
    provider_id: Optional[str] = Field(default=None, serialization_alias="providerId")
    lead_id: Optional[str] = Field(default=None, serialization_alias="leadId")
    client_secret: Optional[str] = Field(default=None, serialization_alias="clientSecret")
    payment_intent_id: Optional[str] = Field(default=None, serialization_alias="paymentIntentId")
    transaction_id: Optional[str] = Field(default=None, serialization_alias="transactionId")
    amount: Optional[Decimal] = None
    platform_fee: Decimal = Field(default=Decimal("0"), serialization_alias="platformFee")
    provider_payout: Optional[Decimal] = Field(default=None, serialization_alias="providerPayout")
    has_connected_account: bool = Field(default=False, serialization_alias="hasConnectedAccount")


class ConnectAccountRequest(BaseModel):
    email: Optional[str] = None


class OnboardingResponse(BaseModel):
    success: bool = True
    simulated: bool = False
    message: Optional[str] = None
    account_id: Optional[str] = Field(default=None, serialization_alias="accountId")
    onboarding_url: Optional[str] = Field(default=None, serialization_alias="onboardingUrl")


class AccountStatusResponse(BaseModel):
    connected: bool = False
    stripe_configured: bool = Field(default=False, serialization_alias="stripeConfigured")
    account_id: Optional[str] = Field(default=None, serialization_alias="accountId")
    onboarding_complete: bool = Field(default=False, serialization_alias="onboardingComplete")
    charges_enabled: Optional[bool] = Field(default=None, serialization_alias="chargesEnabled")
    payouts_enabled: Optional[bool] = Field(default=None, serialization_alias="payoutsEnabled")
    details_submitted: Optional[bool] = Field(default=None, serialization_alias="detailsSubmitted")


class WebhookAck(BaseModel):
    received: bool = True
