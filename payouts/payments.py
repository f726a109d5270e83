import logging
from typing import Optional, Union

import stripe

from common.errors import (
    AuthorizationError,
    DuplicateRecordError,
    ExternalDependencyError,
    InvalidInputError,
    NotFoundError,
)
from common.logging_config import build_log_context
from common.security import BuyerSession, ProviderSession
from common.settings import Settings
from common.storage import Storage
from connections.models import PartyRole
from connections.service import ConnectionService
from ledger.models import TransactionStatus
from ledger.service import TransactionLedger, to_minor_units

from .models import (
    LEAD_PAYOUT_TYPE,
    AccountStatusResponse,
    CreatePaymentRequest,
    OnboardingResponse,
    PaymentResponse,
)

logger = logging.getLogger(__name__)

SessionType = Union[ProviderSession, BuyerSession]


class PaymentService:
    """Buyer-side lead payments and provider payout-account onboarding."""

    def __init__(
        self,
        storage: Optional[Storage],
        settings: Settings,
        connections: Optional[ConnectionService] = None,
        ledger: Optional[TransactionLedger] = None,
    ):
        self.storage = storage
        self.settings = settings
        self.connections = connections or (ConnectionService(storage) if storage is not None else None)
        self.ledger = ledger or TransactionLedger(storage)

    def create_lead_payment(self, session: SessionType, request: CreatePaymentRequest) -> PaymentResponse:
        if session.role != PartyRole.BUYER.value:
            raise AuthorizationError("Only buyers can create payments")
        if self.storage is None:
            raise ExternalDependencyError("Database not configured")

        connection = self.connections.require_active(request.provider_id, session.user_id)

        lead = self.storage.get_lead(request.lead_id)
        if not lead:
            raise NotFoundError("Lead not found")
        if lead.get("provider_id") and lead["provider_id"] != request.provider_id:
            raise InvalidInputError("Lead was not submitted by this provider")

        description = request.description or f"Lead payout for {request.lead_id}"
        context = build_log_context(user_id=session.user_id, connection_id=connection.id, lead_id=request.lead_id)

        if not self.settings.stripe_configured:
            logger.info("Stripe not configured - simulating payment", extra=context)
            return PaymentResponse(
                simulated=True,
                message=f"Payment of ${request.amount} to provider would be processed",
                provider_id=request.provider_id,
                lead_id=request.lead_id,
                amount=request.amount,
                provider_payout=request.amount,
            )

        provider = self.storage.get_user(request.provider_id) or {}
        destination = None
        if provider.get("stripe_account_id") and provider.get("stripe_onboarding_complete"):
            destination = provider["stripe_account_id"]

        params = {
            "amount": to_minor_units(request.amount),
            "currency": "usd",
            "metadata": {
                "type": LEAD_PAYOUT_TYPE,
                "leadId": request.lead_id,
                "providerId": request.provider_id,
                "buyerId": session.user_id,
                "connectionId": connection.id,
                "description": description,
            },
            "automatic_payment_methods": {"enabled": True},
        }
        if destination:
            params["transfer_data"] = {"destination": destination}

        try:
            intent = stripe.PaymentIntent.create(
                api_key=self.settings.stripe_secret_key,
                idempotency_key=f"lead-payout-{request.lead_id}",
                **params,
            )
        except stripe.StripeError as e:
            logger.error("Stripe payment error: %s", e, extra=context)
            raise ExternalDependencyError("Payment creation failed")

        try:
            transaction = self.ledger.record(
                amount=request.amount,
                from_account_id=session.user_id,
                to_account_id=request.provider_id,
                lead_id=request.lead_id,
                connection_id=connection.id,
                stripe_payment_id=intent.id,
                description=description,
                metadata={"has_connected_account": destination is not None},
            )
        except DuplicateRecordError:
            transaction = self.ledger.find_by_payment_id(
                intent.id, [TransactionStatus.PENDING, TransactionStatus.COMPLETED]
            )

        logger.info("Created payment %s for lead %s", intent.id, request.lead_id, extra=context)
        return PaymentResponse(
            client_secret=intent.client_secret,
            payment_intent_id=intent.id,
            transaction_id=transaction.id if transaction else None,
            provider_id=request.provider_id,
            lead_id=request.lead_id,
            amount=request.amount,
            provider_payout=request.amount,
            has_connected_account=destination is not None,
        )

    def start_onboarding(self, session: SessionType, email: Optional[str] = None) -> OnboardingResponse:
        if session.role != PartyRole.PROVIDER.value:
            raise AuthorizationError("Only providers can connect Stripe accounts")

        if not self.settings.stripe_configured:
            return OnboardingResponse(
                simulated=True,
                message="Stripe not configured. In production, this would create a Connect account.",
            )

        user = (self.storage.get_user(session.user_id) if self.storage else None) or {}
        account_id = user.get("stripe_account_id")
        api_key = self.settings.stripe_secret_key

        try:
            if not account_id:
                account = stripe.Account.create(
                    api_key=api_key,
                    type="express",
                    email=email or session.email,
                    metadata={"providerId": session.user_id},
                    capabilities={"transfers": {"requested": True}},
                    business_type="individual",
                    settings={"payouts": {"schedule": {"interval": "daily"}}},
                )
                account_id = account.id
                if self.storage is not None:
                    self.storage.update_user(
                        session.user_id,
                        {"stripe_account_id": account_id, "stripe_onboarding_complete": False},
                    )
                logger.info("Created connected account %s", account_id,
                            extra=build_log_context(user_id=session.user_id))

            link = stripe.AccountLink.create(
                api_key=api_key,
                account=account_id,
                refresh_url=f"{self.settings.app_url}/provider-dashboard?stripe=refresh",
                return_url=f"{self.settings.app_url}/provider-dashboard?stripe=success",
                type="account_onboarding",
            )
        except stripe.StripeError as e:
            logger.error("Stripe Connect error: %s", e, extra=build_log_context(user_id=session.user_id))
            raise ExternalDependencyError("Failed to create Stripe account")

        return OnboardingResponse(account_id=account_id, onboarding_url=link.url)

    def account_status(self, session: SessionType) -> AccountStatusResponse:
        if session.role != PartyRole.PROVIDER.value:
            raise AuthorizationError("Only providers have Connect accounts")

        user = (self.storage.get_user(session.user_id) if self.storage else None) or {}
        account_id = user.get("stripe_account_id")
        if not self.settings.stripe_configured or not account_id:
            return AccountStatusResponse(stripe_configured=self.settings.stripe_configured)

        try:
            account = stripe.Account.retrieve(account_id, api_key=self.settings.stripe_secret_key)
        except stripe.StripeError as e:
            logger.error("Get Connect status error: %s", e, extra=build_log_context(user_id=session.user_id))
            raise ExternalDependencyError("Failed to get account status")

        return AccountStatusResponse(
            connected=True,
            stripe_configured=True,
            account_id=account_id,
            onboarding_complete=bool(
                account.charges_enabled and account.payouts_enabled and account.details_submitted
            ),
            charges_enabled=account.charges_enabled,
            payouts_enabled=account.payouts_enabled,
            details_submitted=account.details_submitted,
        )
