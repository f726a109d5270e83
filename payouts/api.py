from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from starlette.concurrency import run_in_threadpool

from common.deps import get_session, get_storage
from common.settings import Settings, get_settings
from common.storage import Storage

from .models import (
    AccountStatusResponse,
    ConnectAccountRequest,
    CreatePaymentRequest,
    OnboardingResponse,
    PaymentResponse,
    WebhookAck,
)
from .payments import PaymentService, SessionType
from .service import ReconciliationEngine
from .webhooks import WebhookVerifier, build_verifier

router = APIRouter(prefix="/stripe", tags=["Payouts"])


def get_verifier(settings: Settings = Depends(get_settings)) -> WebhookVerifier:
    return build_verifier(settings.stripe_webhook_secret, settings.stripe_webhook_tolerance)


def get_reconciliation_engine(storage: Optional[Storage] = Depends(get_storage)) -> ReconciliationEngine:
    return ReconciliationEngine(storage)


def get_payment_service(
    storage: Optional[Storage] = Depends(get_storage),
    settings: Settings = Depends(get_settings),
) -> PaymentService:
    return PaymentService(storage, settings)


@router.post("/webhooks", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    verifier: WebhookVerifier = Depends(get_verifier),
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> WebhookAck:
    payload = await request.body()
    event = verifier.verify(payload, stripe_signature)
    await run_in_threadpool(engine.process, event)
    return WebhookAck()


@router.post("/create-payment", response_model=PaymentResponse, response_model_exclude_none=True)
def create_payment(
    request: CreatePaymentRequest,
    session: SessionType = Depends(get_session),
    service: PaymentService = Depends(get_payment_service),
) -> PaymentResponse:
    return service.create_lead_payment(session, request)


@router.post("/connect", response_model=OnboardingResponse, response_model_exclude_none=True)
def start_onboarding(
    request: ConnectAccountRequest,
    session: SessionType = Depends(get_session),
    service: PaymentService = Depends(get_payment_service),
) -> OnboardingResponse:
    return service.start_onboarding(session, request.email)


@router.get("/connect", response_model=AccountStatusResponse, response_model_exclude_none=True)
def get_account_status(
    session: SessionType = Depends(get_session),
    service: PaymentService = Depends(get_payment_service),
) -> AccountStatusResponse:
    return service.account_status(session)
