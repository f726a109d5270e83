"""
Lead payouts through the payment processor.

Reconciles processor webhook events against lead payout status and the
transaction ledger, creates buyer payments and onboards provider payout
accounts.
"""

from .models import LeadPayoutStatus, ProcessorEvent, ProcessorEventType, ReconciliationResult
from .payments import PaymentService
from .service import ReconciliationEngine
from .webhooks import PermissiveVerifier, SignatureVerifier, build_verifier

__all__ = [
    "LeadPayoutStatus",
    "ProcessorEvent",
    "ProcessorEventType",
    "ReconciliationResult",
    "PaymentService",
    "ReconciliationEngine",
    "PermissiveVerifier",
    "SignatureVerifier",
    "build_verifier",
]
