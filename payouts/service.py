import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from common.errors import DuplicateRecordError
from common.logging_config import build_log_context
from common.storage import Storage
from ledger.models import TransactionStatus
from ledger.service import TransactionLedger, to_major_units

from .models import (
    LEAD_PAYOUT_TYPE,
    LeadPayoutStatus,
    ProcessorEvent,
    ProcessorEventType,
    ReconciliationResult,
)

logger = logging.getLogger(__name__)

# source payout statuses each lead update is allowed from
PAYMENT_SUCCEEDED_FROM = (
    LeadPayoutStatus.PENDING.value, LeadPayoutStatus.PROCESSING.value, LeadPayoutStatus.FAILED.value,
)
PAYMENT_FAILED_FROM = (LeadPayoutStatus.PENDING.value, LeadPayoutStatus.PROCESSING.value)
TRANSFER_CREATED_FROM = PAYMENT_SUCCEEDED_FROM
TRANSFER_REVERSED_FROM = (
    LeadPayoutStatus.PENDING.value, LeadPayoutStatus.PROCESSING.value, LeadPayoutStatus.COMPLETED.value,
)
LIVE_STATUSES = (TransactionStatus.PENDING, TransactionStatus.COMPLETED)


class ReconciliationEngine:
    """
    Applies processor events to lead payout status and the transaction ledger.

    Delivery is at-least-once, so every handler is idempotent: payment
    events dedupe on the processor payment id, transfer events on the
    lead's payout status and the transaction status. ``process`` never
    raises; a failing handler is logged and reported in the result so the
    processor still gets its acknowledgement.
    """

    def __init__(self, storage: Optional[Storage], ledger: Optional[TransactionLedger] = None):
        self.storage = storage
        self.ledger = ledger or TransactionLedger(storage)
        self._handlers: dict[str, Callable[[ProcessorEvent], bool]] = {
            ProcessorEventType.ACCOUNT_UPDATED.value: self._account_updated,
            ProcessorEventType.PAYMENT_SUCCEEDED.value: self._payment_succeeded,
            ProcessorEventType.PAYMENT_FAILED.value: self._payment_failed,
            ProcessorEventType.TRANSFER_CREATED.value: self._transfer_created,
            ProcessorEventType.TRANSFER_REVERSED.value: self._transfer_reversed,
            ProcessorEventType.PAYOUT_PAID.value: self._payout_observed,
            ProcessorEventType.PAYOUT_FAILED.value: self._payout_observed,
        }
        self._observe_only = {ProcessorEventType.PAYOUT_PAID.value, ProcessorEventType.PAYOUT_FAILED.value}

    def process(self, event: ProcessorEvent) -> ReconciliationResult:
        result = ReconciliationResult(event_id=event.id, event_type=event.type)
        context = build_log_context(event_type=event.type, lead_id=event.metadata.get("leadId"))
        logger.info("Received processor event %s (%s)", event.id, event.type, extra=context)

        handler = self._handlers.get(event.type)
        if handler is None:
            logger.info("Unhandled event type: %s", event.type, extra=context)
            return result

        result.handled = True
        if self.storage is None and event.type not in self._observe_only:
            logger.info("Database not configured - skipping %s", event.type, extra=context)
            return result

        try:
            result.applied = handler(event)
        except Exception as e:
            logger.exception("Error handling %s event %s", event.type, event.id, extra=context)
            result.error = str(e)
        return result

    def _account_updated(self, event: ProcessorEvent) -> bool:
        account = event.object
        complete = bool(
            account.get("charges_enabled")
            and account.get("payouts_enabled")
            and account.get("details_submitted")
        )
        matched = self.storage.update_users_by_stripe_account(
            account.get("id"), {"stripe_onboarding_complete": complete}
        )
        if not matched:
            logger.info("No user for processor account %s", account.get("id"))
            return False
        logger.info("Updated onboarding status for %s: %s", account.get("id"), complete)
        return True

    def _payment_succeeded(self, event: ProcessorEvent) -> bool:
        intent = event.object
        metadata = event.metadata
        lead_id = metadata.get("leadId")
        if metadata.get("type") != LEAD_PAYOUT_TYPE or not lead_id:
            return False

        lead = self.storage.update_lead(
            lead_id, {"payout_status": LeadPayoutStatus.PROCESSING.value}, PAYMENT_SUCCEEDED_FROM
        )
        if lead is None:
            logger.info("Lead %s not moved to processing", lead_id, extra=build_log_context(lead_id=lead_id))

        # failed attempts on the same intent do not count; a retry that succeeds gets its own row
        live = self.ledger.find_by_payment_id(intent["id"], LIVE_STATUSES)
        if live is not None:
            return lead is not None

        status = TransactionStatus.PENDING
        transfer_id = None
        current = self.storage.get_lead(lead_id) if lead is None else lead
        if current and current.get("payout_status") == LeadPayoutStatus.COMPLETED.value:
            # transfer.created arrived first, nothing will complete a pending row later
            logger.warning(
                "Payment %s arrived after lead %s completed; recording it as completed",
                intent["id"], lead_id, extra=build_log_context(lead_id=lead_id),
            )
            status = TransactionStatus.COMPLETED
            transfer_id = current.get("stripe_transfer_id")

        try:
            self.ledger.record(
                amount=to_major_units(intent.get("amount", 0)),
                status=status,
                to_account_id=metadata.get("providerId"),
                from_account_id=metadata.get("buyerId"),
                lead_id=lead_id,
                connection_id=metadata.get("connectionId"),
                stripe_payment_id=intent["id"],
                stripe_transfer_id=transfer_id,
                description=f"Lead payout for {lead_id}",
            )
        except DuplicateRecordError:
            # a concurrent delivery of the same event recorded it first
            return lead is not None
        return True

    def _payment_failed(self, event: ProcessorEvent) -> bool:
        intent = event.object
        metadata = event.metadata
        lead_id = metadata.get("leadId")
        if not lead_id:
            return False

        if self._failure_already_applied(lead_id, intent["id"], event.id):
            return False

        failure_message = (intent.get("last_payment_error") or {}).get("message") or "Payment failed"
        failure_metadata = {"failure_message": failure_message, "failure_event_id": event.id}
        lead = self.storage.update_lead(
            lead_id, {"payout_status": LeadPayoutStatus.FAILED.value}, PAYMENT_FAILED_FROM
        )

        pending = self.ledger.find_by_payment_id(intent["id"], [TransactionStatus.PENDING])
        if pending is not None:
            failed = self.ledger.fail(pending.id, metadata=failure_metadata)
            return lead is not None or failed is not None
        if self.ledger.find_by_payment_id(intent["id"]) is not None:
            return lead is not None

        self.ledger.record(
            amount=to_major_units(intent.get("amount", 0)),
            status=TransactionStatus.FAILED,
            to_account_id=metadata.get("providerId"),
            from_account_id=metadata.get("buyerId"),
            lead_id=lead_id,
            connection_id=metadata.get("connectionId"),
            stripe_payment_id=intent["id"],
            description=f"Lead payout for {lead_id}",
            metadata=failure_metadata,
        )
        return True

    def _failure_already_applied(self, lead_id: str, payment_id: str, event_id: Optional[str]) -> bool:
        if not event_id:
            return False
        return any(
            row.get("stripe_payment_id") == payment_id
            and (row.get("metadata") or {}).get("failure_event_id") == event_id
            for row in self.storage.list_transactions_for_lead(lead_id)
        )

    def _transfer_created(self, event: ProcessorEvent) -> bool:
        transfer = event.object
        lead_id = event.metadata.get("leadId")
        if not lead_id:
            return False

        lead = self.storage.update_lead(
            lead_id,
            {
                "payout_status": LeadPayoutStatus.COMPLETED.value,
                "stripe_transfer_id": transfer.get("id"),
                "payout_completed_at": datetime.now(timezone.utc),
            },
            TRANSFER_CREATED_FROM,
        )
        if lead is None:
            logger.info("Transfer %s: lead %s already completed or unknown", transfer.get("id"), lead_id)

        pending = self.ledger.latest_for_lead(lead_id, [TransactionStatus.PENDING])
        completed = None
        if pending is not None:
            completed = self.ledger.complete(pending.id, stripe_transfer_id=transfer.get("id"))
        logger.info("Transfer %s completed for lead %s", transfer.get("id"), lead_id)
        return lead is not None or completed is not None

    def _transfer_reversed(self, event: ProcessorEvent) -> bool:
        transfer = event.object
        lead_id = event.metadata.get("leadId")
        if not lead_id:
            return False

        lead = self.storage.update_lead(
            lead_id, {"payout_status": LeadPayoutStatus.FAILED.value}, TRANSFER_REVERSED_FROM
        )

        latest = self.ledger.latest_for_lead(lead_id, [TransactionStatus.PENDING, TransactionStatus.COMPLETED])
        reversed_txn = None
        if latest is not None:
            reversed_txn = self.ledger.fail(
                latest.id,
                reason="transfer_reversed",
                allow_reversal=True,
                metadata={"reversed_transfer_id": transfer.get("id")},
            )
        logger.info("Transfer %s reversed for lead %s", transfer.get("id"), lead_id)
        return lead is not None or reversed_txn is not None

    def _payout_observed(self, event: ProcessorEvent) -> bool:
        logger.info("Payout %s: %s", event.type.split(".")[-1], event.object.get("id"))
        return False
