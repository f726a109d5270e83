import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Union

from common.errors import (
    AuthorizationError,
    DuplicateRecordError,
    InvalidInputError,
    NotFoundError,
    StateConflictError,
)
from common.logging_config import build_log_context
from common.security import BuyerSession, ProviderSession
from common.storage import Storage, new_id

from .models import (
    DEFAULT_RATE_PER_LEAD,
    DEFAULT_TERMINATION_NOTICE_DAYS,
    MAX_RATE_PER_LEAD,
    MIN_RATE_PER_LEAD,
    TRANSITIONS,
    Connection,
    ConnectionAction,
    ConnectionStatus,
    ConnectionTerms,
    ConnectionView,
    CreateConnectionRequest,
    PartyRole,
    PaymentTiming,
    Transition,
)

logger = logging.getLogger(__name__)

SessionType = Union[ProviderSession, BuyerSession]

LIST_FILTERS = ("all", "pending", "active")

# caps may be cleared on an active connection, the other terms may not
NULLABLE_TERMS = ("weekly_lead_cap", "monthly_lead_cap")


def validate_lead_rate(rate: Optional[Decimal]) -> None:
    if rate is None:
        return
    if rate < MIN_RATE_PER_LEAD:
        raise InvalidInputError(f"Minimum rate is ${MIN_RATE_PER_LEAD} per lead")
    if rate > MAX_RATE_PER_LEAD:
        raise InvalidInputError(
            f"Maximum rate is ${MAX_RATE_PER_LEAD} per lead to ensure fair market competition"
        )


class ConnectionService:
    """
    Connection lifecycle between a lead provider and a buyer.

    Every mutation goes through ``apply_action`` and the ``TRANSITIONS``
    table. The write is a compare-and-set on the expected source status, so
    of two racing requests only the one whose precondition still holds wins.
    """

    def __init__(self, storage: Storage):
        self.storage = storage

    def request_connection(self, session: SessionType, request: CreateConnectionRequest) -> Connection:
        if session.role == PartyRole.PROVIDER.value:
            return self._provider_request(session, request)
        return self._buyer_invitation(session, request)

    def _provider_request(self, session: SessionType, request: CreateConnectionRequest) -> Connection:
        if not request.buyer_id:
            raise InvalidInputError("buyerId is required")

        buyer = self.storage.get_user(request.buyer_id)
        if not buyer or buyer["role"] != PartyRole.BUYER.value:
            raise NotFoundError("Business not found")

        return self._create(
            provider_id=session.user_id,
            buyer_id=request.buyer_id,
            initiator=PartyRole.PROVIDER,
            status=ConnectionStatus.PENDING_BUYER_REVIEW,
            message=request.message,
            duplicate_message="Connection already exists with this business",
        )

    def _buyer_invitation(self, session: SessionType, request: CreateConnectionRequest) -> Connection:
        if not request.provider_email:
            raise InvalidInputError("providerEmail is required")

        provider = self.storage.get_user_by_email(request.provider_email)
        if not provider or provider["role"] != PartyRole.PROVIDER.value:
            raise NotFoundError("Provider not found")

        terms = request.terms or ConnectionTerms()
        validate_lead_rate(terms.rate_per_lead)

        return self._create(
            provider_id=provider["id"],
            buyer_id=session.user_id,
            initiator=PartyRole.BUYER,
            status=ConnectionStatus.PENDING_PROVIDER_ACCEPT,
            message=request.message,
            duplicate_message="Connection already exists with this provider",
            rate_per_lead=terms.rate_per_lead or DEFAULT_RATE_PER_LEAD,
            payment_timing=(terms.payment_timing or PaymentTiming.PER_LEAD).value,
            weekly_lead_cap=terms.weekly_lead_cap,
            monthly_lead_cap=terms.monthly_lead_cap,
            termination_notice_days=terms.termination_notice_days or DEFAULT_TERMINATION_NOTICE_DAYS,
        )

    def _create(
        self,
        provider_id: str,
        buyer_id: str,
        initiator: PartyRole,
        status: ConnectionStatus,
        message: Optional[str],
        duplicate_message: str,
        **terms,
    ) -> Connection:
        if self.storage.get_connection_by_parties(provider_id, buyer_id):
            raise InvalidInputError(duplicate_message)

        data = {
            "id": new_id(),
            "provider_id": provider_id,
            "buyer_id": buyer_id,
            "status": status.value,
            "initiator": initiator.value,
            "rate_per_lead": None,
            "payment_timing": None,
            "weekly_lead_cap": None,
            "monthly_lead_cap": None,
            "termination_notice_days": DEFAULT_TERMINATION_NOTICE_DAYS,
            "message": message,
            "created_at": datetime.now(timezone.utc),
            "accepted_at": None,
            "terms_updated_at": None,
        }
        data.update(terms)

        try:
            record = self.storage.insert_connection(data)
        except DuplicateRecordError:
            raise InvalidInputError(duplicate_message)

        logger.info(
            "Connection %s created by %s (%s)", record["id"], initiator.value, status.value,
            extra=build_log_context(connection_id=record["id"], role=initiator.value),
        )
        return Connection(**record)

    def get_connection(self, session: SessionType, connection_id: str) -> Connection:
        record = self.storage.get_connection(connection_id)
        if not record:
            raise NotFoundError("Connection not found")

        connection = Connection(**record)
        if connection.role_of(session.user_id) is None:
            raise AuthorizationError("Not authorized for this connection")
        return connection

    def list_connections(self, session: SessionType, status_filter: str = "all") -> list[ConnectionView]:
        if status_filter not in LIST_FILTERS:
            raise InvalidInputError(f"Unknown status filter: {status_filter}")

        statuses = None
        if status_filter == "pending":
            statuses = [
                ConnectionStatus.PENDING_BUYER_REVIEW.value if session.role == PartyRole.BUYER.value
                else ConnectionStatus.PENDING_PROVIDER_ACCEPT.value
            ]
        elif status_filter == "active":
            statuses = [ConnectionStatus.ACTIVE.value]

        records = self.storage.list_connections(session.user_id, session.role, statuses)
        return [self._enrich(record) for record in records]

    def _enrich(self, record: dict) -> ConnectionView:
        provider = self.storage.get_user(record["provider_id"]) or {}
        buyer = self.storage.get_user(record["buyer_id"]) or {}
        return ConnectionView(
            **record,
            provider_name=provider.get("display_name") or provider.get("email") or "Unknown",
            provider_email=provider.get("email") or "",
            buyer_name=buyer.get("business_name") or buyer.get("email") or "Unknown",
            buyer_email=buyer.get("email") or "",
        )

    def apply_action(
        self,
        session: SessionType,
        connection_id: str,
        action: str,
        terms: Optional[ConnectionTerms] = None,
    ) -> Connection:
        try:
            transition = TRANSITIONS[ConnectionAction(action)]
        except ValueError:
            raise InvalidInputError(f"Unknown action: {action}")

        connection = self.get_connection(session, connection_id)
        role = connection.role_of(session.user_id)
        if transition.actor is not None and role != transition.actor:
            raise AuthorizationError(f"Only the {transition.actor.value} can {transition.action.value}")

        if connection.status != transition.source:
            raise StateConflictError(action, transition.source.value, connection.status.value)

        now = datetime.now(timezone.utc)
        changes = {"status": transition.target.value}
        changes.update(self._field_changes(transition, connection, terms or ConnectionTerms(), now))

        record = self.storage.update_connection(connection_id, transition.source.value, changes)
        if record is None:
            current = self.storage.get_connection(connection_id)
            actual = current["status"] if current else None
            logger.info(
                "Lost race applying %s to connection %s (now %s)", action, connection_id, actual,
                extra=build_log_context(connection_id=connection_id, user_id=session.user_id),
            )
            raise StateConflictError(action, transition.source.value, actual)

        logger.info(
            "Connection %s: %s by %s, %s -> %s", connection_id, action, role.value,
            transition.source.value, transition.target.value,
            extra=build_log_context(connection_id=connection_id, user_id=session.user_id, role=role.value),
        )
        return Connection(**record)

    def _field_changes(
        self, transition: Transition, connection: Connection, terms: ConnectionTerms, now: datetime
    ) -> dict:
        if transition.action == ConnectionAction.SET_TERMS:
            validate_lead_rate(terms.rate_per_lead)
            timing = terms.payment_timing or connection.payment_timing or PaymentTiming.PER_LEAD
            return {
                "rate_per_lead": terms.rate_per_lead or connection.rate_per_lead or DEFAULT_RATE_PER_LEAD,
                "payment_timing": timing.value,
                "weekly_lead_cap": terms.weekly_lead_cap,
                "monthly_lead_cap": terms.monthly_lead_cap,
                "termination_notice_days": terms.termination_notice_days or DEFAULT_TERMINATION_NOTICE_DAYS,
            }

        if transition.action == ConnectionAction.UPDATE_TERMS:
            supplied = {
                k: v for k, v in terms.model_dump(exclude_unset=True, exclude={"action"}).items()
                if v is not None or k in NULLABLE_TERMS
            }
            if not supplied:
                raise InvalidInputError("No terms supplied to update")
            validate_lead_rate(terms.rate_per_lead)
            if "payment_timing" in supplied and supplied["payment_timing"] is not None:
                supplied["payment_timing"] = supplied["payment_timing"].value
            supplied["terms_updated_at"] = now
            return supplied

        if transition.action == ConnectionAction.ACCEPT:
            return {"accepted_at": now}

        return {}

    def require_active(self, provider_id: str, buyer_id: str) -> Connection:
        record = self.storage.get_connection_by_parties(provider_id, buyer_id)
        if not record:
            raise NotFoundError("No connection with this provider")

        connection = Connection(**record)
        if not connection.can_transact():
            raise StateConflictError("pay for leads", ConnectionStatus.ACTIVE.value, connection.status.value)
        return connection
