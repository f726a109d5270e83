from typing import Optional, Union

from fastapi import APIRouter, Depends

from common.deps import get_session, get_storage
from common.security import BuyerSession, ProviderSession
from common.settings import Settings, get_settings
from common.storage import Storage

from .models import BalanceResponse, TransactionListResponse
from .service import BalanceCalculator, TransactionLedger

router = APIRouter(prefix="/transactions", tags=["Transactions"])

SessionType = Union[ProviderSession, BuyerSession]


@router.get("", response_model=TransactionListResponse)
def list_transactions(
    session: SessionType = Depends(get_session),
    storage: Optional[Storage] = Depends(get_storage),
    settings: Settings = Depends(get_settings),
) -> TransactionListResponse:
    if storage is None:
        return TransactionListResponse(transactions=[], message="Database not configured")
    ledger = TransactionLedger(storage)
    return TransactionListResponse(
        transactions=ledger.list_for_account(session.user_id, settings.transaction_list_limit)
    )


@router.get("/balance", response_model=BalanceResponse)
def get_balance(
    session: SessionType = Depends(get_session),
    storage: Optional[Storage] = Depends(get_storage),
    settings: Settings = Depends(get_settings),
) -> BalanceResponse:
    calculator = BalanceCalculator(storage, scan_limit=settings.balance_scan_limit)
    balance = calculator.calculate(session.user_id, session.role)
    message = None if storage is not None else "Database not configured"
    return BalanceResponse(balance=balance, message=message)
