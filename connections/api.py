from fastapi import APIRouter, Depends, Query, status

from common.deps import get_session, require_storage
from common.storage import Storage

from .models import (
    ConnectionActionRequest,
    ConnectionDetailResponse,
    ConnectionListResponse,
    ConnectionResponse,
    CreateConnectionRequest,
)
from .service import ConnectionService, SessionType

router = APIRouter(prefix="/connections", tags=["Connections"])


def get_connection_service(storage: Storage = Depends(require_storage)) -> ConnectionService:
    return ConnectionService(storage)


@router.get("", response_model=ConnectionListResponse)
def list_connections(
    status_filter: str = Query("all", alias="status"),
    session: SessionType = Depends(get_session),
    service: ConnectionService = Depends(get_connection_service),
) -> ConnectionListResponse:
    return ConnectionListResponse(connections=service.list_connections(session, status_filter))


@router.post("", response_model=ConnectionResponse, status_code=status.HTTP_201_CREATED)
def create_connection(
    request: CreateConnectionRequest,
    session: SessionType = Depends(get_session),
    service: ConnectionService = Depends(get_connection_service),
) -> ConnectionResponse:
    return ConnectionResponse(connection=service.request_connection(session, request))


@router.get("/{connection_id}", response_model=ConnectionDetailResponse)
def get_connection(
    connection_id: str,
    session: SessionType = Depends(get_session),
    service: ConnectionService = Depends(get_connection_service),
) -> ConnectionDetailResponse:
    return ConnectionDetailResponse(connection=service.get_connection(session, connection_id))


@router.patch("/{connection_id}", response_model=ConnectionResponse)
def update_connection(
    connection_id: str,
    request: ConnectionActionRequest,
    session: SessionType = Depends(get_session),
    service: ConnectionService = Depends(get_connection_service),
) -> ConnectionResponse:
    connection = service.apply_action(session, connection_id, request.action, request)
    return ConnectionResponse(connection=connection)
