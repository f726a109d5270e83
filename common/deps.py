from functools import lru_cache
from typing import Optional, Union

from fastapi import Depends, Header

from .errors import ExternalDependencyError
from .security import BuyerSession, ProviderSession, session_from_header
from .settings import Settings, get_settings
from .storage import Storage, create_storage


@lru_cache
def _storage_for(database_url: str) -> Optional[Storage]:
    return create_storage(database_url)


def get_storage(settings: Settings = Depends(get_settings)) -> Optional[Storage]:
    return _storage_for(settings.database_url)


def require_storage(storage: Optional[Storage] = Depends(get_storage)) -> Storage:
    if storage is None:
        raise ExternalDependencyError("Database not configured")
    return storage


def get_session(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> Union[ProviderSession, BuyerSession]:
    return session_from_header(settings, authorization)
