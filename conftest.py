import pytest
from fastapi.testclient import TestClient

from common.db import SqlStorage
from common.deps import get_storage
from common.security import BuyerSession, ProviderSession, mint_session_token
from common.settings import Settings, get_settings
from common.storage import InMemoryStorage


@pytest.fixture(params=["memory", "sqlite"])
def storage(request):
    """Every storage-backed test runs against both backends."""
    if request.param == "memory":
        return InMemoryStorage()
    return SqlStorage("sqlite://")


@pytest.fixture
def provider(storage):
    return storage.add_user({
        "email": "provider@example.com",
        "role": "provider",
        "display_name": "Pat Provider",
    })


@pytest.fixture
def buyer(storage):
    return storage.add_user({
        "email": "buyer@example.com",
        "role": "buyer",
        "business_name": "Acme Insurance",
    })


@pytest.fixture
def outsider(storage):
    return storage.add_user({"email": "other@example.com", "role": "buyer", "business_name": "Other Co"})


@pytest.fixture
def provider_session(provider):
    return ProviderSession(user_id=provider["id"], email=provider["email"])


@pytest.fixture
def buyer_session(buyer):
    return BuyerSession(user_id=buyer["id"], email=buyer["email"])


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        database_url="memory://",
        jwt_secret="test-secret-for-session-tokens-0123456789",
        stripe_secret_key=None,
        stripe_webhook_secret=None,
    )


@pytest.fixture
def make_client(settings):
    """Build a TestClient bound to the given storage (``None`` for no database)."""
    from api.index import create_app

    def _make(storage, app_settings=None):
        app_settings = app_settings or settings
        app = create_app(app_settings)
        app.dependency_overrides[get_settings] = lambda: app_settings
        app.dependency_overrides[get_storage] = lambda: storage
        return TestClient(app)

    return _make


@pytest.fixture
def client(make_client, storage):
    return make_client(storage)


@pytest.fixture
def auth_headers(settings):
    def _headers(user):
        token = mint_session_token(settings, user["id"], user["role"], user.get("email"))
        return {"Authorization": f"Bearer {token}"}

    return _headers
