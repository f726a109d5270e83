import time
from typing import Annotated, Literal, Optional, Union

import jwt
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .errors import AuthenticationError
from .settings import Settings

ALGO = "HS256"


class ProviderSession(BaseModel):
    role: Literal["provider"] = "provider"
    user_id: str
    email: Optional[str] = None


class BuyerSession(BaseModel):
    role: Literal["buyer"] = "buyer"
    user_id: str
    email: Optional[str] = None


Session = Annotated[Union[ProviderSession, BuyerSession], Field(discriminator="role")]

_session_adapter = TypeAdapter(Session)


def mint_session_token(settings: Settings, user_id: str, role: str, email: Optional[str] = None) -> str:
    now = int(time.time())
    payload = {
        "iss": settings.jwt_issuer,
        "sub": user_id,
        "role": role,
        "iat": now,
        "exp": now + settings.jwt_ttl_seconds,
    }
    if email:
        payload["email"] = email
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGO)


def verify_session_token(settings: Settings, token: str) -> Union[ProviderSession, BuyerSession]:
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[ALGO],
            issuer=settings.jwt_issuer,
            options={"require": ["exp", "iat", "iss", "sub"]},
        )
    except jwt.PyJWTError as e:
        raise AuthenticationError(f"Invalid session token: {e}")

    try:
        return _session_adapter.validate_python({
            "role": claims.get("role"),
            "user_id": claims["sub"],
            "email": claims.get("email"),
        })
    except ValidationError:
        raise AuthenticationError("Session role must be provider or buyer")


def session_from_header(settings: Settings, authorization: Optional[str]) -> Union[ProviderSession, BuyerSession]:
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationError("Authentication required")
    return verify_session_token(settings, authorization.split(" ", 1)[1])
