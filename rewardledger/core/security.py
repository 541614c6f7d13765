"""Access and refresh tokens: signed bearer tokens carrying a user id."""

import hashlib
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from rewardledger.core.config import get_settings

ACCESS_SALT = "rewardledger-access"
REFRESH_SALT = "rewardledger-refresh"


def _serializer(secret_key: str, salt: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(
        secret_key,
        salt=salt,
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def get_token_serializer() -> URLSafeTimedSerializer:
    return _serializer(get_settings().secret_key, ACCESS_SALT)


def get_refresh_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return _serializer(settings.refresh_secret_key or settings.secret_key, REFRESH_SALT)


def _load_user_id(serializer: URLSafeTimedSerializer, token: str | None, max_age: int) -> str | None:
    if not token:
        return None
    try:
        payload = serializer.loads(token, max_age=max_age)
    except (BadSignature, SignatureExpired):
        return None
    if not isinstance(payload, dict):
        return None
    user_id = payload.get("user_id")
    return str(user_id) if user_id else None


def issue_token(user_id: str) -> str:
    return get_token_serializer().dumps({"user_id": str(user_id)})


def issue_tokens(user_id: str) -> dict[str, Any]:
    """Access token (short-lived) plus refresh token (long-lived, separate key and salt)."""
    settings = get_settings()
    return {
        "access_token": issue_token(user_id),
        "refresh_token": get_refresh_serializer().dumps({"user_id": str(user_id)}),
        "token_type": "bearer",
        "expires_in": settings.access_token_max_age,
    }


def verify(token: str | None, max_age: int | None = None) -> str | None:
    """Return the user id carried by a valid access token, None when invalid or expired."""
    if max_age is None:
        max_age = get_settings().access_token_max_age
    return _load_user_id(get_token_serializer(), token, max_age)


def verify_refresh(token: str | None, max_age: int | None = None) -> str | None:
    if max_age is None:
        max_age = get_settings().refresh_token_max_age
    return _load_user_id(get_refresh_serializer(), token, max_age)


def refresh_tokens(token: str | None, max_age: int | None = None) -> dict[str, Any] | None:
    """Exchange a valid refresh token for a new token pair; None when invalid or expired."""
    user_id = verify_refresh(token, max_age=max_age)
    if user_id is None:
        return None
    return issue_tokens(user_id)


def bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an `Authorization: Bearer <token>` header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
