from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext

from pocket_ledger.core.config import settings

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

_ALGORITHM = "HS256"
_TOKEN_TYPE = "access"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def create_access_token(*, subject: str, expires_minutes: int | None = None) -> str:
    now = datetime.now(UTC)
    ttl = timedelta(minutes=expires_minutes or settings.access_token_exp_minutes)
    claims: dict[str, Any] = {"sub": subject, "typ": _TOKEN_TYPE, "iat": now, "exp": now + ttl}
    return jwt.encode(claims, settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> str | None:
    """Return the token subject, or None for an expired, forged or non-access token."""
    try:
        claims = jwt.decode(token, settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if claims.get("typ") != _TOKEN_TYPE:
        return None
    subject = claims.get("sub")
    return subject if isinstance(subject, str) and subject else None
