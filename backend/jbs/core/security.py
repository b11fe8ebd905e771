"""Password hashing and JWT helpers.

Hashing uses passlib's bcrypt scheme (salted, constant-time compare).
Tokens are HS256 JWTs signed with ``JWT_SECRET_KEY``; decoding maps every
python-jose failure onto the token error taxonomy.
"""

import hashlib
import secrets
from datetime import datetime, timedelta
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from jbs.core.config import settings
from jbs.core.exceptions import TokenExpired, TokenMalformed

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)

TOKEN_TYPE_ACCESS = "access"


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def dummy_verify() -> None:
    """Spend the same time as a real comparison when no hash exists."""
    pwd_context.dummy_verify()


def create_access_token(
    subject: str,
    session_id: str,
    issued_at: datetime,
    expires_at: datetime,
    extra_claims: dict[str, Any] | None = None,
) -> str:
    claims: dict[str, Any] = {
        "sub": subject,
        "sid": session_id,
        "type": TOKEN_TYPE_ACCESS,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    if extra_claims:
        claims.update(extra_claims)
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    """
    Verify signature then expiry and return the claims.

    Raises:
        TokenMalformed: bad signature, bad encoding or missing claims
        TokenExpired: signature valid but ``exp`` has passed
    """
    if not token:
        raise TokenMalformed("empty token")

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError as e:
        raise TokenExpired(str(e)) from e
    except JWTError as e:
        raise TokenMalformed(str(e)) from e

    if payload.get("type") != TOKEN_TYPE_ACCESS or not payload.get("sub") or not payload.get("sid"):
        raise TokenMalformed("missing required claims")

    return payload


def read_session_id(token: str) -> str | None:
    """Session id of a correctly signed token, expired or not; None otherwise."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        return None
    return payload.get("sid")


def generate_reset_token() -> str:
    return secrets.token_urlsafe(32)


def hash_reset_token(token: str) -> str:
    """Reset tokens are stored as a SHA-256 digest, never in clear."""
    return hashlib.sha256(token.encode()).hexdigest()


def token_lifetime(remember_me: bool = False) -> timedelta:
    if remember_me:
        return timedelta(days=settings.JWT_REMEMBER_ME_EXPIRE_DAYS)
    return timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
