"""Password hashing and bearer token handling."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from .domain import User, utcnow

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class AuthenticationError(RuntimeError):
    """Raised for missing, invalid or expired credentials."""


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


@dataclass(slots=True)
class TokenClaims:
    user_id: str
    name: str
    cpf: str
    expires_at: datetime


class TokenIssuer:
    """Signs and checks HS256 tokens carrying the user's id, name and CPF."""

    def __init__(self, secret: str, ttl_hours: float = 8) -> None:
        self._secret = secret
        self._ttl = timedelta(hours=ttl_hours)

    def issue(self, user: User, *, now: Optional[datetime] = None) -> str:
        expires_at = (now or utcnow()) + self._ttl
        payload: Dict[str, Any] = {
            "sub": user.id,
            "name": user.name,
            "cpf": user.cpf,
            "exp": int(expires_at.timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def decode(self, token: str, *, now: Optional[datetime] = None) -> TokenClaims:
        """Verify the signature, then check expiry against ``now`` (the issuing clock)."""

        try:
            payload = jwt.decode(
                token, self._secret, algorithms=[ALGORITHM], options={"verify_exp": False}
            )
        except JWTError as exc:
            logger.warning("JWT verification failed: %s", exc)
            raise AuthenticationError("Invalid token") from exc
        user_id = payload.get("sub")
        if not user_id or not isinstance(payload.get("exp"), (int, float)):
            raise AuthenticationError("Invalid token")
        expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
        if expires_at <= (now or utcnow()):
            raise AuthenticationError("Token expired")
        return TokenClaims(
            user_id=str(user_id),
            name=payload.get("name", ""),
            cpf=payload.get("cpf", ""),
            expires_at=expires_at,
        )


__all__ = [
    "AuthenticationError",
    "TokenClaims",
    "TokenIssuer",
    "hash_password",
    "verify_password",
]
