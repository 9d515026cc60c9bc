"""
Bearer-token authentication for the ledger endpoints.

Tokens are HS256 JWTs whose ``sub`` claim is the user id. Every failure,
including a missing Authorization header, is reported as 401.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .config import settings
from .database import get_db
from .models import User

# auto_error=False so a missing header is a 401 rather than FastAPI's 403
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Sign a token carrying ``data``.

    Args:
        data: Claims to embed, usually ``{"sub": str(user_id)}``
        expires_delta: Lifetime; the configured default if omitted
    """
    issued = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    claims = {**data, "iat": issued, "exp": issued + lifetime}
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        raise _unauthorized("Could not validate credentials")


def user_id_from_token(token: str) -> int:
    """Return the user id in the token's ``sub`` claim."""
    subject = decode_token(token).get("sub")
    if subject is None:
        raise _unauthorized("Could not validate credentials")
    try:
        return int(subject)
    except (ValueError, TypeError):
        raise _unauthorized("Invalid token format")


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None:
        raise _unauthorized("Unauthorized")

    user = db.get(User, user_id_from_token(credentials.credentials))
    if user is None:
        raise _unauthorized("User not found")
    return user
