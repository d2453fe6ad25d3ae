"""Signed access tokens for API callers.

``/auth/login`` issues an HS256 JWT whose ``sub`` is the user id; every other
route reads it back from ``Authorization: Bearer``. The token only names the
user, the role is reloaded from the database on each request.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from library_app.config import settings
from library_app.errors import Unauthorized
from library_app.models import User

logger = logging.getLogger(__name__)


def create_access_token(user: User, expires_minutes: Optional[int] = None) -> str:
    minutes = settings.jwt_expiration_minutes if expires_minutes is None else expires_minutes
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=minutes)).timestamp()),
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def verify_access_token(token: str) -> Dict[str, Any]:
    """Decode ``token`` or raise ``Unauthorized``."""
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise Unauthorized("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        logger.warning(f"Rejected access token: {exc}")
        raise Unauthorized("Invalid token") from exc
    if not str(claims["sub"]).isdigit():
        raise Unauthorized("Invalid token")
    return claims
