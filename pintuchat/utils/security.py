from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from pintuchat.config import get_settings
from pintuchat.schemas.user import TokenPayload


def create_access_token(subject: str, expires_delta: Optional[timedelta] = None) -> str:
    settings = get_settings()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=1))
    payload: Dict[str, Any] = {"sub": subject, "exp": expire}
    return jwt.encode(payload, settings.jwt_secret_key.get_secret_value(), algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> TokenPayload:
    """Raises ``jwt.PyJWTError`` for a bad signature, an expired or a malformed token."""
    settings = get_settings()
    payload = jwt.decode(
        token,
        settings.jwt_secret_key.get_secret_value(),
        algorithms=[settings.jwt_algorithm],
        options={"require": ["sub", "exp"]},
    )
    return TokenPayload(sub=payload["sub"], exp=payload["exp"])
