"""Signed service identity for queue -> worker callbacks (HS256 JWT)."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt

from src.core.errors import ConfigurationError

_ALGORITHM = "HS256"


def issue_service_token(
    secret: str | None,
    *,
    principal: str,
    audience: str,
    ttl_s: int = 300,
    now: datetime | None = None,
) -> str:
    if not secret:
        raise ConfigurationError("TASK_SIGNING_SECRET is required to sign worker callbacks")
    issued = now or datetime.now(timezone.utc)
    claims = {
        "sub": principal,
        "aud": audience,
        "iat": issued,
        "exp": issued + timedelta(seconds=ttl_s),
    }
    return jwt.encode(claims, secret, algorithm=_ALGORITHM)


def verify_service_token(token: str, secret: str | None, *, principal: str, audience: str) -> bool:
    """True when ``token`` is unexpired, for ``audience``, and was issued to ``principal``."""
    if not secret or not token:
        return False
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[_ALGORITHM],
            audience=audience,
            options={"require": ["exp", "sub", "aud"]},
        )
    except jwt.PyJWTError:
        return False
    return claims.get("sub") == principal
