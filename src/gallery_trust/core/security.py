"""Bearer token helpers shared with the identity service.

Tokens are issued by the identity collaborator; this service only needs to
read the subject back out of them. ``create_access_token`` exists so tooling
and tests can mint tokens signed with the same secret.
"""
from __future__ import annotations

from datetime import timedelta

from jose import JWTError, jwt

from gallery_trust.core.settings import settings
from gallery_trust.db.time import utcnow


def create_access_token(subject: str, extra_claims: dict[str, str] | None = None) -> str:
    """Create a JWT access token whose ``sub`` claim is the user id."""
    to_encode: dict[str, object] = {"sub": subject}
    if extra_claims:
        to_encode.update(extra_claims)
    to_encode["exp"] = utcnow() + timedelta(minutes=settings.access_token_expire_minutes)
    encoded_jwt: str = jwt.encode(
        to_encode,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return encoded_jwt


def decode_subject(token: str) -> str | None:
    """Return the token subject, or None when the token is invalid."""
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        return None
    subject = payload.get("sub")
    return subject if isinstance(subject, str) else None
