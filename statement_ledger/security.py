"""Owner token encoding and verification."""

from datetime import UTC, datetime, timedelta
from uuid import UUID

import jwt

from statement_ledger.config import settings
from statement_ledger.logger import get_logger

logger = get_logger(__name__)


def create_access_token(owner_id: UUID, expires_delta: timedelta | None = None) -> str:
    """Issue a signed token whose subject is the owner id.

    Production tokens come from the identity service; this is used by tests and local tooling.
    """
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    claims = {"sub": str(owner_id), "exp": datetime.now(UTC) + lifetime}
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


def resolve_owner_id(token: str) -> UUID | None:
    """Return the owner id a token was issued for, or None when it cannot be trusted."""
    try:
        claims = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        logger.debug("Owner token expired")
        return None
    except jwt.PyJWTError as exc:
        logger.warning("Owner token rejected", error=str(exc), error_type=type(exc).__name__)
        return None

    try:
        return UUID(str(claims["sub"]))
    except ValueError:
        logger.warning("Owner token subject is not a UUID")
        return None
