"""Request-scoped owner resolution."""

from uuid import UUID

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer

from statement_ledger.security import resolve_owner_id
from statement_ledger.utils import raise_unauthorized

# Tokens are issued by the identity service; this API only verifies them.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


async def get_current_user_id(token: str = Depends(oauth2_scheme)) -> UUID:
    """Every statement, job and connection is scoped to this owner."""
    owner_id = resolve_owner_id(token)
    if owner_id is None:
        raise_unauthorized("Could not validate credentials")
    return owner_id
