from datetime import timedelta
from uuid import uuid4

import jwt

from statement_ledger.config import settings
from statement_ledger.security import create_access_token, resolve_owner_id


def test_token_round_trips_owner():
    owner_id = uuid4()
    assert resolve_owner_id(create_access_token(owner_id)) == owner_id


def test_expired_token_is_rejected():
    token = create_access_token(uuid4(), expires_delta=timedelta(seconds=-5))
    assert resolve_owner_id(token) is None


def test_non_uuid_subject_is_rejected():
    token = jwt.encode(
        {"sub": "alice", "exp": 4102444800}, settings.secret_key, algorithm=settings.jwt_algorithm
    )
    assert resolve_owner_id(token) is None


def test_token_without_expiry_is_rejected():
    token = jwt.encode({"sub": str(uuid4())}, settings.secret_key, algorithm=settings.jwt_algorithm)
    assert resolve_owner_id(token) is None
