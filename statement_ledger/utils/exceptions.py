"""HTTP error helpers shared by the routers.

Each helper raises, so handlers can use them as the last statement of a branch.
Pass ``cause`` to keep the service exception chained for the 500-level logs.
"""

from typing import Any, NoReturn

from fastapi import HTTPException, status


def _abort(
    status_code: int,
    detail: str | dict[str, Any],
    cause: Exception | None,
    headers: dict[str, str] | None = None,
) -> NoReturn:
    raise HTTPException(status_code=status_code, detail=detail, headers=headers) from cause


def raise_not_found(resource_name: str, *, cause: Exception | None = None) -> NoReturn:
    _abort(status.HTTP_404_NOT_FOUND, f"{resource_name} not found", cause)


def raise_bad_request(detail: str, *, cause: Exception | None = None) -> NoReturn:
    _abort(status.HTTP_400_BAD_REQUEST, detail, cause)


def raise_unauthorized(detail: str, *, cause: Exception | None = None) -> NoReturn:
    _abort(status.HTTP_401_UNAUTHORIZED, detail, cause, headers={"WWW-Authenticate": "Bearer"})


def raise_conflict(detail: str | dict[str, Any], *, cause: Exception | None = None) -> NoReturn:
    """409; a dict detail lets duplicates point at the statement that already exists."""
    _abort(status.HTTP_409_CONFLICT, detail, cause)


def raise_too_large(detail: str, *, cause: Exception | None = None) -> NoReturn:
    _abort(413, detail, cause)


def raise_service_unavailable(detail: str, *, cause: Exception | None = None) -> NoReturn:
    """503 for storage outages; the upload can be retried unchanged."""
    _abort(status.HTTP_503_SERVICE_UNAVAILABLE, detail, cause)
