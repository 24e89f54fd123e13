from __future__ import annotations

from typing import NoReturn

from fastapi import HTTPException, status

from farm_access.adapters.base import (
    EmailAlreadyInUseError,
    InvalidCredentialsError,
    UnknownIdentityError,
)
from farm_access.infra.timeouts import ExternalTimeoutError
from farm_access.services.errors import (
    AccountSuspendedError,
    ConflictError,
    ExpiredError,
    LimitExceededError,
    NotFoundError,
    PermissionDeniedError,
    ScopeError,
)

_STATUS_BY_ERROR: tuple[tuple[type[Exception], int], ...] = (
    (InvalidCredentialsError, status.HTTP_401_UNAUTHORIZED),
    (EmailAlreadyInUseError, status.HTTP_409_CONFLICT),
    (UnknownIdentityError, status.HTTP_404_NOT_FOUND),
    (AccountSuspendedError, status.HTTP_403_FORBIDDEN),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (LimitExceededError, status.HTTP_409_CONFLICT),
    (ExpiredError, status.HTTP_410_GONE),
    (ScopeError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ExternalTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
)

HANDLED_ERRORS: tuple[type[Exception], ...] = tuple(error for error, _ in _STATUS_BY_ERROR)


def raise_http_error(exc: Exception) -> NoReturn:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            raise HTTPException(status_code=status_code, detail=str(exc)) from exc
    raise exc
