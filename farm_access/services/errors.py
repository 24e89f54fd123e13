from __future__ import annotations


class AccessError(Exception):
    pass


class NotFoundError(AccessError):
    pass


class ConflictError(AccessError):
    pass


class ScopeError(AccessError):
    pass


class LimitExceededError(AccessError):
    pass


class AccountSuspendedError(AccessError):
    pass


class PermissionDeniedError(AccessError):
    pass


class ExpiredError(AccessError):
    pass
