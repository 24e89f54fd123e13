from __future__ import annotations

from collections.abc import Callable
from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from farm_access.adapters.base import IdentityProvider
from farm_access.adapters.sql_identity import SqlIdentityProvider
from farm_access.domain.access import AccessContext
from farm_access.domain.permissions import Permission
from farm_access.infra.auth import decode_access_token
from farm_access.infra.store import DocumentStore, SqlDocumentStore
from farm_access.services.auth_service import AuthService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/signin")


def get_store() -> DocumentStore:
    return SqlDocumentStore()


def get_identity_provider() -> IdentityProvider:
    return SqlIdentityProvider()


def get_auth_service(
    store: Annotated[DocumentStore, Depends(get_store)],
    identity: Annotated[IdentityProvider, Depends(get_identity_provider)],
) -> AuthService:
    return AuthService(store, identity)


def get_current_claims(
    request: Request,
    token: str = Depends(oauth2_scheme),
) -> dict[str, Any]:
    try:
        claims = decode_access_token(token)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc
    request.state.claims = claims
    return claims


def get_access_context(
    request: Request,
    claims: Annotated[dict[str, Any], Depends(get_current_claims)],
    service: Annotated[AuthService, Depends(get_auth_service)],
) -> AccessContext:
    context = service.authorization.load_access_context(str(claims["sub"]))
    request.state.access_context = context
    return context


def require_perm(
    permission: Permission,
    scope_param: str | None = None,
) -> Callable[..., AccessContext]:
    """Dependency gating a route on ``permission``, scoped by a path parameter when given."""

    def _checker(
        request: Request,
        context: Annotated[AccessContext, Depends(get_access_context)],
    ) -> AccessContext:
        scope_id = request.path_params.get(scope_param) if scope_param else None
        if not context.has_permission(permission, scope_id):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission: {permission.value}",
            )
        return context

    return _checker
