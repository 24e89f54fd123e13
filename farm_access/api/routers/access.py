from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from farm_access.api.deps import get_access_context, get_auth_service, require_perm
from farm_access.api.errors import HANDLED_ERRORS, raise_http_error
from farm_access.domain.access import AccessContext
from farm_access.domain.models import AccountStatusUpdate, PermissionCheckRead, RoleGrantRequest
from farm_access.domain.permissions import Permission, RoleType, ScopeType, catalog_snapshot
from farm_access.services.auth_service import AuthService

router = APIRouter()

Context = Annotated[AccessContext, Depends(get_access_context)]
Service = Annotated[AuthService, Depends(get_auth_service)]


def _forbidden(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def _ensure_can_manage(
    context: AccessContext,
    role_type: RoleType,
    scope_type: ScopeType,
    scope_id: str | None,
) -> None:
    if role_type == RoleType.SUPER_ADMIN and not context.is_super_admin():
        raise _forbidden("super admin roles are managed by super admins only")
    if scope_type == ScopeType.SYSTEM:
        if not context.is_super_admin():
            raise _forbidden("system scoped roles are managed by super admins only")
        return
    # A scoped check with no scope id would match any grant the caller holds.
    if not scope_id:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"{scope_type.value} scoped roles require a scope id",
        )
    permission = Permission.ORG_USERS if scope_type == ScopeType.ORGANIZATION else Permission.USERS_MANAGE
    if not context.has_permission(permission, scope_id):
        raise _forbidden(f"Missing permission: {permission.value}")


@router.get("/catalog")
def read_catalog(context: Context) -> dict[str, Any]:
    return catalog_snapshot()


@router.get("/check", response_model=PermissionCheckRead)
def check_permission(
    context: Context,
    permission: str,
    scope_id: str | None = None,
) -> PermissionCheckRead:
    return PermissionCheckRead(
        permission=permission,
        scope_id=scope_id,
        allowed=context.has_permission(permission, scope_id),
    )


@router.get("/users/{user_id}/roles")
def list_user_roles(
    user_id: str,
    context: Context,
    service: Service,
    include_inactive: bool = False,
) -> list[dict[str, Any]]:
    if user_id != context.user_id and not context.has_permission(Permission.SYSTEM_ADMIN):
        raise _forbidden("cannot read roles of another user")
    try:
        roles = service.authorization.list_roles(user_id, include_inactive=include_inactive)
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return [role.to_document() for role in roles]


@router.post("/roles", status_code=status.HTTP_201_CREATED)
def grant_role(payload: RoleGrantRequest, context: Context, service: Service) -> dict[str, Any]:
    _ensure_can_manage(context, payload.role_type, payload.scope_type, payload.scope_id)
    try:
        role = service.authorization.grant_role(
            payload.user_id,
            payload.role_type,
            payload.scope_type,
            payload.scope_id,
            granted_by=context.user_id,
            expires_at=payload.expires_at,
        )
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return role.to_document()


@router.delete("/roles/{role_id}")
def revoke_role(role_id: str, context: Context, service: Service) -> dict[str, Any]:
    role = service.authorization.get_role(role_id)
    if role is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="role not found")
    _ensure_can_manage(context, role.role_type, role.scope_type, role.scope_id)
    try:
        revoked = service.authorization.revoke_role(role_id, context.user_id)
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    if revoked is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="role not found")
    return revoked.to_document()


@router.post("/roles/repair")
def repair_role_permissions(
    context: Annotated[AccessContext, Depends(require_perm(Permission.SYSTEM_ADMIN))],
    service: Service,
) -> dict[str, int]:
    try:
        return service.authorization.repair_role_permissions(context.user_id)
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)


@router.post("/users/{user_id}/legacy-migration")
def migrate_legacy_access(
    user_id: str,
    context: Annotated[AccessContext, Depends(require_perm(Permission.SYSTEM_ADMIN))],
    service: Service,
) -> dict[str, Any]:
    try:
        report = service.profiles.migrate_legacy_access(user_id, context.user_id)
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return {
        "userId": user_id,
        "grantedRoleIds": report.granted_role_ids,
        "skippedRoleIds": report.skipped_role_ids,
        "issues": report.issues,
    }


@router.patch("/users/{user_id}/status")
def set_account_status(
    user_id: str,
    payload: AccountStatusUpdate,
    context: Annotated[AccessContext, Depends(require_perm(Permission.SYSTEM_ADMIN))],
    service: Service,
) -> dict[str, Any]:
    try:
        user = service.profiles.set_account_status(user_id, payload.account_status, context.user_id)
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return user.to_document()


@router.get("/activity")
def list_activity(
    context: Annotated[AccessContext, Depends(require_perm(Permission.SYSTEM_AUDIT))],
    service: Service,
    actor_id: str | None = None,
    action: str | None = None,
    resource_id: str | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
) -> list[dict[str, Any]]:
    try:
        entries = service.recorder.list_activity(
            actor_id=actor_id,
            action=action,
            resource_id=resource_id,
            limit=limit,
        )
    except HANDLED_ERRORS as exc:
        raise_http_error(exc)
    return [entry.to_document() for entry in entries]
