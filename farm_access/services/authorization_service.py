from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from farm_access.domain.access import AccessContext
from farm_access.domain.migration import RoleGrantPlan, build_role, role_id_for
from farm_access.domain.models import UserRole, now_utc
from farm_access.domain.permissions import RoleType, ScopeType, permissions_for, scope_for
from farm_access.infra.audit import ActivityRecorder
from farm_access.infra.store import DocumentStore
from farm_access.infra.timeouts import timed
from farm_access.services.errors import ScopeError
from farm_access.services.role_store import RoleStore

logger = logging.getLogger(__name__)


def validate_scope(scope_type: ScopeType | str, scope_id: str | None) -> tuple[ScopeType, str | None]:
    resolved = ScopeType(scope_type)
    normalized = scope_id.strip() if isinstance(scope_id, str) else None
    if resolved == ScopeType.SYSTEM:
        if normalized:
            raise ScopeError("system scoped roles must not carry a scope id")
        return resolved, None
    if not normalized:
        raise ScopeError(f"{resolved.value} scoped roles require a scope id")
    return resolved, normalized


class AuthorizationService:
    def __init__(
        self,
        store: DocumentStore,
        *,
        recorder: ActivityRecorder | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._store = timed(store, timeout_seconds)
        self._roles = RoleStore(self._store)
        self._recorder = recorder or ActivityRecorder(store, timeout_seconds=timeout_seconds)

    def _with_catalog_fallback(self, role: UserRole) -> UserRole:
        if role.permissions:
            return role
        logger.warning("role %s has no stored permissions; using catalog for %s", role.id, role.role_type)
        return role.model_copy(update={"permissions": [item.value for item in permissions_for(role.role_type)]})

    def load_access_context(self, user_id: str, *, at: datetime | None = None) -> AccessContext:
        """Load the user's active grants. Any store failure yields an empty, deny-all context."""
        if not user_id:
            return AccessContext(user_id="", at=at)
        try:
            roles = self._roles.list_for_user(user_id)
        except Exception:
            logger.warning("role load failed for %s; denying by default", user_id, exc_info=True)
            return AccessContext(user_id=user_id, at=at)
        return AccessContext.from_roles(user_id, [self._with_catalog_fallback(role) for role in roles], at=at)

    def list_roles(self, user_id: str, *, include_inactive: bool = False) -> list[UserRole]:
        return self._roles.list_for_user(user_id, include_inactive=include_inactive)

    def get_role(self, role_id: str) -> UserRole | None:
        return self._roles.get(role_id)

    def list_scope_roles(self, scope_id: str) -> list[UserRole]:
        """Active grants held by anyone on one organization or farm."""
        return self._roles.list_for_scope(scope_id)

    def grant_role(
        self,
        user_id: str,
        role_type: RoleType | str,
        scope_type: ScopeType | str,
        scope_id: str | None = None,
        *,
        granted_by: str | None = None,
        expires_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> UserRole:
        """Grant (or re-grant) a role. The id is derived from the grant tuple,
        so repeating a grant overwrites the same record instead of adding one."""
        if not user_id:
            raise ScopeError("user id is required")
        resolved_type = RoleType(role_type)
        resolved_scope, resolved_scope_id = validate_scope(scope_type, scope_id)
        if resolved_scope != scope_for(resolved_type):
            raise ScopeError(
                f"{resolved_type.value} roles are granted at {scope_for(resolved_type).value} scope,"
                f" not {resolved_scope.value}"
            )
        plan = RoleGrantPlan(
            user_id=user_id,
            role_type=resolved_type,
            scope_type=resolved_scope,
            scope_id=resolved_scope_id,
        )
        role = build_role(plan, granted_by or user_id, expires_at=expires_at, metadata=metadata)
        self._roles.save(role)
        self._recorder.record(
            granted_by or user_id,
            "role:granted",
            "user_role",
            role.id,
            {
                "targetUserId": user_id,
                "roleType": resolved_type.value,
                "scopeType": resolved_scope.value,
                "scopeId": resolved_scope_id,
            },
        )
        return role

    def revoke_role(self, role_id: str, revoked_by: str) -> UserRole | None:
        snapshot = self._roles.get_raw(role_id)
        if snapshot is None:
            logger.warning("revoke requested for unknown role %s by %s", role_id, revoked_by)
            return None
        role = UserRole.from_document(snapshot).model_copy(
            update={"is_active": False, "revoked_at": now_utc(), "revoked_by": revoked_by}
        )
        self._roles.save(role)
        self._recorder.record(revoked_by, "role:revoked", "user_role", role_id, {"roleData": snapshot})
        return role

    def revoke_grant(
        self,
        user_id: str,
        role_type: RoleType | str,
        scope_type: ScopeType | str,
        scope_id: str | None,
        revoked_by: str,
    ) -> UserRole | None:
        resolved_scope, resolved_scope_id = validate_scope(scope_type, scope_id)
        return self.revoke_role(role_id_for(user_id, role_type, resolved_scope, resolved_scope_id), revoked_by)

    def repair_role_permissions(self, actor_id: str) -> dict[str, int]:
        """Back-fill catalog permissions onto stored roles whose list is empty."""
        checked = 0
        unknown = 0
        repaired: list[UserRole] = []
        for raw in self._roles.list_raw():
            checked += 1
            if raw.get("permissions"):
                continue
            try:
                role_type = RoleType(raw.get("roleType"))
            except ValueError:
                unknown += 1
                logger.warning("role %s has unknown type %r", raw.get("id"), raw.get("roleType"))
                continue
            fixed = UserRole.from_document(
                {**raw, "permissions": [item.value for item in permissions_for(role_type)]}
            )
            repaired.append(fixed)
        if repaired:
            self._roles.save_many(repaired)
        summary = {"checked": checked, "repaired": len(repaired), "unknown": unknown}
        self._recorder.record(actor_id, "role:permissions_repaired", "user_role", "", summary)
        return summary
