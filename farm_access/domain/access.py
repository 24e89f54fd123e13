from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from farm_access.domain.models import UserRole, now_utc
from farm_access.domain.permissions import Permission, RoleType, ScopeType


def role_is_live(role: UserRole, at: datetime) -> bool:
    if not role.is_active:
        return False
    return role.expires_at is None or role.expires_at > at


def scope_matches(role: UserRole, scope_id: str | None) -> bool:
    # Roles without a scope id (system scope) apply everywhere.
    if scope_id is None or role.scope_id is None:
        return True
    return role.scope_id == scope_id


def is_system_admin_role(role: UserRole) -> bool:
    return role.role_type == RoleType.SUPER_ADMIN and role.scope_type == ScopeType.SYSTEM


@dataclass(frozen=True)
class AccessContext:
    """The active role grants of one user, evaluated for a single request.

    Every check is fail-closed: an empty role set or a missing match yields
    ``False``. ``at`` pins the evaluation clock; when unset each check uses
    the current time.
    """

    user_id: str
    roles: tuple[UserRole, ...] = ()
    at: datetime | None = field(default=None, compare=False)

    @classmethod
    def from_roles(cls, user_id: str, roles: Iterable[UserRole], at: datetime | None = None) -> AccessContext:
        return cls(user_id=user_id, roles=tuple(roles), at=at)

    def _now(self) -> datetime:
        return self.at or now_utc()

    def live_roles(self) -> list[UserRole]:
        at = self._now()
        return [role for role in self.roles if role_is_live(role, at)]

    def has_permission(self, permission: Permission | str, scope_id: str | None = None) -> bool:
        live = self.live_roles()
        if any(is_system_admin_role(role) for role in live):
            return True
        wanted = str(permission)
        return any(scope_matches(role, scope_id) and wanted in role.permissions for role in live)

    def has_role(self, role_type: RoleType | str, scope_id: str | None = None) -> bool:
        wanted = RoleType(role_type)
        return any(role.role_type == wanted and scope_matches(role, scope_id) for role in self.live_roles())

    def is_super_admin(self) -> bool:
        # Only a system scoped grant counts; a super_admin record bound to a farm does not.
        return any(is_system_admin_role(role) for role in self.live_roles())

    def effective_permissions(self) -> set[str]:
        """Union of permissions across live roles, for capability display only."""
        permissions: set[str] = set()
        for role in self.live_roles():
            permissions.update(role.permissions)
        return permissions

    def scope_ids(self, scope_type: ScopeType) -> set[str]:
        return {
            role.scope_id
            for role in self.live_roles()
            if role.scope_type == scope_type and role.scope_id is not None
        }


def anonymous_context() -> AccessContext:
    return AccessContext(user_id="")
