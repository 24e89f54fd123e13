"""Pure upgrade functions from single-tier records to the role model.

Nothing here touches storage: callers load raw documents, run them through
these functions and persist the results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from farm_access.domain.models import (
    USER_SCHEMA_VERSION,
    AccountStatus,
    IdentityToken,
    LegacyFarmAccess,
    LegacyUserRecord,
    User,
    UserPreferences,
    UserRole,
    now_utc,
)
from farm_access.domain.permissions import RoleType, ScopeType, permissions_for

LEGACY_ROLE_MAP: dict[str, RoleType] = {
    "owner": RoleType.FARM_OWNER,
    "manager": RoleType.FARM_MANAGER,
}


@dataclass(frozen=True)
class RoleGrantPlan:
    user_id: str
    role_type: RoleType
    scope_type: ScopeType
    scope_id: str | None


@dataclass
class MigrationReport:
    user: User
    granted_role_ids: list[str] = field(default_factory=list)
    skipped_role_ids: list[str] = field(default_factory=list)
    issues: list[str] = field(default_factory=list)


def role_id_for(user_id: str, role_type: RoleType | str, scope_type: ScopeType | str, scope_id: str | None) -> str:
    return f"{user_id}_{RoleType(role_type).value}_{ScopeType(scope_type).value}_{scope_id or 'system'}"


def build_role(plan: RoleGrantPlan, granted_by: str, **extra: Any) -> UserRole:
    fields: dict[str, Any] = {
        "id": role_id_for(plan.user_id, plan.role_type, plan.scope_type, plan.scope_id),
        "user_id": plan.user_id,
        "role_type": plan.role_type,
        "scope_type": plan.scope_type,
        "scope_id": plan.scope_id,
        "permissions": [permission.value for permission in permissions_for(plan.role_type)],
        "granted_by": granted_by,
        "granted_at": now_utc(),
        "is_active": True,
    }
    fields.update(extra)
    return UserRole(**fields)


def legacy_role_type(role: str | None) -> RoleType:
    return LEGACY_ROLE_MAP.get((role or "").strip().lower(), RoleType.FARM_VIEWER)


def plan_for_legacy_access(access: LegacyFarmAccess) -> RoleGrantPlan:
    if not access.farm_id:
        raise ValueError(f"legacy access for user {access.user_id} has no farm id")
    return RoleGrantPlan(
        user_id=access.user_id,
        role_type=legacy_role_type(access.role),
        scope_type=ScopeType.FARM,
        scope_id=access.farm_id,
    )


def legacy_role_name(role_type: RoleType | str) -> str:
    resolved = RoleType(role_type)
    for name, mapped in LEGACY_ROLE_MAP.items():
        if mapped == resolved:
            return name
    return "viewer"


def legacy_access_for(
    user_id: str,
    farm_id: str,
    role_type: RoleType | str,
    *,
    invitation_id: str | None = None,
) -> LegacyFarmAccess:
    now = now_utc()
    return LegacyFarmAccess(
        user_id=user_id,
        farm_id=farm_id,
        role=legacy_role_name(role_type),
        permissions=[permission.value for permission in permissions_for(role_type)],
        invitation_id=invitation_id,
        created_at=now,
        updated_at=now,
    )


def default_user_from_token(token: IdentityToken, *, status: AccountStatus = AccountStatus.ACTIVE) -> User:
    return User(
        uid=token.uid,
        email=token.email or "",
        display_name=token.display_name or "User",
        created_at=now_utc(),
        is_email_verified=token.email_verified,
        account_status=status,
        preferences=UserPreferences(),
    )


def upgrade_user_record(raw: dict[str, Any]) -> User:
    """Turn a stored profile document of any known version into a ``User``."""
    version = raw.get("schemaVersion", raw.get("schema_version"))
    if version is None:
        # Profiles written by the role-aware client carry preferences but no version tag.
        version = USER_SCHEMA_VERSION if "preferences" in raw else 1
    if int(version) >= USER_SCHEMA_VERSION:
        return User.model_validate(raw)

    legacy = LegacyUserRecord.model_validate(raw)
    return User(
        uid=legacy.uid,
        email=legacy.email or "",
        display_name=legacy.display_name or "User",
        created_at=legacy.created_at,
        account_status=AccountStatus.ACTIVE,
        preferences=UserPreferences(),
    )
