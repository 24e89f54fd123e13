from __future__ import annotations

from enum import StrEnum
from typing import Any


class Permission(StrEnum):
    TREES_READ = "trees:read"
    TREES_WRITE = "trees:write"
    TREES_DELETE = "trees:delete"
    TREES_BULK = "trees:bulk"
    PHOTOS_READ = "photos:read"
    PHOTOS_WRITE = "photos:write"
    PHOTOS_DELETE = "photos:delete"
    PHOTOS_BULK = "photos:bulk"
    INVESTMENTS_READ = "investments:read"
    INVESTMENTS_WRITE = "investments:write"
    INVESTMENTS_DELETE = "investments:delete"
    ZONES_READ = "zones:read"
    ZONES_WRITE = "zones:write"
    ZONES_DELETE = "zones:delete"
    USERS_READ = "users:read"
    USERS_INVITE = "users:invite"
    USERS_MANAGE = "users:manage"
    USERS_REMOVE = "users:remove"
    FARMS_READ = "farms:read"
    FARMS_WRITE = "farms:write"
    FARMS_DELETE = "farms:delete"
    FARMS_CREATE = "farms:create"
    ANALYTICS_VIEW = "analytics:view"
    ANALYTICS_EXPORT = "analytics:export"
    REPORTS_GENERATE = "reports:generate"
    SYSTEM_ADMIN = "system:admin"
    SYSTEM_AUDIT = "system:audit"
    SYSTEM_BACKUP = "system:backup"
    API_READ = "api:read"
    API_WRITE = "api:write"
    API_MANAGE = "api:manage"
    ORG_ADMIN = "org:admin"
    ORG_SETTINGS = "org:settings"
    ORG_BILLING = "org:billing"
    ORG_USERS = "org:users"


class RoleType(StrEnum):
    SUPER_ADMIN = "super_admin"
    ORGANIZATION_ADMIN = "organization_admin"
    ORGANIZATION_MEMBER = "organization_member"
    FARM_OWNER = "farm_owner"
    FARM_MANAGER = "farm_manager"
    FARM_VIEWER = "farm_viewer"
    SEASONAL_WORKER = "seasonal_worker"
    API_USER = "api_user"


class ScopeType(StrEnum):
    SYSTEM = "system"
    ORGANIZATION = "organization"
    FARM = "farm"


P = Permission

ROLE_PERMISSIONS: dict[RoleType, tuple[Permission, ...]] = {
    RoleType.SUPER_ADMIN: (
        P.SYSTEM_ADMIN, P.SYSTEM_AUDIT, P.SYSTEM_BACKUP,
        P.ORG_ADMIN, P.ORG_SETTINGS, P.ORG_BILLING, P.ORG_USERS,
        P.FARMS_READ, P.FARMS_WRITE, P.FARMS_DELETE, P.FARMS_CREATE,
        P.TREES_READ, P.TREES_WRITE, P.TREES_DELETE, P.TREES_BULK,
        P.PHOTOS_READ, P.PHOTOS_WRITE, P.PHOTOS_DELETE, P.PHOTOS_BULK,
        P.USERS_READ, P.USERS_INVITE, P.USERS_MANAGE, P.USERS_REMOVE,
        P.ANALYTICS_VIEW, P.ANALYTICS_EXPORT, P.REPORTS_GENERATE,
        P.API_READ, P.API_WRITE, P.API_MANAGE,
    ),
    RoleType.ORGANIZATION_ADMIN: (
        P.ORG_ADMIN, P.ORG_SETTINGS, P.ORG_USERS,
        P.FARMS_READ, P.FARMS_WRITE, P.FARMS_CREATE,
        P.USERS_READ, P.USERS_INVITE, P.USERS_MANAGE,
        P.ANALYTICS_VIEW, P.ANALYTICS_EXPORT, P.REPORTS_GENERATE,
    ),
    RoleType.ORGANIZATION_MEMBER: (
        P.FARMS_READ, P.USERS_READ,
    ),
    RoleType.FARM_OWNER: (
        P.FARMS_READ, P.FARMS_WRITE,
        P.TREES_READ, P.TREES_WRITE, P.TREES_DELETE, P.TREES_BULK,
        P.PHOTOS_READ, P.PHOTOS_WRITE, P.PHOTOS_DELETE, P.PHOTOS_BULK,
        P.INVESTMENTS_READ, P.INVESTMENTS_WRITE, P.INVESTMENTS_DELETE,
        P.ZONES_READ, P.ZONES_WRITE, P.ZONES_DELETE,
        P.USERS_READ, P.USERS_INVITE, P.USERS_MANAGE,
        P.ANALYTICS_VIEW, P.ANALYTICS_EXPORT, P.REPORTS_GENERATE,
    ),
    RoleType.FARM_MANAGER: (
        P.FARMS_READ,
        P.TREES_READ, P.TREES_WRITE, P.TREES_BULK,
        P.PHOTOS_READ, P.PHOTOS_WRITE, P.PHOTOS_BULK,
        P.INVESTMENTS_READ, P.INVESTMENTS_WRITE,
        P.ZONES_READ, P.ZONES_WRITE,
        P.USERS_READ,
        P.ANALYTICS_VIEW,
    ),
    RoleType.FARM_VIEWER: (
        P.FARMS_READ,
        P.TREES_READ,
        P.PHOTOS_READ,
        P.INVESTMENTS_READ,
        P.ZONES_READ,
        P.USERS_READ,
        P.ANALYTICS_VIEW,
    ),
    RoleType.SEASONAL_WORKER: (
        P.TREES_READ, P.TREES_WRITE,
        P.PHOTOS_READ, P.PHOTOS_WRITE,
    ),
    RoleType.API_USER: (
        P.API_READ, P.API_WRITE,
    ),
}

PERMISSION_GROUPS: dict[str, tuple[Permission, ...]] = {
    "Tree Management": (P.TREES_READ, P.TREES_WRITE, P.TREES_DELETE, P.TREES_BULK),
    "Photo Management": (P.PHOTOS_READ, P.PHOTOS_WRITE, P.PHOTOS_DELETE, P.PHOTOS_BULK),
    "Farm Management": (P.FARMS_READ, P.FARMS_WRITE, P.FARMS_DELETE, P.FARMS_CREATE),
    "User Management": (P.USERS_READ, P.USERS_INVITE, P.USERS_MANAGE, P.USERS_REMOVE),
    "Analytics": (P.ANALYTICS_VIEW, P.ANALYTICS_EXPORT, P.REPORTS_GENERATE),
    "System Admin": (P.SYSTEM_ADMIN, P.SYSTEM_AUDIT, P.SYSTEM_BACKUP),
    "Organization": (P.ORG_ADMIN, P.ORG_SETTINGS, P.ORG_BILLING, P.ORG_USERS),
    "API Access": (P.API_READ, P.API_WRITE, P.API_MANAGE),
}


# Each role type is granted at exactly one scope level.
ROLE_SCOPES: dict[RoleType, ScopeType] = {
    RoleType.SUPER_ADMIN: ScopeType.SYSTEM,
    RoleType.ORGANIZATION_ADMIN: ScopeType.ORGANIZATION,
    RoleType.ORGANIZATION_MEMBER: ScopeType.ORGANIZATION,
    RoleType.FARM_OWNER: ScopeType.FARM,
    RoleType.FARM_MANAGER: ScopeType.FARM,
    RoleType.FARM_VIEWER: ScopeType.FARM,
    RoleType.SEASONAL_WORKER: ScopeType.FARM,
    RoleType.API_USER: ScopeType.FARM,
}


def scope_for(role_type: RoleType | str) -> ScopeType:
    return ROLE_SCOPES[RoleType(role_type)]


def permissions_for(role_type: RoleType | str) -> tuple[Permission, ...]:
    """Return the catalog permissions for ``role_type``.

    Unknown role names raise ``ValueError``: role types are a closed set and an
    unrecognised one is a programming error, not a user-facing condition.
    """
    return ROLE_PERMISSIONS[RoleType(role_type)]


def catalog_snapshot() -> dict[str, Any]:
    return {
        "roles": {
            role.value: [permission.value for permission in permissions]
            for role, permissions in ROLE_PERMISSIONS.items()
        },
        "groups": {
            name: [permission.value for permission in permissions]
            for name, permissions in PERMISSION_GROUPS.items()
        },
        "scopes": {role.value: scope.value for role, scope in ROLE_SCOPES.items()},
    }
