from __future__ import annotations

from datetime import UTC, datetime

import pytest

from farm_access.domain.migration import (
    legacy_access_for,
    legacy_role_name,
    legacy_role_type,
    plan_for_legacy_access,
    role_id_for,
    upgrade_user_record,
)
from farm_access.domain.models import (
    AccountStatus,
    IdentityToken,
    LegacyFarmAccess,
    User,
    UserRole,
    coerce_timestamp,
)
from farm_access.domain.permissions import Permission, RoleType, ScopeType
from farm_access.infra.audit import ActivityRecorder
from farm_access.infra.store import (
    ACTIVITY_LOGS,
    FARMS,
    LEGACY_FARM_ACCESS,
    USER_ROLES,
    USERS,
    InMemoryDocumentStore,
)
from farm_access.services.authorization_service import AuthorizationService
from farm_access.services.profile_service import ProfileService


@pytest.fixture()
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture()
def profiles(store: InMemoryDocumentStore) -> ProfileService:
    recorder = ActivityRecorder(store)
    authorization = AuthorizationService(store, recorder=recorder)
    return ProfileService(store, recorder=recorder, authorization=authorization, super_admin_uid="root-uid")


def _token(uid: str = "u1", *, verified: bool = False) -> IdentityToken:
    return IdentityToken(uid=uid, email=f"{uid}@example.com", email_verified=verified, display_name="Lan")


def _seed_legacy(store: InMemoryDocumentStore, user_id: str, farm_id: str | None, role: str) -> None:
    store.put(
        LEGACY_FARM_ACCESS,
        f"{user_id}_{farm_id}",
        {"userId": user_id, "farmId": farm_id, "role": role, "permissions": ["read"]},
    )


def _seed_farm(store: InMemoryDocumentStore, farm_id: str) -> None:
    store.put(FARMS, farm_id, {"id": farm_id, "name": farm_id.title()})


def test_legacy_role_mapping() -> None:
    assert legacy_role_type("owner") == RoleType.FARM_OWNER
    assert legacy_role_type(" Manager ") == RoleType.FARM_MANAGER
    assert legacy_role_type("viewer") == RoleType.FARM_VIEWER
    assert legacy_role_type("something-else") == RoleType.FARM_VIEWER
    assert legacy_role_type(None) == RoleType.FARM_VIEWER


def test_role_types_map_back_to_legacy_names() -> None:
    assert legacy_role_name(RoleType.FARM_OWNER) == "owner"
    assert legacy_role_name("farm_manager") == "manager"
    assert legacy_role_name(RoleType.SEASONAL_WORKER) == "viewer"
    access = legacy_access_for("u1", "farm-a", RoleType.FARM_VIEWER, invitation_id="inv_1")
    assert access.to_document()["invitationId"] == "inv_1"
    assert Permission.TREES_WRITE.value not in access.permissions


def test_plan_for_legacy_access_requires_farm_id() -> None:
    plan = plan_for_legacy_access(LegacyFarmAccess(user_id="u1", farm_id="farm-a", role="owner"))
    assert (plan.role_type, plan.scope_type, plan.scope_id) == (RoleType.FARM_OWNER, ScopeType.FARM, "farm-a")
    with pytest.raises(ValueError):
        plan_for_legacy_access(LegacyFarmAccess(user_id="u1", role="owner"))


def test_upgrade_version_one_record() -> None:
    user = upgrade_user_record(
        {"uid": "u1", "email": "lan@example.com", "farmName": "Old Farm", "createdAt": 1704067200000}
    )
    assert user.schema_version == 2
    assert user.display_name == "User"
    assert user.account_status == AccountStatus.ACTIVE
    assert user.created_at == datetime(2024, 1, 1, tzinfo=UTC)
    assert user.preferences.language == "vi-VN"


def test_upgrade_current_record_keeps_fields() -> None:
    raw = User(uid="u1", email="lan@example.com", display_name="Lan", login_count=4).to_document()
    assert "photoURL" in raw
    user = upgrade_user_record(raw)
    assert user.display_name == "Lan"
    assert user.login_count == 4


def test_unversioned_record_with_preferences_is_current() -> None:
    user = upgrade_user_record({"uid": "u1", "displayName": "Lan", "preferences": {"theme": "dark"}})
    assert user.display_name == "Lan"
    assert user.preferences.theme == "dark"


def test_timestamp_shapes_normalize_to_aware_utc() -> None:
    expected = datetime(2024, 1, 1, tzinfo=UTC)
    assert coerce_timestamp("2024-01-01T00:00:00Z") == expected
    assert coerce_timestamp("2024-01-01T00:00:00") == expected
    assert coerce_timestamp(1704067200000) == expected
    assert coerce_timestamp({"seconds": 1704067200, "nanoseconds": 0}) == expected
    assert coerce_timestamp(datetime(2024, 1, 1)) == expected
    assert coerce_timestamp(None) is None
    with pytest.raises(ValueError):
        coerce_timestamp(True)


def test_role_record_accepts_legacy_timestamp_shape() -> None:
    role = UserRole.from_document(
        {
            "id": "u1_farm_owner_farm_farm-a",
            "userId": "u1",
            "roleType": "farm_owner",
            "scopeType": "farm",
            "scopeId": "farm-a",
            "grantedBy": "u1",
            "grantedAt": {"seconds": 1704067200, "nanoseconds": 500_000_000},
        }
    )
    assert role.granted_at.tzinfo is not None
    assert role.granted_at.microsecond == 500_000


def test_first_sign_in_migrates_two_legacy_records(profiles: ProfileService, store: InMemoryDocumentStore) -> None:
    _seed_farm(store, "farm-a")
    _seed_farm(store, "farm-b")
    _seed_legacy(store, "u1", "farm-a", "owner")
    _seed_legacy(store, "u1", "farm-b", "manager")

    user = profiles.resolve_profile(_token())

    assert user.uid == "u1"
    assert store.get(USERS, "u1")["schemaVersion"] == 2
    roles = sorted(
        (row["roleType"], row["scopeId"]) for row in store.query(USER_ROLES, [("userId", "==", "u1")])
    )
    assert roles == [("farm_manager", "farm-b"), ("farm_owner", "farm-a")]

    migrated = store.query(ACTIVITY_LOGS, [("action", "==", "user:migrated")])
    assert len(migrated) == 1
    assert sorted(migrated[0]["details"]["grantedRoleIds"]) == [
        role_id_for("u1", "farm_manager", "farm", "farm-b"),
        role_id_for("u1", "farm_owner", "farm", "farm-a"),
    ]


def test_migration_is_idempotent(profiles: ProfileService, store: InMemoryDocumentStore) -> None:
    _seed_farm(store, "farm-a")
    _seed_legacy(store, "u1", "farm-a", "owner")
    profiles.resolve_profile(_token())

    report = profiles.migrate_legacy_access("u1", "admin")
    assert report.granted_role_ids == []
    assert report.skipped_role_ids == ["u1_farm_owner_farm_farm-a"]
    assert store.count(USER_ROLES) == 1

    # A second resolve finds the profile and does not migrate again.
    profiles.resolve_profile(_token())
    assert len(store.query(ACTIVITY_LOGS, [("action", "==", "user:migrated")])) == 1


def test_revoked_grant_is_not_resurrected(profiles: ProfileService, store: InMemoryDocumentStore) -> None:
    _seed_farm(store, "farm-a")
    _seed_legacy(store, "u1", "farm-a", "owner")
    profiles.resolve_profile(_token())
    authorization = AuthorizationService(store)
    authorization.revoke_role("u1_farm_owner_farm_farm-a", "admin")

    profiles.migrate_legacy_access("u1", "admin")
    assert not authorization.load_access_context("u1").has_permission(Permission.TREES_READ, "farm-a")


def test_legacy_records_with_problems_become_issues(profiles: ProfileService, store: InMemoryDocumentStore) -> None:
    _seed_farm(store, "farm-a")
    _seed_legacy(store, "u1", "farm-a", "viewer")
    _seed_legacy(store, "u1", "farm-gone", "owner")
    _seed_legacy(store, "u1", None, "owner")

    report = profiles.migrate_user(_token())

    assert report.granted_role_ids == ["u1_farm_viewer_farm_farm-a"]
    assert len(report.issues) == 2
    assert any("farm-gone" in issue for issue in report.issues)


def test_super_admin_uid_gets_system_role(profiles: ProfileService, store: InMemoryDocumentStore) -> None:
    profiles.resolve_profile(_token("root-uid"))
    role = store.get(USER_ROLES, "root-uid_super_admin_system_system")
    assert role is not None
    assert role["scopeId"] is None
    assert AuthorizationService(store).load_access_context("root-uid").is_super_admin()


def test_legacy_profile_is_rewritten_on_resolve(profiles: ProfileService, store: InMemoryDocumentStore) -> None:
    store.put(USERS, "u1", {"uid": "u1", "email": "u1@example.com", "displayName": "Lan", "createdAt": 1704067200000})
    user = profiles.resolve_profile(_token())
    assert user.display_name == "Lan"
    assert store.get(USERS, "u1")["schemaVersion"] == 2
    assert store.query(ACTIVITY_LOGS, [("action", "==", "user:migrated")]) == []
