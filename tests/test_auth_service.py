from __future__ import annotations

import pytest

from farm_access.adapters.base import EmailAlreadyInUseError, InvalidCredentialsError, UnknownIdentityError
from farm_access.adapters.fake_identity import InMemoryIdentityProvider
from farm_access.domain.models import AccountStatus, ProfileUpdate
from farm_access.domain.permissions import Permission, RoleType
from farm_access.infra.store import ACTIVITY_LOGS, FARMS, USER_ROLES, USERS, InMemoryDocumentStore
from farm_access.services.auth_service import AuthService
from farm_access.services.errors import AccountSuspendedError


@pytest.fixture()
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture()
def identity() -> InMemoryIdentityProvider:
    return InMemoryIdentityProvider()


@pytest.fixture()
def service(store: InMemoryDocumentStore, identity: InMemoryIdentityProvider) -> AuthService:
    return AuthService(store, identity, super_admin_uid="root-uid")


def _activity(store: InMemoryDocumentStore) -> list[dict]:
    return store.query(ACTIVITY_LOGS, order_by=[("id", "asc")])


def test_sign_up_with_farm_bootstraps_tenancy(service: AuthService, store: InMemoryDocumentStore) -> None:
    result = service.sign_up(email="lan@example.com", password="secret1", display_name="Lan", farm_name="Sunrise")

    uid = result.user.uid
    assert store.count(USERS) == 1
    assert store.count(FARMS) == 1
    assert result.farms[0].name == "Sunrise"
    roles = store.query(USER_ROLES, [("userId", "==", uid)])
    assert [(row["roleType"], row["scopeType"], row["scopeId"]) for row in roles] == [
        ("farm_owner", "farm", result.farms[0].id)
    ]

    actions = [row["action"] for row in _activity(store)]
    assert actions.index("auth:signup") < actions.index("farm:created")

    profile = store.get(USERS, uid)
    assert profile["accountStatus"] == "pending_verification"
    assert profile["loginCount"] == 1
    assert profile["displayName"] == "Lan"


def test_sign_up_with_organization_places_farm_inside_it(service: AuthService, store: InMemoryDocumentStore) -> None:
    result = service.sign_up(
        email="lan@example.com",
        password="secret1",
        display_name="Lan",
        organization_name="Green Valley",
        farm_name="Sunrise",
    )
    assert result.organization is not None
    assert result.farms[0].organization_id == result.organization.id
    context = service.authorization.load_access_context(result.user.uid)
    assert context.has_role(RoleType.ORGANIZATION_ADMIN, result.organization.id)
    assert context.has_role(RoleType.FARM_OWNER, result.farms[0].id)


def test_sign_up_sends_verification_email(service: AuthService, identity: InMemoryIdentityProvider) -> None:
    result = service.sign_up(email="lan@example.com", password="secret1", display_name="Lan")
    assert [mail.subject for mail in identity.outbox] == ["Verify your email"]

    user = service.confirm_email(identity.outbox[0].body)
    assert user.uid == result.user.uid
    assert user.is_email_verified
    assert user.account_status == AccountStatus.ACTIVE


def test_duplicate_sign_up_is_audited_and_raised(service: AuthService, store: InMemoryDocumentStore) -> None:
    service.sign_up(email="lan@example.com", password="secret1", display_name="Lan")
    with pytest.raises(EmailAlreadyInUseError):
        service.sign_up(email="LAN@example.com", password="secret1", display_name="Lan")
    failed = [row for row in _activity(store) if row["action"] == "auth:signup_failed"]
    assert len(failed) == 1
    assert failed[0]["status"] == "failure"
    assert failed[0]["userId"] == ""


def test_failed_sign_in_is_audited_with_empty_actor(service: AuthService, store: InMemoryDocumentStore) -> None:
    with pytest.raises(InvalidCredentialsError):
        service.sign_in("ghost@example.com", "nope")
    entry = _activity(store)[-1]
    assert entry["action"] == "auth:login_failed"
    assert entry["userId"] == ""
    assert entry["details"]["email"] == "ghost@example.com"


def test_first_sign_in_of_existing_identity_migrates_profile(
    service: AuthService,
    identity: InMemoryIdentityProvider,
    store: InMemoryDocumentStore,
) -> None:
    identity.add_account("old@example.com", "secret1", uid="old-uid", email_verified=True)
    store.put(FARMS, "farm-a", {"id": "farm-a", "name": "Old Farm"})
    store.put("userFarmAccess", "old-uid_farm-a", {"userId": "old-uid", "farmId": "farm-a", "role": "owner"})

    result = service.sign_in("old@example.com", "secret1")

    assert result.user.uid == "old-uid"
    assert result.context.has_permission(Permission.TREES_DELETE, "farm-a")
    assert store.get(USERS, "old-uid")["loginCount"] == 1
    actions = [row["action"] for row in _activity(store)]
    assert actions.index("user:migrated") < actions.index("auth:login")


def test_sign_in_tracks_logins_and_activates_verified_accounts(
    service: AuthService,
    identity: InMemoryIdentityProvider,
    store: InMemoryDocumentStore,
) -> None:
    result = service.sign_up(email="lan@example.com", password="secret1", display_name="Lan")
    identity.accounts[result.user.uid].email_verified = True

    signed_in = service.sign_in("lan@example.com", "secret1")

    assert signed_in.user.account_status == AccountStatus.ACTIVE
    assert signed_in.user.login_count == 2
    assert signed_in.user.last_login_at is not None
    profile = store.get(USERS, result.user.uid)
    assert profile["loginCount"] == 2
    assert profile["isEmailVerified"] is True


def test_super_admin_uid_signs_in_with_full_access(
    service: AuthService,
    identity: InMemoryIdentityProvider,
) -> None:
    identity.add_account("root@example.com", "secret1", uid="root-uid")
    result = service.sign_in("root@example.com", "secret1")
    assert result.context.is_super_admin()
    assert result.context.has_permission(Permission.SYSTEM_AUDIT)


def test_suspended_account_cannot_sign_in(service: AuthService, store: InMemoryDocumentStore) -> None:
    result = service.sign_up(email="lan@example.com", password="secret1", display_name="Lan")
    service.profiles.set_account_status(result.user.uid, AccountStatus.SUSPENDED, "root-uid")

    with pytest.raises(AccountSuspendedError):
        service.sign_in("lan@example.com", "secret1")
    assert _activity(store)[-1]["action"] == "auth:login_failed"
    changed = [row for row in _activity(store) if row["action"] == "user:status_changed"]
    assert changed[0]["details"] == {"from": "pending_verification", "to": "suspended"}


def test_login_tracking_failure_does_not_block_sign_in(
    service: AuthService,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    service.sign_up(email="lan@example.com", password="secret1", display_name="Lan")

    def _boom(uid: str) -> None:
        raise RuntimeError("profile store unavailable")

    monkeypatch.setattr(service.profiles, "require_profile", _boom)
    result = service.sign_in("lan@example.com", "secret1")
    assert result.user.email == "lan@example.com"
    assert result.user.login_count == 1


def test_sign_out_and_password_reset_are_audited(
    service: AuthService,
    identity: InMemoryIdentityProvider,
    store: InMemoryDocumentStore,
) -> None:
    result = service.sign_up(email="lan@example.com", password="secret1", display_name="Lan")
    service.sign_out(result.user.uid)
    service.reset_password("lan@example.com")
    with pytest.raises(UnknownIdentityError):
        service.reset_password("ghost@example.com")

    actions = [row["action"] for row in _activity(store)]
    assert "auth:logout" in actions
    assert "auth:password_reset_requested" in actions
    assert actions[-1] == "auth:password_reset_failed"
    assert identity.outbox[-1].subject == "Reset your password"


def test_send_verification_email_skips_verified_users(
    service: AuthService,
    identity: InMemoryIdentityProvider,
) -> None:
    result = service.sign_up(email="lan@example.com", password="secret1", display_name="Lan")
    assert service.send_verification_email(result.user.uid) is True
    service.confirm_email(identity.outbox[-1].body)
    assert service.send_verification_email(result.user.uid) is False


def test_update_profile_merges_preferences(service: AuthService, store: InMemoryDocumentStore) -> None:
    result = service.sign_up(email="lan@example.com", password="secret1", display_name="Lan")
    service.profiles.update_profile(
        result.user.uid,
        ProfileUpdate(display_name="Lan Nguyen", preferences={"theme": "dark", "notifications": {"sms": True}}),
    )
    profile = store.get(USERS, result.user.uid)
    assert profile["displayName"] == "Lan Nguyen"
    assert profile["preferences"]["theme"] == "dark"
    assert profile["preferences"]["notifications"]["sms"] is True
    assert profile["preferences"]["notifications"]["email"] is True


def test_identity_outage_surfaces_to_caller(service: AuthService, identity: InMemoryIdentityProvider) -> None:
    identity.fail_with = InvalidCredentialsError("provider down")
    with pytest.raises(InvalidCredentialsError):
        service.sign_in("lan@example.com", "secret1")
