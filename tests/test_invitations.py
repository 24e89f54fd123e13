from __future__ import annotations

from datetime import timedelta

import pytest

from farm_access.adapters.fake_identity import InMemoryIdentityProvider, RecordingMailer
from farm_access.domain.models import InvitationStatus, now_utc
from farm_access.domain.permissions import Permission, RoleType, permissions_for
from farm_access.infra.store import (
    ACTIVITY_LOGS,
    FARM_INVITATIONS,
    LEGACY_FARM_ACCESS,
    USER_ROLES,
    InMemoryDocumentStore,
)
from farm_access.services.auth_service import AuthService
from farm_access.services.errors import (
    ConflictError,
    ExpiredError,
    NotFoundError,
    PermissionDeniedError,
    ScopeError,
)
from farm_access.services.invitation_service import CODE_ALPHABET, CODE_LENGTH


@pytest.fixture()
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture()
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture()
def service(store: InMemoryDocumentStore, mailer: RecordingMailer) -> AuthService:
    return AuthService(store, InMemoryIdentityProvider(), super_admin_uid="", mailer=mailer)


@pytest.fixture()
def farm_id(service: AuthService) -> str:
    owner = service.sign_up(email="owner@example.com", password="secret1", display_name="Owner", farm_name="Sunrise")
    return owner.farms[0].id


def _owner_id(service: AuthService, farm_id: str) -> str:
    owner_id = service.tenancy.get_farm(farm_id).owner_id
    assert owner_id is not None
    return owner_id


def _actions(store: InMemoryDocumentStore) -> list[str]:
    return [row["action"] for row in store.query(ACTIVITY_LOGS, order_by=[("id", "asc")])]


def test_invite_stores_pending_invitation_and_mails_code(
    service: AuthService,
    store: InMemoryDocumentStore,
    mailer: RecordingMailer,
    farm_id: str,
) -> None:
    owner_id = _owner_id(service, farm_id)
    invitation = service.invitations.invite_user_to_farm(
        owner_id, farm_id, " Worker@Example.com ", RoleType.FARM_VIEWER, inviter_name="Owner"
    )

    assert invitation.invitee_email == "worker@example.com"
    assert invitation.status == InvitationStatus.PENDING
    assert len(invitation.invitation_code) == CODE_LENGTH
    assert set(invitation.invitation_code) <= set(CODE_ALPHABET)
    assert invitation.expires_at - invitation.sent_at == timedelta(days=7)
    assert invitation.metadata["farmName"] == "Sunrise"
    assert invitation.proposed_permissions == [item.value for item in permissions_for(RoleType.FARM_VIEWER)]
    assert store.get(FARM_INVITATIONS, invitation.id)["status"] == "pending"

    assert [mail.to for mail in mailer.outbox] == ["worker@example.com"]
    assert invitation.invitation_code in mailer.outbox[0].body
    assert _actions(store)[-1] == "invitation:sent"


def test_accept_grants_farm_role_and_writes_bridge_record(
    service: AuthService,
    store: InMemoryDocumentStore,
    farm_id: str,
) -> None:
    owner_id = _owner_id(service, farm_id)
    invitation = service.invitations.invite_user_to_farm(owner_id, farm_id, "worker@example.com", "farm_manager")
    worker = service.sign_up(email="worker@example.com", password="secret1", display_name="Worker")
    uid = worker.user.uid

    role = service.invitations.accept_invitation(uid, "worker@example.com", invitation.invitation_code.lower())

    assert role.id == f"{uid}_farm_manager_farm_{farm_id}"
    assert role.granted_by == owner_id
    assert role.metadata == {"invitationId": invitation.id}
    assert service.authorization.load_access_context(uid).has_permission(Permission.TREES_WRITE, farm_id)
    legacy = store.get(LEGACY_FARM_ACCESS, f"{uid}_{farm_id}")
    assert legacy["role"] == "manager"
    assert legacy["invitationId"] == invitation.id
    accepted = store.get(FARM_INVITATIONS, invitation.id)
    assert accepted["status"] == "accepted"
    assert accepted["acceptedByUserId"] == uid
    assert _actions(store)[-1] == "invitation:accepted"

    with pytest.raises(NotFoundError):
        service.invitations.accept_invitation(uid, "worker@example.com", invitation.invitation_code)


def test_accept_requires_the_invited_email(service: AuthService, store: InMemoryDocumentStore, farm_id: str) -> None:
    owner_id = _owner_id(service, farm_id)
    invitation = service.invitations.invite_user_to_farm(owner_id, farm_id, "worker@example.com", "farm_viewer")
    intruder = service.sign_up(email="intruder@example.com", password="secret1", display_name="Intruder")

    with pytest.raises(PermissionDeniedError):
        service.invitations.accept_invitation(intruder.user.uid, "intruder@example.com", invitation.invitation_code)
    assert store.query(USER_ROLES, [("userId", "==", intruder.user.uid)]) == []
    assert store.get(FARM_INVITATIONS, invitation.id)["status"] == "pending"


def test_expired_invitation_is_marked_and_rejected(
    service: AuthService,
    store: InMemoryDocumentStore,
    farm_id: str,
) -> None:
    owner_id = _owner_id(service, farm_id)
    invitation = service.invitations.invite_user_to_farm(owner_id, farm_id, "worker@example.com", "farm_viewer")
    stored = store.get(FARM_INVITATIONS, invitation.id)
    store.put(FARM_INVITATIONS, invitation.id, {**stored, "expiresAt": (now_utc() - timedelta(minutes=1)).isoformat()})

    with pytest.raises(ExpiredError):
        service.invitations.accept_invitation("worker-uid", "worker@example.com", invitation.invitation_code)
    assert store.get(FARM_INVITATIONS, invitation.id)["status"] == "expired"
    assert store.query(USER_ROLES, [("userId", "==", "worker-uid")]) == []

    resent = service.invitations.resend_invitation(invitation.id, owner_id)
    assert resent.status == InvitationStatus.PENDING
    assert resent.metadata["resentCount"] == 1
    assert resent.expires_at > now_utc()
    service.invitations.accept_invitation("worker-uid", "worker@example.com", invitation.invitation_code)


def test_duplicate_pending_invitation_and_existing_member_are_rejected(
    service: AuthService,
    farm_id: str,
) -> None:
    owner_id = _owner_id(service, farm_id)
    service.invitations.invite_user_to_farm(owner_id, farm_id, "worker@example.com", "farm_viewer")
    with pytest.raises(ConflictError):
        service.invitations.invite_user_to_farm(owner_id, farm_id, "WORKER@example.com", "farm_manager")
    with pytest.raises(ConflictError):
        service.invitations.invite_user_to_farm(owner_id, farm_id, "owner@example.com", "farm_viewer")


@pytest.mark.parametrize("role_type", ["super_admin", "organization_admin", "organization_member"])
def test_only_farm_roles_can_be_offered(
    service: AuthService,
    store: InMemoryDocumentStore,
    farm_id: str,
    role_type: str,
) -> None:
    with pytest.raises(ScopeError):
        service.invitations.invite_user_to_farm(_owner_id(service, farm_id), farm_id, "worker@example.com", role_type)
    assert store.count(FARM_INVITATIONS) == 0


def test_invite_to_missing_farm_fails(service: AuthService) -> None:
    with pytest.raises(NotFoundError):
        service.invitations.invite_user_to_farm("u1", "farm_missing", "worker@example.com", "farm_viewer")


def test_decline_and_cancel_close_the_invitation(
    service: AuthService,
    store: InMemoryDocumentStore,
    farm_id: str,
) -> None:
    owner_id = _owner_id(service, farm_id)
    first = service.invitations.invite_user_to_farm(owner_id, farm_id, "a@example.com", "farm_viewer")
    second = service.invitations.invite_user_to_farm(owner_id, farm_id, "b@example.com", "seasonal_worker")

    declined = service.invitations.decline_invitation("a-uid", "a@example.com", first.invitation_code, "busy")
    assert declined.status == InvitationStatus.DECLINED
    assert declined.decline_reason == "busy"

    cancelled = service.invitations.cancel_invitation(second.id, owner_id)
    assert cancelled.status == InvitationStatus.CANCELLED
    assert cancelled.metadata["cancelledByUserId"] == owner_id
    with pytest.raises(ConflictError):
        service.invitations.cancel_invitation(second.id, owner_id)
    with pytest.raises(NotFoundError):
        service.invitations.accept_invitation("b-uid", "b@example.com", second.invitation_code)

    assert {item.id for item in service.invitations.list_sent(owner_id, farm_id)} == {first.id, second.id}
    assert [item.id for item in service.invitations.list_received("A@example.com")] == [first.id]
    pending = service.invitations.list_for_farm(farm_id, status=InvitationStatus.PENDING)
    assert pending == []
    assert "invitation:declined" in _actions(store)
    assert "invitation:cancelled" in _actions(store)


def test_mail_failure_keeps_the_invitation(
    service: AuthService,
    store: InMemoryDocumentStore,
    mailer: RecordingMailer,
    farm_id: str,
) -> None:
    mailer.fail_with = RuntimeError("smtp down")
    invitation = service.invitations.invite_user_to_farm(
        _owner_id(service, farm_id), farm_id, "worker@example.com", "farm_viewer"
    )
    assert store.get(FARM_INVITATIONS, invitation.id) is not None
    assert mailer.outbox == []


def test_remove_user_from_farm_revokes_roles_and_bridge_record(
    service: AuthService,
    store: InMemoryDocumentStore,
    farm_id: str,
) -> None:
    owner_id = _owner_id(service, farm_id)
    invitation = service.invitations.invite_user_to_farm(owner_id, farm_id, "worker@example.com", "farm_viewer")
    service.invitations.accept_invitation("worker-uid", "worker@example.com", invitation.invitation_code)

    revoked = service.invitations.remove_user_from_farm(farm_id, "worker-uid", owner_id)

    assert [role.id for role in revoked] == [f"worker-uid_farm_viewer_farm_{farm_id}"]
    assert store.get(USER_ROLES, revoked[0].id)["isActive"] is False
    assert store.get(LEGACY_FARM_ACCESS, f"worker-uid_{farm_id}") is None
    assert not service.authorization.load_access_context("worker-uid").has_permission(Permission.FARMS_READ, farm_id)
    assert service.authorization.load_access_context(owner_id).has_permission(Permission.FARMS_READ, farm_id)
    assert _actions(store)[-1] == "user:removed_from_farm"
