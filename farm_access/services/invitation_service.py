from __future__ import annotations

import logging
import os
import secrets
import string
from datetime import timedelta
from uuid import uuid4

from farm_access.adapters.base import LogMailer, Mailer, normalize_email
from farm_access.domain.access import role_is_live
from farm_access.domain.migration import legacy_access_for
from farm_access.domain.models import FarmInvitation, InvitationStatus, UserRole, now_utc
from farm_access.domain.permissions import RoleType, ScopeType, permissions_for, scope_for
from farm_access.infra.audit import ActivityRecorder
from farm_access.infra.store import (
    FARM_INVITATIONS,
    LEGACY_FARM_ACCESS,
    USER_ROLES,
    USERS,
    BatchOp,
    DocumentStore,
    Filter,
)
from farm_access.infra.timeouts import timed
from farm_access.services.authorization_service import AuthorizationService
from farm_access.services.errors import (
    ConflictError,
    ExpiredError,
    NotFoundError,
    PermissionDeniedError,
    ScopeError,
)
from farm_access.services.tenancy_service import TenancyService

logger = logging.getLogger(__name__)

INVITATION_TTL = timedelta(days=int(os.getenv("INVITATION_TTL_DAYS", "7")))
CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 8


def new_invitation_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


class InvitationService:
    """Farm invitations: a farm member proposes a farm role to an email address
    and the invitee redeems the mailed code to receive the grant.

    Callers check ``users:invite`` (or ``users:manage`` for cancellation) on the
    farm before invoking the inviter side; the invitee side verifies that the
    redeeming account owns the invited email.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        recorder: ActivityRecorder | None = None,
        authorization: AuthorizationService | None = None,
        tenancy: TenancyService | None = None,
        mailer: Mailer | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._store = timed(store, timeout_seconds)
        self._recorder = recorder or ActivityRecorder(store, timeout_seconds=timeout_seconds)
        self._authorization = authorization or AuthorizationService(
            store, recorder=self._recorder, timeout_seconds=timeout_seconds
        )
        self._tenancy = tenancy or TenancyService(
            store,
            recorder=self._recorder,
            authorization=self._authorization,
            timeout_seconds=timeout_seconds,
        )
        self._mailer = mailer or LogMailer()

    def _save(self, invitation: FarmInvitation) -> FarmInvitation:
        self._store.put(FARM_INVITATIONS, invitation.id, invitation.to_document())
        return invitation

    def _query(self, filters: list[Filter]) -> list[FarmInvitation]:
        rows = self._store.query(FARM_INVITATIONS, filters, [("sentAt", "desc")])
        return [FarmInvitation.from_document(row) for row in rows]

    def _expire(self, invitation: FarmInvitation) -> FarmInvitation:
        return self._save(invitation.model_copy(update={"status": InvitationStatus.EXPIRED}))

    def _send(self, invitation: FarmInvitation) -> None:
        farm_name = invitation.metadata.get("farmName") or invitation.farm_id
        body = (
            f"You have been invited to join {farm_name} as {invitation.proposed_role.value}.\n"
            f"Invitation code: {invitation.invitation_code}\n"
            f"The code expires at {invitation.expires_at.isoformat()}."
        )
        if invitation.message:
            body = f"{body}\n\n{invitation.message}"
        try:
            self._mailer.send(invitation.invitee_email, f"Invitation to {farm_name}", body)
        except Exception:
            # The invitation stays valid; the inviter can resend it.
            logger.warning(
                "invitation mail %s to %s was not sent", invitation.id, invitation.invitee_email, exc_info=True
            )

    def _user_ids_for_email(self, email: str) -> set[str]:
        rows = self._store.query(USERS, [("email", "==", email)])
        return {str(row["uid"]) for row in rows if row.get("uid")}

    def has_farm_access(self, farm_id: str, email: str) -> bool:
        user_ids = self._user_ids_for_email(normalize_email(email))
        if not user_ids:
            return False
        now = now_utc()
        return any(
            role.user_id in user_ids and role.scope_type == ScopeType.FARM and role_is_live(role, now)
            for role in self._authorization.list_scope_roles(farm_id)
        )

    def get_invitation(self, invitation_id: str) -> FarmInvitation:
        raw = self._store.get(FARM_INVITATIONS, invitation_id)
        if raw is None:
            raise NotFoundError("invitation not found")
        return FarmInvitation.from_document(raw)

    def _pending_by_code(self, code: str) -> FarmInvitation:
        matches = self._query(
            [("invitationCode", "==", code.strip().upper()), ("status", "==", InvitationStatus.PENDING.value)]
        )
        if not matches:
            raise NotFoundError("invalid or expired invitation code")
        return matches[0]

    def _pending_for_invitee(self, invitation: FarmInvitation, email: str) -> FarmInvitation:
        if normalize_email(email) != invitation.invitee_email:
            raise PermissionDeniedError("this invitation was sent to a different email address")
        if invitation.expires_at <= now_utc():
            self._expire(invitation)
            raise ExpiredError("invitation has expired")
        return invitation

    def invite_user_to_farm(
        self,
        inviter_id: str,
        farm_id: str,
        invitee_email: str,
        proposed_role: RoleType | str,
        *,
        invitee_name: str | None = None,
        message: str | None = None,
        inviter_name: str | None = None,
    ) -> FarmInvitation:
        role_type = RoleType(proposed_role)
        if scope_for(role_type) != ScopeType.FARM:
            raise ScopeError(f"{role_type.value} cannot be offered through a farm invitation")
        email = normalize_email(invitee_email)
        if not email:
            raise ScopeError("invitee email is required")
        farm = self._tenancy.get_farm(farm_id)

        for existing in self._query(
            [("farmId", "==", farm_id), ("inviteeEmail", "==", email), ("status", "==", InvitationStatus.PENDING.value)]
        ):
            if existing.expires_at > now_utc():
                raise ConflictError("user already has a pending invitation to this farm")
            self._expire(existing)
        if self.has_farm_access(farm_id, email):
            raise ConflictError("user already has access to this farm")

        now = now_utc()
        invitation = FarmInvitation(
            id=f"inv_{uuid4().hex[:20]}",
            farm_id=farm_id,
            organization_id=farm.organization_id,
            inviter_user_id=inviter_id,
            invitee_email=email,
            invitee_name=invitee_name,
            proposed_role=role_type,
            proposed_permissions=[permission.value for permission in permissions_for(role_type)],
            invitation_code=new_invitation_code(),
            message=message,
            sent_at=now,
            expires_at=now + INVITATION_TTL,
            metadata={"farmName": farm.name, "inviterName": inviter_name, "resentCount": 0},
        )
        self._save(invitation)
        self._send(invitation)
        self._recorder.record(
            inviter_id,
            "invitation:sent",
            "invitation",
            invitation.id,
            {"farmId": farm_id, "inviteeEmail": email, "proposedRole": role_type.value},
        )
        return invitation

    def accept_invitation(self, user_id: str, email: str, code: str) -> UserRole:
        invitation = self._pending_for_invitee(self._pending_by_code(code), email)
        role = self._authorization.grant_role(
            user_id,
            invitation.proposed_role,
            ScopeType.FARM,
            invitation.farm_id,
            granted_by=invitation.inviter_user_id,
            metadata={"invitationId": invitation.id},
        )
        legacy = legacy_access_for(user_id, invitation.farm_id, invitation.proposed_role, invitation_id=invitation.id)
        accepted = invitation.model_copy(
            update={
                "status": InvitationStatus.ACCEPTED,
                "responded_at": now_utc(),
                "accepted_by_user_id": user_id,
            }
        )
        self._store.batch_write(
            [
                BatchOp(LEGACY_FARM_ACCESS, f"{user_id}_{invitation.farm_id}", legacy.to_document()),
                BatchOp(FARM_INVITATIONS, accepted.id, accepted.to_document()),
            ]
        )
        self._recorder.record(
            user_id,
            "invitation:accepted",
            "invitation",
            invitation.id,
            {"farmId": invitation.farm_id, "role": invitation.proposed_role.value},
        )
        return role

    def decline_invitation(self, user_id: str, email: str, code: str, reason: str | None = None) -> FarmInvitation:
        invitation = self._pending_for_invitee(self._pending_by_code(code), email)
        declined = self._save(
            invitation.model_copy(
                update={"status": InvitationStatus.DECLINED, "responded_at": now_utc(), "decline_reason": reason}
            )
        )
        self._recorder.record(
            user_id,
            "invitation:declined",
            "invitation",
            invitation.id,
            {"farmId": invitation.farm_id, "reason": reason},
        )
        return declined

    def cancel_invitation(self, invitation_id: str, cancelled_by: str) -> FarmInvitation:
        invitation = self.get_invitation(invitation_id)
        if invitation.status != InvitationStatus.PENDING:
            raise ConflictError(f"invitation is already {invitation.status.value}")
        metadata = {**invitation.metadata, "cancelledByUserId": cancelled_by}
        cancelled = self._save(
            invitation.model_copy(
                update={"status": InvitationStatus.CANCELLED, "responded_at": now_utc(), "metadata": metadata}
            )
        )
        self._recorder.record(
            cancelled_by, "invitation:cancelled", "invitation", invitation_id, {"farmId": invitation.farm_id}
        )
        return cancelled

    def resend_invitation(self, invitation_id: str, resent_by: str) -> FarmInvitation:
        """Push the expiry out by a full period and mail the same code again."""
        invitation = self.get_invitation(invitation_id)
        if invitation.status not in {InvitationStatus.PENDING, InvitationStatus.EXPIRED}:
            raise ConflictError(f"invitation is already {invitation.status.value}")
        now = now_utc()
        metadata = {
            **invitation.metadata,
            "resentAt": now.isoformat(),
            "resentCount": int(invitation.metadata.get("resentCount") or 0) + 1,
        }
        resent = self._save(
            invitation.model_copy(
                update={"status": InvitationStatus.PENDING, "expires_at": now + INVITATION_TTL, "metadata": metadata}
            )
        )
        self._send(resent)
        self._recorder.record(
            resent_by, "invitation:resent", "invitation", invitation_id, {"farmId": invitation.farm_id}
        )
        return resent

    def list_sent(self, inviter_id: str, farm_id: str | None = None) -> list[FarmInvitation]:
        filters: list[Filter] = [("inviterUserId", "==", inviter_id)]
        if farm_id is not None:
            filters.append(("farmId", "==", farm_id))
        return self._query(filters)

    def list_for_farm(self, farm_id: str, *, status: InvitationStatus | None = None) -> list[FarmInvitation]:
        filters: list[Filter] = [("farmId", "==", farm_id)]
        if status is not None:
            filters.append(("status", "==", status.value))
        return self._query(filters)

    def list_received(self, email: str) -> list[FarmInvitation]:
        return self._query([("inviteeEmail", "==", normalize_email(email))])

    def remove_user_from_farm(self, farm_id: str, user_id: str, removed_by: str) -> list[UserRole]:
        """Revoke every farm-scoped grant ``user_id`` holds on the farm and drop
        the single-tier access record."""
        now = now_utc()
        revoked = [
            role.model_copy(update={"is_active": False, "revoked_at": now, "revoked_by": removed_by})
            for role in self._authorization.list_scope_roles(farm_id)
            if role.user_id == user_id and role.scope_type == ScopeType.FARM
        ]
        ops = [BatchOp(USER_ROLES, role.id, role.to_document()) for role in revoked]
        ops.append(BatchOp(LEGACY_FARM_ACCESS, f"{user_id}_{farm_id}", kind="delete"))
        self._store.batch_write(ops)
        self._recorder.record(
            removed_by,
            "user:removed_from_farm",
            "farm",
            farm_id,
            {"removedUserId": user_id, "revokedRoleIds": [role.id for role in revoked]},
        )
        return revoked
