from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from farm_access.adapters.base import IdentityProvider, IdentityProviderError, Mailer
from farm_access.domain.access import AccessContext
from farm_access.domain.migration import default_user_from_token
from farm_access.domain.models import AccountStatus, Farm, IdentityToken, Organization, User
from farm_access.infra.audit import ActivityRecorder
from farm_access.infra.store import DocumentStore
from farm_access.infra.timeouts import call_with_timeout
from farm_access.services.authorization_service import AuthorizationService
from farm_access.services.errors import AccountSuspendedError
from farm_access.services.invitation_service import InvitationService
from farm_access.services.profile_service import ProfileService
from farm_access.services.tenancy_service import TenancyService

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class SignInResult:
    user: User
    token: IdentityToken
    context: AccessContext


@dataclass
class SignUpResult:
    user: User
    token: IdentityToken
    organization: Organization | None = None
    farms: list[Farm] = field(default_factory=list)


class AuthService:
    """Sign-in/up workflow tying the identity provider to profiles and roles.

    Every failure is re-raised to the caller after being recorded as a
    ``<action>_failed`` activity with an empty actor.
    """

    def __init__(
        self,
        store: DocumentStore,
        identity: IdentityProvider,
        *,
        timeout_seconds: float | None = None,
        super_admin_uid: str | None = None,
        mailer: Mailer | None = None,
    ) -> None:
        self._identity = identity
        self._timeout_seconds = timeout_seconds
        self.recorder = ActivityRecorder(store, timeout_seconds=timeout_seconds)
        self.authorization = AuthorizationService(store, recorder=self.recorder, timeout_seconds=timeout_seconds)
        self.profiles = ProfileService(
            store,
            recorder=self.recorder,
            authorization=self.authorization,
            super_admin_uid=super_admin_uid,
            timeout_seconds=timeout_seconds,
        )
        self.tenancy = TenancyService(
            store,
            recorder=self.recorder,
            authorization=self.authorization,
            timeout_seconds=timeout_seconds,
        )
        self.invitations = InvitationService(
            store,
            recorder=self.recorder,
            authorization=self.authorization,
            tenancy=self.tenancy,
            mailer=mailer,
            timeout_seconds=timeout_seconds,
        )

    def _identity_call(self, fn: Callable[..., T], *args: Any) -> T:
        return call_with_timeout(fn, *args, timeout_seconds=self._timeout_seconds)

    def sign_up(
        self,
        *,
        email: str,
        password: str,
        display_name: str,
        phone_number: str | None = None,
        organization_name: str | None = None,
        farm_name: str | None = None,
    ) -> SignUpResult:
        try:
            token = self._identity_call(self._identity.sign_up, email, password, display_name)
            self._send_verification_quietly(token.uid)

            user = default_user_from_token(token, status=AccountStatus.PENDING_VERIFICATION)
            user = user.model_copy(
                update={
                    "display_name": display_name,
                    "phone_number": phone_number,
                    "login_count": 1,
                    "last_login_at": user.created_at,
                }
            )
            self.profiles.create_profile(user)
            self.recorder.record(token.uid, "auth:signup", "user", token.uid)

            result = SignUpResult(user=user, token=token)
            if organization_name:
                result.organization = self.tenancy.create_organization(token.uid, organization_name)
            if farm_name:
                organization_id = result.organization.id if result.organization is not None else None
                result.farms.append(self.tenancy.create_farm(token.uid, farm_name, organization_id))
            return result
        except Exception as exc:
            self.recorder.record_failure("auth:signup_failed", "user", exc, {"email": email})
            raise

    def _send_verification_quietly(self, uid: str) -> None:
        try:
            self._identity_call(self._identity.send_verification_email, uid)
        except Exception:
            # The account exists either way; the user can ask for another email.
            logger.warning("verification email for %s was not sent", uid, exc_info=True)

    def sign_in(self, email: str, password: str) -> SignInResult:
        try:
            token = self._identity_call(self._identity.sign_in, email, password)
            user = self.profiles.resolve_profile(token)
            if user.account_status == AccountStatus.SUSPENDED:
                raise AccountSuspendedError("account suspended")
            if token.email_verified and not user.is_email_verified:
                user = self.profiles.mark_email_verified(user.uid)
        except Exception as exc:
            self.recorder.record_failure("auth:login_failed", "user", exc, {"email": email})
            raise

        tracked = self.profiles.update_login_tracking(user.uid)
        if tracked is not None:
            user = tracked
        context = self.authorization.load_access_context(user.uid)
        self.recorder.record(user.uid, "auth:login", "user", user.uid)
        return SignInResult(user=user, token=token, context=context)

    def sign_out(self, user_id: str) -> None:
        self.recorder.record(user_id, "auth:logout", "user", user_id)
        self._identity_call(self._identity.sign_out, user_id)

    def reset_password(self, email: str) -> None:
        try:
            self._identity_call(self._identity.send_password_reset, email)
        except Exception as exc:
            self.recorder.record_failure("auth:password_reset_failed", "user", exc, {"email": email})
            raise
        self.recorder.record("", "auth:password_reset_requested", "user", "", {"email": email})

    def send_verification_email(self, user_id: str) -> bool:
        user = self.profiles.require_profile(user_id)
        if user.is_email_verified:
            return False
        try:
            self._identity_call(self._identity.send_verification_email, user_id)
        except IdentityProviderError as exc:
            self.recorder.record_failure("auth:verification_email_failed", "user", exc, {"email": user.email})
            raise
        self.recorder.record(user_id, "auth:verification_email_sent", "user", user_id)
        return True

    def confirm_email(self, code: str) -> User:
        try:
            token = self._identity_call(self._identity.confirm_email, code)
        except Exception as exc:
            self.recorder.record_failure("auth:email_verification_failed", "user", exc)
            raise
        user = self.profiles.resolve_profile(token)
        user = self.profiles.mark_email_verified(user.uid)
        self.recorder.record(user.uid, "auth:email_verified", "user", user.uid)
        return user
