from __future__ import annotations

import logging
import os
from typing import Any

from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from farm_access.domain.migration import (
    MigrationReport,
    default_user_from_token,
    plan_for_legacy_access,
    role_id_for,
    upgrade_user_record,
)
from farm_access.domain.models import (
    AccountStatus,
    IdentityToken,
    LegacyFarmAccess,
    ProfileUpdate,
    User,
    UserPreferences,
    now_utc,
)
from farm_access.domain.permissions import RoleType, ScopeType
from farm_access.infra.audit import ActivityRecorder
from farm_access.infra.store import FARMS, LEGACY_FARM_ACCESS, USERS, DocumentStore
from farm_access.infra.timeouts import timed
from farm_access.services.authorization_service import AuthorizationService
from farm_access.services.errors import NotFoundError
from farm_access.services.role_store import RoleStore

logger = logging.getLogger(__name__)

SUPER_ADMIN_UID = os.getenv("SUPER_ADMIN_UID", "O6aFgoNhDigSIXk6zdYSDrFWhWG2")


def _camelize(value: dict[str, Any]) -> dict[str, Any]:
    return {
        (to_camel(key) if "_" in key else key): _camelize(item) if isinstance(item, dict) else item
        for key, item in value.items()
    }


def _deep_merge(base: dict[str, Any], extra: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
            continue
        merged[key] = value
    return merged


class ProfileService:
    def __init__(
        self,
        store: DocumentStore,
        *,
        recorder: ActivityRecorder | None = None,
        authorization: AuthorizationService | None = None,
        super_admin_uid: str | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._store = timed(store, timeout_seconds)
        self._recorder = recorder or ActivityRecorder(store, timeout_seconds=timeout_seconds)
        self._authorization = authorization or AuthorizationService(
            store, recorder=self._recorder, timeout_seconds=timeout_seconds
        )
        self._roles = RoleStore(self._store)
        self._super_admin_uid = SUPER_ADMIN_UID if super_admin_uid is None else super_admin_uid

    def _save(self, user: User) -> User:
        self._store.put(USERS, user.uid, user.to_document())
        return user

    def get_profile(self, uid: str) -> User | None:
        raw = self._store.get(USERS, uid)
        return upgrade_user_record(raw) if raw is not None else None

    def require_profile(self, uid: str) -> User:
        user = self.get_profile(uid)
        if user is None:
            raise NotFoundError("user not found")
        return user

    def create_profile(self, user: User) -> User:
        return self._save(user)

    def resolve_profile(self, token: IdentityToken) -> User:
        """Load the profile for ``token.uid``, migrating it on first sight."""
        raw = self._store.get(USERS, token.uid)
        if raw is not None:
            user = upgrade_user_record(raw)
            if raw.get("schemaVersion") != user.schema_version:
                self._save(user)
            return user
        return self.migrate_user(token).user

    def migrate_user(self, token: IdentityToken) -> MigrationReport:
        user = self._save(default_user_from_token(token))
        report = MigrationReport(user=user)

        if self._super_admin_uid and token.uid == self._super_admin_uid:
            self._grant_once(report, token.uid, RoleType.SUPER_ADMIN, ScopeType.SYSTEM, None)

        self._migrate_legacy_access(report, token.uid, token.uid)

        if report.issues:
            logger.warning("profile migration for %s finished with issues: %s", token.uid, report.issues)
        self._recorder.record(
            token.uid,
            "user:migrated",
            "user",
            token.uid,
            {
                "grantedRoleIds": list(report.granted_role_ids),
                "skippedRoleIds": list(report.skipped_role_ids),
                "issues": list(report.issues),
            },
        )
        return report

    def migrate_legacy_access(self, user_id: str, granted_by: str) -> MigrationReport:
        """Re-run legacy farm access migration for an existing profile."""
        report = MigrationReport(user=self.require_profile(user_id))
        self._migrate_legacy_access(report, user_id, granted_by)
        if report.issues:
            logger.warning("legacy access migration for %s finished with issues: %s", user_id, report.issues)
        return report

    def _grant_once(
        self,
        report: MigrationReport,
        user_id: str,
        role_type: RoleType,
        scope_type: ScopeType,
        scope_id: str | None,
        granted_by: str | None = None,
    ) -> None:
        role_id = role_id_for(user_id, role_type, scope_type, scope_id)
        # Existing grants, including revoked ones, are left as they are.
        if self._roles.exists(role_id):
            report.skipped_role_ids.append(role_id)
            return
        self._authorization.grant_role(user_id, role_type, scope_type, scope_id, granted_by=granted_by or user_id)
        report.granted_role_ids.append(role_id)

    def _migrate_legacy_access(self, report: MigrationReport, user_id: str, granted_by: str) -> None:
        rows = self._store.query(LEGACY_FARM_ACCESS, [("userId", "==", user_id)])
        for row in rows:
            try:
                access = LegacyFarmAccess.from_document(row)
                plan = plan_for_legacy_access(access)
            except (ValidationError, ValueError) as exc:
                report.issues.append(f"unreadable legacy access record: {exc}")
                continue
            if self._store.get(FARMS, plan.scope_id or "") is None:
                report.issues.append(f"legacy access references missing farm {plan.scope_id}")
                continue
            self._grant_once(report, user_id, plan.role_type, plan.scope_type, plan.scope_id, granted_by)

    def update_login_tracking(self, uid: str) -> User | None:
        """Bump login counters and return the saved profile.

        Failures are logged and never reach the caller, which then gets ``None``.
        """
        try:
            user = self.require_profile(uid)
            return self._save(user.model_copy(update={"login_count": user.login_count + 1, "last_login_at": now_utc()}))
        except Exception:
            logger.warning("login tracking failed for %s", uid, exc_info=True)
            return None

    def mark_email_verified(self, uid: str) -> User:
        user = self.require_profile(uid)
        if user.is_email_verified and user.account_status != AccountStatus.PENDING_VERIFICATION:
            return user
        status = user.account_status
        if status == AccountStatus.PENDING_VERIFICATION:
            status = AccountStatus.ACTIVE
        return self._save(
            user.model_copy(update={"is_email_verified": True, "account_status": status, "updated_at": now_utc()})
        )

    def update_profile(self, uid: str, changes: ProfileUpdate) -> User:
        user = self.require_profile(uid)
        update: dict[str, Any] = {
            key: value
            for key, value in changes.model_dump(exclude_unset=True).items()
            if key != "preferences" and value is not None
        }
        if changes.preferences:
            merged = _deep_merge(user.preferences.to_document(), _camelize(changes.preferences))
            update["preferences"] = UserPreferences.model_validate(merged)
        update["updated_at"] = now_utc()
        saved = self._save(user.model_copy(update=update))
        self._recorder.record(uid, "user:profile_updated", "user", uid, {"fields": sorted(update)})
        return saved

    def set_account_status(self, uid: str, status: AccountStatus, changed_by: str) -> User:
        user = self.require_profile(uid)
        previous = user.account_status
        saved = self._save(user.model_copy(update={"account_status": status, "updated_at": now_utc()}))
        self._recorder.record(
            changed_by,
            "user:status_changed",
            "user",
            uid,
            {"from": previous.value, "to": AccountStatus(status).value},
        )
        return saved
