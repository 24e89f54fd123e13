from __future__ import annotations

from uuid import uuid4

from farm_access.domain.access import AccessContext
from farm_access.domain.migration import legacy_access_for
from farm_access.domain.models import Farm, FarmSettings, Organization, OrganizationSettings, now_utc
from farm_access.domain.permissions import RoleType, ScopeType
from farm_access.infra.audit import ActivityRecorder
from farm_access.infra.store import FARMS, LEGACY_FARM_ACCESS, ORGANIZATIONS, DocumentStore
from farm_access.infra.timeouts import timed
from farm_access.services.authorization_service import AuthorizationService
from farm_access.services.errors import LimitExceededError, NotFoundError


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:20]}"


class TenancyService:
    def __init__(
        self,
        store: DocumentStore,
        *,
        recorder: ActivityRecorder | None = None,
        authorization: AuthorizationService | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._store = timed(store, timeout_seconds)
        self._recorder = recorder or ActivityRecorder(store, timeout_seconds=timeout_seconds)
        self._authorization = authorization or AuthorizationService(
            store, recorder=self._recorder, timeout_seconds=timeout_seconds
        )

    def create_organization(self, owner_id: str, name: str, display_name: str | None = None) -> Organization:
        now = now_utc()
        organization = Organization(
            id=_new_id("org"),
            name=name,
            display_name=display_name or name,
            settings=OrganizationSettings(),
            created_at=now,
            updated_at=now,
        )
        self._store.put(ORGANIZATIONS, organization.id, organization.to_document())
        self._authorization.grant_role(
            owner_id,
            RoleType.ORGANIZATION_ADMIN,
            ScopeType.ORGANIZATION,
            organization.id,
            granted_by=owner_id,
        )
        self._recorder.record(owner_id, "organization:created", "organization", organization.id, {"name": name})
        return organization

    def get_organization(self, organization_id: str) -> Organization:
        raw = self._store.get(ORGANIZATIONS, organization_id)
        if raw is None:
            raise NotFoundError("organization not found")
        return Organization.from_document(raw)

    def count_farms(self, organization_id: str) -> int:
        return len(self._store.query(FARMS, [("organizationId", "==", organization_id)]))

    def ensure_farm_capacity(self, organization_id: str) -> Organization:
        """Raise ``LimitExceededError`` when the organization is at its farm cap.

        Limits are advisory data on the organization; workflows that want them
        enforced call this before ``create_farm``.
        """
        organization = self.get_organization(organization_id)
        if self.count_farms(organization_id) >= organization.max_farms:
            raise LimitExceededError(f"organization farm limit reached ({organization.max_farms})")
        return organization

    def create_farm(self, user_id: str, name: str, organization_id: str | None = None) -> Farm:
        if organization_id is not None:
            self.get_organization(organization_id)

        farm = Farm(
            id=_new_id("farm"),
            name=name,
            organization_id=organization_id,
            owner_id=user_id,
            created_date=now_utc(),
            settings=FarmSettings(),
        )
        self._store.put(FARMS, farm.id, farm.to_document())
        self._authorization.grant_role(user_id, RoleType.FARM_OWNER, ScopeType.FARM, farm.id, granted_by=user_id)

        # Single-tier access record kept for readers that predate the role model.
        legacy = legacy_access_for(user_id, farm.id, RoleType.FARM_OWNER)
        self._store.put(LEGACY_FARM_ACCESS, f"{user_id}_{farm.id}", legacy.to_document())

        self._recorder.record(
            user_id,
            "farm:created",
            "farm",
            farm.id,
            {"name": name, "organizationId": organization_id},
        )
        return farm

    def get_farm(self, farm_id: str) -> Farm:
        raw = self._store.get(FARMS, farm_id)
        if raw is None:
            raise NotFoundError("farm not found")
        return Farm.from_document(raw)

    def list_farms_for(self, context: AccessContext) -> list[Farm]:
        if context.is_super_admin():
            rows = self._store.query(FARMS, order_by=[("name", "asc")])
            return [Farm.from_document(row) for row in rows]
        farm_ids = sorted(context.scope_ids(ScopeType.FARM))
        if not farm_ids:
            return []
        rows = self._store.query(FARMS, [("id", "in", farm_ids)], [("name", "asc")])
        return [Farm.from_document(row) for row in rows]
