from __future__ import annotations

import logging
from collections.abc import Sequence

from pydantic import ValidationError

from farm_access.domain.models import UserRole
from farm_access.infra.store import USER_ROLES, BatchOp, DocumentStore, Filter, Record

logger = logging.getLogger(__name__)


class RoleStore:
    """Persistence for ``UserRole`` grants in the ``userRoles`` collection."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def _parse(self, rows: list[Record]) -> list[UserRole]:
        roles: list[UserRole] = []
        for row in rows:
            try:
                roles.append(UserRole.from_document(row))
            except ValidationError:
                logger.warning("skipping unreadable role record %s", row.get("id"), exc_info=True)
        return roles

    def save(self, role: UserRole) -> None:
        self._store.put(USER_ROLES, role.id, role.to_document())

    def save_many(self, roles: Sequence[UserRole]) -> None:
        self._store.batch_write([BatchOp(USER_ROLES, role.id, role.to_document()) for role in roles])

    def get(self, role_id: str) -> UserRole | None:
        raw = self._store.get(USER_ROLES, role_id)
        return UserRole.from_document(raw) if raw is not None else None

    def get_raw(self, role_id: str) -> Record | None:
        return self._store.get(USER_ROLES, role_id)

    def exists(self, role_id: str) -> bool:
        return self.get_raw(role_id) is not None

    def list_for_user(self, user_id: str, *, include_inactive: bool = False) -> list[UserRole]:
        filters: list[Filter] = [("userId", "==", user_id)]
        if not include_inactive:
            filters.append(("isActive", "==", True))
        return self._parse(self._store.query(USER_ROLES, filters, [("grantedAt", "asc")]))

    def list_for_scope(self, scope_id: str) -> list[UserRole]:
        filters: list[Filter] = [("scopeId", "==", scope_id), ("isActive", "==", True)]
        return self._parse(self._store.query(USER_ROLES, filters, [("grantedAt", "asc")]))

    def list_raw(self) -> list[Record]:
        return self._store.query(USER_ROLES)
