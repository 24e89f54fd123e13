from __future__ import annotations

import logging
import time
from threading import Lock
from typing import Any
from uuid import uuid4

from farm_access.domain.models import ActivityLog, ActivityStatus, now_utc
from farm_access.infra.store import ACTIVITY_LOGS, DocumentStore, Filter
from farm_access.infra.timeouts import timed

logger = logging.getLogger(__name__)

_id_lock = Lock()
_last_ns = 0


def next_activity_id() -> str:
    """Time-ordered id: lexical order of ids is the order entries were recorded."""
    global _last_ns
    with _id_lock:
        _last_ns = max(time.time_ns(), _last_ns + 1)
        stamp = _last_ns
    return f"{stamp:020d}_{uuid4().hex[:9]}"


class ActivityRecorder:
    def __init__(self, store: DocumentStore, *, timeout_seconds: float | None = None) -> None:
        self._store = timed(store, timeout_seconds)

    def record(
        self,
        actor_id: str,
        action: str,
        resource_type: str,
        resource_id: str,
        details: dict[str, Any] | None = None,
        *,
        status: ActivityStatus = ActivityStatus.SUCCESS,
        error_message: str | None = None,
    ) -> None:
        """Append an activity entry. Never raises.

        Persistence problems are reported on this module's logger and dropped so
        the operation being audited is never failed by its audit trail.
        """
        try:
            entry = ActivityLog(
                id=next_activity_id(),
                user_id=actor_id or "",
                action=action,
                resource=resource_type,
                resource_id=resource_id or "",
                details=details or {},
                timestamp=now_utc(),
                status=status,
                error_message=error_message,
            )
            self._store.put(ACTIVITY_LOGS, entry.id, entry.to_document())
        except Exception:
            logger.warning("failed to record activity %s on %s/%s", action, resource_type, resource_id, exc_info=True)

    def record_failure(
        self,
        action: str,
        resource_type: str,
        error: BaseException,
        details: dict[str, Any] | None = None,
    ) -> None:
        merged = {**(details or {}), "error": str(error) or type(error).__name__}
        self.record(
            "",
            action,
            resource_type,
            "",
            merged,
            status=ActivityStatus.FAILURE,
            error_message=merged["error"],
        )

    def list_activity(
        self,
        *,
        actor_id: str | None = None,
        action: str | None = None,
        resource_id: str | None = None,
        limit: int = 100,
    ) -> list[ActivityLog]:
        filters: list[Filter] = []
        if actor_id is not None:
            filters.append(("userId", "==", actor_id))
        if action is not None:
            filters.append(("action", "==", action))
        if resource_id is not None:
            filters.append(("resourceId", "==", resource_id))
        rows = self._store.query(ACTIVITY_LOGS, filters, [("id", "desc")], limit)
        return [ActivityLog.from_document(row) for row in rows]
