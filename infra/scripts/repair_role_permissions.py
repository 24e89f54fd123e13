from __future__ import annotations

import json
import os

from farm_access.infra.store import SqlDocumentStore
from farm_access.services.authorization_service import AuthorizationService


def main() -> None:
    actor_id = os.getenv("REPAIR_ACTOR_ID", "system")
    service = AuthorizationService(SqlDocumentStore())
    summary = service.repair_role_permissions(actor_id)
    print(json.dumps(summary, ensure_ascii=True))


if __name__ == "__main__":
    main()
