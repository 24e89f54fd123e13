from __future__ import annotations

import copy
import operator
from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from threading import Lock
from typing import Any, Literal, Protocol

from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from farm_access.domain.models import DocumentRecord, now_utc
from farm_access.infra.db import get_engine

USERS = "users"
USER_ROLES = "userRoles"
ORGANIZATIONS = "organizations"
FARMS = "farms"
ACTIVITY_LOGS = "activityLogs"
LEGACY_FARM_ACCESS = "userFarmAccess"
FARM_INVITATIONS = "farmInvitations"

Record = dict[str, Any]
Filter = tuple[str, str, Any]
Ordering = tuple[str, Literal["asc", "desc"]]

_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": lambda left, right: left in right,
}


class StoreError(Exception):
    pass


@dataclass(frozen=True)
class BatchOp:
    collection: str
    id: str
    record: Record | None = None
    kind: Literal["put", "delete"] = "put"


class DocumentStore(Protocol):
    def put(self, collection: str, id: str, record: Record) -> None: ...

    def get(self, collection: str, id: str) -> Record | None: ...

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Sequence[Ordering] = (),
        limit: int | None = None,
    ) -> list[Record]: ...

    def batch_write(self, ops: Sequence[BatchOp]) -> None: ...


def _field_value(record: Record, path: str) -> Any:
    current: Any = record
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


def matches(record: Record, filters: Sequence[Filter]) -> bool:
    for field_path, op, expected in filters:
        comparator = _COMPARATORS.get(op)
        if comparator is None:
            raise StoreError(f"unsupported filter operator: {op}")
        actual = _field_value(record, field_path)
        if actual is None and op not in {"==", "!="}:
            return False
        try:
            if not comparator(actual, expected):
                return False
        except TypeError:
            return False
    return True


def apply_query(
    records: Iterable[Record],
    filters: Sequence[Filter],
    order_by: Sequence[Ordering],
    limit: int | None,
) -> list[Record]:
    selected = [record for record in records if matches(record, filters)]
    # Stable sorts applied last-key-first give lexicographic multi-key ordering.
    for field_path, direction in reversed(order_by):
        present = [record for record in selected if _field_value(record, field_path) is not None]
        missing = [record for record in selected if _field_value(record, field_path) is None]
        present.sort(key=lambda record: _field_value(record, field_path), reverse=direction == "desc")
        selected = present + missing
    if limit is not None:
        selected = selected[: max(limit, 0)]
    return selected


def _validate_key(collection: str, id: str) -> None:
    if not collection or not id:
        raise StoreError("collection and id are required")


class InMemoryDocumentStore:
    def __init__(self) -> None:
        self._collections: dict[str, dict[str, Record]] = defaultdict(dict)
        self._lock = Lock()

    def put(self, collection: str, id: str, record: Record) -> None:
        _validate_key(collection, id)
        with self._lock:
            self._collections[collection][id] = copy.deepcopy(record)

    def get(self, collection: str, id: str) -> Record | None:
        with self._lock:
            record = self._collections.get(collection, {}).get(id)
            return copy.deepcopy(record) if record is not None else None

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Sequence[Ordering] = (),
        limit: int | None = None,
    ) -> list[Record]:
        with self._lock:
            records = [copy.deepcopy(item) for item in self._collections.get(collection, {}).values()]
        return apply_query(records, filters, order_by, limit)

    def batch_write(self, ops: Sequence[BatchOp]) -> None:
        for op in ops:
            _validate_key(op.collection, op.id)
            if op.kind == "put" and op.record is None:
                raise StoreError("put operation requires a record")
        with self._lock:
            for op in ops:
                if op.kind == "delete":
                    self._collections[op.collection].pop(op.id, None)
                else:
                    self._collections[op.collection][op.id] = copy.deepcopy(op.record or {})

    def count(self, collection: str) -> int:
        with self._lock:
            return len(self._collections.get(collection, {}))


# Ordering that can run in SQL: string identifiers whose text order matches Python's.
_SQL_ORDER_FIELDS = frozenset({"id"})


def _typed_element(element: Any, sample: Any) -> Any | None:
    if isinstance(sample, bool):
        return element.as_boolean()
    if isinstance(sample, int):
        return element.as_integer()
    if isinstance(sample, float):
        return element.as_float()
    if isinstance(sample, str):
        return element.as_string()
    return None


def sql_clause(field_path: str, op: str, expected: Any) -> Any | None:
    """Translate one filter into a SQL condition on the JSON payload.

    Returns ``None`` when the filter has to be evaluated in Python: nested
    paths, range and inequality operators (missing fields compare differently
    in SQL) and values without a plain JSON scalar type.
    """
    if "." in field_path or op not in {"==", "in"}:
        return None
    element = col(DocumentRecord.data)[field_path]
    if op == "==":
        typed = _typed_element(element, expected)
        return None if typed is None else typed == expected
    if not isinstance(expected, (list, tuple, set, frozenset)) or not expected:
        return None
    values = list(expected)
    if len({type(value) for value in values}) != 1:
        return None
    typed = _typed_element(element, values[0])
    return None if typed is None else typed.in_(values)


def split_filters(filters: Sequence[Filter]) -> tuple[list[Any], list[Filter]]:
    clauses: list[Any] = []
    remaining: list[Filter] = []
    for item in filters:
        clause = sql_clause(*item)
        if clause is None:
            remaining.append(item)
        else:
            clauses.append(clause)
    return clauses, remaining


class SqlDocumentStore:
    """Document store over the ``documents`` table, one JSON payload per row."""

    def __init__(self, engine: Engine | None = None) -> None:
        self._engine = engine

    def _session(self) -> Session:
        return Session(self._engine or get_engine(), expire_on_commit=False)

    def _upsert(self, session: Session, collection: str, id: str, record: Record) -> None:
        existing = session.get(DocumentRecord, (collection, id))
        if existing is None:
            session.add(DocumentRecord(collection=collection, id=id, data=dict(record)))
            return
        existing.data = dict(record)
        existing.updated_at = now_utc()
        session.add(existing)

    def put(self, collection: str, id: str, record: Record) -> None:
        _validate_key(collection, id)
        with self._session() as session:
            self._upsert(session, collection, id, record)
            session.commit()

    def get(self, collection: str, id: str) -> Record | None:
        with self._session() as session:
            row = session.get(DocumentRecord, (collection, id))
            return dict(row.data) if row is not None else None

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Sequence[Ordering] = (),
        limit: int | None = None,
    ) -> list[Record]:
        clauses, remaining = split_filters(filters)
        statement = select(DocumentRecord).where(DocumentRecord.collection == collection, *clauses)
        fully_pushed = not remaining and all(field_path in _SQL_ORDER_FIELDS for field_path, _ in order_by)
        if fully_pushed:
            for field_path, direction in order_by:
                element = col(DocumentRecord.data)[field_path].as_string()
                ordered = element.desc() if direction == "desc" else element.asc()
                statement = statement.order_by(ordered.nulls_last())
        statement = statement.order_by(col(DocumentRecord.id))
        if fully_pushed and limit is not None:
            statement = statement.limit(max(limit, 0))
        with self._session() as session:
            records = [dict(row.data) for row in session.exec(statement).all()]
        # Pushed filters are re-checked here; Python semantics stay authoritative.
        return apply_query(records, filters, order_by, limit)

    def batch_write(self, ops: Sequence[BatchOp]) -> None:
        with self._session() as session:
            for op in ops:
                _validate_key(op.collection, op.id)
                if op.kind == "delete":
                    row = session.get(DocumentRecord, (op.collection, op.id))
                    if row is not None:
                        session.delete(row)
                    continue
                if op.record is None:
                    raise StoreError("put operation requires a record")
                self._upsert(session, op.collection, op.id, op.record)
            session.commit()
