from __future__ import annotations

import os
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

from farm_access.infra.store import BatchOp, DocumentStore, Filter, Ordering, Record

EXTERNAL_TIMEOUT_SECONDS = float(os.getenv("EXTERNAL_TIMEOUT_SECONDS", "5.0"))
EXTERNAL_TIMEOUT_WORKERS = int(os.getenv("EXTERNAL_TIMEOUT_WORKERS", "8"))

T = TypeVar("T")

_executor = ThreadPoolExecutor(
    max_workers=max(EXTERNAL_TIMEOUT_WORKERS, 1),
    thread_name_prefix="farm-access-io",
)


class ExternalTimeoutError(TimeoutError):
    pass


def call_with_timeout(
    fn: Callable[..., T],
    *args: Any,
    timeout_seconds: float | None = None,
    **kwargs: Any,
) -> T:
    """Run ``fn`` on the I/O pool and wait at most ``timeout_seconds``.

    Errors raised by ``fn`` propagate unchanged. An expired wait raises
    ``ExternalTimeoutError``; the call is not retried.
    """
    timeout = EXTERNAL_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
    future = _executor.submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=max(timeout, 0.001))
    except TimeoutError as exc:
        if future.done():
            raise
        future.cancel()
        name = getattr(fn, "__qualname__", repr(fn))
        raise ExternalTimeoutError(f"{name} timed out after {timeout:.2f}s") from exc


class TimedDocumentStore:
    """Wraps a ``DocumentStore`` so every call is bounded by a timeout."""

    def __init__(self, inner: DocumentStore, timeout_seconds: float | None = None) -> None:
        self.inner = inner
        self.timeout_seconds = timeout_seconds

    def put(self, collection: str, id: str, record: Record) -> None:
        call_with_timeout(self.inner.put, collection, id, record, timeout_seconds=self.timeout_seconds)

    def get(self, collection: str, id: str) -> Record | None:
        return call_with_timeout(self.inner.get, collection, id, timeout_seconds=self.timeout_seconds)

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Sequence[Ordering] = (),
        limit: int | None = None,
    ) -> list[Record]:
        return call_with_timeout(
            self.inner.query,
            collection,
            filters,
            order_by,
            limit,
            timeout_seconds=self.timeout_seconds,
        )

    def batch_write(self, ops: Sequence[BatchOp]) -> None:
        call_with_timeout(self.inner.batch_write, ops, timeout_seconds=self.timeout_seconds)


def timed(store: DocumentStore, timeout_seconds: float | None = None) -> DocumentStore:
    if isinstance(store, TimedDocumentStore):
        if timeout_seconds is None or timeout_seconds == store.timeout_seconds:
            return store
        return TimedDocumentStore(store.inner, timeout_seconds)
    return TimedDocumentStore(store, timeout_seconds)
