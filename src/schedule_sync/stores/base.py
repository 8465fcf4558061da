"""DocumentStore contract shared by every backend.

A store holds at most one document per ScheduleKey and offers three things:
a change subscription, a full-document overwrite, and nothing else. Snapshot
callbacks are always invoked on the event loop thread, in arrival order.
"""

from typing import Any, Callable, Protocol

from pydantic import ValidationError

from src.schedule_sync.errors import PermanentStoreError
from src.schedule_sync.models import ScheduleDocument, ScheduleKey

SnapshotCallback = Callable[[ScheduleDocument | None], None]
ErrorCallback = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


def parse_snapshot(key: ScheduleKey, payload: dict[str, Any] | None) -> ScheduleDocument | None:
    """Turn a stored payload into a snapshot document.

    Raises:
        PermanentStoreError: If the stored payload is not a valid schedule.
    """
    if payload is None:
        return None
    try:
        return ScheduleDocument.from_payload(key, payload)
    except ValidationError as e:
        raise PermanentStoreError(
            f"Stored schedule at {key.document_path} is malformed: {e.error_count()} errors"
        ) from e


class DocumentStore(Protocol):
    def subscribe(
        self,
        key: ScheduleKey,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        """Start listening to ``key``.

        ``on_snapshot`` receives the current document (or None when absent)
        once the first read completes, then again after every change.
        ``on_error`` is called at most once; no snapshots follow it.
        """
        ...

    async def put(self, key: ScheduleKey, document: ScheduleDocument) -> None:
        """Overwrite the whole document at ``key``.

        Raises:
            StoreError: If the write was not persisted.
        """
        ...
