"""In-process DocumentStore backed by a dict.

Used for tests and the ``memory`` backend. Deliveries are scheduled with
``loop.call_soon`` so subscribers never observe a snapshot re-entrantly from
inside ``subscribe`` or ``put``, the same as with a remote listener.
"""

import asyncio
import copy
from dataclasses import dataclass
from typing import Any

from src.schedule_sync.errors import StoreError
from src.schedule_sync.logging import get_logger
from src.schedule_sync.models import ScheduleDocument, ScheduleKey
from src.schedule_sync.stores.base import (
    ErrorCallback,
    SnapshotCallback,
    Unsubscribe,
    parse_snapshot,
)

logger = get_logger(__name__)


@dataclass
class _Subscriber:
    key: ScheduleKey
    on_snapshot: SnapshotCallback
    on_error: ErrorCallback
    active: bool = True


class InMemoryDocumentStore:
    """Dict-backed store with change notification.

    Payloads are stored by document path in their wire form, so reads always
    hand out fresh ``ScheduleDocument`` objects.
    """

    def __init__(self) -> None:
        self._payloads: dict[str, dict[str, Any]] = {}
        self._subscribers: list[_Subscriber] = []
        self._put_failures: list[Exception] = []
        self._read_failures: dict[str, Exception] = {}
        # Every successful put, in order
        self.writes: list[ScheduleDocument] = []
        self.subscribe_calls: list[ScheduleKey] = []

    # -------- Test / seeding helpers --------
    def seed(self, document: ScheduleDocument) -> None:
        """Store a document without notifying subscribers or recording a write."""
        self._save(document.key, document.to_payload())

    def seed_payload(self, key: ScheduleKey, payload: dict[str, Any]) -> None:
        """Store a raw payload as-is, valid or not."""
        self._save(key, payload)

    def get(self, key: ScheduleKey) -> ScheduleDocument | None:
        return parse_snapshot(key, self._load(key))

    def fail_next_put(self, exc: Exception | None = None) -> None:
        """Make the next put raise ``exc`` (a StoreError by default)."""
        self._put_failures.append(exc or StoreError("Simulated write failure"))

    def fail_reads(self, key: ScheduleKey, exc: Exception | None = None) -> None:
        """Make subscriptions to ``key`` fail instead of delivering a snapshot."""
        self._read_failures[key.document_path] = exc or StoreError("Simulated read failure")

    def subscriber_count(self, key: ScheduleKey) -> int:
        return sum(1 for s in self._subscribers if s.active and s.key == key)

    # -------- DocumentStore --------
    def subscribe(
        self,
        key: ScheduleKey,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        loop = asyncio.get_running_loop()
        subscriber = _Subscriber(key=key, on_snapshot=on_snapshot, on_error=on_error)
        self._subscribers.append(subscriber)
        self.subscribe_calls.append(key)
        logger.debug("store_subscribed", path=key.document_path)

        read_error = self._read_failures.get(key.document_path)
        if read_error is not None:
            loop.call_soon(self._deliver_error, subscriber, read_error)
        else:
            loop.call_soon(self._deliver, subscriber, self._load(key))

        def unsubscribe() -> None:
            if subscriber.active:
                subscriber.active = False
                self._subscribers.remove(subscriber)
                logger.debug("store_unsubscribed", path=key.document_path)

        return unsubscribe

    async def put(self, key: ScheduleKey, document: ScheduleDocument) -> None:
        if self._put_failures:
            exc = self._put_failures.pop(0)
            logger.debug("store_put_failed", path=key.document_path, error=str(exc))
            raise exc

        payload = document.to_payload()
        self._save(key, payload)
        self.writes.append(ScheduleDocument.from_payload(key, payload))
        logger.debug("store_put", path=key.document_path)

        loop = asyncio.get_running_loop()
        for subscriber in list(self._subscribers):
            if subscriber.key == key:
                loop.call_soon(self._deliver, subscriber, payload)

    # -------- Persistence hooks --------
    def _load(self, key: ScheduleKey) -> dict[str, Any] | None:
        payload = self._payloads.get(key.document_path)
        return copy.deepcopy(payload) if payload is not None else None

    def _save(self, key: ScheduleKey, payload: dict[str, Any]) -> None:
        self._payloads[key.document_path] = copy.deepcopy(payload)

    # -------- Delivery --------
    def _deliver(self, subscriber: _Subscriber, payload: dict[str, Any] | None) -> None:
        if not subscriber.active:
            return
        try:
            document = parse_snapshot(subscriber.key, copy.deepcopy(payload))
        except StoreError as e:
            logger.warning("store_snapshot_invalid", path=subscriber.key.document_path, error=str(e))
            self._deliver_error(subscriber, e)
            return
        subscriber.on_snapshot(document)

    def _deliver_error(self, subscriber: _Subscriber, exc: Exception) -> None:
        if not subscriber.active:
            return
        subscriber.active = False
        self._subscribers.remove(subscriber)
        subscriber.on_error(exc)
