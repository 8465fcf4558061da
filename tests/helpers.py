"""Shared test helpers."""

import asyncio

from src.schedule_sync.errors import StoreError
from src.schedule_sync.models import ScheduleDocument, ScheduleKey
from src.schedule_sync.stores.memory import InMemoryDocumentStore
from src.schedule_sync.template import DEFAULT_TEMPLATE


async def settle(rounds: int = 10) -> None:
    """Let call_soon deliveries and spawned tasks run to completion."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_key(calendar_date: str = "2025-06-01", subject_id: str = "user-1") -> ScheduleKey:
    return ScheduleKey(app_namespace="test-app", subject_id=subject_id, calendar_date=calendar_date)


def make_document(key: ScheduleKey, completed: tuple[str, ...] = (), version: int | None = 1) -> ScheduleDocument:
    activities = [
        a.toggled() if a.id in completed else a for a in DEFAULT_TEMPLATE.fresh_activities()
    ]
    return ScheduleDocument(key=key, activities=activities, template_version=version)


class RecordingStore:
    """Store that hands callbacks to the test instead of delivering them.

    Unsubscribing is recorded but does not stop the test from invoking the
    old callbacks, which is how late deliveries from a torn-down listener look.
    """

    def __init__(self) -> None:
        self.events: list[tuple[str, str]] = []
        self.subscriptions: list[tuple] = []
        self.writes: list[ScheduleDocument] = []

    def subscribe(self, key, on_snapshot, on_error):
        self.events.append(("subscribe", key.calendar_date))
        self.subscriptions.append((key, on_snapshot, on_error))
        return lambda: self.events.append(("unsubscribe", key.calendar_date))

    async def put(self, key, document):
        self.writes.append(document)


class GatedPutStore(InMemoryDocumentStore):
    """In-memory store whose puts wait for ``release()`` while the gate is closed.

    Waiting puts resume in call order once released.
    """

    def __init__(self) -> None:
        super().__init__()
        self._gate = asyncio.Event()
        self._gate.set()
        self.waiting = 0
        # Puts that got past the gate, and which of them (1-based) should fail
        self.calls = 0
        self._failing_calls: set[int] = set()

    def hold(self) -> None:
        self._gate.clear()

    def release(self) -> None:
        self._gate.set()

    def fail_call(self, number: int) -> None:
        """Make the ``number``-th put past the gate raise a StoreError."""
        self._failing_calls.add(number)

    async def put(self, key, document):
        self.waiting += 1
        try:
            await self._gate.wait()
        finally:
            self.waiting -= 1
        self.calls += 1
        if self.calls in self._failing_calls:
            raise StoreError(f"Simulated failure of put #{self.calls}")
        await super().put(key, document)


async def wait_for(predicate, timeout: float = 1.0) -> None:
    """Poll ``predicate`` until it holds; for stores that deliver from worker threads."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)
