"""ScheduleSyncEngine - keeps a live checklist for one date in sync with the store.

Lifecycle per date:
    set_active_date(D) -> LOADING -> first snapshot -> READY
                                  -> subscription error -> ERROR (ReadFailure)

A missing document is created from the template on the first snapshot and
shown immediately, before the write completes. Toggles and resets are
applied locally first and then written as whole documents:

    toggle:  flip -> emit -> put -> on failure flip the same activity back
    reset:   clear -> emit -> put -> on failure keep the cleared list

Exactly one subscription is live at a time. Every store callback carries the
subscription it was registered with, and callbacks from a subscription that
is no longer current are dropped, so a slow snapshot for an old date can
never overwrite the date the user is looking at now.

All methods must be called from the event loop thread.
"""

import asyncio
from dataclasses import dataclass
from datetime import date
from typing import Callable

from src.schedule_sync.config import SyncConfig, get_config
from src.schedule_sync.dates import parse_calendar_date, shift_date, today_local
from src.schedule_sync.errors import (
    AuthFailure,
    InitializationFailure,
    ReadFailure,
    ResetWriteFailure,
    ScheduleSyncError,
    StoreError,
    ToggleWriteFailure,
)
from src.schedule_sync.identity import IdentityProvider
from src.schedule_sync.logging import get_logger
from src.schedule_sync.models import (
    Activity,
    EngineState,
    ResetPhase,
    ScheduleDocument,
    ScheduleKey,
    SyncStatus,
)
from src.schedule_sync.stores.base import DocumentStore, Unsubscribe
from src.schedule_sync.template import ScheduleTemplate, get_template, merge_with_template

logger = get_logger(__name__)

StateListener = Callable[[EngineState], None]


@dataclass(eq=False)
class _Subscription:
    key: ScheduleKey
    unsubscribe: Unsubscribe | None = None


class ScheduleSyncEngine:
    """Owns the mapping from (subject, date) to a live schedule document."""

    def __init__(
        self,
        store: DocumentStore,
        identity: IdentityProvider,
        *,
        config: SyncConfig | None = None,
        template: ScheduleTemplate | None = None,
    ) -> None:
        self._store = store
        self._identity = identity
        self._config = config or get_config()
        self._template = template or get_template()

        self._subject_id: str | None = None
        self._halted = False
        self._requested_date: str | None = None

        self._current_key: ScheduleKey | None = None
        self._subscription: _Subscription | None = None
        self._activities: list[Activity] = []
        self._document_version: int | None = None
        self._status = SyncStatus.IDLE
        self._error: ScheduleSyncError | None = None
        self._reset_phase = ResetPhase.IDLE

        self._initializing_key: ScheduleKey | None = None
        self._tasks: set[asyncio.Task] = set()
        self._listeners: list[StateListener] = []

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------
    @property
    def subject_id(self) -> str | None:
        return self._subject_id

    @property
    def state(self) -> EngineState:
        return EngineState(
            key=self._current_key,
            status=self._status,
            activities=tuple(self._activities),
            reset_phase=self._reset_phase,
            error=self._error,
        )

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Register a callback for every state change.

        Args:
            listener: Called synchronously with the new EngineState after
                each transition.

        Returns:
            A function that unregisters ``listener``; calling it twice is harmless.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _emit(self) -> None:
        state = self.state
        for listener in list(self._listeners):
            listener(state)

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------
    async def start(self) -> str:
        """Acquire the subject identity and subscribe to any date already selected.

        Raises:
            AuthFailure: Identity could not be acquired. The engine stays halted.
        """
        try:
            subject_id = await self._identity.acquire_identity()
        except AuthFailure as e:
            logger.error("engine_auth_failed", error=str(e))
            self._halted = True
            self._status = SyncStatus.ERROR
            self._error = e
            self._emit()
            raise

        self._subject_id = subject_id
        logger.info("engine_started", subject_id=subject_id)
        if self._requested_date is not None:
            self._subscribe(self._key_for(self._requested_date))
        return subject_id

    def _key_for(self, calendar_date: str) -> ScheduleKey:
        return ScheduleKey(
            app_namespace=self._config.app_id,
            subject_id=self._subject_id,
            calendar_date=calendar_date,
        )

    # ------------------------------------------------------------------
    # Date navigation
    # ------------------------------------------------------------------
    def set_active_date(self, calendar_date: str | date) -> None:
        """Point the engine at ``calendar_date``.

        Tears down the current subscription before subscribing to the new
        key and emits a LOADING state. Re-selecting the active date while
        its subscription is live does nothing. Re-selecting it after a
        ReadFailure subscribes again. A pending reset confirmation is
        cancelled.

        Args:
            calendar_date: ``YYYY-MM-DD`` string or ``datetime.date``.

        Raises:
            InvalidDateError: If ``calendar_date`` is malformed.
        """
        normalized = parse_calendar_date(calendar_date)
        if self._halted:
            logger.warning("set_active_date_ignored", reason="engine_halted", date=normalized)
            return

        self._requested_date = normalized
        if self._subject_id is None:
            # Subscribed by start() once identity is known
            self._status = SyncStatus.LOADING
            self._emit()
            return

        key = self._key_for(normalized)
        if (
            key == self._current_key
            and self._subscription is not None
            and self._subscription.unsubscribe is not None
        ):
            logger.debug("active_date_unchanged", date=normalized)
            return
        self._subscribe(key)

    def go_to_today(self) -> None:
        self.set_active_date(today_local())

    def shift_active_date(self, days: int) -> None:
        """Move to the day ``days`` away from the active date.

        Args:
            days: Offset in days; negative moves to earlier dates.

        Raises:
            RuntimeError: If no date has been selected yet.
        """
        if self._requested_date is None:
            raise RuntimeError("No active date to move from")
        self.set_active_date(shift_date(self._requested_date, days))

    def _subscribe(self, key: ScheduleKey) -> None:
        self._teardown()

        if self._reset_phase is ResetPhase.PENDING_CONFIRMATION:
            logger.info("reset_cancelled", reason="date_changed")
        elif self._reset_phase is ResetPhase.RESETTING:
            # The write for the old date finishes in the background
            logger.info("reset_detached", reason="date_changed")
        self._reset_phase = ResetPhase.IDLE

        self._current_key = key
        self._activities = []
        self._document_version = None
        self._initializing_key = None
        self._status = SyncStatus.LOADING
        self._error = None
        self._emit()

        subscription = _Subscription(key=key)
        self._subscription = subscription
        logger.info("schedule_subscribing", path=key.document_path)
        subscription.unsubscribe = self._store.subscribe(
            key,
            lambda document: self._on_snapshot(subscription, document),
            lambda exc: self._on_read_error(subscription, exc),
        )

    def _teardown(self) -> None:
        subscription = self._subscription
        self._subscription = None
        if subscription is not None and subscription.unsubscribe is not None:
            subscription.unsubscribe()
            subscription.unsubscribe = None
            logger.debug("schedule_unsubscribed", path=subscription.key.document_path)

    def _is_stale(self, subscription: _Subscription) -> bool:
        return subscription is not self._subscription or subscription.key != self._current_key

    # ------------------------------------------------------------------
    # Store callbacks
    # ------------------------------------------------------------------
    def _on_snapshot(
        self, subscription: _Subscription, document: ScheduleDocument | None
    ) -> None:
        key = subscription.key
        if self._is_stale(subscription):
            logger.debug("stale_snapshot_discarded", path=key.document_path)
            return

        if document is None:
            if self._initializing_key == key:
                logger.debug("initialization_in_flight", path=key.document_path)
                return
            self._initialize(key)
            return

        activities = document.activities
        version = document.template_version
        if activities is None:
            logger.warning("schedule_missing_activities", path=key.document_path)
            activities = self._template.fresh_activities()
            version = self._template.version
        elif self._config.reconcile_template and version != self._template.version:
            activities = merge_with_template(activities, self._template)
            version = self._template.version
            logger.info(
                "schedule_reconciled",
                path=key.document_path,
                stored_version=document.template_version,
                template_version=self._template.version,
            )

        self._activities = list(activities)
        self._document_version = version
        self._status = SyncStatus.READY
        logger.debug("schedule_snapshot_applied", path=key.document_path, activities=len(activities))
        self._emit()

    def _on_read_error(self, subscription: _Subscription, exc: Exception) -> None:
        if self._is_stale(subscription):
            logger.debug("stale_error_discarded", path=subscription.key.document_path)
            return

        logger.error("schedule_read_failed", path=subscription.key.document_path, error=str(exc))
        self._teardown()
        self._status = SyncStatus.ERROR
        self._error = ReadFailure(f"Failed to load schedule: {exc}")
        self._emit()

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------
    def _initialize(self, key: ScheduleKey) -> None:
        logger.info("schedule_initializing", path=key.document_path)
        self._initializing_key = key
        self._activities = self._template.fresh_activities()
        self._document_version = self._template.version
        self._status = SyncStatus.READY
        self._emit()

        document = self._document(key)
        task = asyncio.get_running_loop().create_task(self._persist_initial(document))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _persist_initial(self, document: ScheduleDocument) -> None:
        key = document.key
        try:
            await self._store.put(key, document)
        except StoreError as e:
            logger.error("schedule_initialization_failed", path=key.document_path, error=str(e))
            if key == self._current_key:
                self._error = InitializationFailure(
                    f"Failed to save initial schedule for {key.calendar_date}: {e}"
                )
                self._emit()
            return
        logger.info("schedule_initialized", path=key.document_path)

    def _document(self, key: ScheduleKey) -> ScheduleDocument:
        return ScheduleDocument(
            key=key,
            activities=list(self._activities),
            template_version=self._document_version,
        )

    # ------------------------------------------------------------------
    # Toggle
    # ------------------------------------------------------------------
    def _flip(self, activity_id: str) -> None:
        self._activities = [
            a.toggled() if a.id == activity_id else a for a in self._activities
        ]

    async def toggle_activity(self, activity_id: str) -> bool:
        """Flip one activity's ``completed`` flag and persist the whole checklist.

        The flip is shown before the write. If the write fails while the
        same date is still active, the same activity is flipped back and a
        ToggleWriteFailure is surfaced; other activities are untouched.

        Args:
            activity_id: Id of an activity in the active checklist. Unknown
                ids are ignored.

        Returns:
            True if the write succeeded. False for an unknown id or a failed
            write, in which case the flip has already been undone locally.
        """
        key = self._current_key
        if key is None or not any(a.id == activity_id for a in self._activities):
            logger.warning("toggle_ignored", activity_id=activity_id, reason="unknown_activity")
            return False

        self._flip(activity_id)
        self._error = None
        self._emit()

        try:
            await self._store.put(key, self._document(key))
        except StoreError as e:
            logger.error(
                "toggle_write_failed",
                path=key.document_path,
                activity_id=activity_id,
                error=str(e),
            )
            if key != self._current_key:
                # The list on screen belongs to another date now
                return False
            self._flip(activity_id)
            self._error = ToggleWriteFailure(f"Failed to save progress: {e}")
            self._emit()
            return False

        logger.debug("toggle_saved", path=key.document_path, activity_id=activity_id)
        return True

    # ------------------------------------------------------------------
    # Reset (Idle -> PendingConfirmation -> Resetting -> Idle)
    # ------------------------------------------------------------------
    @property
    def reset_phase(self) -> ResetPhase:
        return self._reset_phase

    def request_reset(self, calendar_date: str | date | None = None) -> None:
        """Ask to clear the active date. Nothing is written until confirm_reset().

        Raises:
            RuntimeError: If no date is active.
            ValueError: If ``calendar_date`` is not the active date.
        """
        if self._current_key is None:
            raise RuntimeError("No active date to reset")
        if calendar_date is not None:
            requested = parse_calendar_date(calendar_date)
            if requested != self._current_key.calendar_date:
                raise ValueError(
                    f"Cannot reset {requested}: active date is {self._current_key.calendar_date}"
                )
        if self._reset_phase is not ResetPhase.IDLE:
            logger.debug("reset_request_ignored", phase=self._reset_phase.value)
            return

        self._reset_phase = ResetPhase.PENDING_CONFIRMATION
        logger.info("reset_requested", date=self._current_key.calendar_date)
        self._emit()

    def cancel_reset(self) -> None:
        if self._reset_phase is not ResetPhase.PENDING_CONFIRMATION:
            return
        self._reset_phase = ResetPhase.IDLE
        logger.info("reset_cancelled", reason="user")
        self._emit()

    async def confirm_reset(self) -> bool:
        """Clear every activity for the active date and persist it.

        A failed write leaves the cleared list in place and surfaces a
        ResetWriteFailure; previous progress is not restored.

        Returns:
            True if the reset was persisted.
        """
        if self._reset_phase is not ResetPhase.PENDING_CONFIRMATION:
            logger.warning("reset_confirm_ignored", phase=self._reset_phase.value)
            return False

        key = self._current_key
        self._reset_phase = ResetPhase.RESETTING
        self._activities = self._template.fresh_activities()
        self._document_version = self._template.version
        self._error = None
        self._emit()

        try:
            await self._store.put(key, self._document(key))
        except StoreError as e:
            logger.error("reset_write_failed", path=key.document_path, error=str(e))
            if key == self._current_key:
                self._error = ResetWriteFailure(f"Failed to reset schedule: {e}")
            return False
        finally:
            # After navigation the phase belongs to the new date
            if key == self._current_key and self._reset_phase is ResetPhase.RESETTING:
                self._reset_phase = ResetPhase.IDLE
                self._emit()

        logger.info("schedule_reset", path=key.document_path)
        return True

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------
    def close(self) -> None:
        """Drop the live subscription and cancel pending initialization writes."""
        self._teardown()
        for task in list(self._tasks):
            task.cancel()
        self._listeners.clear()
        logger.info("engine_closed")
