"""Date-scoped daily schedule synchronization.

Keeps a per-date checklist of routine activities in sync with a remote
document store, with optimistic edits and safe date navigation.
"""

from src.schedule_sync.bootstrap import create_engine
from src.schedule_sync.config import SyncConfig, get_config
from src.schedule_sync.engine import ScheduleSyncEngine
from src.schedule_sync.models import (
    Activity,
    EngineState,
    ResetPhase,
    ScheduleDocument,
    ScheduleKey,
    Section,
    SyncStatus,
)
from src.schedule_sync.template import DEFAULT_TEMPLATE, ScheduleTemplate, get_template

__all__ = [
    "Activity",
    "DEFAULT_TEMPLATE",
    "EngineState",
    "ResetPhase",
    "ScheduleDocument",
    "ScheduleKey",
    "ScheduleSyncEngine",
    "ScheduleTemplate",
    "Section",
    "SyncConfig",
    "SyncStatus",
    "create_engine",
    "get_config",
    "get_template",
]
