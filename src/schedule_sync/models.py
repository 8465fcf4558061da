"""Pydantic models for daily schedule data.

All data structures use Pydantic v2 for validation, serialization, and type safety.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.schedule_sync.errors import ScheduleSyncError

SCHEDULES_COLLECTION = "dailySchedules"


class Section(str, Enum):
    """Part of the day an activity belongs to. Declaration order is display order."""

    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"


class Activity(BaseModel):
    """A single checklist entry of the daily routine.

    Everything except ``completed`` comes from the template and is treated
    as immutable for a given template version.
    """

    id: str  # stable within a template, e.g. "morning-bath"
    time: str  # display string, e.g. "06:00 - 06:30 AM"
    description: str
    icon: str  # display glyphs
    completed: bool = False
    section: Section

    def toggled(self) -> "Activity":
        return self.model_copy(update={"completed": not self.completed})

    def cleared(self) -> "Activity":
        return self.model_copy(update={"completed": False})


def group_by_section(activities) -> dict[Section, list[Activity]]:
    """Group activities for display, keeping their relative order within a section."""
    grouped: dict[Section, list[Activity]] = {section: [] for section in Section}
    for activity in activities:
        grouped[activity.section].append(activity)
    return grouped


class ScheduleKey(BaseModel):
    """Identifies one day document for one subject."""

    model_config = ConfigDict(frozen=True)

    app_namespace: str
    subject_id: str
    calendar_date: str  # YYYY-MM-DD, local calendar

    @property
    def document_path(self) -> str:
        return (
            f"artifacts/{self.app_namespace}/users/{self.subject_id}/"
            f"{SCHEDULES_COLLECTION}/{self.calendar_date}"
        )


class ScheduleDocument(BaseModel):
    """The stored checklist for one (subject, date) key.

    Activity order is template insertion order and is preserved on every
    read and write. ``activities`` is None when a stored payload has no
    activities field at all; readers fall back to the template then.
    """

    key: ScheduleKey
    activities: list[Activity] | None = Field(default_factory=list)
    template_version: int | None = None

    def to_payload(self) -> dict[str, Any]:
        """Wire representation: what a store persists under the key's path."""
        payload: dict[str, Any] = {
            "activities": [a.model_dump(mode="json") for a in self.activities or []],
        }
        if self.template_version is not None:
            payload["templateVersion"] = self.template_version
        return payload

    @classmethod
    def from_payload(cls, key: ScheduleKey, payload: dict[str, Any]) -> "ScheduleDocument":
        """Parse a stored payload. A missing or null ``activities`` stays None."""
        return cls(
            key=key,
            activities=payload.get("activities"),
            template_version=payload.get("templateVersion"),
        )


class SyncStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class ResetPhase(str, Enum):
    IDLE = "idle"
    PENDING_CONFIRMATION = "pending_confirmation"
    RESETTING = "resetting"


class EngineState(BaseModel):
    """Immutable view of the engine emitted to observers after every transition."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    key: ScheduleKey | None = None
    status: SyncStatus = SyncStatus.IDLE
    activities: tuple[Activity, ...] = ()
    reset_phase: ResetPhase = ResetPhase.IDLE
    error: ScheduleSyncError | None = None

    @property
    def calendar_date(self) -> str | None:
        return self.key.calendar_date if self.key else None

    @property
    def completed_count(self) -> int:
        return sum(1 for a in self.activities if a.completed)

    def by_section(self) -> dict[Section, list[Activity]]:
        return group_by_section(self.activities)

    def activity(self, activity_id: str) -> Activity | None:
        for a in self.activities:
            if a.id == activity_id:
                return a
        return None
