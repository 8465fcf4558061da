"""The daily routine template used to materialize a new day's checklist.

The template is static configuration. Its ``version`` is stamped on every
document created from it so that documents created under an older routine
can be recognized later (see ``merge_with_template``).
"""

from dataclasses import dataclass
from typing import Iterable

from src.schedule_sync.models import Activity, Section, group_by_section

__all__ = [
    "DEFAULT_TEMPLATE",
    "ScheduleTemplate",
    "get_template",
    "group_by_section",
    "merge_with_template",
]


@dataclass(frozen=True)
class ScheduleTemplate:
    version: int
    activities: tuple[Activity, ...]

    def fresh_activities(self) -> list[Activity]:
        """Template activities with every ``completed`` set to False."""
        return [a.cleared() for a in self.activities]

    @property
    def ids(self) -> list[str]:
        return [a.id for a in self.activities]


def _activity(id: str, time: str, description: str, icon: str, section: Section) -> Activity:
    return Activity(id=id, time=time, description=description, icon=icon, section=section)


DEFAULT_TEMPLATE = ScheduleTemplate(
    version=1,
    activities=(
        _activity("morning-wakeup-fajr", "5:30 AM", "Wakeup, Brush & Fajr Namaz", "⏰🦷🕌", Section.MORNING),
        _activity("morning-bath", "06:00 - 06:30 AM", "Bath Time", "🛀", Section.MORNING),
        _activity("morning-books-reading", "6:30 - 07:00 AM", "Books Reading", "📚", Section.MORNING),
        _activity("morning-writing", "07:00 - 07:30 AM", "Writing Practice", "✍️", Section.MORNING),
        _activity("morning-breakfast-homework", "07:30 - 08:30 AM", "Breakfast & School Homework", "🍳🏫📝", Section.MORNING),
        _activity("morning-get-ready", "08:30 - 09:00 AM", "Get Ready for School", "🎒", Section.MORNING),
        _activity("afternoon-freshen-up", "03:00 - 03:30 PM", "Freshen Up After School", "🚿👕", Section.AFTERNOON),
        _activity("afternoon-tuitions", "03:30 - 04:50 PM", "Tuitions", "🧑‍🏫", Section.AFTERNOON),
        _activity("afternoon-islamic-studies", "05:00 - 06:00 PM", "Islamic Studies", "📖⭐", Section.AFTERNOON),
        _activity("evening-dinner-screentime", "06:00 - 07:30 PM", "Dinner & Screen Time", "🍽️📱", Section.EVENING),
        _activity("evening-playtime", "07:30 - 08:00 PM", "Play Time Outside", "⚽🌳", Section.EVENING),
        _activity("evening-brush-story", "08:00 - 08:30 PM", "Brush & Story Reading", "🦷📖", Section.EVENING),
        _activity("evening-sleep", "08:30 PM", "Sweet Dreams! (Sleep)", "😴", Section.EVENING),
    ),
)


def get_template() -> ScheduleTemplate:
    return DEFAULT_TEMPLATE


def merge_with_template(
    activities: Iterable[Activity], template: ScheduleTemplate
) -> list[Activity]:
    """Bring a stored checklist up to date with the current template.

    Stored activities keep their position and completion state, including
    ids the template no longer has. Template activities missing from the
    stored list are appended in template order, not completed.
    """
    merged = list(activities)
    present = {a.id for a in merged}
    for activity in template.activities:
        if activity.id not in present:
            merged.append(activity.cleared())
    return merged
