"""Daily notes: one note per calendar date, created on first access."""

from __future__ import annotations

import logging
import threading
from datetime import date, datetime, time, timedelta

from .coordinator import ChangeCoordinator
from .model import CalendarEvent, Note, NoteKind
from .ports import CalendarSource, Clock
from .templates import render_template
from .utils import utcnow

logger = logging.getLogger(__name__)

DAILY_PREFIX = "daily-"


def date_key(day: date | datetime) -> str:
    """
    Examples:
        >>> date_key(date(2024, 3, 1))
        '2024-03-01'
    """
    if isinstance(day, datetime):
        day = day.date()
    return day.isoformat()


def daily_id(key: str) -> str:
    """Deterministic note id for a "YYYY-MM-DD" key."""
    return f"{DAILY_PREFIX}{key}"


def daily_title(day: date | datetime) -> str:
    """
    Examples:
        >>> daily_title(date(2024, 3, 1))
        'Friday, March 1, 2024'
    """
    if isinstance(day, datetime):
        day = day.date()
    return f"{day:%A}, {day:%B} {day.day}, {day.year}"


def format_agenda(events: list[CalendarEvent]) -> str:
    if not events:
        return ""
    lines = ["## Agenda", ""]
    for ev in sorted(events, key=lambda e: e.start_time):
        lines.append(f"- {ev.start_time:%H:%M}-{ev.end_time:%H:%M} {ev.title}")
    return "\n".join(lines) + "\n"


class DailyNoteScheduler:
    """
    get_or_create_daily() is a check-then-create critical section per date key,
    so concurrent callers for the same day always get the same note.
    """

    def __init__(
        self,
        coordinator: ChangeCoordinator,
        calendar: CalendarSource | None = None,
        template: str = "",
        agenda: bool = False,
        clock: Clock = utcnow,
    ):
        self.coordinator = coordinator
        self.calendar = calendar
        self.template = template
        self.include_agenda = agenda
        self.clock = clock
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    def today(self) -> Note:
        return self.get_or_create_daily(self.clock().astimezone().date())

    def find_daily(self, day: date | datetime) -> Note | None:
        key = date_key(day)
        store = self.coordinator.store
        nid = self.coordinator.catalog.find_daily(key)
        if nid is not None:
            note = store.read(nid)
            if note is not None:
                return note
        note = store.read(daily_id(key))
        if note is not None and note.is_daily:
            return note
        return None

    def get_or_create_daily(self, day: date | datetime) -> Note:
        key = date_key(day)
        with self._lock_for(key):
            existing = self.find_daily(day)
            if existing is not None:
                if existing.id not in self.coordinator.catalog:
                    # on disk but not yet seen by this process
                    self.coordinator.note_changed_externally(existing.id)
                return existing

            now = self.clock()
            title = daily_title(day)
            note = Note(
                id=daily_id(key),
                title=title,
                body=self._initial_body(day, title),
                kind=NoteKind.DAILY,
                date_key=key,
                created_at=now,
                updated_at=now,
            )
            self.coordinator.register_note(note)
            logger.info("Created daily note %s", note.id)
            return note

    def _initial_body(self, day: date | datetime, title: str) -> str:
        if isinstance(day, datetime):
            day = day.date()
        body = render_template(self.template, datetime.combine(day, self.clock().time()), title)
        if self.include_agenda:
            agenda = format_agenda(self.agenda(day))
            if agenda:
                body = f"{body.rstrip()}\n\n{agenda}" if body.strip() else agenda
        return body

    def agenda(self, day: date | datetime) -> list[CalendarEvent]:
        """The day's calendar events; empty when the calendar is unavailable."""
        if self.calendar is None:
            return []
        if isinstance(day, datetime):
            day = day.date()
        start = datetime.combine(day, time.min)
        try:
            return self.calendar.events_between(start, start + timedelta(days=1))
        except Exception as e:
            logger.warning("Calendar unavailable for %s: %s", date_key(day), e)
            return []
