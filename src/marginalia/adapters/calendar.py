"""Calendar sources for daily-note agendas."""

import json
import logging
from datetime import datetime
from pathlib import Path

from ..core.model import CalendarEvent
from ..core.ports import CalendarSource

logger = logging.getLogger(__name__)


def _local(dt: datetime) -> datetime:
    # compare everything as naive local wall-clock time
    return dt.astimezone().replace(tzinfo=None) if dt.tzinfo else dt


class NullCalendar(CalendarSource):
    def events_between(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        return []


class JsonCalendar(CalendarSource):
    """
    Events exported to a JSON file:

        [{"title": "Standup", "start": "2024-03-01T09:00", "end": "2024-03-01T09:15"}]

    The file is re-read on every call; entries missing a field are skipped.
    """

    def __init__(self, path: Path):
        self.path = path

    def _load(self) -> list[CalendarEvent]:
        data = json.loads(self.path.read_text(encoding="utf-8"))
        events = []
        for item in data if isinstance(data, list) else []:
            try:
                events.append(
                    CalendarEvent(
                        title=str(item["title"]),
                        start_time=datetime.fromisoformat(item["start"]),
                        end_time=datetime.fromisoformat(item["end"]),
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.debug("Skipping calendar entry %r: %s", item, e)
        return events

    def events_between(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        lo, hi = _local(start), _local(end)
        return [
            ev
            for ev in self._load()
            if _local(ev.start_time) < hi and _local(ev.end_time) > lo
        ]
