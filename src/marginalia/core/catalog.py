"""In-memory registry of note metadata (no bodies), keyed by id and title."""

from __future__ import annotations

import threading
from collections import defaultdict

from .model import NoteId, NoteKind, NoteMeta
from .utils import normalize_title


class CorpusSnapshot:
    """
    Title table frozen at the start of one resolution pass.

    Winners picked for ambiguous titles and notes created during the pass are
    remembered here, so every token of the pass sees the same answer.
    """

    def __init__(
        self,
        by_title: dict[str, tuple[NoteMeta, ...]],
        daily: dict[str, NoteId] | None = None,
    ):
        self._by_title = by_title
        self._daily = daily or {}
        self._winners: dict[str, NoteId] = {}

    def candidates(self, key: str) -> tuple[NoteMeta, ...]:
        return self._by_title.get(key, ())

    def daily(self, date_key: str) -> NoteId | None:
        """Daily note for a YYYY-MM-DD key."""
        return self._daily.get(date_key)

    def winner(self, key: str) -> NoteId | None:
        return self._winners.get(key)

    def remember(self, key: str, note_id: NoteId) -> None:
        self._winners[key] = note_id

    def add(self, meta: NoteMeta) -> None:
        key = normalize_title(meta.title)
        self._by_title[key] = self._by_title.get(key, ()) + (meta,)
        self._winners[key] = meta.id

    def __len__(self) -> int:
        return sum(len(v) for v in self._by_title.values())


class NoteCatalog:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._notes: dict[NoteId, NoteMeta] = {}
        self._by_title: dict[str, set[NoteId]] = defaultdict(set)
        self._daily: dict[str, NoteId] = {}

    def put(self, meta: NoteMeta) -> NoteMeta | None:
        """Insert or replace; returns the previous entry."""
        with self._lock:
            prev = self._notes.get(meta.id)
            if prev is not None:
                self._unlink(prev)
            self._notes[meta.id] = meta
            self._by_title[normalize_title(meta.title)].add(meta.id)
            if meta.kind is NoteKind.DAILY and meta.date_key:
                self._daily.setdefault(meta.date_key, meta.id)
            return prev

    def remove(self, id: NoteId) -> NoteMeta | None:
        with self._lock:
            prev = self._notes.pop(id, None)
            if prev is not None:
                self._unlink(prev)
            return prev

    def _unlink(self, meta: NoteMeta) -> None:
        key = normalize_title(meta.title)
        ids = self._by_title.get(key)
        if ids is not None:
            ids.discard(meta.id)
            if not ids:
                del self._by_title[key]
        if meta.date_key and self._daily.get(meta.date_key) == meta.id:
            del self._daily[meta.date_key]

    def get(self, id: NoteId) -> NoteMeta | None:
        with self._lock:
            return self._notes.get(id)

    def __contains__(self, id: object) -> bool:
        with self._lock:
            return id in self._notes

    def __len__(self) -> int:
        with self._lock:
            return len(self._notes)

    def ids(self) -> list[NoteId]:
        with self._lock:
            return sorted(self._notes)

    def all(self) -> list[NoteMeta]:
        with self._lock:
            return [self._notes[i] for i in sorted(self._notes)]

    def find_daily(self, date_key: str) -> NoteId | None:
        with self._lock:
            return self._daily.get(date_key)

    def with_title(self, title: str) -> list[NoteMeta]:
        with self._lock:
            ids = self._by_title.get(normalize_title(title), set())
            return [self._notes[i] for i in sorted(ids)]

    def collisions(self) -> dict[str, list[NoteMeta]]:
        """Normalized titles shared by more than one note."""
        with self._lock:
            return {
                key: [self._notes[i] for i in sorted(ids)]
                for key, ids in self._by_title.items()
                if len(ids) > 1
            }

    def snapshot(self) -> CorpusSnapshot:
        with self._lock:
            daily = dict(self._daily)
            table = {
                key: tuple(self._notes[i] for i in sorted(ids))
                for key, ids in self._by_title.items()
            }
        return CorpusSnapshot(table, daily)

    def clear(self) -> None:
        with self._lock:
            self._notes.clear()
            self._by_title.clear()
            self._daily.clear()
