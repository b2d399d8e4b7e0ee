"""Title-based link resolution."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from .catalog import CorpusSnapshot
from .model import Note, NoteId, NoteMeta, ResolutionCollision
from .ports import Clock, IdGenerator, NoteStore
from .utils import normalize_title, utcnow

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class Resolution:
    target_note_id: NoteId
    created: bool = False
    note: Note | None = None  # set when created
    collision: ResolutionCollision | None = None


def _recency(meta: NoteMeta) -> tuple[datetime, NoteId]:
    return (meta.updated_at or _EPOCH, meta.id)


class TitleResolver:
    """
    Maps a raw link target to a note id by normalized title.

    Ambiguous titles go to the most recently updated note (ties: highest id).
    A target matching no title but a daily note's date resolves to that note.
    The choice is memoised on the snapshot, so it cannot change within a pass.
    Never touches the graph index; creation is reported via Resolution.created.
    """

    def __init__(self, store: NoteStore, idgen: IdGenerator, clock: Clock = utcnow):
        self.store = store
        self.idgen = idgen
        self.clock = clock

    def _match(
        self, raw_target: str, snapshot: CorpusSnapshot
    ) -> tuple[NoteId | None, ResolutionCollision | None]:
        key = normalize_title(raw_target)
        if not key:
            raise ValueError("empty link target")
        candidates = snapshot.candidates(key)
        chosen = snapshot.winner(key)
        if chosen is None and not candidates:
            # [[2024-03-01]] names the daily note of that date
            chosen = snapshot.daily(raw_target.strip())
            if chosen is not None:
                snapshot.remember(key, chosen)
        elif chosen is None:
            chosen = max(candidates, key=_recency).id
            snapshot.remember(key, chosen)
            if len(candidates) > 1:
                logger.warning(
                    "Title %r matches %d notes (%s); using %s",
                    raw_target,
                    len(candidates),
                    ", ".join(c.id for c in candidates),
                    chosen,
                )
        collision = None
        if chosen is not None and len(candidates) > 1:
            collision = ResolutionCollision(
                raw_target=raw_target,
                candidates=tuple(c.id for c in candidates),
                winner=chosen,
            )
        return chosen, collision

    def lookup(self, raw_target: str, snapshot: CorpusSnapshot) -> NoteId | None:
        """Read-only resolution; None when nothing matches."""
        return self._match(raw_target, snapshot)[0]

    def resolve(self, raw_target: str, snapshot: CorpusSnapshot) -> Resolution:
        """
        Resolve, creating a note titled `raw_target` when nothing matches.

        Raises StoreIOFailure if the new note cannot be written.
        """
        chosen, collision = self._match(raw_target, snapshot)
        if chosen is not None:
            return Resolution(chosen, collision=collision)

        now = self.clock()
        note = Note(
            id=self.idgen.new_id(),
            title=raw_target.strip(),
            created_at=now,
            updated_at=now,
        )
        self.store.write(note)
        snapshot.add(NoteMeta.of(note))
        logger.info("Created note %s for link target %r", note.id, note.title)
        return Resolution(note.id, created=True, note=note)
