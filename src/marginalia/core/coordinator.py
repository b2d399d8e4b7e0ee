"""Change coordinator: the only writer of the graph index.

Every mutation (edit, rename, create, delete, external file change) marks notes
dirty. `drain()` re-resolves the dirty notes whose debounce window has passed,
`flush()` re-resolves all of them. Per note the state goes

    clean -> dirty -> resolving -> clean

Store I/O (reading the body, writing auto-created notes) happens before the
commit lock is taken; the commit itself only checks that the note still exists
and swaps its outbound set in the index.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from .catalog import CorpusSnapshot, NoteCatalog
from .errors import NoteNotFound, StoreIOFailure, TemplateNotFound
from .graph import GraphIndex
from .model import (
    ChangeEvent,
    ChangeKind,
    Note,
    NoteId,
    NoteMeta,
    NoteState,
    ResolutionCollision,
    ResolvedLink,
)
from .ports import Clock, IdGenerator, NoteStore, ParserStrategy, TemplateSource
from .resolver import TitleResolver
from .templates import render_template
from .utils import context_snippet, normalize_title, utcnow

logger = logging.getLogger(__name__)

Subscriber = Callable[[ChangeEvent], None]


@dataclass(frozen=True)
class BacklinkView:
    source_note_id: NoteId
    source_title: str
    raw_target: str
    dangling: bool
    context: str = ""


class ChangeCoordinator:
    def __init__(
        self,
        store: NoteStore,
        parser: ParserStrategy,
        idgen: IdGenerator,
        *,
        index: GraphIndex | None = None,
        catalog: NoteCatalog | None = None,
        resolver: TitleResolver | None = None,
        templates: TemplateSource | None = None,
        debounce_ms: int = 300,
        clock: Clock = utcnow,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.parser = parser
        self.idgen = idgen
        self.index = index if index is not None else GraphIndex()
        self.catalog = catalog if catalog is not None else NoteCatalog()
        self.resolver = resolver or TitleResolver(store, idgen, clock)
        self.templates = templates
        self.debounce = debounce_ms / 1000.0
        self.clock = clock
        self.timer = timer

        self._state_lock = threading.Lock()
        self._drain_lock = threading.RLock()
        self._commit_lock = threading.RLock()
        self._seq = 0
        # id -> (edit sequence number, time of last edit)
        self._dirty: dict[NoteId, tuple[int, float]] = {}
        self._resolving: set[NoteId] = set()
        self._failed: dict[NoteId, str] = {}
        self._subscribers: list[Subscriber] = []
        self.collisions: dict[str, ResolutionCollision] = {}

    # notifications

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register for change events; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _emit(self, note_id: NoteId, kind: ChangeKind) -> None:
        event = ChangeEvent(note_id, kind)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Subscriber failed on %s", event)

    # startup

    def bootstrap(self) -> dict[str, int]:
        """Rebuild catalog and graph from a full scan of the store."""
        with self._drain_lock:
            self.index.clear()
            self.catalog.clear()
            with self._state_lock:
                self._dirty.clear()
                self._failed.clear()
            self.collisions.clear()
            notes = list(self.store.list())
            for note in notes:
                self.catalog.put(NoteMeta.of(note))
                self._mark_dirty(note.id, immediate=True)
        counts = self.flush()
        counts["notes"] = len(notes)
        logger.info("Bootstrapped %d notes: %s", len(notes), counts)
        return counts

    # mutations

    def create_note(self, title: str, body: str = "", template: str | None = None) -> Note:
        """
        Create and register a note. With `template`, the rendered template
        comes first and `body` is appended after it.

        Raises TemplateNotFound for an unknown template id.
        """
        title = title.strip()
        if not title:
            raise ValueError("note title must not be empty")
        now = self.clock()
        if template:
            if self.templates is None:
                raise TemplateNotFound(template)
            rendered = render_template(self.templates.get(template).content, now.astimezone(), title)
            body = rendered + body if not body or rendered.endswith("\n") else f"{rendered}\n{body}"
        note = Note(
            id=self.idgen.new_id(),
            title=title,
            body=body,
            created_at=now,
            updated_at=now,
        )
        self.register_note(note)
        return note

    def register_note(self, note: Note) -> None:
        """Persist a brand-new note and start tracking it."""
        self.store.write(note)
        self.catalog.put(NoteMeta.of(note))
        self._mark_dirty(note.id)
        self._enqueue_mentions(note.title, exclude=note.id)
        if note.date_key:
            self._enqueue_mentions(note.date_key, exclude=note.id)
        self._emit(note.id, ChangeKind.CREATED)

    def update_note(
        self, id: NoteId, *, title: str | None = None, body: str | None = None
    ) -> Note:
        if id not in self.catalog:
            raise NoteNotFound(id)
        note = self.store.require(id)
        old_title = note.title
        if title is not None:
            title = title.strip()
            if not title:
                raise ValueError("note title must not be empty")
            note.title = title
        if body is not None:
            note.body = body
        note.updated_at = self.clock()
        self.store.write(note)
        self._track(note, old_title)
        self._emit(id, ChangeKind.UPDATED)
        return note

    def rename_note(self, id: NoteId, title: str) -> Note:
        return self.update_note(id, title=title)

    def delete_note(self, id: NoteId) -> None:
        if id not in self.catalog and self.store.read(id) is None:
            raise NoteNotFound(id)
        self.store.delete(id)
        self._forget(id)

    def note_changed_externally(self, id: NoteId) -> None:
        """A file was added or edited behind our back (watcher)."""
        note = self.store.read(id)
        if note is None:
            self.note_removed_externally(id)
            return
        prev = self.catalog.get(id)
        if prev is None:
            self.catalog.put(NoteMeta.of(note))
            self._mark_dirty(id)
            self._enqueue_mentions(note.title, exclude=id)
            if note.date_key:
                self._enqueue_mentions(note.date_key, exclude=id)
            self._emit(id, ChangeKind.CREATED)
        else:
            self._track(note, prev.title)
            self._emit(id, ChangeKind.UPDATED)

    def note_removed_externally(self, id: NoteId) -> None:
        if id in self.catalog:
            self._forget(id)

    def _track(self, note: Note, old_title: str) -> None:
        self.catalog.put(NoteMeta.of(note))
        self._mark_dirty(note.id)
        if normalize_title(old_title) != normalize_title(note.title):
            mentions = self.index.rename_note(note.id, old_title, note.title)
            for src in mentions:
                if src in self.catalog:
                    self._mark_dirty(src)
            logger.debug(
                "Rename %r -> %r queued %d notes", old_title, note.title, len(mentions)
            )

    def _forget(self, id: NoteId) -> None:
        with self._commit_lock:
            self.catalog.remove(id)
            with self._state_lock:
                self._dirty.pop(id, None)
                self._failed.pop(id, None)
            affected = self.index.remove_note(id)
        self._emit(id, ChangeKind.DELETED)
        for src in sorted(affected - {id}):
            self._emit(src, ChangeKind.LINKS_CHANGED)

    def _enqueue_mentions(self, title: str, exclude: NoteId | set[NoteId]) -> None:
        skip = {exclude} if isinstance(exclude, str) else exclude
        for src in self.index.sources_mentioning(title):
            if src not in skip and src in self.catalog:
                self._mark_dirty(src)

    def _mark_dirty(self, id: NoteId, immediate: bool = False) -> None:
        with self._state_lock:
            self._seq += 1
            # immediate entries are due on the next drain
            stamp = float("-inf") if immediate else self.timer()
            self._dirty[id] = (self._seq, stamp)

    # resolution

    def drain(self) -> dict[str, int]:
        """Re-resolve dirty notes whose debounce window has elapsed."""
        now = self.timer()
        return self._process(lambda stamp: now - stamp >= self.debounce)

    def flush(self) -> dict[str, int]:
        """Re-resolve every dirty note now."""
        return self._process(lambda stamp: True)

    def _process(self, due: Callable[[float], bool]) -> dict[str, int]:
        counts = {"resolved": 0, "created": 0, "failed": 0, "discarded": 0}
        with self._drain_lock:
            with self._state_lock:
                batch = [
                    (id, seq)
                    for id, (seq, stamp) in sorted(self._dirty.items())
                    if due(stamp) and id not in self._resolving
                ]
                self._resolving.update(id for id, _ in batch)
            if not batch:
                return counts

            batch_ids = {id for id, _ in batch}
            try:
                snapshot = self.catalog.snapshot()
                for id, seq in batch:
                    try:
                        self._resolve_note(id, seq, snapshot, counts, batch_ids)
                    except Exception as e:
                        # one bad note must not stall the rest of the batch
                        logger.exception("Resolving %s failed", id)
                        self._fail(id, e, counts)
                    finally:
                        with self._state_lock:
                            self._resolving.discard(id)
            finally:
                with self._state_lock:
                    self._resolving.difference_update(batch_ids)
            self._prune_collisions()
        if counts["failed"]:
            logger.warning("%d notes left dirty after drain", counts["failed"])
        return counts

    def _resolve_note(
        self,
        id: NoteId,
        seq: int,
        snapshot: CorpusSnapshot,
        counts: dict[str, int],
        batch_ids: set[NoteId],
    ) -> None:
        created: list[Note] = []
        links: list[ResolvedLink] = []
        try:
            note = self.store.read(id)
            if note is not None:
                for token in self.parser.parse(note.body, id):
                    res = self.resolver.resolve(token.raw_target, snapshot)
                    if res.note is not None:
                        created.append(res.note)
                    if res.collision is not None:
                        self.collisions[normalize_title(token.raw_target)] = res.collision
                    links.append(
                        ResolvedLink(
                            source_note_id=id,
                            target_note_id=res.target_note_id,
                            raw_target=token.raw_target,
                            position=token.span_start,
                        )
                    )
        except StoreIOFailure as e:
            logger.warning("Links of %s stay stale until next drain: %s", id, e)
            self._fail(id, e, counts)
            return
        finally:
            self._adopt(created, counts, exclude=batch_ids)

        with self._commit_lock:
            if note is None or id not in self.catalog:
                # deleted while resolving
                self._clear_dirty(id, seq)
                counts["discarded"] += 1
                logger.debug("Discarding resolution of deleted note %s", id)
                return
            changed = self.index.apply_delta(id, links)
            self._clear_dirty(id, seq)
        counts["resolved"] += 1
        if changed:
            self._emit(id, ChangeKind.LINKS_CHANGED)

    def _fail(self, id: NoteId, error: Exception, counts: dict[str, int]) -> None:
        # the note stays dirty, so the next drain retries it
        with self._state_lock:
            self._failed[id] = str(error) or type(error).__name__
        counts["failed"] += 1

    def _prune_collisions(self) -> None:
        for key in list(self.collisions):
            if len(self.catalog.with_title(key)) < 2:
                del self.collisions[key]

    def _clear_dirty(self, id: NoteId, seq: int) -> None:
        with self._state_lock:
            self._failed.pop(id, None)
            entry = self._dirty.get(id)
            # an edit that arrived mid-resolution keeps the note dirty
            if entry is not None and entry[0] == seq:
                del self._dirty[id]

    def _adopt(
        self,
        created: Iterable[Note],
        counts: dict[str, int] | None = None,
        exclude: set[NoteId] = frozenset(),
    ) -> None:
        # notes of the running batch already resolve against the pass snapshot
        for note in created:
            self.catalog.put(NoteMeta.of(note))
            self._enqueue_mentions(note.title, exclude=exclude | {note.id})
            if counts is not None:
                counts["created"] += 1
            self._emit(note.id, ChangeKind.CREATED)

    # queries

    def state(self, id: NoteId) -> NoteState:
        with self._state_lock:
            if id in self._resolving:
                return NoteState.RESOLVING
            if id in self._dirty:
                return NoteState.DIRTY
        if id in self.catalog:
            return NoteState.CLEAN
        raise NoteNotFound(id)

    def dirty_ids(self) -> list[NoteId]:
        with self._state_lock:
            return sorted(self._dirty)

    def pending(self) -> dict[NoteId, str]:
        """Notes whose last resolution failed (sync pending), with the error."""
        with self._state_lock:
            return dict(self._failed)

    def get_note(self, id: NoteId) -> Note:
        return self.store.require(id)

    def get_outbound_links(self, id: NoteId) -> list[ResolvedLink]:
        return self.index.outbound_in_order(id)

    def get_backlinks(self, id: NoteId, context: bool = True) -> list[BacklinkView]:
        views = []
        bodies: dict[NoteId, str] = {}
        for b in self.index.get_inbound(id):
            if b.source_note_id == id:
                continue
            meta = self.catalog.get(b.source_note_id)
            snippet = ""
            if context:
                if b.source_note_id not in bodies:
                    try:
                        note = self.store.read(b.source_note_id)
                    except StoreIOFailure as e:
                        logger.warning("No backlink context: %s", e)
                        note = None
                    bodies[b.source_note_id] = note.body if note else ""
                snippet = self._context(bodies[b.source_note_id], b.raw_target)
            views.append(
                BacklinkView(
                    source_note_id=b.source_note_id,
                    source_title=meta.title if meta else b.source_note_id,
                    raw_target=b.raw_target,
                    dangling=b.dangling,
                    context=snippet,
                )
            )
        views.sort(key=lambda v: (v.source_title.casefold(), v.source_note_id, v.raw_target))
        return views

    def _context(self, body: str, raw_target: str) -> str:
        for token in self.parser.parse(body):
            if token.raw_target == raw_target:
                return context_snippet(body, token.span_start, token.span_end)
        return ""

    def preview_link(self, raw_target: str) -> NoteMeta | None:
        """Hover/preview: never creates."""
        nid = self.resolver.lookup(raw_target, self.catalog.snapshot())
        return self.catalog.get(nid) if nid else None

    def resolve_link_click(self, raw_target: str, create: bool = True) -> NoteId | None:
        """
        Navigation target for a clicked link. With create=True a missing target
        is created, as it would be while resolving; otherwise None is returned.
        """
        if not create:
            return self.resolver.lookup(raw_target, self.catalog.snapshot())
        with self._drain_lock:
            res = self.resolver.resolve(raw_target, self.catalog.snapshot())
        if res.note is not None:
            self._adopt([res.note])
        return res.target_note_id


class DrainLoop(threading.Thread):
    """Background thread calling coordinator.drain() every `interval` seconds."""

    def __init__(self, coordinator: ChangeCoordinator, interval: float = 0.1):
        super().__init__(name="marginalia-drain", daemon=True)
        self.coordinator = coordinator
        self.interval = interval
        self._stopped = threading.Event()

    def run(self) -> None:
        while not self._stopped.wait(self.interval):
            try:
                self.coordinator.drain()
            except Exception:
                logger.exception("Drain failed")

    def stop(self) -> None:
        self._stopped.set()
