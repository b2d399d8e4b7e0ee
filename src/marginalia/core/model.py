from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum

NoteId = str


class NoteKind(str, Enum):
    NORMAL = "normal"
    DAILY = "daily"


class NoteState(str, Enum):
    CLEAN = "clean"
    DIRTY = "dirty"
    RESOLVING = "resolving"


class ChangeKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    LINKS_CHANGED = "links_changed"


@dataclass
class Note:
    id: NoteId
    title: str
    body: str = ""
    kind: NoteKind = NoteKind.NORMAL
    date_key: str | None = None  # only for daily notes, "YYYY-MM-DD"
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_daily(self) -> bool:
        return self.kind is NoteKind.DAILY


@dataclass(frozen=True)
class NoteMeta:
    """Catalog entry: everything about a note except its body."""

    id: NoteId
    title: str
    kind: NoteKind = NoteKind.NORMAL
    date_key: str | None = None
    updated_at: datetime | None = None

    @classmethod
    def of(cls, note: Note) -> "NoteMeta":
        return cls(
            id=note.id,
            title=note.title,
            kind=note.kind,
            date_key=note.date_key,
            updated_at=note.updated_at,
        )


@dataclass(frozen=True)
class LinkToken:
    source_note_id: NoteId
    raw_target: str
    alias: str
    span_start: int  # char offsets in the body
    span_end: int
    embed: bool = False  # "![[...]]"


@dataclass(frozen=True)
class ResolvedLink:
    source_note_id: NoteId
    target_note_id: NoteId
    raw_target: str
    dangling: bool = False
    # ordering only; two mentions of the same target are one link
    position: int = field(default=0, compare=False)

    def as_dangling(self) -> "ResolvedLink":
        return replace(self, dangling=True)

    def backlink(self) -> "Backlink":
        return Backlink(self.source_note_id, self.raw_target, self.dangling)


@dataclass(frozen=True)
class Backlink:
    source_note_id: NoteId
    raw_target: str
    dangling: bool = False


@dataclass(frozen=True)
class ParseSkip:
    """A malformed span the parser stepped over."""

    start: int
    end: int
    reason: str


@dataclass(frozen=True)
class ResolutionCollision:
    """Several notes share a normalized title; `winner` was picked."""

    raw_target: str
    candidates: tuple[NoteId, ...]
    winner: NoteId


@dataclass(frozen=True)
class ChangeEvent:
    note_id: NoteId
    kind: ChangeKind


@dataclass(frozen=True)
class CalendarEvent:
    title: str
    start_time: datetime
    end_time: datetime


@dataclass(frozen=True)
class Template:
    """A reusable note body with {{date}}-style placeholders."""

    id: str
    name: str
    content: str
    description: str = ""
    is_default: bool = False
