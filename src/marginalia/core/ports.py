from collections.abc import Iterable
from datetime import datetime
from typing import Any, Protocol

from .model import CalendarEvent, LinkToken, Note, NoteId, Template


class StorageStrategy(Protocol):
    """
    Flat store: one directory, files named <id>.md
    """

    def read_raw(self, id: NoteId) -> str | None:
        pass

    def write_raw(self, id: NoteId, contents: str) -> None:
        pass

    def delete_raw(self, id: NoteId) -> None:
        pass

    def list_all_ids(self) -> Iterable[NoteId]:
        pass


class NoteCodec(Protocol):
    """
    Turn a stored file into a Note and back.
    """

    def decode_file(self, text: str, id: NoteId) -> Note:
        pass

    def encode_file(self, note: Note) -> str:
        pass


class FrontmatterCodec(Protocol):
    def decode(self, text: str) -> tuple[dict[str, Any], str]:
        pass

    def encode(self, meta: dict[str, Any]) -> str:
        pass


class NoteStore(Protocol):
    """
    What the engine consumes from persistence. Implementations raise
    StoreIOFailure on I/O problems and return None for unknown ids.
    """

    def read(self, id: NoteId) -> Note | None:
        pass

    def require(self, id: NoteId) -> Note:
        """Like read(), but raises NoteNotFound for unknown ids."""
        pass

    def write(self, note: Note) -> None:
        pass

    def delete(self, id: NoteId) -> None:
        pass

    def list(self) -> Iterable[Note]:
        pass


class ParserStrategy(Protocol):
    """
    Extract wiki-link tokens from a body. MUST NOT raise on malformed input.
    """

    def parse(self, text: str, id: NoteId = "") -> list[LinkToken]:
        pass


class IdGenerator(Protocol):
    def new_id(self) -> NoteId:
        pass


class CalendarSource(Protocol):
    """
    Calendar bridge. Only the {title, start_time, end_time} shape is relied on.
    """

    def events_between(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        pass


class Clock(Protocol):
    def __call__(self) -> datetime:
        pass


class TemplateSource(Protocol):
    """
    Named note templates: built-in defaults plus user-defined ones.
    get() raises TemplateNotFound for unknown ids.
    """

    def get(self, id: str) -> Template:
        pass

    def list(self) -> list[Template]:
        pass
