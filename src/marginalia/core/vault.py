from __future__ import annotations

import logging
from collections.abc import Iterator

import yaml

from .errors import NoteNotFound, StoreIOFailure
from .model import Note, NoteId
from .ports import NoteCodec, NoteStore, StorageStrategy

logger = logging.getLogger(__name__)


class Vault(NoteStore):
    """
    Note store over a raw storage strategy and a file codec.

    OS and decode errors surface as StoreIOFailure; unknown ids read as None.
    """

    # deeply nested frontmatter exhausts the YAML parser's recursion limit
    DECODE_ERRORS = (OSError, UnicodeDecodeError, yaml.YAMLError, RecursionError, ValueError, TypeError)

    def __init__(self, storage: StorageStrategy, codec: NoteCodec):
        self.storage = storage
        self.codec = codec

    def read(self, id: NoteId) -> Note | None:
        try:
            raw = self.storage.read_raw(id)
            if raw is None:
                return None
            return self.codec.decode_file(raw, id)
        except self.DECODE_ERRORS as e:
            raise StoreIOFailure("read", id, e) from e

    def require(self, id: NoteId) -> Note:
        note = self.read(id)
        if note is None:
            raise NoteNotFound(id)
        return note

    def write(self, note: Note) -> None:
        contents = self.codec.encode_file(note)
        try:
            self.storage.write_raw(note.id, contents)
        except OSError as e:
            raise StoreIOFailure("write", note.id, e) from e

    def delete(self, id: NoteId) -> None:
        try:
            self.storage.delete_raw(id)
        except OSError as e:
            raise StoreIOFailure("delete", id, e) from e

    def list(self) -> Iterator[Note]:
        """Every readable note; unreadable files are logged and skipped."""
        for nid in self.storage.list_all_ids():
            try:
                note = self.read(nid)
            except StoreIOFailure as e:
                logger.warning("Skipping unreadable note: %s", e)
                continue
            if note is not None:
                yield note

    def list_ids(self) -> list[NoteId]:
        return list(self.storage.list_all_ids())
