import re, io
import yaml
from datetime import date, datetime, timezone
from typing import Any
from ..core.ports import FrontmatterCodec, NoteCodec
from ..core.model import Note, NoteKind

_FM = re.compile(r"^\s*---\s*\n(.*?)\n---\s*\n?", re.DOTALL)
_H1 = re.compile(r"^#\s+(.+?)\s*$", re.MULTILINE)


class YamlFrontmatter(FrontmatterCodec):
    def decode(self, text: str) -> tuple[dict[str, Any], str]:
        m = _FM.match(text)
        if not m:
            return {}, text
        fm = yaml.safe_load(io.StringIO(m.group(1))) or {}
        if not isinstance(fm, dict):
            return {}, text
        body = text[m.end() :]
        return (fm, body)

    def encode(self, meta: dict[str, Any]) -> str:
        if not meta:
            return ""
        buf = io.StringIO()
        yaml.safe_dump(meta, buf, sort_keys=False, allow_unicode=True)
        return f"---\n{buf.getvalue()}---\n"


def _as_datetime(value: Any) -> datetime | None:
    # PyYAML already turns unquoted ISO timestamps into datetime objects
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _as_date_key(value: Any) -> str | None:
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str) and value:
        return value
    return None


class MarkdownNoteCodec(NoteCodec):
    """
    Frontmatter keys: id, title, kind, date, created, updated. Anything else is
    dropped on rewrite. A file without a title falls back to its first "# "
    heading, then to its id.
    """

    def __init__(self, fm: YamlFrontmatter):
        self.fm = fm

    def decode_file(self, text: str, id: str) -> Note:
        meta, body = self.fm.decode(text)
        title = meta.get("title")
        if not isinstance(title, str) or not title.strip():
            m = _H1.search(body)
            title = m.group(1) if m else id
        try:
            kind = NoteKind(meta.get("kind", NoteKind.NORMAL.value))
        except ValueError:
            kind = NoteKind.NORMAL
        date_key = _as_date_key(meta.get("date")) if kind is NoteKind.DAILY else None
        return Note(
            id=id,  # filename remains source of truth
            title=title,
            body=body,
            kind=kind,
            date_key=date_key,
            created_at=_as_datetime(meta.get("created")),
            updated_at=_as_datetime(meta.get("updated")),
        )

    def encode_file(self, note: Note) -> str:
        meta: dict[str, Any] = {"id": note.id, "title": note.title, "kind": note.kind.value}
        if note.date_key:
            meta["date"] = note.date_key
        if note.created_at:
            meta["created"] = note.created_at.isoformat()
        if note.updated_at:
            meta["updated"] = note.updated_at.isoformat()
        return self.fm.encode(meta) + note.body
