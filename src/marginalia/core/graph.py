"""Bidirectional link graph kept in memory.

`outbound` is the only map that is ever written directly; `inbound` is its
transpose, patched by diffing old and new outbound sets. All mutation happens
under one lock, and every value handed out is a frozenset, so readers never see
a half-applied update.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from .model import Backlink, NoteId, ResolvedLink
from .utils import normalize_title

_EMPTY_LINKS: frozenset[ResolvedLink] = frozenset()
_EMPTY_BACKLINKS: frozenset[Backlink] = frozenset()


@dataclass(frozen=True)
class GraphSnapshot:
    outbound: Mapping[NoteId, frozenset[ResolvedLink]]
    inbound: Mapping[NoteId, frozenset[Backlink]]

    def outgoing(self, id: NoteId) -> frozenset[ResolvedLink]:
        return self.outbound.get(id, _EMPTY_LINKS)

    def incoming(self, id: NoteId) -> frozenset[Backlink]:
        return self.inbound.get(id, _EMPTY_BACKLINKS)


class GraphIndex:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._outbound: dict[NoteId, frozenset[ResolvedLink]] = {}
        self._inbound: dict[NoteId, frozenset[Backlink]] = {}
        # normalized raw target -> notes that mention it
        self._mentions: dict[str, set[NoteId]] = {}

    # reads

    def get_outbound(self, id: NoteId) -> frozenset[ResolvedLink]:
        with self._lock:
            return self._outbound.get(id, _EMPTY_LINKS)

    def get_inbound(self, id: NoteId) -> frozenset[Backlink]:
        with self._lock:
            return self._inbound.get(id, _EMPTY_BACKLINKS)

    def outbound_in_order(self, id: NoteId) -> list[ResolvedLink]:
        return sorted(self.get_outbound(id), key=lambda link: link.position)

    def sources_mentioning(self, title: str) -> set[NoteId]:
        with self._lock:
            return set(self._mentions.get(normalize_title(title), ()))

    def snapshot(self) -> GraphSnapshot:
        with self._lock:
            return GraphSnapshot(
                outbound=MappingProxyType(dict(self._outbound)),
                inbound=MappingProxyType(dict(self._inbound)),
            )

    def stats(self) -> dict[str, int]:
        with self._lock:
            links = sum(len(v) for v in self._outbound.values())
            dangling = sum(1 for v in self._outbound.values() for link in v if link.dangling)
            return {"sources": len(self._outbound), "links": links, "dangling": dangling}

    # writes

    def apply_delta(self, id: NoteId, links: Iterable[ResolvedLink]) -> bool:
        """
        Replace the outbound set of `id`. Returns True if the set changed.
        """
        new = frozenset(links)
        for link in new:
            if link.source_note_id != id:
                raise ValueError(f"link from {link.source_note_id} applied to {id}")

        with self._lock:
            old = self._outbound.get(id, _EMPTY_LINKS)
            for link in old - new:
                self._drop_backlink(link)
            for link in new - old:
                self._add_backlink(link)
            if new:
                self._outbound[id] = new
            else:
                self._outbound.pop(id, None)
            self._update_mentions(id, old, new)
            return old != new

    def remove_note(self, id: NoteId) -> set[NoteId]:
        """
        Drop the note's own links and mark every link pointing at it dangling.
        Returns the ids of notes whose links became dangling.
        """
        with self._lock:
            old = self._outbound.pop(id, _EMPTY_LINKS)
            for link in old:
                self._drop_backlink(link)
            self._update_mentions(id, old, _EMPTY_LINKS)

            incoming = self._inbound.get(id, _EMPTY_BACKLINKS)
            if not incoming:
                return set()
            self._inbound[id] = frozenset(
                Backlink(b.source_note_id, b.raw_target, dangling=True) for b in incoming
            )
            sources = {b.source_note_id for b in incoming}
            for src in sources:
                self._outbound[src] = frozenset(
                    link.as_dangling() if link.target_note_id == id else link
                    for link in self._outbound.get(src, _EMPTY_LINKS)
                )
            return sources

    def rename_note(self, id: NoteId, old_title: str, new_title: str) -> set[NoteId]:
        """
        Ids never change, so the graph itself is untouched; returns the notes
        whose raw targets mention either title and need re-resolution.
        """
        with self._lock:
            return self.sources_mentioning(old_title) | self.sources_mentioning(new_title)

    def clear(self) -> None:
        with self._lock:
            self._outbound.clear()
            self._inbound.clear()
            self._mentions.clear()

    # invariants

    def check_symmetry(self) -> list[str]:
        """Violations of inbound == transpose(outbound); empty when healthy."""
        problems: list[str] = []
        with self._lock:
            expected: dict[NoteId, set[Backlink]] = {}
            for src, links in self._outbound.items():
                for link in links:
                    if link.source_note_id != src:
                        problems.append(f"{src}: link filed under wrong source {link}")
                    expected.setdefault(link.target_note_id, set()).add(link.backlink())
            for target in set(expected) | set(self._inbound):
                want = expected.get(target, set())
                have = set(self._inbound.get(target, ()))
                for b in want - have:
                    problems.append(f"{target}: missing backlink {b}")
                for b in have - want:
                    problems.append(f"{target}: stray backlink {b}")
            for target, backlinks in self._inbound.items():
                if not backlinks:
                    problems.append(f"{target}: empty inbound entry")
        return problems

    # internals

    def _add_backlink(self, link: ResolvedLink) -> None:
        target = link.target_note_id
        self._inbound[target] = self._inbound.get(target, _EMPTY_BACKLINKS) | {link.backlink()}

    def _drop_backlink(self, link: ResolvedLink) -> None:
        target = link.target_note_id
        remaining = self._inbound.get(target, _EMPTY_BACKLINKS) - {link.backlink()}
        if remaining:
            self._inbound[target] = remaining
        else:
            self._inbound.pop(target, None)

    def _update_mentions(
        self, id: NoteId, old: frozenset[ResolvedLink], new: frozenset[ResolvedLink]
    ) -> None:
        old_keys = {normalize_title(link.raw_target) for link in old}
        new_keys = {normalize_title(link.raw_target) for link in new}
        for key in old_keys - new_keys:
            holders = self._mentions.get(key)
            if holders is not None:
                holders.discard(id)
                if not holders:
                    del self._mentions[key]
        for key in new_keys - old_keys:
            self._mentions.setdefault(key, set()).add(id)
