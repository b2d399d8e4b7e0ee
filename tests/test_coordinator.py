"""Tests for the change coordinator: resolution, renames, deletes, failures."""

import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path

import pytest

from marginalia.adapters.fs_storage import FsStorage
from marginalia.adapters.link_parser import MarkdownLinkParser
from marginalia.adapters.yaml_codec import MarkdownNoteCodec, YamlFrontmatter
from marginalia.core.coordinator import ChangeCoordinator
from marginalia.core.errors import NoteNotFound, StoreIOFailure
from marginalia.core.model import ChangeKind, Note, NoteState
from marginalia.core.vault import Vault

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class SeqId:
    def __init__(self):
        self.n = 0

    def new_id(self):
        self.n += 1
        return f"n{self.n:03d}"


class FakeTimer:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class FlakyVault(Vault):
    """Vault whose reads of selected ids, or writes of selected titles, fail."""

    def __init__(self, storage, codec):
        super().__init__(storage, codec)
        self.broken: set[str] = set()
        self.crashing: set[str] = set()
        self.unwritable: set[str] = set()

    def read(self, id):
        if id in self.broken:
            raise StoreIOFailure("read", id, OSError("disk unplugged"))
        if id in self.crashing:
            raise RecursionError("maximum recursion depth exceeded")
        return super().read(id)

    def write(self, note):
        if note.title in self.unwritable:
            raise StoreIOFailure("write", note.id, OSError("disk full"))
        super().write(note)


@pytest.fixture
def vault():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield FlakyVault(FsStorage(Path(tmpdir)), MarkdownNoteCodec(YamlFrontmatter()))


@pytest.fixture
def timer():
    return FakeTimer()


@pytest.fixture
def coord(vault, timer):
    return ChangeCoordinator(
        vault, MarkdownLinkParser(), SeqId(), debounce_ms=300, clock=lambda: T0, timer=timer
    )


def targets(coord, id):
    return [l.target_note_id for l in coord.get_outbound_links(id)]


def test_link_to_missing_title_creates_note(coord, vault):
    """Writing [[Project X]] creates the note and links both ways."""
    a = coord.create_note("Notes A", "see [[Project X]]")
    counts = coord.flush()

    assert counts["created"] == 1
    matches = coord.catalog.with_title("project x")
    assert len(matches) == 1
    px = matches[0].id
    assert targets(coord, a.id) == [px]
    assert [b.source_note_id for b in coord.get_backlinks(px)] == [a.id]
    assert vault.read(px).title == "Project X"
    assert coord.index.check_symmetry() == []


def test_second_reference_reuses_created_note(coord):
    a = coord.create_note("A", "[[Project X]]")
    coord.flush()
    b = coord.create_note("B", "[[project x]] again")
    coord.flush()

    px = coord.catalog.with_title("Project X")[0].id
    assert len(coord.catalog.with_title("Project X")) == 1
    assert {b.source_note_id for b in coord.get_backlinks(px)} == {a.id, b.id}


def test_two_notes_same_missing_title_one_pass(coord):
    """Concurrent first mentions of a title create exactly one note."""
    coord.create_note("A", "[[Fresh]]")
    coord.create_note("B", "[[fresh]]")
    counts = coord.flush()

    assert counts["created"] == 1
    assert len(coord.catalog.with_title("Fresh")) == 1


def test_removing_link_removes_backlink(coord):
    a = coord.create_note("A", "[[B]] and [[C]]")
    coord.flush()
    c = coord.catalog.with_title("C")[0].id

    coord.update_note(a.id, body="only [[B]]")
    coord.flush()

    assert coord.get_backlinks(c) == []
    assert coord.index.check_symmetry() == []


def test_delete_marks_referrers_dangling(coord, vault):
    a = coord.create_note("A", "[[Target]]")
    coord.flush()
    t = coord.catalog.with_title("Target")[0].id

    coord.delete_note(t)

    assert vault.read(t) is None
    assert t not in coord.catalog
    links = coord.get_outbound_links(a.id)
    assert len(links) == 1
    assert links[0].dangling is True
    assert links[0].target_note_id == t
    views = coord.get_backlinks(t)
    assert views[0].dangling is True
    assert coord.index.check_symmetry() == []


def test_delete_unknown_raises(coord):
    with pytest.raises(NoteNotFound):
        coord.delete_note("nope")


def test_edit_after_delete_re_resolves_dangling_link(coord):
    """Re-saving a note with a dangling link creates a fresh target."""
    a = coord.create_note("A", "[[Target]]")
    coord.flush()
    old = coord.catalog.with_title("Target")[0].id
    coord.delete_note(old)

    coord.update_note(a.id, body="[[Target]]")
    coord.flush()

    new = coord.catalog.with_title("Target")[0].id
    assert new != old
    assert targets(coord, a.id) == [new]
    assert coord.get_outbound_links(a.id)[0].dangling is False


def test_rename_rebinds_mentions_of_new_title(coord):
    """Renaming a note to a title others link to makes it their target."""
    a = coord.create_note("A", "[[Alpha]]")
    coord.flush()
    alpha_auto = coord.catalog.with_title("Alpha")[0].id
    b = coord.create_note("Beta")
    coord.flush()
    coord.delete_note(alpha_auto)

    coord.rename_note(b.id, "Alpha")
    coord.flush()

    assert targets(coord, a.id) == [b.id]
    assert coord.get_outbound_links(a.id)[0].dangling is False


def test_rename_away_keeps_id_links(coord):
    """The old title is re-resolved: links to it now create a new note."""
    target = coord.create_note("Old Name")
    a = coord.create_note("A", "[[Old Name]]")
    coord.flush()
    assert targets(coord, a.id) == [target.id]

    coord.rename_note(target.id, "New Name")
    counts = coord.flush()

    assert counts["created"] == 1
    fresh = coord.catalog.with_title("Old Name")[0].id
    assert fresh != target.id
    assert targets(coord, a.id) == [fresh]


def test_rename_to_empty_title_rejected(coord):
    n = coord.create_note("Something")
    with pytest.raises(ValueError):
        coord.rename_note(n.id, "   ")


def test_new_note_picks_up_existing_mentions(coord):
    """A note created with a title others mention re-queues those notes."""
    a = coord.create_note("A", "[[Gamma]]")
    coord.flush()
    auto = coord.catalog.with_title("Gamma")[0].id
    coord.delete_note(auto)

    g = coord.create_note("gamma")
    coord.flush()

    assert targets(coord, a.id) == [g.id]


def test_collision_picks_most_recent(coord, vault):
    older = Note(id="old", title="Dup", updated_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
    newer = Note(id="new", title="Dup", updated_at=datetime(2024, 2, 1, tzinfo=timezone.utc))
    vault.write(older)
    vault.write(newer)
    vault.write(Note(id="src", title="Src", body="[[dup]]", updated_at=T0))

    coord.bootstrap()

    assert targets(coord, "src") == ["new"]
    assert "dup" in coord.collisions
    assert coord.collisions["dup"].winner == "new"


def test_bootstrap_rebuilds_graph(coord, vault):
    vault.write(Note(id="a", title="A", body="[[B]] [[C]]"))
    vault.write(Note(id="b", title="B", body="[[A]]"))

    counts = coord.bootstrap()

    assert counts["notes"] == 2
    assert counts["created"] == 1
    assert targets(coord, "a")[0] == "b"
    assert [v.source_note_id for v in coord.get_backlinks("a")] == ["b"]
    assert coord.dirty_ids() == []
    assert coord.index.check_symmetry() == []


def test_debounce_coalesces_edits(coord, timer):
    """Edits inside the window are resolved once, after it passes."""
    a = coord.create_note("A", "[[One]]")
    timer.now += 0.1
    coord.update_note(a.id, body="[[Two]]")
    timer.now += 0.1

    assert coord.drain()["resolved"] == 0
    assert coord.state(a.id) is NoteState.DIRTY

    timer.now += 0.3
    counts = coord.drain()

    assert counts["resolved"] == 1
    assert counts["created"] == 1
    assert coord.catalog.with_title("One") == []
    assert coord.state(a.id) is NoteState.CLEAN


def test_read_failure_leaves_note_dirty(coord, vault):
    """A failing note stays dirty and does not block the rest of the batch."""
    a = coord.create_note("A", "[[X]]")
    b = coord.create_note("B", "[[Y]]")
    vault.broken.add(a.id)

    counts = coord.flush()

    assert counts["failed"] == 1
    assert counts["resolved"] == 1
    assert coord.state(a.id) is NoteState.DIRTY
    assert a.id in coord.pending()
    assert targets(coord, b.id) == [coord.catalog.with_title("Y")[0].id]

    vault.broken.clear()
    coord.flush()

    assert coord.pending() == {}
    assert coord.state(a.id) is NoteState.CLEAN
    assert targets(coord, a.id) == [coord.catalog.with_title("X")[0].id]


def test_unexpected_error_does_not_strand_batch(coord, vault):
    """A non-I/O error on one note leaves the others resolved and none stuck resolving."""
    a = coord.create_note("A", "[[X]]")
    b = coord.create_note("B", "[[Y]]")
    c = coord.create_note("C", "[[Z]]")
    vault.crashing.add(a.id)

    counts = coord.flush()

    assert counts["failed"] == 1
    assert counts["resolved"] == 2
    assert coord.state(a.id) is NoteState.DIRTY
    assert coord.state(b.id) is NoteState.CLEAN
    assert coord.state(c.id) is NoteState.CLEAN
    assert "recursion" in coord.pending()[a.id]

    vault.crashing.clear()
    coord.flush()

    assert coord.state(a.id) is NoteState.CLEAN
    assert coord.pending() == {}


def test_bootstrap_skips_deeply_nested_frontmatter(coord, vault):
    (vault.storage.root / "deep.md").write_text("---\ntitle: " + "[" * 5000 + "]" * 5000 + "\n---\n")
    vault.write(Note(id="a", title="A", body="[[B]]"))

    counts = coord.bootstrap()

    assert counts["notes"] == 1
    assert "deep" not in coord.catalog
    assert len(coord.get_outbound_links("a")) == 1


def test_write_failure_on_auto_create(coord, vault):
    """
    A target that cannot be written leaves its source dirty; targets created
    earlier in the pass are kept once and not duplicated on retry.
    """
    a = coord.create_note("A", "[[Good]] [[Bad]]")
    b = coord.create_note("B", "[[Other]]")
    vault.unwritable.add("Bad")

    counts = coord.flush()

    assert counts["failed"] == 1
    assert counts["created"] == 2
    assert coord.state(a.id) is NoteState.DIRTY
    assert a.id in coord.pending()
    assert targets(coord, a.id) == []
    assert targets(coord, b.id) == [coord.catalog.with_title("Other")[0].id]
    assert len(coord.catalog.with_title("Good")) == 1
    assert coord.catalog.with_title("Bad") == []

    vault.unwritable.clear()
    coord.flush()

    good = coord.catalog.with_title("Good")
    assert len(good) == 1
    assert len(coord.catalog.with_title("Bad")) == 1
    assert targets(coord, a.id)[0] == good[0].id
    assert coord.state(a.id) is NoteState.CLEAN
    assert coord.pending() == {}


def test_self_link_not_a_backlink(coord):
    a = coord.create_note("Loop", "see [[Loop]] and [[Other]]")
    b = coord.create_note("B", "[[Loop]]")
    coord.flush()

    assert targets(coord, a.id)[0] == a.id
    assert [v.source_note_id for v in coord.get_backlinks(a.id)] == [b.id]


def test_collision_forgotten_once_titles_differ(coord, vault):
    vault.write(Note(id="old", title="Dup", updated_at=datetime(2024, 1, 1, tzinfo=timezone.utc)))
    vault.write(Note(id="new", title="Dup", updated_at=datetime(2024, 2, 1, tzinfo=timezone.utc)))
    vault.write(Note(id="src", title="Src", body="[[dup]]", updated_at=T0))
    coord.bootstrap()
    assert "dup" in coord.collisions

    coord.rename_note("old", "Unique")
    coord.flush()

    assert "dup" not in coord.collisions


def test_bootstrap_clears_collisions(coord, vault):
    vault.write(Note(id="old", title="Dup"))
    vault.write(Note(id="new", title="Dup"))
    vault.write(Note(id="src", title="Src", body="[[dup]]"))
    coord.bootstrap()
    assert "dup" in coord.collisions

    vault.storage.delete_raw("old")
    coord.bootstrap()

    assert coord.collisions == {}


def test_delete_during_resolution_discards_result(vault, timer):
    """A note deleted while being resolved gets no links committed."""
    started = threading.Event()
    release = threading.Event()

    class SlowParser(MarkdownLinkParser):
        def parse(self, text, id=""):
            if id == "slow":
                started.set()
                release.wait(5)
            return super().parse(text, id)

    coord = ChangeCoordinator(vault, SlowParser(), SeqId(), clock=lambda: T0, timer=timer)
    vault.write(Note(id="slow", title="Slow", body="[[Other]]"))
    coord.note_changed_externally("slow")

    results = {}
    worker = threading.Thread(target=lambda: results.update(coord.flush()))
    worker.start()
    assert started.wait(5)
    assert coord.state("slow") is NoteState.RESOLVING

    coord.delete_note("slow")
    release.set()
    worker.join(5)

    assert results["discarded"] == 1
    assert coord.get_outbound_links("slow") == []
    assert coord.index.check_symmetry() == []


def test_edit_during_resolution_stays_dirty(vault, timer):
    started = threading.Event()
    release = threading.Event()

    class SlowParser(MarkdownLinkParser):
        def parse(self, text, id=""):
            if id == "n":
                started.set()
                release.wait(5)
            return super().parse(text, id)

    coord = ChangeCoordinator(vault, SlowParser(), SeqId(), clock=lambda: T0, timer=timer)
    vault.write(Note(id="n", title="N", body="[[First]]"))
    coord.note_changed_externally("n")

    worker = threading.Thread(target=coord.flush)
    worker.start()
    assert started.wait(5)
    coord.update_note("n", body="[[Second]]")
    release.set()
    worker.join(5)

    assert coord.state("n") is NoteState.DIRTY
    release.set()
    coord.flush()
    assert [l.raw_target for l in coord.get_outbound_links("n")] == ["Second"]


def test_events_emitted(coord):
    events = []
    unsubscribe = coord.subscribe(events.append)

    a = coord.create_note("A", "[[B]]")
    coord.flush()
    unsubscribe()
    coord.update_note(a.id, body="")

    kinds = [(e.kind, e.note_id == a.id) for e in events]
    assert (ChangeKind.CREATED, True) in kinds
    assert (ChangeKind.CREATED, False) in kinds
    assert (ChangeKind.LINKS_CHANGED, True) in kinds
    assert all(e.kind is not ChangeKind.UPDATED for e in events)


def test_failing_subscriber_does_not_break_commit(coord):
    def boom(event):
        raise RuntimeError("subscriber bug")

    coord.subscribe(boom)
    a = coord.create_note("A", "[[B]]")
    coord.flush()

    assert len(coord.get_outbound_links(a.id)) == 1


def test_backlink_context(coord):
    body = "intro " + "x" * 80 + " the [[Target]] is here"
    a = coord.create_note("A", body)
    coord.flush()
    t = coord.catalog.with_title("Target")[0].id

    view = coord.get_backlinks(t)[0]

    assert view.source_title == "A"
    assert "[[Target]]" in view.context
    assert view.context.startswith("...")
    assert coord.get_backlinks(t, context=False)[0].context == ""


def test_preview_never_creates(coord):
    assert coord.preview_link("Ghost") is None
    assert coord.resolve_link_click("Ghost", create=False) is None
    assert len(coord.catalog) == 0


def test_click_creates_and_reuses(coord):
    first = coord.resolve_link_click("Ghost")
    second = coord.resolve_link_click("ghost")

    assert first == second
    assert coord.preview_link("GHOST").id == first


def test_external_change_and_removal(coord, vault):
    vault.write(Note(id="ext", title="Ext", body="[[Linked]]"))
    coord.note_changed_externally("ext")
    coord.flush()

    assert len(coord.get_outbound_links("ext")) == 1

    vault.storage.delete_raw("ext")
    coord.note_changed_externally("ext")

    assert "ext" not in coord.catalog
    assert coord.get_outbound_links("ext") == []


def test_state_of_unknown_note(coord):
    with pytest.raises(NoteNotFound):
        coord.state("missing")


def test_rename_project_x_to_y(coord):
    """After renaming B, [[Project Y]] finds B and a click on "Project X" gets a new note."""
    b = coord.create_note("Project X")
    a = coord.create_note("A", "[[Project X]]")
    coord.flush()

    coord.rename_note(b.id, "Project Y")
    coord.flush()

    clicked = coord.resolve_link_click("Project X")
    assert clicked != b.id
    assert targets(coord, a.id) == [clicked]
    assert coord.resolve_link_click("Project Y", create=False) == b.id
    assert coord.index.check_symmetry() == []
