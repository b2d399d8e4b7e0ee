"""Watch mode for marginalia - feed external file edits into the coordinator."""

import json
import logging
import signal
import sys
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .core.coordinator import ChangeCoordinator
from .core.errors import StoreIOFailure
from .core.model import ChangeEvent, ChangeKind

logger = logging.getLogger(__name__)

CHANGED = "changed"
DELETED = "deleted"

Batch = Callable[[set[str], set[str]], None]


def note_id_for(path: Path) -> str | None:
    """
    Note id for a vault file, or None for files that are not notes.

    Hidden files (our own atomic-write temp files among them), editor
    backups and anything but *.md are ignored.
    """
    name = path.name
    if name.startswith(".") or name.endswith("~") or name.endswith(".swp"):
        return None
    if path.suffix != ".md":
        return None
    return path.stem


class DebounceHandler(FileSystemEventHandler):
    """
    Collects watchdog events per note id; the last event for an id wins.

    Runs on the observer thread while check_and_flush() is polled from the
    main loop, so the pending map is guarded by a lock.
    """

    def __init__(
        self,
        vault_path: Path,
        on_batch: Batch | None,
        debounce_ms: int = 150,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__()
        self.vault_path = vault_path
        self.on_batch = on_batch
        self.debounce = debounce_ms / 1000.0
        self.clock = clock
        self._lock = threading.Lock()
        self._pending: dict[str, str] = {}
        self._last = 0.0

    def _record(self, raw_path: Any, what: str) -> None:
        note_id = note_id_for(Path(str(raw_path)))
        if note_id is None:
            return
        with self._lock:
            self._pending[note_id] = what
            self._last = self.clock()

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._record(event.src_path, CHANGED)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._record(event.src_path, CHANGED)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._record(event.src_path, DELETED)

    def on_moved(self, event: FileSystemEvent) -> None:
        # atomic saves arrive as a move from a temp file onto <id>.md
        if not event.is_directory:
            self._record(event.src_path, DELETED)
            self._record(event.dest_path, CHANGED)

    def check_and_flush(self) -> None:
        """Flush once no event has arrived for a full debounce window."""
        with self._lock:
            due = bool(self._pending) and self.clock() - self._last >= self.debounce
        if due:
            self.flush()

    def flush(self) -> None:
        with self._lock:
            pending, self._pending = self._pending, {}
        if not pending or self.on_batch is None:
            return
        changed = {nid for nid, what in pending.items() if what == CHANGED}
        deleted = {nid for nid, what in pending.items() if what == DELETED}
        self.on_batch(changed, deleted)


def apply_batch(coordinator: ChangeCoordinator, changed: set[str], deleted: set[str]) -> dict[str, int]:
    """Hand one debounced batch to the coordinator and resolve it."""
    for nid in sorted(deleted):
        coordinator.note_removed_externally(nid)
    for nid in sorted(changed):
        try:
            coordinator.note_changed_externally(nid)
        except StoreIOFailure as e:
            logger.warning("Cannot read changed note: %s", e)
    return coordinator.flush()


def watch_vault(
    vault_path: Path,
    coordinator: ChangeCoordinator,
    debounce_ms: int = 150,
    quiet: bool = False,
    json_output: bool = False,
) -> int:
    """
    Watch vault directory for changes and keep the link graph current.

    Args:
        vault_path: Path to vault directory
        coordinator: bootstrapped ChangeCoordinator
        debounce_ms: Debounce window in milliseconds
        quiet: Suppress output
        json_output: One JSON object per batch instead of a summary line

    Returns:
        Exit code
    """
    if not vault_path.is_dir():
        print(f"Error: Vault not found: {vault_path}", file=sys.stderr)
        return 1

    stop = threading.Event()
    relinked: set[str] = set()

    def on_event(event: ChangeEvent) -> None:
        if event.kind is ChangeKind.LINKS_CHANGED:
            relinked.add(event.note_id)

    def handle_batch(changed: set[str], deleted: set[str]) -> None:
        relinked.clear()
        started = time.monotonic()
        counts = apply_batch(coordinator, changed, deleted)
        duration_ms = int((time.monotonic() - started) * 1000)

        if json_output:
            print(json.dumps({
                "type": "batch",
                "changed": sorted(changed),
                "deleted": sorted(deleted),
                "relinked": sorted(relinked),
                "created": counts["created"],
                "failed": counts["failed"],
                "duration_ms": duration_ms,
            }), flush=True)
        elif not quiet:
            print(
                f"{len(changed)} changed, {len(deleted)} deleted, {len(relinked)} relinked,"
                f" {counts['created']} created, {counts['failed']} pending ({duration_ms}ms)",
                flush=True,
            )

    def request_stop(signum: int, frame: Any) -> None:
        stop.set()

    signal.signal(signal.SIGINT, request_stop)
    signal.signal(signal.SIGTERM, request_stop)

    unsubscribe = coordinator.subscribe(on_event)
    handler = DebounceHandler(vault_path, handle_batch, debounce_ms)
    observer = Observer()
    observer.schedule(handler, str(vault_path), recursive=False)
    observer.start()

    if not quiet and not json_output:
        print(f"Watching {vault_path} (debounce: {debounce_ms}ms), Ctrl+C to stop", flush=True)

    try:
        while not stop.wait(0.1):
            handler.check_and_flush()
            # retries notes left dirty by earlier failures
            coordinator.drain()
    finally:
        observer.stop()
        observer.join()
        handler.flush()
        unsubscribe()

    if not quiet and not json_output:
        print("Watch stopped", flush=True)
    return 0
