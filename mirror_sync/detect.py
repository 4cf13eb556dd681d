"""Change detectors: full-tree polling and watchdog notifications.

Both report paths relative to the endpoint root, filtered through the same
IgnoreMatcher. Polling rebuilds a whole Snapshot each cycle; watching yields
one RawEvent per settled change.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .errors import DetectionError
from .ignore import IgnoreMatcher
from .logs import get_logger, log_action
from .snapshot import FileRecord, Snapshot, make_record

QUEUE_POLL_SEC = 0.25


# -------------------------
# Poll mode
# -------------------------

class PollDetector:
    def __init__(self, root: Path, ignore: Optional[IgnoreMatcher] = None):
        self.root = Path(root)
        self.ignore = ignore or IgnoreMatcher(self.root)

    def detect(self) -> Snapshot:
        """Walk the tree and hash every regular, non-ignored file.

        A file that disappears between listing and hashing is simply absent.
        Anything else that cannot be read aborts the scan with DetectionError,
        since leaving it out would look like a deletion to the peer.
        """
        if not self.root.is_dir():
            raise DetectionError(f"endpoint root is not a readable folder: {self.root}")

        def _walk_error(err: OSError) -> None:
            raise DetectionError(f"cannot list {err.filename}: {err}") from err

        records: dict[str, FileRecord] = {}
        for dirpath, dirnames, filenames in os.walk(self.root, onerror=_walk_error):
            rel_dir = Path(dirpath).relative_to(self.root).as_posix()
            prefix = "" if rel_dir == "." else rel_dir + "/"
            dirnames[:] = sorted(d for d in dirnames if not self.ignore.is_ignored(prefix + d, is_dir=True))

            for name in filenames:
                rel = prefix + name
                if self.ignore.is_ignored(rel):
                    continue
                record = self.record_for(rel)
                if record is not None:
                    records[rel] = record

        return Snapshot(records)

    def record_for(self, rel_path: str) -> Optional[FileRecord]:
        full = self.root / rel_path
        try:
            if not full.is_file():
                return None
            return make_record(self.root, rel_path)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise DetectionError(f"cannot read {rel_path}: {e}") from e


# -------------------------
# Watch mode
# -------------------------

class EventKind(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True)
class RawEvent:
    kind: EventKind
    path: str
    is_dir: bool = False


class _QueueingHandler(FileSystemEventHandler):
    """Translates watchdog callbacks into RawEvents on a queue."""

    def __init__(self, ignore: IgnoreMatcher, sink: "queue.Queue[RawEvent]"):
        self.ignore = ignore
        self.sink = sink

    def _put(self, kind: EventKind, raw_path, is_dir: bool) -> None:
        rel = self.ignore.relative(Path(os.fsdecode(raw_path)))
        if rel is None or self.ignore.is_ignored(rel, is_dir=is_dir):
            return
        self.sink.put(RawEvent(kind, rel, is_dir))

    def on_created(self, event: FileSystemEvent) -> None:
        # directory contents arrive as their own events
        if not event.is_directory:
            self._put(EventKind.CREATED, event.src_path, False)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._put(EventKind.MODIFIED, event.src_path, False)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._put(EventKind.DELETED, event.src_path, bool(event.is_directory))

    def on_moved(self, event: FileSystemEvent) -> None:
        self._put(EventKind.DELETED, event.src_path, bool(event.is_directory))
        if not event.is_directory:
            self._put(EventKind.CREATED, event.dest_path, False)


class WatchDetector:
    """
    Subscribes to OS change notifications for one endpoint root.

    subscribe() is a lazy, infinite and non-restartable iterator; it ends when
    stop_event is set. CREATED/MODIFIED events are held back until the file has
    a non-zero size that stays the same for one debounce interval.
    """

    def __init__(
        self,
        root: Path,
        ignore: Optional[IgnoreMatcher] = None,
        stop_event: Optional[threading.Event] = None,
        debounce_sec: float = 0.1,
        max_attempts: int = 50,
        on_error: Optional[Callable[[DetectionError], None]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.root = Path(root)
        self.ignore = ignore or IgnoreMatcher(self.root)
        self.stop_event = stop_event or threading.Event()
        self.debounce_sec = float(debounce_sec)
        self.max_attempts = max(2, int(max_attempts))
        self.on_error = on_error
        self.logger = logger or get_logger()
        self._queue: "queue.Queue[RawEvent]" = queue.Queue()
        self.handler = _QueueingHandler(self.ignore, self._queue)
        self._subscribed = False
        # set once the observer is delivering notifications
        self.started = threading.Event()

    def subscribe(self) -> Iterator[RawEvent]:
        if self._subscribed:
            raise DetectionError(f"already subscribed to {self.root}")
        self._subscribed = True

        observer = Observer()
        try:
            observer.schedule(self.handler, str(self.root), recursive=True)
            observer.start()
        except OSError as e:
            raise DetectionError(f"cannot watch {self.root}: {e}") from e

        self.started.set()
        self.logger.info("WATCH: started on %s", self.root)
        try:
            yield from self.events()
        finally:
            observer.stop()
            observer.join(timeout=10)
            self.logger.info("WATCH: stopped on %s", self.root)

    def events(self) -> Iterator[RawEvent]:
        """Drain queued notifications, settling writes before reporting them."""
        while not self.stop_event.is_set():
            try:
                event = self._queue.get(timeout=QUEUE_POLL_SEC)
            except queue.Empty:
                continue

            if event.kind is not EventKind.DELETED:
                try:
                    self.wait_until_stable(event.path)
                except DetectionError as e:
                    self._report(e, event.path)
                    continue
            yield event

    def wait_until_stable(self, rel_path: str) -> None:
        full = self.root / rel_path
        last_size = None
        for _ in range(self.max_attempts):
            try:
                size = full.stat().st_size
            except FileNotFoundError:
                size = None
            if size and size == last_size:
                return
            last_size = size
            if self.stop_event.wait(self.debounce_sec):
                raise DetectionError(f"stopped while waiting for {rel_path} to settle")
        raise DetectionError(f"{rel_path} did not settle after {self.max_attempts} attempts")

    def _report(self, error: DetectionError, rel_path: str) -> None:
        log_action(self.logger, "SCAN", f"dropped event: {error}", path=rel_path, level=logging.WARNING)
        if self.on_error is not None:
            self.on_error(error)
