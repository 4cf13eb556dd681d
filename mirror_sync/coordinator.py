"""Coordinators: one worker thread per direction.

Each coordinator owns its local endpoint's published Snapshot and is its only
writer. A cycle reads the peer's last-known Snapshot, observes the local tree,
diffs, and applies the resulting actions through a TransferChannel.

Echo suppression: a path that changed locally because a remote action was just
applied to it is consumed from the local EchoSuppressor when detection reports
it, and no action is taken for it in that cycle.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from .channel import TransferChannel
from .detect import EventKind, PollDetector, RawEvent, WatchDetector
from .diff import CopyTo, DeleteAt, DiffResult, diff, diff_event
from .errors import DetectionError, TransferError
from .logs import get_logger, log_action
from .protocol import Status
from .snapshot import Snapshot, SnapshotStore
from .suppress import EchoSuppressor


@dataclass
class CycleReport:
    copied: int = 0
    deleted: int = 0
    not_found: int = 0
    suppressed: int = 0
    failed: int = 0
    conflicts: list = field(default_factory=list)
    errors: list = field(default_factory=list)

    @property
    def applied(self) -> int:
        return self.copied + self.deleted + self.not_found

    @property
    def quiet(self) -> bool:
        return not (self.applied or self.suppressed or self.failed or self.conflicts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "copied": self.copied,
            "deleted": self.deleted,
            "not_found": self.not_found,
            "suppressed": self.suppressed,
            "failed": self.failed,
            "conflicts": [c.path for c in self.conflicts],
            "errors": self.errors,
        }


def changed_paths(previous: Mapping, fresh: Mapping) -> set:
    return {p for p in previous.keys() | fresh.keys() if previous.get(p) != fresh.get(p)}


class _Coordinator(threading.Thread):
    def __init__(
        self,
        local: str,
        peer: str,
        poller: PollDetector,
        store: SnapshotStore,
        channel: TransferChannel,
        suppressors: Mapping[str, EchoSuppressor],
        stop_event: Optional[threading.Event] = None,
        logger: Optional[logging.Logger] = None,
        name: Optional[str] = None,
    ):
        super().__init__(daemon=True, name=name or f"sync-{local}->{peer}")
        self.local = local
        self.peer = peer
        self.poller = poller
        self.store = store
        self.channel = channel
        self.suppressors = dict(suppressors)
        self.stop_event = stop_event or threading.Event()
        self.logger = logger or get_logger()
        self._reconciled = False
        # path -> (record we just gave the peer, peer's published record at the time)
        self._in_flight: Dict[str, tuple] = {}

    def seed(self, assume_peer_matches: bool = False) -> Snapshot:
        """Scan and publish the startup snapshot of the local endpoint.

        With a push-only channel the peer's state is whatever we last sent;
        ``assume_peer_matches`` starts that view equal to the local tree,
        otherwise it starts empty and the first pass pushes everything.
        """
        snapshot = self.poller.detect()
        self.store.publish(self.local, snapshot)
        if not self.channel.observes_peer:
            self.store.publish(self.peer, snapshot if assume_peer_matches else Snapshot.empty())
        return snapshot

    def reconcile(self) -> CycleReport:
        """First full pass: nothing is known to have been in sync, so no deletions."""
        report = self.run_cycle(propagate_deletions=False)
        self._reconciled = True
        return report

    def run_cycle(self, propagate_deletions: bool = True) -> CycleReport:
        report = CycleReport()
        # read the peer before scanning; a later read could already include
        # changes that our scan predates
        peer_snapshot = self._peer_view()
        previous = self.store.get(self.local)
        fresh = self.poller.detect()

        suppressed = self._take_suppressed(changed_paths(previous, fresh))
        result = self._orient(diff(fresh, peer_snapshot, self.local, self.peer, propagate_deletions), fresh)
        self._apply(result, fresh, previous, peer_snapshot, suppressed, report)
        return report

    def _peer_view(self) -> Snapshot:
        """The peer's published snapshot plus what we applied that it has not reported yet.

        An entry stays in flight until the peer publishes a different record
        for the path than it had when we wrote it.
        """
        published = self.store.get(self.peer)
        view = published
        for path, (expected, base) in list(self._in_flight.items()):
            current = published.get(path)
            if current != base or current == expected:
                del self._in_flight[path]
            else:
                view = view.replace(path, expected)
        return view

    def _orient(self, result: DiffResult, fresh: Snapshot) -> DiffResult:
        """
        A push-only channel's peer view holds nothing but records we sent or
        received, so a path where it differs from our tree changed here. Last
        writer wins cannot apply: an older mtime (a restored file) or an equal
        one with new content would otherwise ask to pull from a peer we
        cannot read. Both are pushed instead.
        """
        if self.channel.observes_peer:
            return result
        copies, deletes = [], []
        for action in result.actions:
            if isinstance(action, CopyTo) and action.target == self.local:
                if action.path not in fresh:
                    # gone since the view was taken; the next full cycle deletes it
                    continue
                action = CopyTo(action.path, self.local, self.peer)
            (deletes if isinstance(action, DeleteAt) else copies).append(action)
        for conflict in result.conflicts:
            copies.append(CopyTo(conflict.path, self.local, self.peer))
        return DiffResult(actions=copies + deletes)

    def _take_suppressed(self, paths) -> set:
        suppressor = self.suppressors.get(self.local)
        if suppressor is None:
            return set()
        return {p for p in sorted(paths) if suppressor.should_suppress(p)}

    def _apply(
        self,
        result: DiffResult,
        fresh: Snapshot,
        previous: Snapshot,
        peer_snapshot: Snapshot,
        suppressed: set,
        report: CycleReport,
    ) -> Snapshot:
        """Apply actions in order and publish the resulting snapshot(s).

        A failed action keeps the path's previous record in the published
        snapshot so the next cycle sees the same difference and retries.
        """
        published = fresh
        peer_view = self.store.get(self.peer)

        for path in sorted(suppressed):
            report.suppressed += 1
            log_action(self.logger, "SUPPRESS", f"{self.local}: {path} (applied from {self.peer})", path=path)
            if not self.channel.observes_peer:
                peer_view = peer_view.replace(path, fresh.get(path))

        for conflict in result.conflicts:
            if conflict.path in suppressed:
                continue
            report.conflicts.append(conflict)
            log_action(
                self.logger,
                "CONFLICT",
                f"{conflict.path}: same mtime, different content on {self.local} and {self.peer}; left as is",
                path=conflict.path,
                level=logging.WARNING,
            )

        for action in result.actions:
            path = action.path
            if path in suppressed:
                continue

            # a copy into our own tree is already reflected in ``published``,
            # so there is no later report for an entry to absorb
            target_suppressor = None
            if action.target != self.local:
                target_suppressor = self.suppressors.get(action.target)
            if target_suppressor is not None:
                target_suppressor.mark(path)

            try:
                ack = self.channel.send(action)
            except TransferError as e:
                if target_suppressor is not None:
                    target_suppressor.forget(path)
                report.failed += 1
                report.errors.append(str(e))
                log_action(self.logger, "COPY" if isinstance(action, CopyTo) else "DELETE",
                           f"ERROR {path}: {e}", path=path, level=logging.ERROR)
                published = published.replace(path, previous.get(path))
                continue

            if isinstance(action, DeleteAt):
                if ack.status is Status.NOT_FOUND:
                    if target_suppressor is not None:
                        target_suppressor.forget(path)
                    report.not_found += 1
                    log_action(self.logger, "DELETE", f"{path} already absent at {action.endpoint}", path=path)
                else:
                    report.deleted += 1
                    log_action(self.logger, "DELETE", f"{path} at {action.endpoint} (gone from {self.local})", path=path)
            else:
                report.copied += 1
                log_action(self.logger, "COPY", f"{path} {action.source} -> {action.target}", path=path)
                if action.target == self.local:
                    published = published.replace(path, peer_snapshot.get(path))

            if not self.channel.observes_peer:
                peer_view = peer_view.replace(path, published.get(path))
            elif action.target == self.peer:
                self._in_flight[path] = (published.get(path), peer_view.get(path))

        self.store.publish(self.local, published)
        if not self.channel.observes_peer:
            self.store.publish(self.peer, peer_view)
        return published


# -------------------------
# Poll mode
# -------------------------

class SyncCoordinator(_Coordinator):
    """Scan, diff, apply, sleep; until stop_event is set."""

    def __init__(
        self,
        local: str,
        peer: str,
        detector: PollDetector,
        store: SnapshotStore,
        channel: TransferChannel,
        suppressors: Mapping[str, EchoSuppressor],
        interval_sec: float = 2.0,
        stop_event: Optional[threading.Event] = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(local, peer, detector, store, channel, suppressors, stop_event, logger)
        self.interval_sec = max(0.05, float(interval_sec))

    def run(self) -> None:
        self.logger.info("POLL %s -> %s: started (interval=%.1fs)", self.local, self.peer, self.interval_sec)
        while not self.stop_event.is_set():
            start = time.time()
            try:
                if self._reconciled:
                    report = self.run_cycle()
                else:
                    report = self.reconcile()
                if not report.quiet:
                    self.logger.info("POLL %s -> %s: %s", self.local, self.peer, report.to_dict())
            except DetectionError as e:
                log_action(self.logger, "SCAN", f"{self.local} cycle aborted: {e}", level=logging.ERROR)
            except Exception:
                self.logger.exception("POLL %s -> %s: cycle failed", self.local, self.peer)

            elapsed = time.time() - start
            self.stop_event.wait(max(0.0, self.interval_sec - elapsed))
        self.logger.info("POLL %s -> %s: stopped", self.local, self.peer)


# -------------------------
# Watch mode
# -------------------------

class WatchCoordinator(_Coordinator):
    """Applies one diff per settled watch event."""

    def __init__(
        self,
        local: str,
        peer: str,
        detector: WatchDetector,
        poller: PollDetector,
        store: SnapshotStore,
        channel: TransferChannel,
        suppressors: Mapping[str, EchoSuppressor],
        stop_event: Optional[threading.Event] = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(local, peer, poller, store, channel, suppressors, stop_event or detector.stop_event, logger)
        self.detector = detector
        if detector.on_error is None:
            detector.on_error = self.rescan

    def rescan(self, error: Optional[DetectionError] = None) -> Optional[CycleReport]:
        """A dropped event may hide a real change; catch up with one full cycle."""
        if self.stop_event.is_set():
            return None
        log_action(self.logger, "SCAN", f"{self.local}: rescanning after {error}", level=logging.INFO)
        try:
            report = self.run_cycle()
        except DetectionError as e:
            log_action(self.logger, "SCAN", f"{self.local} rescan aborted: {e}", level=logging.ERROR)
            return None
        if not report.quiet:
            self.logger.info("WATCH %s -> %s: %s", self.local, self.peer, report.to_dict())
        return report

    def handle_event(self, event: RawEvent) -> CycleReport:
        report = CycleReport()
        previous = self.store.get(self.local)
        peer_snapshot = self._peer_view()

        if event.kind is EventKind.DELETED:
            if event.is_dir:
                prefix = event.path + "/"
                paths = sorted(p for p in previous if p.startswith(prefix))
            else:
                paths = [event.path]
            changes = {p: None for p in paths}
        else:
            changes = {event.path: self.poller.record_for(event.path)}

        changes = {p: rec for p, rec in changes.items() if previous.get(p) != rec}
        fresh = previous
        for path, record in changes.items():
            fresh = fresh.replace(path, record)

        suppressed = self._take_suppressed(changes)
        result = DiffResult()
        for path, record in changes.items():
            if path in suppressed:
                continue
            single = diff_event(path, record, peer_snapshot, self.local, self.peer)
            result.actions.extend(single.actions)
            result.conflicts.extend(single.conflicts)

        self._apply(self._orient(result, fresh), fresh, previous, peer_snapshot, suppressed, report)
        return report

    def run(self) -> None:
        self.logger.info("WATCH %s -> %s: started", self.local, self.peer)
        try:
            for event in self.detector.subscribe():
                try:
                    self.handle_event(event)
                except DetectionError as e:
                    log_action(self.logger, "SCAN", f"{event.kind.value} {event.path}: {e}",
                               path=event.path, level=logging.ERROR)
                except Exception:
                    self.logger.exception("WATCH %s -> %s: event %s failed", self.local, self.peer, event)
        except DetectionError as e:
            log_action(self.logger, "SCAN", f"{self.local} watch failed: {e}", level=logging.ERROR)
        self.logger.info("WATCH %s -> %s: stopped", self.local, self.peer)
