"""Wires detectors, coordinators, channels and the receiver into a session."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional, Sequence

from .channel import LocalCopyChannel, RemoteChannel, TransferChannel
from .config import MODE_PEER, SyncConfig
from .coordinator import SyncCoordinator, WatchCoordinator, _Coordinator
from .detect import PollDetector, WatchDetector
from .ignore import IgnoreMatcher, with_defaults
from .logs import get_logger
from .server import RequestHandler, SyncServer
from .snapshot import SnapshotStore
from .suppress import EchoSuppressor

# Endpoint names
A = "a"
B = "b"
LOCAL = "local"
REMOTE = "remote"


class SyncSession:
    """
    Owns every thread of one run. start() seeds all snapshots and runs the
    initial reconciliation synchronously before any worker thread starts, so
    the first concurrent cycle already sees a consistent pair of snapshots.
    """

    def __init__(
        self,
        coordinators: Sequence[_Coordinator],
        stop_event: threading.Event,
        server: Optional[SyncServer] = None,
        assume_peer_matches: bool = False,
        logger: Optional[logging.Logger] = None,
    ):
        self.coordinators = list(coordinators)
        self.stop_event = stop_event
        self.server = server
        self.assume_peer_matches = assume_peer_matches
        self.logger = logger or get_logger()

    def start(self) -> None:
        for c in self.coordinators:
            c.seed(assume_peer_matches=self.assume_peer_matches)
        if self.server is not None:
            self.server.start()
        for c in self.coordinators:
            report = c.reconcile()
            self.logger.info("Initial reconcile %s -> %s: %s", c.local, c.peer, report.to_dict())
        for c in self.coordinators:
            if isinstance(c, WatchCoordinator):
                # events only start once the observer runs; absorb the
                # reconcile's own writes with one scan first
                c.run_cycle()
        for c in self.coordinators:
            c.start()

    def stop(self) -> None:
        self.stop_event.set()

    def join(self, timeout: Optional[float] = 10.0) -> None:
        for c in self.coordinators:
            if c.is_alive():
                c.join(timeout=timeout)
        if self.server is not None:
            self.server.join(timeout=timeout)
        for channel in {id(c.channel): c.channel for c in self.coordinators}.values():
            channel.close()


def _coordinator(
    cfg: SyncConfig,
    local: str,
    peer: str,
    root: Path,
    store: SnapshotStore,
    channel: TransferChannel,
    suppressors: dict,
    stop_event: threading.Event,
    logger: logging.Logger,
) -> _Coordinator:
    ignore = IgnoreMatcher(root, with_defaults(cfg.ignore_patterns))
    poller = PollDetector(root, ignore)
    if not cfg.watch:
        return SyncCoordinator(
            local,
            peer,
            poller,
            store,
            channel,
            suppressors,
            interval_sec=cfg.scan_interval_sec,
            stop_event=stop_event,
            logger=logger,
        )

    watcher = WatchDetector(
        root,
        ignore,
        stop_event=stop_event,
        debounce_sec=cfg.debounce_sec,
        max_attempts=cfg.stabilize_attempts,
        logger=logger,
    )
    return WatchCoordinator(local, peer, watcher, poller, store, channel, suppressors, stop_event=stop_event, logger=logger)


def build_local_session(
    cfg: SyncConfig,
    logger: Optional[logging.Logger] = None,
    stop_event: Optional[threading.Event] = None,
) -> SyncSession:
    """Two folders on this machine, one coordinator per direction."""
    logger = logger or get_logger()
    stop_event = stop_event or threading.Event()
    root_a, root_b = Path(cfg.folder_a), Path(cfg.folder_b)

    store = SnapshotStore()
    suppressors = {
        A: EchoSuppressor(cfg.suppression_ttl_sec),
        B: EchoSuppressor(cfg.suppression_ttl_sec),
    }
    channel = LocalCopyChannel({A: root_a, B: root_b})

    coordinators = [
        _coordinator(cfg, A, B, root_a, store, channel, suppressors, stop_event, logger),
        _coordinator(cfg, B, A, root_b, store, channel, suppressors, stop_event, logger),
    ]
    return SyncSession(coordinators, stop_event, logger=logger)


def build_peer_session(
    cfg: SyncConfig,
    logger: Optional[logging.Logger] = None,
    stop_event: Optional[threading.Event] = None,
) -> SyncSession:
    """This process serves inbound pushes and pushes its own changes to the peer."""
    logger = logger or get_logger()
    stop_event = stop_event or threading.Event()
    root = Path(cfg.root)

    store = SnapshotStore()
    suppressor = EchoSuppressor(cfg.suppression_ttl_sec)
    server = SyncServer(
        RequestHandler(root, suppressor, logger),
        host=cfg.listen_host,
        port=cfg.listen_port,
        max_workers=cfg.max_workers,
        stop_event=stop_event,
        timeout_sec=cfg.socket_timeout_sec,
        logger=logger,
    )
    channel = RemoteChannel(LOCAL, root, cfg.peer_host, cfg.peer_port, timeout_sec=cfg.socket_timeout_sec)

    coordinator = _coordinator(cfg, LOCAL, REMOTE, root, store, channel, {LOCAL: suppressor}, stop_event, logger)
    if not cfg.initial_push:
        logger.warning("Files that exist only on one peer are not sent until they change; use --initial-push to send them now.")
    return SyncSession(
        [coordinator],
        stop_event,
        server=server,
        assume_peer_matches=not cfg.initial_push,
        logger=logger,
    )


def build_session(
    cfg: SyncConfig,
    logger: Optional[logging.Logger] = None,
    stop_event: Optional[threading.Event] = None,
) -> SyncSession:
    if cfg.mode == MODE_PEER:
        return build_peer_session(cfg, logger, stop_event)
    return build_local_session(cfg, logger, stop_event)
