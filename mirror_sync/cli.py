"""
mirror-sync command line

Usage
  mirror-sync local --a "/data/a" --b "/data/b" [--watch]
  mirror-sync peer --root "/data/shared" --listen-port 5000 --peer-host 10.0.0.2 --peer-port 5000
  mirror-sync push --host 10.0.0.2 --port 5000 --root "/data/shared" notes.txt docs/todo.md
  mirror-sync delete --host 10.0.0.2 --port 5000 notes.txt
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from dataclasses import replace
from pathlib import Path, PurePosixPath
from typing import Optional

from .channel import RemoteChannel
from .config import (
    CONFIG_PATH,
    DEFAULT_PORT,
    MODE_LOCAL,
    build_effective_config,
    save_config_file,
    validate_paths,
    validate_root,
)
from .errors import MirrorSyncError
from .logs import log_action, setup_logger
from .session import LOCAL, build_session


def _add_sync_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("--watch", action="store_true", help="Use OS change notifications instead of polling.")
    p.add_argument("--scan-interval", type=float, default=None, help="Seconds between scan passes.")
    p.add_argument("--debounce", type=float, default=None, help="Seconds a written file must stay unchanged (watch mode).")
    p.add_argument("--suppression-ttl", type=float, default=None, help="Seconds an echo suppression entry lives.")
    p.add_argument("--ignore", action="append", default=None, metavar="PATTERN", help="Extra gitignore-style pattern (repeatable).")
    p.add_argument("--log-dir", type=str, default=None, help="Directory for log files.")
    p.add_argument("--no-save", action="store_true", help="Do not remember these settings.")


def parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="mirror-sync", description="Keep two folders mirrored in both directions.")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    sub = p.add_subparsers(dest="command", required=True)

    local = sub.add_parser("local", help="Mirror two folders on this machine.")
    local.add_argument("--a", type=str, default=None, help="First folder.")
    local.add_argument("--b", type=str, default=None, help="Second folder.")
    _add_sync_options(local)

    peer = sub.add_parser("peer", help="Mirror a folder with another machine running peer mode.")
    peer.add_argument("--root", type=str, default=None, help="Folder to keep in sync.")
    peer.add_argument("--listen-host", type=str, default=None, help="Address to accept pushes on.")
    peer.add_argument("--listen-port", type=int, default=None, help=f"Port to accept pushes on (default {DEFAULT_PORT}).")
    peer.add_argument("--peer-host", type=str, default=None, help="Host of the other peer.")
    peer.add_argument("--peer-port", type=int, default=None, help=f"Port of the other peer (default {DEFAULT_PORT}).")
    peer.add_argument("--initial-push", action="store_true", help="Push every local file on startup.")
    peer.add_argument("--max-workers", type=int, default=None, help="Concurrent inbound connections.")
    peer.add_argument("--timeout", type=float, default=None, help="Socket timeout in seconds.")
    _add_sync_options(peer)

    push = sub.add_parser("push", help="Send files to a peer once.")
    push.add_argument("--host", type=str, required=True)
    push.add_argument("--port", type=int, default=DEFAULT_PORT)
    push.add_argument("--root", type=str, default=".", help="Names are relative to this folder.")
    push.add_argument("--timeout", type=float, default=30.0)
    push.add_argument("files", nargs="+")

    delete = sub.add_parser("delete", help="Ask a peer to delete one file.")
    delete.add_argument("--host", type=str, required=True)
    delete.add_argument("--port", type=int, default=DEFAULT_PORT)
    delete.add_argument("--timeout", type=float, default=30.0)
    delete.add_argument("name")

    return p.parse_args(argv)


def _relative_name(root: Path, raw: str) -> str:
    path = Path(raw)
    if path.is_absolute():
        path = path.resolve().relative_to(root)
    return PurePosixPath(*path.parts).as_posix()


def run_push(args: argparse.Namespace, logger: logging.Logger) -> int:
    root = Path(args.root).expanduser().resolve()
    channel = RemoteChannel(LOCAL, root, args.host, args.port, timeout_sec=args.timeout)
    try:
        names = [_relative_name(root, f) for f in args.files]
        for response in channel.push(names):
            log_action(logger, "COPY", f"{response.name} -> {args.host}:{args.port} ({response.status.value})", path=response.name)
    except ValueError as e:
        logger.error("Push error: %s", e)
        return 2
    except MirrorSyncError as e:
        logger.error("Push failed: %s", e)
        return 1
    return 0


def run_delete(args: argparse.Namespace, logger: logging.Logger) -> int:
    channel = RemoteChannel(LOCAL, Path("."), args.host, args.port, timeout_sec=args.timeout)
    try:
        response = channel.delete(args.name)
    except MirrorSyncError as e:
        logger.error("Delete failed: %s", e)
        return 1
    log_action(logger, "DELETE", f"{response.name} at {args.host}:{args.port} ({response.status.value})", path=response.name)
    return 0


def run_sync(args: argparse.Namespace) -> int:
    try:
        cfg = build_effective_config(args)
    except ValueError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2

    logger = setup_logger(cfg.log_dir.expanduser(), level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        if cfg.mode == MODE_LOCAL:
            folder_a, folder_b = validate_paths(cfg.folder_a, cfg.folder_b)
            cfg = replace(cfg, folder_a=folder_a, folder_b=folder_b)
            logger.info("Folder A: %s", folder_a)
            logger.info("Folder B: %s", folder_b)
        else:
            root = validate_root(cfg.root)
            cfg = replace(cfg, root=root)
            logger.info("Root   : %s", root)
            logger.info("Peer   : %s:%d", cfg.peer_host, cfg.peer_port)
    except (OSError, ValueError) as e:
        logger.error("Config error: %s", e)
        return 2

    if not args.no_save:
        try:
            save_config_file(cfg)
            logger.info("Saved config: %s", CONFIG_PATH)
        except OSError as e:
            logger.error("Could not save config: %s", e)

    session = build_session(cfg, logger)
    try:
        session.start()
    except (MirrorSyncError, OSError) as e:
        logger.error("Startup failed: %s", e)
        session.stop()
        session.join()
        return 1

    logger.info("Syncing... (Ctrl+C to stop)")
    try:
        while True:
            time.sleep(0.5)
    except KeyboardInterrupt:
        logger.info("Stopping...")
    finally:
        session.stop()
        session.join(timeout=10)
        logger.info("Stopped.")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)

    if args.command in ("push", "delete"):
        logger = setup_logger(None, level=logging.DEBUG if args.verbose else logging.INFO)
        if args.command == "push":
            return run_push(args, logger)
        return run_delete(args, logger)

    return run_sync(args)


if __name__ == "__main__":
    raise SystemExit(main())
