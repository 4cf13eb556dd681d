"""Effective configuration: CLI flags over the saved JSON file over defaults."""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Optional

from .suppress import DEFAULT_TTL_SEC

APP_DIR = Path.home() / ".mirror_sync"
CONFIG_PATH = APP_DIR / "config.json"

DEFAULT_SCAN_INTERVAL_SEC = 2.0
DEFAULT_PORT = 5000

MODE_LOCAL = "local"
MODE_PEER = "peer"


@dataclass(frozen=True)
class SyncConfig:
    mode: str = MODE_LOCAL
    # local mode
    folder_a: Optional[Path] = None
    folder_b: Optional[Path] = None
    # peer mode
    root: Optional[Path] = None
    listen_host: str = "0.0.0.0"
    listen_port: int = DEFAULT_PORT
    peer_host: Optional[str] = None
    peer_port: int = DEFAULT_PORT
    initial_push: bool = False
    # detection
    scan_interval_sec: float = DEFAULT_SCAN_INTERVAL_SEC
    watch: bool = False
    debounce_sec: float = 0.1
    stabilize_attempts: int = 50
    suppression_ttl_sec: float = DEFAULT_TTL_SEC
    ignore_patterns: list = field(default_factory=list)
    # runtime
    max_workers: int = 4
    socket_timeout_sec: float = 30.0
    log_dir: Path = Path(".")


def prompt_for_path(label: str, default: Optional[Path] = None) -> Path:
    while True:
        hint = f" [{default}]" if default else ""
        raw = input(f"{label}{hint}: ").strip().strip('"')
        if not raw and default:
            return default
        if raw:
            return Path(raw)
        print("Please enter a non-empty path.")


def load_config_file(path: Path = CONFIG_PATH) -> dict:
    """Saved settings, or {} when the file is missing or unreadable."""
    try:
        if path.exists():
            data = json.loads(path.read_text(encoding="utf-8"))
            if isinstance(data, dict):
                return data
    except (OSError, ValueError):
        pass
    return {}


def save_config_file(cfg: SyncConfig, path: Path = CONFIG_PATH) -> None:
    payload = load_config_file(path)
    payload.update(
        {
            "log_dir": str(cfg.log_dir),
            "scan_interval_sec": cfg.scan_interval_sec,
            "watch": cfg.watch,
        }
    )
    if cfg.mode == MODE_LOCAL:
        payload["folder_a"] = str(cfg.folder_a)
        payload["folder_b"] = str(cfg.folder_b)
    else:
        payload["root"] = str(cfg.root)
        payload["listen_port"] = cfg.listen_port
        payload["peer_host"] = cfg.peer_host
        payload["peer_port"] = cfg.peer_port
    if cfg.ignore_patterns:
        payload["ignore_patterns"] = list(cfg.ignore_patterns)

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def _is_subpath(child: Path, parent: Path) -> bool:
    try:
        child.resolve().relative_to(parent.resolve())
        return True
    except ValueError:
        return False


def validate_paths(folder_a: Path, folder_b: Path) -> tuple[Path, Path]:
    folder_a = folder_a.expanduser().resolve()
    folder_b = folder_b.expanduser().resolve()

    if not folder_a.is_dir():
        raise ValueError(f"Folder A does not exist or is not a folder: {folder_a}")
    if folder_a == folder_b:
        raise ValueError("Folder A and folder B must be different.")
    if _is_subpath(folder_b, folder_a) or _is_subpath(folder_a, folder_b):
        raise ValueError("Folders must not be nested inside each other (changes would loop).")

    folder_b.mkdir(parents=True, exist_ok=True)
    return folder_a, folder_b


def validate_root(root: Path) -> Path:
    root = root.expanduser().resolve()
    root.mkdir(parents=True, exist_ok=True)
    if not root.is_dir():
        raise ValueError(f"Root is not a folder: {root}")
    return root


def _pick(value, saved: dict, key: str, default):
    if value is not None:
        return value
    return saved.get(key, default)


def build_effective_config(
    args: argparse.Namespace,
    saved: Optional[dict] = None,
    prompt: Callable[[str, Optional[Path]], Path] = prompt_for_path,
) -> SyncConfig:
    """Merge parsed CLI flags with saved settings; prompt for missing folders."""
    if saved is None:
        saved = load_config_file()

    scan_interval = float(_pick(getattr(args, "scan_interval", None), saved, "scan_interval_sec", DEFAULT_SCAN_INTERVAL_SEC))
    ttl = getattr(args, "suppression_ttl", None)
    if ttl is None:
        # long enough for the next scan to report the write, short enough to
        # let a real edit through soon after
        ttl = saved.get("suppression_ttl_sec", max(DEFAULT_TTL_SEC, 3 * scan_interval))

    log_dir = _pick(getattr(args, "log_dir", None), saved, "log_dir", ".")
    extra_ignores = list(getattr(args, "ignore", None) or saved.get("ignore_patterns", []))
    watch = bool(getattr(args, "watch", False) or saved.get("watch", False))

    cfg = SyncConfig(
        mode=args.command,
        scan_interval_sec=scan_interval,
        watch=watch,
        debounce_sec=float(_pick(getattr(args, "debounce", None), saved, "debounce_sec", 0.1)),
        suppression_ttl_sec=float(ttl),
        ignore_patterns=extra_ignores,
        max_workers=int(_pick(getattr(args, "max_workers", None), saved, "max_workers", 4)),
        socket_timeout_sec=float(_pick(getattr(args, "timeout", None), saved, "socket_timeout_sec", 30.0)),
        log_dir=Path(log_dir),
    )

    if cfg.mode == MODE_LOCAL:
        saved_a = Path(saved["folder_a"]) if "folder_a" in saved else None
        saved_b = Path(saved["folder_b"]) if "folder_b" in saved else None
        folder_a = Path(args.a) if getattr(args, "a", None) else None
        folder_b = Path(args.b) if getattr(args, "b", None) else None
        if folder_a is None:
            folder_a = prompt("Folder A", saved_a)
        if folder_b is None:
            folder_b = prompt("Folder B", saved_b)
        return replace(cfg, folder_a=folder_a, folder_b=folder_b)

    saved_root = Path(saved["root"]) if "root" in saved else None
    root = Path(args.root) if getattr(args, "root", None) else None
    if root is None:
        root = prompt("Shared folder", saved_root)
    peer_host = _pick(getattr(args, "peer_host", None), saved, "peer_host", None)
    if not peer_host:
        raise ValueError("peer mode needs --peer-host (or a saved peer_host)")

    return replace(
        cfg,
        root=root,
        listen_host=getattr(args, "listen_host", None) or "0.0.0.0",
        listen_port=int(_pick(getattr(args, "listen_port", None), saved, "listen_port", DEFAULT_PORT)),
        peer_host=peer_host,
        peer_port=int(_pick(getattr(args, "peer_port", None), saved, "peer_port", DEFAULT_PORT)),
        initial_push=bool(getattr(args, "initial_push", False)),
    )
