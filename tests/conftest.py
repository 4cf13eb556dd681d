from __future__ import annotations

import collections
import logging
import os
import threading
from pathlib import Path

import pytest

from mirror_sync.channel import TransferChannel
from mirror_sync.diff import CopyTo
from mirror_sync.logs import LOGGER_NAME

# 2024-01-01T00:00:00Z
BASE_NS = 1_704_067_200 * 1_000_000_000


def write_file(root: Path, rel: str, data: bytes | str, mtime_ns: int | None = None) -> Path:
    """Write ``rel`` under ``root``, optionally pinning its mtime."""
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(data, str):
        data = data.encode("utf-8")
    path.write_bytes(data)
    if mtime_ns is not None:
        os.utime(path, ns=(mtime_ns, mtime_ns))
    return path


@pytest.fixture
def folder_a(tmp_path: Path) -> Path:
    p = tmp_path / "a"
    p.mkdir()
    return p


@pytest.fixture
def folder_b(tmp_path: Path) -> Path:
    p = tmp_path / "b"
    p.mkdir()
    return p


@pytest.fixture
def logger() -> logging.Logger:
    log = logging.getLogger(LOGGER_NAME + ".tests")
    log.setLevel(logging.DEBUG)
    return log


@pytest.fixture
def write():
    return write_file


@pytest.fixture
def base_ns() -> int:
    return BASE_NS


@pytest.fixture
def place(tmp_path):
    """Write a file outside the tree, then rename it in, so a concurrent scan
    never sees it half written."""
    staging = tmp_path / "staging"
    staging.mkdir(exist_ok=True)

    def _place(root: Path, rel: str, data: bytes | str) -> Path:
        tmp = write_file(staging, "pending", data)
        target = root / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        os.replace(tmp, target)
        return target

    return _place


class CountingChannel(TransferChannel):
    """Counts the copies that reached their target, per path."""

    def __init__(self, inner: TransferChannel):
        self.inner = inner
        self.observes_peer = inner.observes_peer
        self.copies: collections.Counter = collections.Counter()
        self._lock = threading.Lock()

    def send(self, action):
        ack = self.inner.send(action)
        if isinstance(action, CopyTo):
            with self._lock:
                self.copies[action.path] += 1
        return ack

    def close(self) -> None:
        self.inner.close()


@pytest.fixture
def counting():
    return CountingChannel
