"""Transfer channels: how an action reaches the peer's tree."""

from __future__ import annotations

import os
import shutil
import socket
from abc import ABC, abstractmethod
from contextlib import ExitStack
from pathlib import Path
from typing import BinaryIO, Callable, Mapping, Sequence

from .diff import CopyTo, DeleteAt, SyncAction
from .errors import ProtocolError, TransferError
from .ignore import TEMP_SUFFIX
from .protocol import (
    Response,
    Status,
    copy_exact,
    read_response,
    write_delete,
    write_file_header,
    write_sync_header,
)

Ack = Response


def temp_path_for(target: Path) -> Path:
    return target.with_name(f".{target.name}{TEMP_SUFFIX}")


def discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


class TransferChannel(ABC):
    # True when the peer's snapshot is published by the peer's own detector.
    # Otherwise the coordinator tracks what it has successfully sent.
    observes_peer: bool = True

    @abstractmethod
    def send(self, action: SyncAction) -> Ack:
        """Apply one action to its target endpoint.

        Raises:
            TransferError: the action could not be applied.
        """

    def close(self) -> None:
        pass


class LocalCopyChannel(TransferChannel):
    """Both endpoints are folders on this machine."""

    observes_peer = True

    def __init__(self, roots: Mapping[str, Path]):
        self.roots = {name: Path(root) for name, root in roots.items()}

    def _root(self, endpoint: str) -> Path:
        try:
            return self.roots[endpoint]
        except KeyError:
            raise TransferError(f"unknown endpoint: {endpoint}") from None

    def send(self, action: SyncAction) -> Ack:
        if isinstance(action, CopyTo):
            return self._copy(action)
        return self._delete(action)

    def _copy(self, action: CopyTo) -> Ack:
        src = self._root(action.source) / action.path
        dst = self._root(action.target) / action.path
        tmp = temp_path_for(dst)
        try:
            dst.parent.mkdir(parents=True, exist_ok=True)
            # copy2 keeps the mtime, so the target's next scan yields an equal record
            shutil.copy2(src, tmp)
            os.replace(tmp, dst)
        except OSError as e:
            discard(tmp)
            raise TransferError(f"copy {action.path} {action.source} -> {action.target} failed: {e}") from e
        return Ack(Status.RECEIVED, action.path)

    def _delete(self, action: DeleteAt) -> Ack:
        target = self._root(action.endpoint) / action.path
        try:
            target.unlink()
        except FileNotFoundError:
            return Ack(Status.NOT_FOUND, action.path)
        except OSError as e:
            raise TransferError(f"delete {action.path} at {action.endpoint} failed: {e}") from e
        return Ack(Status.DELETED, action.path)


class RemoteChannel(TransferChannel):
    """
    Pushes local files and deletions to a peer's SyncServer, one connection per
    call. The wire has no way to fetch, so only outbound actions are supported.
    """

    observes_peer = False

    def __init__(self, local: str, root: Path, host: str, port: int, timeout_sec: float = 30.0):
        self.local = local
        self.root = Path(root)
        self.host = host
        self.port = int(port)
        self.timeout_sec = float(timeout_sec)

    def send(self, action: SyncAction) -> Ack:
        if isinstance(action, CopyTo):
            if action.source != self.local:
                raise TransferError(f"cannot fetch {action.path} from {action.source}: push-only channel")
            return self._expect(self.push([action.path])[0], Status.RECEIVED, action.path)
        if action.endpoint == self.local:
            raise TransferError(f"refusing to delete local {action.path} over the wire")
        return self.delete(action.path)

    def push(self, paths: Sequence[str]) -> list[Response]:
        """Send one SYNC frame carrying every file in ``paths``."""
        with ExitStack() as stack:
            files = []
            for rel in paths:
                try:
                    f = stack.enter_context((self.root / rel).open("rb"))
                except OSError as e:
                    raise TransferError(f"cannot open {rel}: {e}") from e
                files.append((rel, f, os.fstat(f.fileno()).st_size))

            def _write(writer: BinaryIO) -> None:
                write_sync_header(writer, len(files))
                for rel, f, size in files:
                    write_file_header(writer, rel, size)
                    copy_exact(f, writer, size)

            return self._exchange(_write, expected=len(files))

    def delete(self, name: str) -> Response:
        (response,) = self._exchange(lambda writer: write_delete(writer, name), expected=1)
        if response.status not in (Status.DELETED, Status.NOT_FOUND) or response.name != name:
            raise ProtocolError(f"unexpected response to DELETE {name}: {response.encode()}")
        return response

    def _exchange(self, write_request: Callable[[BinaryIO], None], expected: int) -> list[Response]:
        try:
            with socket.create_connection((self.host, self.port), timeout=self.timeout_sec) as sock:
                with sock.makefile("wb") as writer, sock.makefile("rb") as reader:
                    write_request(writer)
                    writer.flush()
                    return [read_response(reader) for _ in range(expected)]
        except OSError as e:
            raise TransferError(f"{self.host}:{self.port}: {e}") from e

    @staticmethod
    def _expect(response: Response, status: Status, name: str) -> Response:
        if response.status is not status or response.name != name:
            raise ProtocolError(f"expected {status.value}:{name}, got {response.encode()}")
        return response
