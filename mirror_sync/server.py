"""Receiving side of the wire protocol."""

from __future__ import annotations

import logging
import os
import socket
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Optional

from .channel import discard, temp_path_for
from .errors import ProtocolError, TransferError
from .logs import get_logger, log_action
from .protocol import (
    Response,
    Status,
    SyncRequest,
    copy_exact,
    read_file_header,
    read_request,
    write_response,
)
from .suppress import EchoSuppressor

ACCEPT_POLL_SEC = 0.5


class RequestHandler:
    """Decodes one request from a stream and applies it under ``root``.

    Every inbound mutation is registered with the endpoint's EchoSuppressor
    right before it touches the tree.
    """

    def __init__(self, root: Path, suppressor: EchoSuppressor, logger: Optional[logging.Logger] = None):
        self.root = Path(root)
        self.suppressor = suppressor
        self.logger = logger or get_logger()

    def handle(self, reader: BinaryIO, writer: BinaryIO) -> list[Response]:
        request = read_request(reader)
        responses = []

        if isinstance(request, SyncRequest):
            for _ in range(request.count):
                name, size = read_file_header(reader)
                self._receive_file(reader, name, size)
                responses.append(Response(Status.RECEIVED, name))
                write_response(writer, responses[-1])
                writer.flush()
            return responses

        responses.append(self._delete(request.name))
        write_response(writer, responses[-1])
        writer.flush()
        return responses

    def _target(self, name: str) -> Path:
        target = self.root.joinpath(*PurePosixPath(name).parts)
        root = self.root.resolve()
        try:
            target.resolve().relative_to(root)
        except ValueError:
            raise ProtocolError(f"{name!r} resolves outside {root}") from None
        return target

    def _receive_file(self, reader: BinaryIO, name: str, size: int) -> None:
        target = self._target(name)
        tmp = temp_path_for(target)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("wb") as out:
                copy_exact(reader, out, size)
            self.suppressor.mark(name)
            os.replace(tmp, target)
        except TransferError:
            discard(tmp)
            raise
        except OSError as e:
            discard(tmp)
            raise TransferError(f"cannot write {name}: {e}") from e
        log_action(self.logger, "RECEIVE", f"{name} ({size} bytes)", path=name)

    def _delete(self, name: str) -> Response:
        target = self._target(name)
        if not target.is_file():
            log_action(self.logger, "REMOVE", f"not found: {name}", path=name)
            return Response(Status.NOT_FOUND, name)

        self.suppressor.mark(name)
        try:
            target.unlink()
        except FileNotFoundError:
            return Response(Status.NOT_FOUND, name)
        except OSError as e:
            raise TransferError(f"cannot delete {name}: {e}") from e
        log_action(self.logger, "REMOVE", name, path=name)
        return Response(Status.DELETED, name)


class SyncServer:
    """
    Accept loop plus a bounded pool of connection handlers. A failing handler
    is logged and dropped without affecting the others or the loop.
    """

    def __init__(
        self,
        handler: RequestHandler,
        host: str = "0.0.0.0",
        port: int = 5000,
        max_workers: int = 4,
        stop_event: Optional[threading.Event] = None,
        timeout_sec: float = 30.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.handler = handler
        self.host = host
        self.port = int(port)
        self.max_workers = max(1, int(max_workers))
        self.stop_event = stop_event or threading.Event()
        self.timeout_sec = float(timeout_sec)
        self.logger = logger or get_logger()
        self._sock: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None

    def bind(self) -> tuple[str, int]:
        if self._sock is None:
            self._sock = socket.create_server((self.host, self.port))
            self._sock.settimeout(ACCEPT_POLL_SEC)
        return self.address

    @property
    def address(self) -> tuple[str, int]:
        if self._sock is None:
            return self.host, self.port
        return self._sock.getsockname()[:2]

    def start(self) -> threading.Thread:
        self.bind()
        self._thread = threading.Thread(target=self.serve_forever, name="mirror-sync-server", daemon=True)
        self._thread.start()
        return self._thread

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def serve_forever(self) -> None:
        sock = self._sock
        if sock is None:
            self.bind()
            sock = self._sock

        log_action(self.logger, "SERVE", "listening on %s:%d (root=%s)" % (*self.address, self.handler.root))
        pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="mirror-sync-handler")
        try:
            while not self.stop_event.is_set():
                try:
                    conn, addr = sock.accept()
                except socket.timeout:
                    continue
                except OSError as e:
                    if self.stop_event.is_set():
                        break
                    log_action(self.logger, "SERVE", f"accept failed: {e}", level=logging.ERROR)
                    continue
                pool.submit(self._handle_connection, conn, addr)
        finally:
            sock.close()
            self._sock = None
            pool.shutdown(wait=True, cancel_futures=True)
            log_action(self.logger, "SERVE", "stopped")

    def _handle_connection(self, conn: socket.socket, addr) -> None:
        peer = "%s:%s" % tuple(addr[:2])
        with conn:
            conn.settimeout(self.timeout_sec)
            try:
                with conn.makefile("rb") as reader, conn.makefile("wb") as writer:
                    self.handler.handle(reader, writer)
            except TransferError as e:
                log_action(self.logger, "RECEIVE", f"request from {peer} failed: {e}", level=logging.ERROR)
            except OSError as e:
                log_action(self.logger, "RECEIVE", f"connection from {peer} failed: {e}", level=logging.ERROR)
            except Exception:
                self.logger.exception("RECEIVE | unexpected error handling %s", peer)
