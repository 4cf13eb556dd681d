import io
import threading

import pytest

from mirror_sync.channel import RemoteChannel
from mirror_sync.diff import CopyTo, DeleteAt
from mirror_sync.errors import ProtocolError, TransferError
from mirror_sync.protocol import (
    Response,
    Status,
    write_delete,
    write_file_header,
    write_sync_header,
)
from mirror_sync.server import RequestHandler, SyncServer
from mirror_sync.suppress import EchoSuppressor


def sync_frame(files):
    buf = io.BytesIO()
    write_sync_header(buf, len(files))
    for name, data in files:
        write_file_header(buf, name, len(data))
        buf.write(data)
    return buf.getvalue()


@pytest.fixture
def suppressor():
    return EchoSuppressor(ttl_sec=60)


@pytest.fixture
def handler(folder_b, suppressor, logger):
    return RequestHandler(folder_b, suppressor, logger)


def test_handler_receives_multiple_files(handler, folder_b, suppressor):
    frame = sync_frame([("one.txt", b"1"), ("sub/two.bin", b"\x00" * 100_000)])
    out = io.BytesIO()

    responses = handler.handle(io.BytesIO(frame), out)

    assert responses == [Response(Status.RECEIVED, "one.txt"), Response(Status.RECEIVED, "sub/two.bin")]
    assert (folder_b / "one.txt").read_bytes() == b"1"
    assert (folder_b / "sub" / "two.bin").stat().st_size == 100_000
    assert out.getvalue() == b"\x00\x10RECEIVED:one.txt\x00\x14RECEIVED:sub/two.bin"
    assert suppressor.should_suppress("one.txt")
    assert suppressor.should_suppress("sub/two.bin")


def test_handler_short_read_leaves_no_partial_file(handler, folder_b):
    frame = sync_frame([("cut.txt", b"0123456789")])[:-4]
    with pytest.raises(TransferError):
        handler.handle(io.BytesIO(frame), io.BytesIO())
    assert list(folder_b.iterdir()) == []


def test_handler_delete_and_not_found(handler, folder_b, suppressor, write):
    write(folder_b, "x.txt", "bye")
    frame = io.BytesIO()
    write_delete(frame, "x.txt")

    assert handler.handle(io.BytesIO(frame.getvalue()), io.BytesIO()) == [Response(Status.DELETED, "x.txt")]
    assert not (folder_b / "x.txt").exists()
    assert suppressor.should_suppress("x.txt")

    assert handler.handle(io.BytesIO(frame.getvalue()), io.BytesIO()) == [Response(Status.NOT_FOUND, "x.txt")]
    # nothing was mutated, so nothing to suppress
    assert not suppressor.should_suppress("x.txt")


def test_handler_rejects_traversal(handler):
    frame = sync_frame([("../escape.txt", b"x")])
    with pytest.raises(ProtocolError):
        handler.handle(io.BytesIO(frame), io.BytesIO())


def test_handler_rejects_symlink_escape(handler, folder_b, tmp_path):
    outside = tmp_path / "outside"
    outside.mkdir()
    (folder_b / "link").symlink_to(outside, target_is_directory=True)

    with pytest.raises(ProtocolError):
        handler.handle(io.BytesIO(sync_frame([("link/x.txt", b"x")])), io.BytesIO())
    assert list(outside.iterdir()) == []


@pytest.fixture
def server(handler, logger):
    stop = threading.Event()
    srv = SyncServer(handler, host="127.0.0.1", port=0, max_workers=2, stop_event=stop, timeout_sec=5, logger=logger)
    srv.start()
    yield srv
    stop.set()
    srv.join(timeout=5)


def test_push_and_delete_over_tcp(server, folder_a, folder_b, write):
    host, port = server.address
    write(folder_a, "notes.txt", "hello")
    write(folder_a, "deep/er/file.md", "# title")
    channel = RemoteChannel("local", folder_a, host, port, timeout_sec=5)

    responses = channel.push(["notes.txt", "deep/er/file.md"])
    assert [r.status for r in responses] == [Status.RECEIVED, Status.RECEIVED]
    assert (folder_b / "notes.txt").read_text() == "hello"
    assert (folder_b / "deep" / "er" / "file.md").read_text() == "# title"

    assert channel.send(DeleteAt("notes.txt", "remote")).status is Status.DELETED
    assert not (folder_b / "notes.txt").exists()
    assert channel.send(DeleteAt("notes.txt", "remote")).status is Status.NOT_FOUND


def test_send_copy_over_tcp(server, folder_a, folder_b, write):
    host, port = server.address
    write(folder_a, "a.bin", bytes(range(256)) * 1000)
    channel = RemoteChannel("local", folder_a, host, port, timeout_sec=5)

    ack = channel.send(CopyTo("a.bin", "local", "remote"))

    assert ack == Response(Status.RECEIVED, "a.bin")
    assert (folder_b / "a.bin").read_bytes() == (folder_a / "a.bin").read_bytes()


def test_connection_refused_is_transfer_error(folder_a, write):
    import socket

    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]
    write(folder_a, "x", "x")
    channel = RemoteChannel("local", folder_a, "127.0.0.1", port, timeout_sec=2)
    with pytest.raises(TransferError):
        channel.push(["x"])


def test_bad_request_does_not_kill_server(server, folder_a, folder_b, write):
    import socket

    host, port = server.address
    with socket.create_connection((host, port), timeout=5) as sock:
        sock.sendall(b"\x00\x04PULL")
        # the server logs the failure and closes the connection
        assert sock.recv(10) == b""

    write(folder_a, "ok.txt", "fine")
    RemoteChannel("local", folder_a, host, port, timeout_sec=5).push(["ok.txt"])
    assert (folder_b / "ok.txt").read_text() == "fine"
