import pytest

from mirror_sync.channel import LocalCopyChannel, RemoteChannel, temp_path_for
from mirror_sync.diff import CopyTo, DeleteAt
from mirror_sync.errors import TransferError
from mirror_sync.protocol import Status
from mirror_sync.snapshot import make_record


@pytest.fixture
def channel(folder_a, folder_b):
    return LocalCopyChannel({"a": folder_a, "b": folder_b})


def test_copy_preserves_content_and_mtime(channel, folder_a, folder_b, write, base_ns):
    write(folder_a, "docs/notes.txt", "hello", mtime_ns=base_ns)

    ack = channel.send(CopyTo("docs/notes.txt", "a", "b"))

    assert ack.status is Status.RECEIVED
    assert (folder_b / "docs" / "notes.txt").read_text() == "hello"
    assert make_record(folder_b, "docs/notes.txt") == make_record(folder_a, "docs/notes.txt")
    assert not temp_path_for(folder_b / "docs" / "notes.txt").exists()


def test_copy_overwrites_existing_target(channel, folder_a, folder_b, write, base_ns):
    write(folder_a, "f", "new", mtime_ns=base_ns + 10)
    write(folder_b, "f", "old", mtime_ns=base_ns)
    channel.send(CopyTo("f", "a", "b"))
    assert (folder_b / "f").read_text() == "new"


def test_copy_of_missing_source_fails_cleanly(channel, folder_b):
    with pytest.raises(TransferError):
        channel.send(CopyTo("ghost", "a", "b"))
    assert list(folder_b.iterdir()) == []


def test_delete_then_not_found(channel, folder_b, write):
    write(folder_b, "x.txt", "bye")
    assert channel.send(DeleteAt("x.txt", "b")).status is Status.DELETED
    assert not (folder_b / "x.txt").exists()
    assert channel.send(DeleteAt("x.txt", "b")).status is Status.NOT_FOUND


def test_unknown_endpoint(channel):
    with pytest.raises(TransferError):
        channel.send(DeleteAt("x", "c"))


def test_remote_channel_refuses_pull(folder_a):
    remote = RemoteChannel("local", folder_a, "127.0.0.1", 9)
    assert remote.observes_peer is False
    with pytest.raises(TransferError):
        remote.send(CopyTo("x", "remote", "local"))
    with pytest.raises(TransferError):
        remote.send(DeleteAt("x", "local"))
