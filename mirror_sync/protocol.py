"""Wire format for pushing files and deletions between peers.

All integers are big-endian.

    string   := u16 length, UTF-8 bytes
    request  := string command, body
    SYNC     := u32 count, count * (string name, i64 size, size raw bytes)
    DELETE   := string name
    response := string "<STATUS>:<name>"   (one per file for SYNC)

Commands are decoded into the closed Request variant as soon as they are read;
the literal tags only exist at this boundary.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import BinaryIO, Union

from .errors import ProtocolError, TransferError

CHUNK_SIZE = 64 * 1024
MAX_STRING_BYTES = 0xFFFF

_U16 = struct.Struct(">H")
_U32 = struct.Struct(">I")
_I64 = struct.Struct(">q")


class Command(str, Enum):
    SYNC = "SYNC"
    DELETE = "DELETE"


class Status(str, Enum):
    RECEIVED = "RECEIVED"
    DELETED = "DELETED"
    NOT_FOUND = "NOT_FOUND"


@dataclass(frozen=True)
class SyncRequest:
    """Header of a SYNC frame; the files follow on the stream."""

    count: int


@dataclass(frozen=True)
class DeleteRequest:
    name: str


Request = Union[SyncRequest, DeleteRequest]


@dataclass(frozen=True)
class Response:
    status: Status
    name: str

    def encode(self) -> str:
        return f"{self.status.value}:{self.name}"

    @classmethod
    def parse(cls, text: str) -> "Response":
        tag, sep, name = text.partition(":")
        if not sep:
            raise ProtocolError(f"malformed response: {text!r}")
        try:
            status = Status(tag)
        except ValueError:
            raise ProtocolError(f"unknown response status: {tag!r}") from None
        return cls(status, name)


# -------------------------
# Primitive reads / writes
# -------------------------

def read_exact(stream: BinaryIO, size: int) -> bytes:
    """Read exactly ``size`` bytes, however the stream chunks them."""
    buf = bytearray()
    while len(buf) < size:
        chunk = stream.read(size - len(buf))
        if not chunk:
            raise TransferError(f"stream closed after {len(buf)} of {size} bytes")
        buf.extend(chunk)
    return bytes(buf)


def copy_exact(src: BinaryIO, dst: BinaryIO, size: int, chunk_size: int = CHUNK_SIZE) -> int:
    """Copy exactly ``size`` bytes from src to dst; a short source is an error."""
    remaining = size
    while remaining > 0:
        chunk = src.read(min(chunk_size, remaining))
        if not chunk:
            raise TransferError(f"stream closed after {size - remaining} of {size} bytes")
        dst.write(chunk)
        remaining -= len(chunk)
    return size


def write_string(stream: BinaryIO, text: str) -> None:
    data = text.encode("utf-8")
    if len(data) > MAX_STRING_BYTES:
        raise ProtocolError(f"string too long for frame ({len(data)} bytes)")
    stream.write(_U16.pack(len(data)))
    stream.write(data)


def read_string(stream: BinaryIO) -> str:
    (length,) = _U16.unpack(read_exact(stream, _U16.size))
    data = read_exact(stream, length)
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ProtocolError(f"string is not valid UTF-8: {e}") from e


# -------------------------
# Requests
# -------------------------

def write_sync_header(stream: BinaryIO, count: int) -> None:
    write_string(stream, Command.SYNC.value)
    stream.write(_U32.pack(count))


def write_file_header(stream: BinaryIO, name: str, size: int) -> None:
    if size < 0:
        raise ProtocolError(f"negative file size for {name}")
    write_string(stream, name)
    stream.write(_I64.pack(size))


def write_delete(stream: BinaryIO, name: str) -> None:
    write_string(stream, Command.DELETE.value)
    write_string(stream, name)


def read_request(stream: BinaryIO) -> Request:
    tag = read_string(stream)
    try:
        command = Command(tag)
    except ValueError:
        raise ProtocolError(f"unknown command: {tag!r}") from None

    if command is Command.SYNC:
        (count,) = _U32.unpack(read_exact(stream, _U32.size))
        return SyncRequest(count)
    return DeleteRequest(check_name(read_string(stream)))


def read_file_header(stream: BinaryIO) -> tuple[str, int]:
    name = check_name(read_string(stream))
    (size,) = _I64.unpack(read_exact(stream, _I64.size))
    if size < 0:
        raise ProtocolError(f"negative file size for {name}")
    return name, size


# -------------------------
# Responses
# -------------------------

def write_response(stream: BinaryIO, response: Response) -> None:
    write_string(stream, response.encode())


def read_response(stream: BinaryIO) -> Response:
    return Response.parse(read_string(stream))


def check_name(name: str) -> str:
    """Reject names that could land outside the receiving root."""
    if not name or "\\" in name or "\x00" in name:
        raise ProtocolError(f"invalid file name: {name!r}")
    pure = PurePosixPath(name)
    if not pure.parts or pure.is_absolute() or any(part in ("..", ".") for part in pure.parts) or pure.as_posix() != name:
        raise ProtocolError(f"invalid file name: {name!r}")
    return name
