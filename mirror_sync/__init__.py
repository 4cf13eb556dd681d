"""Two-way folder mirroring, locally or between two peers over TCP."""

from .errors import DetectionError, MirrorSyncError, ProtocolError, TransferError
from .session import SyncSession, build_local_session, build_peer_session

__version__ = "0.1.0"

__all__ = [
    "DetectionError",
    "MirrorSyncError",
    "ProtocolError",
    "SyncSession",
    "TransferError",
    "build_local_session",
    "build_peer_session",
]
