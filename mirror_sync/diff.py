"""Diff engine: turns a fresh observation into SyncActions.

Conflicts are resolved last-writer-wins on ``modified_at`` at whole-file
granularity. Equal timestamps with different fingerprints cannot be ordered;
they produce no action and are reported as ``ConflictUnresolved``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Optional, Union

from .snapshot import FileRecord


@dataclass(frozen=True)
class CopyTo:
    path: str
    source: str
    target: str


@dataclass(frozen=True)
class DeleteAt:
    path: str
    endpoint: str

    @property
    def target(self) -> str:
        return self.endpoint


SyncAction = Union[CopyTo, DeleteAt]


@dataclass(frozen=True)
class ConflictUnresolved:
    path: str
    local: FileRecord
    peer: FileRecord


@dataclass
class DiffResult:
    actions: list = field(default_factory=list)
    conflicts: list = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.actions or self.conflicts)


def _resolve(
    path: str,
    local_rec: FileRecord,
    peer_rec: FileRecord,
    local: str,
    remote: str,
) -> Optional[Union[CopyTo, ConflictUnresolved]]:
    if local_rec == peer_rec:
        return None
    if local_rec.modified_at > peer_rec.modified_at:
        return CopyTo(path, local, remote)
    if peer_rec.modified_at > local_rec.modified_at:
        return CopyTo(path, remote, local)
    return ConflictUnresolved(path, local_rec, peer_rec)


def diff(
    new: Mapping[str, FileRecord],
    peer: Mapping[str, FileRecord],
    local: str,
    remote: str,
    propagate_deletions: bool = True,
) -> DiffResult:
    """Compare ``local``'s fresh snapshot against ``remote``'s last-known one.

    Actions come out as additions, then modifications, then deletions, each
    sorted by path, so a deletion never precedes a same-cycle write.
    """
    result = DiffResult()

    for path in sorted(new.keys() - peer.keys()):
        result.actions.append(CopyTo(path, local, remote))

    for path in sorted(new.keys() & peer.keys()):
        outcome = _resolve(path, new[path], peer[path], local, remote)
        if isinstance(outcome, ConflictUnresolved):
            result.conflicts.append(outcome)
        elif outcome is not None:
            result.actions.append(outcome)

    if propagate_deletions:
        for path in sorted(peer.keys() - new.keys()):
            result.actions.append(DeleteAt(path, remote))

    return result


def diff_event(
    path: str,
    record: Optional[FileRecord],
    peer: Mapping[str, FileRecord],
    local: str,
    remote: str,
) -> DiffResult:
    """Single-path variant of :func:`diff` for one watch event.

    ``record`` is the path's current local record, or None if it was deleted.
    """
    result = DiffResult()
    peer_rec = peer.get(path)

    if record is None:
        if peer_rec is not None:
            result.actions.append(DeleteAt(path, remote))
        return result

    if peer_rec is None:
        result.actions.append(CopyTo(path, local, remote))
        return result

    outcome = _resolve(path, record, peer_rec, local, remote)
    if isinstance(outcome, ConflictUnresolved):
        result.conflicts.append(outcome)
    elif outcome is not None:
        result.actions.append(outcome)
    return result
