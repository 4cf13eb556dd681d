"""Per-endpoint state: what each tree looked like at its last detection."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Optional

from .digest import digest_file


@dataclass(frozen=True)
class FileRecord:
    """Last observed metadata for one relative path.

    Equality compares ``modified_at`` and ``fingerprint`` only: neither alone
    identifies a version, since two endpoints can disagree on timestamp
    semantics and a coarse clock can coalesce distinct edits.
    """

    path: str = field(compare=False)
    modified_at: int
    fingerprint: str


def make_record(root: Path, rel_path: str) -> FileRecord:
    """Stat and hash one file. Raises OSError if it cannot be read."""
    full = root / rel_path
    st = full.stat()
    return FileRecord(path=rel_path, modified_at=st.st_mtime_ns, fingerprint=digest_file(full))


class Snapshot(Mapping[str, FileRecord]):
    """Immutable mapping of relative path -> FileRecord.

    Updates return a new Snapshot so a reader holding a reference never sees a
    half-applied scan.
    """

    def __init__(self, records: Optional[Mapping[str, FileRecord]] = None):
        self._records = MappingProxyType(dict(records or {}))

    @classmethod
    def empty(cls) -> "Snapshot":
        return cls()

    @classmethod
    def of(cls, *records: FileRecord) -> "Snapshot":
        return cls({r.path: r for r in records})

    def __getitem__(self, path: str) -> FileRecord:
        return self._records[path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __repr__(self) -> str:
        return f"Snapshot({len(self)} files)"

    def with_record(self, record: FileRecord) -> "Snapshot":
        records = dict(self._records)
        records[record.path] = record
        return Snapshot(records)

    def without(self, path: str) -> "Snapshot":
        if path not in self._records:
            return self
        records = dict(self._records)
        del records[path]
        return Snapshot(records)

    def replace(self, path: str, record: Optional[FileRecord]) -> "Snapshot":
        """Set ``path`` to ``record``, or drop it when ``record`` is None."""
        if record is None:
            return self.without(path)
        return self.with_record(record)


class SnapshotStore:
    """Latest published Snapshot per endpoint name.

    Each endpoint has a single writer (its coordinator). Publishing swaps the
    reference, so readers need no lock.
    """

    def __init__(self, initial: Optional[Mapping[str, Snapshot]] = None):
        self._snapshots: Dict[str, Snapshot] = dict(initial or {})

    def get(self, endpoint: str) -> Snapshot:
        return self._snapshots.get(endpoint, Snapshot.empty())

    def publish(self, endpoint: str, snapshot: Snapshot) -> None:
        self._snapshots[endpoint] = snapshot

