from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional

from pathspec import PathSpec

# Temporary files written by the channels and the receiver before the atomic
# rename. They must never be reported as changes.
TEMP_SUFFIX = ".mirror-sync-tmp"

DEFAULT_PATTERNS = [
    f"*{TEMP_SUFFIX}",
    # Editors
    "*.swp",
    "*.swo",
    "*~",
    # OS
    ".DS_Store",
    "Thumbs.db",
]


class IgnoreMatcher:
    """gitignore-style filter over paths relative to one endpoint root."""

    def __init__(self, root: Path, patterns: Optional[Iterable[str]] = None):
        self.root = root.resolve()
        self.patterns = list(DEFAULT_PATTERNS if patterns is None else patterns)
        self.spec = PathSpec.from_lines("gitwildmatch", self.patterns)

    def is_ignored(self, rel_path: str, is_dir: bool = False) -> bool:
        if is_dir and not rel_path.endswith("/"):
            rel_path += "/"
        return self.spec.match_file(rel_path)

    def relative(self, path: Path) -> Optional[str]:
        """Map an absolute path under the root to its relative POSIX form."""
        try:
            rel = path.resolve().relative_to(self.root)
        except ValueError:
            return None
        rel_posix = rel.as_posix()
        if rel_posix == ".":
            return None
        return rel_posix


def with_defaults(extra: Iterable[str]) -> list[str]:
    return DEFAULT_PATTERNS + [p for p in extra if p not in DEFAULT_PATTERNS]
