"""Source walker: enumerate candidate files under a root directory."""

from __future__ import annotations

import fnmatch
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDED_DIRS = frozenset({"target", "node_modules", ".git", "dist", "build", "venv"})


@dataclass(frozen=True)
class WalkEntry:
    path: Path
    size: int
    modified_at: float


class SourceWalker:
    """Lazy, restartable traversal of a source tree.

    Every iteration starts over from the root. Entries within a directory
    come in lexicographic order; directories are descended depth-first.
    Symlinked directories are followed at most once per canonical target,
    which also breaks symlink cycles.

    Args:
        root: Directory (or single file) to enumerate.
        allowed_extensions: Extensions (without dot) to yield; None allows all.
            Files without an extension are always yielded so shebang
            detection can decide later.
        deny_patterns: Extra globs matched against entry names and root-relative
            posix paths, on top of the default exclusions.
        recursive: Descend into subdirectories.
    """

    def __init__(
        self,
        root: Path | str,
        allowed_extensions: Iterable[str] | None = None,
        deny_patterns: Iterable[str] = (),
        recursive: bool = True,
    ) -> None:
        self.root = Path(root)
        self.allowed_extensions = (
            {ext.lower().lstrip(".") for ext in allowed_extensions}
            if allowed_extensions is not None
            else None
        )
        self.deny_patterns = tuple(deny_patterns)
        self.recursive = recursive

    def __iter__(self) -> Iterator[WalkEntry]:
        return self.walk()

    def walk(self) -> Iterator[WalkEntry]:
        if self.root.is_file():
            entry = self._entry(self.root)
            if entry is not None:
                yield entry
            return
        seen_dirs: set[str] = set()
        seen_files: set[str] = set()
        yield from self._walk_dir(self.root, seen_dirs, seen_files)

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def _walk_dir(self, directory: Path, seen_dirs: set[str], seen_files: set[str]) -> Iterator[WalkEntry]:
        canonical = os.path.realpath(directory)
        if canonical in seen_dirs:
            logger.debug("Skipping already visited directory %s", directory)
            return
        seen_dirs.add(canonical)

        try:
            entries = sorted(os.scandir(directory), key=lambda e: e.name)
        except OSError as exc:
            logger.warning("Cannot read directory %s: %s", directory, exc)
            return

        for entry in entries:
            path = Path(entry.path)
            if self._denied(path):
                continue
            try:
                is_dir = entry.is_dir(follow_symlinks=True)
                is_file = entry.is_file(follow_symlinks=True)
            except OSError:
                continue
            if is_dir:
                if not self.recursive or _excluded_dir(entry.name):
                    continue
                yield from self._walk_dir(path, seen_dirs, seen_files)
            elif is_file:
                target = os.path.realpath(path)
                if target in seen_files:
                    continue
                seen_files.add(target)
                walked = self._entry(path)
                if walked is not None:
                    yield walked

    def _entry(self, path: Path) -> WalkEntry | None:
        if not self._extension_allowed(path):
            return None
        try:
            stat = path.stat()
        except OSError as exc:
            logger.warning("Cannot stat %s: %s", path, exc)
            return None
        return WalkEntry(path=path, size=stat.st_size, modified_at=stat.st_mtime)

    def _extension_allowed(self, path: Path) -> bool:
        if self.allowed_extensions is None:
            return True
        suffix = path.suffix.lower().lstrip(".")
        return not suffix or suffix in self.allowed_extensions

    def _denied(self, path: Path) -> bool:
        if not self.deny_patterns:
            return False
        try:
            relative = path.relative_to(self.root).as_posix()
        except ValueError:
            relative = path.as_posix()
        return any(
            fnmatch.fnmatch(path.name, pattern) or fnmatch.fnmatch(relative, pattern)
            for pattern in self.deny_patterns
        )


def _excluded_dir(name: str) -> bool:
    return name.startswith(".") or name in DEFAULT_EXCLUDED_DIRS
