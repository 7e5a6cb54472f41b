"""meridian_rag.indexing.source

Snapshot content providers.

Indexers never talk to a version-control host directly. They consume a
:class:`ContentProvider`, which lists the files of a snapshot and returns their
text. :class:`LocalDirectoryProvider` serves a checked-out working tree.

Classes
-------
TreeEntry
    One entry of a snapshot listing.
ContentProvider
    Protocol implemented by snapshot sources.
LocalDirectoryProvider
    Provider backed by a directory on disk.

Functions
---------
is_code_file
    Extension check against the configured code extensions.
is_excluded
    Directory-segment check against the configured excluded directories.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterable, Optional, Protocol

from meridian_rag.config.global_config import DEFAULT_CODE_EXTENSIONS, DEFAULT_EXCLUDED_DIRS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TreeEntry:
    path: str
    type: str = "blob"   # "blob" or "tree"


class ContentProvider(Protocol):
    async def get_repository_tree(self, owner: str, repo: str, ref: Optional[str] = None) -> list[TreeEntry]:
        ...

    async def get_file_content(self, owner: str, repo: str, path: str, ref: Optional[str] = None) -> str:
        ...


def is_code_file(path: str, extensions: Iterable[str] = DEFAULT_CODE_EXTENSIONS) -> bool:
    suffix = PurePosixPath(path).suffix.lower().lstrip(".")
    return bool(suffix) and suffix in {e.lower().lstrip(".") for e in extensions}


def is_excluded(path: str, excluded_dirs: Iterable[str] = DEFAULT_EXCLUDED_DIRS) -> bool:
    """Return ``True`` when any directory segment of ``path`` is excluded."""
    excluded = set(excluded_dirs)
    return any(part in excluded for part in PurePosixPath(path).parts[:-1])


class LocalDirectoryProvider:
    """Serve a snapshot from a local directory.

    ``owner`` and ``repo`` are accepted for interface compatibility and
    ignored; ``ref`` is ignored as well, the directory is the snapshot.

    Parameters
    ----------
    root : str or Path
        Root of the checked-out repository.
    encoding : str, optional
        Text encoding used to read files. Undecodable bytes are replaced.
    """

    def __init__(self, root: str | Path, *, encoding: str = "utf-8"):
        self.root = Path(root).resolve()
        self.encoding = encoding
        if not self.root.is_dir():
            raise FileNotFoundError(f"Repository root {self.root} is not a directory.")

    def _walk(self) -> list[TreeEntry]:
        entries: list[TreeEntry] = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames.sort()
            rel_dir = Path(dirpath).relative_to(self.root)
            for name in dirnames:
                entries.append(TreeEntry(path=(rel_dir / name).as_posix(), type="tree"))
            for name in sorted(filenames):
                entries.append(TreeEntry(path=(rel_dir / name).as_posix(), type="blob"))
        return entries

    async def get_repository_tree(self, owner: str, repo: str, ref: Optional[str] = None) -> list[TreeEntry]:
        entries = await asyncio.to_thread(self._walk)
        logger.debug("Listed %d entries under %s", len(entries), self.root)
        return entries

    async def get_file_content(self, owner: str, repo: str, path: str, ref: Optional[str] = None) -> str:
        target = (self.root / path).resolve()
        if self.root not in target.parents:
            raise ValueError(f"Path {path!r} escapes the repository root.")
        return await asyncio.to_thread(target.read_text, encoding=self.encoding, errors="replace")


__all__ = [
    "ContentProvider",
    "LocalDirectoryProvider",
    "TreeEntry",
    "is_code_file",
    "is_excluded",
]
