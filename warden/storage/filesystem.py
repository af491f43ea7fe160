"""
Filesystem Bundle Storage
==========================

Exposes an expanded bundle directory (``MyApp.app`` or any folder that
contains a bundle layout) through the common storage surface.
Symbolic links are reported as links and never followed during the
recursive listing.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Optional

from warden.core.errors import UnsupportedBundle
from warden.core.models import StorageKind
from warden.parsers.seekable import SeekableSource
from warden.storage.nodes import BundleNode, sort_nodes


class FileSystemStorage:
    """Read-only view of a bundle folder.

    Usage::

        with FileSystemStorage("MyApp.app") as storage:
            for node in storage.nodes():
                print(node.path, node.size)

    Args:
        root: Directory the bundle paths are relative to.
    """

    kind = StorageKind.DIRECTORY

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)
        if not self._root.is_dir():
            raise UnsupportedBundle("Not a directory", path=str(self._root))

    @property
    def container(self) -> Path:
        return self._root

    # ------------------------------------------------------------------ #
    #  Listing
    # ------------------------------------------------------------------ #

    def _node_for(self, entry: Path) -> BundleNode:
        st = entry.lstat()
        is_link = entry.is_symlink()
        is_directory = entry.is_dir() and not is_link
        return BundleNode(
            path=entry.relative_to(self._root).as_posix(),
            size=0 if is_directory else st.st_size,
            is_directory=is_directory,
            is_link=is_link,
        )

    def nodes(self, at: Optional[BundleNode] = None) -> list[BundleNode]:
        """Return the direct children of *at* (the root when ``None``)."""
        if at is not None and not at.is_directory:
            raise NotADirectoryError(at.path)
        directory = self._root if at is None else self._root / at.path
        return sort_nodes(self._node_for(entry) for entry in directory.iterdir())

    @property
    def paths(self) -> list[BundleNode]:
        """Every node below the root, recursively, sorted by path."""
        collected: list[BundleNode] = []
        pending: list[Optional[BundleNode]] = [None]
        while pending:
            for child in self.nodes(pending.pop()):
                collected.append(child)
                if child.is_directory:
                    pending.append(child)
        return sort_nodes(collected)

    @property
    def file_paths(self) -> list[BundleNode]:
        return [node for node in self.paths if not node.is_directory]

    def find(self, pattern: str | re.Pattern[str]) -> list[BundleNode]:
        """Return the nodes whose path matches *pattern* (``re.search``)."""
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        return [node for node in self.paths if regex.search(node.path)]

    # ------------------------------------------------------------------ #
    #  Content
    # ------------------------------------------------------------------ #

    def _file(self, node: BundleNode) -> Path:
        if node.is_directory:
            raise IsADirectoryError(node.path)
        return self._root / node.path

    def open(self, node: BundleNode) -> SeekableSource:
        """Open a file node for random access; the caller closes it."""
        return SeekableSource.from_file(self._file(node))

    def read_bytes(self, node: BundleNode) -> bytes:
        return self._file(node).read_bytes()

    def read_prefix(self, node: BundleNode, length: int) -> bytes:
        """Return at most the first *length* bytes of a file node."""
        with self._file(node).open("rb") as fh:
            return fh.read(length)

    # ------------------------------------------------------------------ #
    #  Lifetime
    # ------------------------------------------------------------------ #

    def close(self) -> None:
        """Nothing to release; present for parity with the zip backend."""

    def __enter__(self) -> FileSystemStorage:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"FileSystemStorage({str(self._root)!r})"
