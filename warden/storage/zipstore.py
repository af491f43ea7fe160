"""
Zip Bundle Storage
===================

Exposes a zipped bundle (``.zip`` or ``.ipa``) through the common
storage surface.

Archives frequently omit explicit directory entries: ``ditto`` and most
``zip`` invocations write them, other tools do not.  Every ancestor of
every entry is therefore synthesized as a directory node when the
archive lacks it, so that the tree seen here is the tree that would be
seen after extraction.

Entry kinds are recovered from the archive itself:

    - a trailing ``/`` in the entry name marks a directory
    - ``S_IFLNK`` in the Unix mode bits of ``external_attr`` marks a link
"""

from __future__ import annotations

import posixpath
import re
import stat
import zipfile
import zlib
from pathlib import Path
from typing import Optional

from warden.core.errors import UnsupportedBundle
from warden.core.models import StorageKind
from warden.parsers.seekable import SeekableSource
from warden.storage.nodes import BundleNode, sort_nodes

# Encrypted members raise RuntimeError, unsupported compression methods
# (Deflate64, for one) raise NotImplementedError, truncated streams EOFError.
_MEMBER_ERRORS = (
    zipfile.BadZipFile,
    zlib.error,
    RuntimeError,
    NotImplementedError,
    EOFError,
)


class ZipStorage:
    """Read-only view of a zipped bundle.

    Entries are decompressed into memory when opened; parsing never
    streams from the archive.

    Args:
        archive: Path to the zip archive.

    Raises:
        UnsupportedBundle: The file is not a readable zip archive.
    """

    kind = StorageKind.ZIP

    def __init__(self, archive: str | Path) -> None:
        self._archive = Path(archive)
        try:
            self._zip = zipfile.ZipFile(self._archive)
        except (zipfile.BadZipFile, OSError) as exc:
            raise UnsupportedBundle(
                f"Not a readable zip archive: {exc}",
                path=str(self._archive),
            ) from exc

        self._nodes: dict[str, BundleNode] = {}
        self._entries: dict[str, zipfile.ZipInfo] = {}
        self._children: dict[str, list[BundleNode]] = {}
        self._index()

    @property
    def container(self) -> Path:
        return self._archive

    # ------------------------------------------------------------------ #
    #  Index
    # ------------------------------------------------------------------ #

    def _index(self) -> None:
        for info in self._zip.infolist():
            path = info.filename.lstrip("/").rstrip("/")
            if not path or path in self._nodes:
                continue
            is_directory = info.is_dir()
            self._nodes[path] = BundleNode(
                path=path,
                size=0 if is_directory else info.file_size,
                is_directory=is_directory,
                is_link=stat.S_ISLNK(info.external_attr >> 16),
            )
            if not is_directory:
                self._entries[path] = info
            self._synthesize_parents(path)

        grouped: dict[str, list[BundleNode]] = {}
        for node in self._nodes.values():
            grouped.setdefault(node.parent, []).append(node)
        self._children = {parent: sort_nodes(kids) for parent, kids in grouped.items()}

    def _synthesize_parents(self, path: str) -> None:
        parent = posixpath.dirname(path)
        while parent and parent not in self._nodes:
            self._nodes[parent] = BundleNode(path=parent, is_directory=True)
            parent = posixpath.dirname(parent)

    # ------------------------------------------------------------------ #
    #  Listing
    # ------------------------------------------------------------------ #

    def nodes(self, at: Optional[BundleNode] = None) -> list[BundleNode]:
        """Return the direct children of *at* (the root when ``None``)."""
        if at is not None and not at.is_directory:
            raise NotADirectoryError(at.path)
        return list(self._children.get("" if at is None else at.path, []))

    @property
    def paths(self) -> list[BundleNode]:
        """Every node in the archive, synthesized directories included."""
        return sort_nodes(self._nodes.values())

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

    def _entry(self, node: BundleNode) -> zipfile.ZipInfo:
        if node.is_directory:
            raise IsADirectoryError(node.path)
        try:
            return self._entries[node.path]
        except KeyError:
            raise FileNotFoundError(node.path) from None

    def read_bytes(self, node: BundleNode) -> bytes:
        entry = self._entry(node)
        try:
            return self._zip.read(entry)
        except _MEMBER_ERRORS as exc:
            raise UnsupportedBundle(
                f"Unreadable archive entry: {exc}",
                path=f"{self._archive}!{node.path}",
            ) from exc

    def read_prefix(self, node: BundleNode, length: int) -> bytes:
        """Return at most the first *length* decompressed bytes of a file node."""
        entry = self._entry(node)
        try:
            with self._zip.open(entry) as fh:
                return fh.read(length)
        except _MEMBER_ERRORS as exc:
            raise UnsupportedBundle(
                f"Unreadable archive entry: {exc}",
                path=f"{self._archive}!{node.path}",
            ) from exc

    def open(self, node: BundleNode) -> SeekableSource:
        """Decompress a file node into memory and wrap it for random access."""
        return SeekableSource.from_bytes(
            self.read_bytes(node),
            name=f"{self._archive}!{node.path}",
        )

    # ------------------------------------------------------------------ #
    #  Lifetime
    # ------------------------------------------------------------------ #

    def close(self) -> None:
        self._zip.close()

    def __enter__(self) -> ZipStorage:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"ZipStorage({str(self._archive)!r}, entries={len(self._nodes)})"
