"""
Bundle Storage Nodes
=====================

Backend-neutral description of one entry in a bundle's tree.  Both the
filesystem and the zip backend report their contents as
:class:`BundleNode` values so that a folder and a zip archive of that
folder compare equal node-for-node.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from typing import Iterable


@dataclass(frozen=True, order=True)
class BundleNode:
    """A file, directory or link inside a bundle.

    Attributes:
        path:         POSIX path relative to the storage root, no trailing slash.
        size:         Size in bytes; always ``0`` for directories.
        is_directory: Whether the node is a directory.
        is_link:      Whether the node is a symbolic link.
    """
    path: str
    size: int = 0
    is_directory: bool = False
    is_link: bool = False

    @property
    def name(self) -> str:
        return posixpath.basename(self.path)

    @property
    def parent(self) -> str:
        """Parent path, ``""`` for entries at the root."""
        return posixpath.dirname(self.path)

    @property
    def depth(self) -> int:
        return self.path.count("/")

    def __str__(self) -> str:
        return self.path + "/" if self.is_directory else self.path


def sort_nodes(nodes: Iterable[BundleNode]) -> list[BundleNode]:
    """Return *nodes* ordered by path."""
    return sorted(nodes, key=lambda node: node.path)
