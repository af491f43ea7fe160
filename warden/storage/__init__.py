"""
Warden Bundle Storage
======================

Uniform read access to an application bundle, whether it is an expanded
directory or a zip archive.  The two backends share no base class; they
expose the same methods and are selected once, when the bundle is
opened, by :func:`open_storage`.
"""

from __future__ import annotations

import zipfile
from pathlib import Path
from typing import Union

from warden.core.errors import UnsupportedBundle
from warden.storage.filesystem import FileSystemStorage
from warden.storage.nodes import BundleNode, sort_nodes
from warden.storage.zipstore import ZipStorage

BundleStorage = Union[FileSystemStorage, ZipStorage]


def open_storage(path: str | Path) -> BundleStorage:
    """Open *path* with the backend matching its type.

    Raises:
        UnsupportedBundle: *path* is neither a directory nor a zip archive.
    """
    target = Path(path)
    if target.is_dir():
        return FileSystemStorage(target)
    if target.is_file() and zipfile.is_zipfile(target):
        return ZipStorage(target)
    raise UnsupportedBundle("Neither a directory nor a zip archive", path=str(target))


__all__ = [
    "BundleNode",
    "BundleStorage",
    "FileSystemStorage",
    "ZipStorage",
    "open_storage",
    "sort_nodes",
]
