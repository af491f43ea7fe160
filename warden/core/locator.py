"""
Bundle Layout Resolution
=========================

Finds a bundle's ``Info.plist`` and native executable inside a
:data:`~warden.storage.BundleStorage`, whatever layout the bundle was
packaged in.

Recognised layouts, tried in order (first match wins)::

    Contents/Info.plist                       expanded macOS .app
    Payload/<name>.app[/Contents]/Info.plist  .ipa archive
    Wrapper/<name>.app[/Contents]/Info.plist  wrapped iOS app
    <name>.app[/Contents]/Info.plist          zipped or enclosing folder
    Info.plist                                inside an iOS .app

The executable named by ``CFBundleExecutable`` lives in ``MacOS/`` next
to the descriptor when that directory exists, otherwise beside the
descriptor itself.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from shared.logger import WardenLogger
from warden.core.errors import MalformedPlist, MissingExecutable, MissingMetadata
from warden.parsers.plist import load_plist
from warden.storage import BundleNode, BundleStorage

_CONTENTS_DIR = "Contents"
_WRAPPER_DIRS = ("Payload", "Wrapper")
_APP_SUFFIX = ".app"


@dataclass(frozen=True)
class BundleLocation:
    """Where a bundle's descriptor lives and what it says.

    Attributes:
        metadata:        The ``Info.plist`` node.
        directory:       The descriptor's parent directory, ``None`` at the root.
        info:            Decoded descriptor.
        executable_name: ``CFBundleExecutable``, ``None`` if not declared.
    """
    metadata: BundleNode
    directory: Optional[BundleNode]
    info: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)
    executable_name: Optional[str] = None


class BundleLocator:
    """Resolve descriptor and executable nodes in a bundle storage.

    Args:
        metadata_name:  File name of the bundle descriptor.
        executable_dir: Directory holding the executable beside the descriptor.
        logger:         Optional logger; a silent one is used by default.
    """

    def __init__(
        self,
        *,
        metadata_name: str = "Info.plist",
        executable_dir: str = "MacOS",
        logger: WardenLogger | None = None,
    ) -> None:
        self._metadata_name = metadata_name
        self._executable_dir = executable_dir
        self._log = logger or WardenLogger.quiet("locator")

    def locate(self, storage: BundleStorage) -> BundleLocation:
        """Find and decode the bundle descriptor.

        Raises:
            MissingMetadata: No layout matched, or the matched directory has
                no descriptor.
            MalformedPlist: The descriptor could not be decoded.
        """
        root = storage.nodes()

        contents = _child(root, _CONTENTS_DIR, directory=True)
        if contents is not None:
            return self._metadata_in(storage, contents)

        for wrapper_name in _WRAPPER_DIRS:
            wrapper = _child(root, wrapper_name, directory=True)
            if wrapper is None:
                continue
            app = _first_app(storage.nodes(wrapper))
            if app is not None:
                return self._app_metadata(storage, app)

        app = _first_app(root)
        if app is not None:
            return self._app_metadata(storage, app)

        metadata = _child(root, self._metadata_name, directory=False)
        if metadata is not None:
            return self._decode(storage, metadata, None)

        raise MissingMetadata(
            "No recognised bundle layout",
            path=str(storage.container),
        )

    def find_executable(
        self,
        storage: BundleStorage,
        location: BundleLocation,
    ) -> Optional[BundleNode]:
        """Return the executable node, or ``None`` if the descriptor names none.

        Raises:
            MissingExecutable: The named executable is not in the bundle.
        """
        name = location.executable_name
        if name is None:
            return None

        candidates = storage.nodes(location.directory)
        exec_dir = _child(candidates, self._executable_dir, directory=True)
        if exec_dir is not None:
            candidates = storage.nodes(exec_dir)

        for node in candidates:
            if not node.is_directory and node.name == name:
                self._log.debug("Executable %s", node.path)
                return node

        searched = exec_dir or location.directory
        raise MissingExecutable(
            f"Executable {name!r} not found",
            path=searched.path if searched is not None else str(storage.container),
        )

    # ------------------------------------------------------------------ #
    #  Helpers
    # ------------------------------------------------------------------ #

    def _app_metadata(self, storage: BundleStorage, app: BundleNode) -> BundleLocation:
        contents = _child(storage.nodes(app), _CONTENTS_DIR, directory=True)
        return self._metadata_in(storage, contents or app)

    def _metadata_in(self, storage: BundleStorage, directory: BundleNode) -> BundleLocation:
        metadata = _child(storage.nodes(directory), self._metadata_name, directory=False)
        if metadata is None:
            raise MissingMetadata(
                f"No {self._metadata_name} in {directory.path}/",
                path=str(storage.container),
            )
        return self._decode(storage, metadata, directory)

    def _decode(
        self,
        storage: BundleStorage,
        metadata: BundleNode,
        directory: Optional[BundleNode],
    ) -> BundleLocation:
        info = load_plist(storage.read_bytes(metadata), path=metadata.path)
        executable = info.get("CFBundleExecutable")
        if executable is not None and not isinstance(executable, str):
            raise MalformedPlist(
                f"CFBundleExecutable is {type(executable).__name__}, expected string",
                path=metadata.path,
            )
        self._log.debug("Bundle descriptor %s", metadata.path)
        return BundleLocation(
            metadata=metadata,
            directory=directory,
            info=info,
            executable_name=executable or None,
        )


def _child(nodes: Sequence[BundleNode], name: str, *, directory: bool) -> Optional[BundleNode]:
    for node in nodes:
        if node.name == name and node.is_directory == directory:
            return node
    return None


def _first_app(nodes: Sequence[BundleNode]) -> Optional[BundleNode]:
    for node in nodes:
        if node.is_directory and node.name.endswith(_APP_SUFFIX):
            return node
    return None
