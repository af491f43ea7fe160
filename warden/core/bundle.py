"""
Application Bundle
===================

:class:`AppBundle` is the entry point for library callers.  It opens a
bundle folder or zip archive, resolves the descriptor on construction,
and extracts the executable's entitlements lazily.

Entitlement extraction is memoised with an explicit three-state cache,
so a bundle whose executable carries no entitlements is parsed once and
then answers ``None`` from memory.
"""

from __future__ import annotations

import enum
from pathlib import Path
from typing import Any, Optional

from shared.config import ExtractorConfig
from shared.logger import WardenLogger
from warden.core.errors import WardenError
from warden.core.locator import BundleLocation, BundleLocator
from warden.core.models import BinaryKind, Entitlements, Platform, SliceInfo, StorageKind
from warden.parsers.macho import MACH_HEADER_64_SIZE, MachOParser, is_macho
from warden.parsers.plist import EntitlementsDecoder
from warden.parsers.seekable import SeekableSource
from warden.storage import (
    BundleNode,
    BundleStorage,
    FileSystemStorage,
    ZipStorage,
    open_storage,
)

SANDBOX_ENTITLEMENT = "com.apple.security.app-sandbox"
APP_GROUPS_ENTITLEMENT = "com.apple.security.application-groups"

_IOS_PLATFORM_NAME = "iphoneos"


class _CacheState(enum.Enum):
    NOT_COMPUTED = "not_computed"
    ABSENT = "absent"
    PRESENT = "present"


class AppBundle:
    """A located application bundle and its executable's entitlements.

    Usage::

        with AppBundle.open("Signal.ipa") as bundle:
            print(bundle.bundle_identifier, bundle.platform)
            if bundle.is_sandboxed():
                print(bundle.app_groups())

    Args:
        storage: Opened bundle storage; closed by :meth:`close`.
        config:  Extractor settings (descriptor and executable names).
        decoder: Entitlement payload decoder.
        logger:  Optional logger; a silent one is used by default.

    Raises:
        MissingMetadata: No descriptor could be located.
        MalformedPlist: The descriptor could not be decoded.
    """

    def __init__(
        self,
        storage: BundleStorage,
        *,
        config: ExtractorConfig | None = None,
        decoder: EntitlementsDecoder | None = None,
        logger: WardenLogger | None = None,
    ) -> None:
        self._storage = storage
        self._config = config or ExtractorConfig()
        self._decoder = decoder or EntitlementsDecoder()
        self._log = logger or WardenLogger.quiet("bundle")
        self._locator = BundleLocator(
            metadata_name=self._config.metadata_name,
            executable_dir=self._config.executable_dir,
            logger=self._log,
        )
        self._location = self._locator.locate(storage)

        self._state = _CacheState.NOT_COMPUTED
        self._slices: list[tuple[SliceInfo, list[Entitlements]]] = []

    # ------------------------------------------------------------------ #
    #  Constructors
    # ------------------------------------------------------------------ #

    @classmethod
    def open(cls, path: str | Path, **kwargs: Any) -> AppBundle:
        """Open a bundle folder or zip archive, resolving symlinks first."""
        return cls.from_storage(open_storage(Path(path).resolve()), **kwargs)

    @classmethod
    def from_folder(cls, path: str | Path, **kwargs: Any) -> AppBundle:
        return cls.from_storage(FileSystemStorage(path), **kwargs)

    @classmethod
    def from_zip(cls, path: str | Path, **kwargs: Any) -> AppBundle:
        return cls.from_storage(ZipStorage(path), **kwargs)

    @classmethod
    def from_storage(cls, storage: BundleStorage, **kwargs: Any) -> AppBundle:
        """Wrap an opened storage; the storage is closed if location fails."""
        try:
            return cls(storage, **kwargs)
        except BaseException:
            storage.close()
            raise

    # ------------------------------------------------------------------ #
    #  Descriptor
    # ------------------------------------------------------------------ #

    @property
    def storage(self) -> BundleStorage:
        return self._storage

    @property
    def storage_kind(self) -> StorageKind:
        return self._storage.kind

    @property
    def location(self) -> BundleLocation:
        return self._location

    @property
    def info(self) -> dict[str, Any]:
        return self._location.info

    def _info_string(self, key: str) -> Optional[str]:
        value = self.info.get(key)
        return value if isinstance(value, str) else None

    @property
    def bundle_identifier(self) -> Optional[str]:
        return self._info_string("CFBundleIdentifier")

    @property
    def bundle_name(self) -> Optional[str]:
        return self._info_string("CFBundleName")

    @property
    def version(self) -> Optional[str]:
        return self._info_string("CFBundleShortVersionString")

    @property
    def executable_name(self) -> Optional[str]:
        return self._location.executable_name

    @property
    def platform(self) -> Platform:
        if self._info_string("DTPlatformName") == _IOS_PLATFORM_NAME:
            return Platform.IOS
        return Platform.MACOS

    # ------------------------------------------------------------------ #
    #  Executable
    # ------------------------------------------------------------------ #

    def executable_node(self) -> Optional[BundleNode]:
        """Return the executable node, ``None`` if the bundle names none.

        Raises:
            MissingExecutable: The named executable is absent.
        """
        return self._locator.find_executable(self._storage, self._location)

    def open_executable(self) -> Optional[SeekableSource]:
        node = self.executable_node()
        return None if node is None else self._storage.open(node)

    def binary_kind(self) -> Optional[BinaryKind]:
        """Container layout of the executable, ``None`` if absent or not Mach-O."""
        source = self.open_executable()
        if source is None:
            return None
        with source:
            return MachOParser(source, self._decoder).binary_kind()

    # ------------------------------------------------------------------ #
    #  Entitlements
    # ------------------------------------------------------------------ #

    def _compute(self) -> None:
        node = self.executable_node()
        if node is None:
            self._log.debug("Bundle declares no executable")
            self._slices = []
            self._state = _CacheState.ABSENT
            return

        with self._storage.open(node) as source, self._log.operation("read_entitlements"):
            try:
                slices = MachOParser(source, self._decoder).read_slices()
            except WardenError as exc:
                raise exc.with_path(node.path)

        self._slices = slices
        found = any(ents for _, ents in slices)
        self._state = _CacheState.PRESENT if found else _CacheState.ABSENT
        self._log.debug(
            "%s: %d slice(s), entitlements %s",
            node.path,
            len(slices),
            "present" if found else "absent",
        )

    def slices(self) -> list[tuple[SliceInfo, list[Entitlements]]]:
        """Per-slice entitlements of the executable, in descriptor order."""
        if self._state is _CacheState.NOT_COMPUTED:
            self._compute()
        return list(self._slices)

    def entitlements(self) -> Optional[list[Entitlements]]:
        """Entitlements of every slice, or ``None`` when there are none.

        ``None`` covers both a bundle without an executable and an
        executable without an entitlements blob.  Either answer is
        cached for the lifetime of the bundle.

        Raises:
            WardenError: The executable could not be parsed; nothing is cached.
        """
        if self._state is _CacheState.NOT_COMPUTED:
            self._compute()
        if self._state is _CacheState.ABSENT:
            return None
        return [ent for _, ents in self._slices for ent in ents]

    def entitlement(self, key: str) -> Any:
        """First value of *key* across slices, ``None`` if no slice has it."""
        for ents in self.entitlements() or []:
            if key in ents:
                return ents.value(key)
        return None

    def is_sandboxed(self) -> bool:
        return self.entitlement(SANDBOX_ENTITLEMENT) is True

    def app_groups(self) -> list[str]:
        groups = self.entitlement(APP_GROUPS_ENTITLEMENT)
        if not isinstance(groups, list):
            return []
        return [group for group in groups if isinstance(group, str)]

    def load_info(self) -> tuple[dict[str, Any], Optional[list[Entitlements]]]:
        """Return the descriptor together with the entitlements."""
        return self.info, self.entitlements()

    # ------------------------------------------------------------------ #
    #  Whole-bundle diagnostics
    # ------------------------------------------------------------------ #

    def macho_binaries(self, size_threshold: int | None = None) -> list[BundleNode]:
        """File nodes larger than *size_threshold* that start with a Mach-O magic."""
        threshold = self._config.macho_size_threshold if size_threshold is None else size_threshold
        found: list[BundleNode] = []
        for node in self._storage.paths:
            if node.is_directory or node.is_link or node.size <= threshold:
                continue
            if is_macho(self._storage.read_prefix(node, MACH_HEADER_64_SIZE)):
                found.append(node)
        return found

    def validate_paths(self) -> list[BundleNode]:
        """Open and read every regular file in the bundle.

        Returns:
            The nodes that were read.

        Raises:
            UnsupportedBundle: An archive entry could not be decompressed.
            OSError: A file could not be read.
        """
        checked: list[BundleNode] = []
        for node in self._storage.paths:
            if node.is_directory or node.is_link:
                continue
            with self._storage.open(node) as source:
                source.read()
            checked.append(node)
        return checked

    # ------------------------------------------------------------------ #
    #  Lifetime
    # ------------------------------------------------------------------ #

    def close(self) -> None:
        self._storage.close()

    def __enter__(self) -> AppBundle:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"AppBundle({str(self._storage.container)!r}, "
            f"identifier={self.bundle_identifier!r})"
        )
