"""
Warden Data Models
===================

Pydantic-based models describing what Warden extracts from a bundle:
the architecture slices of its executable, the entitlement mapping
decoded from each slice's code signature, and the bundle-level report
that ties them to the bundle's metadata.

References:
    - Apple. mach-o/loader.h, mach-o/fat.h.
    - Apple. Kernel/kern/cs_blobs.h (code-signing blob layout).
"""

from __future__ import annotations

import base64
import datetime as _dt
import enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_serializer


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class BinaryKind(str, enum.Enum):
    """Container layout of a Mach-O file."""
    SINGLE = "single"
    FAT = "fat"


class StorageKind(str, enum.Enum):
    """How the analysed target was stored."""
    DIRECTORY = "directory"
    ZIP = "zip"
    BINARY = "binary"


class Platform(str, enum.Enum):
    """Platform a bundle was built for."""
    MACOS = "macos"
    IOS = "ios"


# ---------------------------------------------------------------------------
# Entitlements
# ---------------------------------------------------------------------------

def _jsonable(value: Any) -> Any:
    """Convert plist values (bytes, datetimes, nested containers) to JSON types."""
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, (_dt.datetime, _dt.date)):
        return value.isoformat()
    return value


class Entitlements(BaseModel):
    """Entitlement key/value pairs decoded from one embedded plist.

    Keys are entitlement identifiers such as
    ``com.apple.security.app-sandbox``; values are whatever the plist
    holds (booleans, strings, arrays, dictionaries).

    Attributes:
        values: Decoded mapping.
    """
    values: dict[str, Any] = Field(default_factory=dict)

    @property
    def count(self) -> int:
        return len(self.values)

    def keys(self) -> list[str]:
        return sorted(self.values)

    def value(self, key: str, default: Any = None) -> Any:
        """Return the value stored for *key*, or *default*."""
        return self.values.get(key, default)

    def __contains__(self, key: object) -> bool:
        return key in self.values

    def to_json_dict(self) -> dict[str, Any]:
        """Return the mapping with every value converted to a JSON type."""
        return _jsonable(self.values)

    @field_serializer("values", when_used="json")
    def _serialize_values(self, values: dict[str, Any]) -> dict[str, Any]:
        return _jsonable(values)


# ---------------------------------------------------------------------------
# Mach-O slices
# ---------------------------------------------------------------------------

class SliceInfo(BaseModel):
    """One architecture slice of a Mach-O executable.

    Attributes:
        index: Position in the fat descriptor table (0 for thin binaries).
        cpu_type: ``cputype`` from the header.
        cpu_subtype: ``cpusubtype`` from the header, capability bits masked.
        arch: Architecture name (``arm64``, ``x86_64`` ...).
        offset: File offset of the slice.
        size: Slice size in bytes.
        align: Alignment as a power of two (fat slices only).
        bits: 32 or 64.
        endian: ``"little"`` or ``"big"``.
        file_type: ``filetype`` from the header (2 = executable).
        command_count: ``ncmds`` from the header.
        signed: Whether an ``LC_CODE_SIGNATURE`` command was found.
    """
    index: int = 0
    cpu_type: int = 0
    cpu_subtype: int = 0
    arch: str = "unknown"
    offset: int = 0
    size: int = 0
    align: int = 0
    bits: int = 64
    endian: str = "little"
    file_type: int = 0
    command_count: int = 0
    signed: bool = False


class SliceEntitlements(BaseModel):
    """Entitlements attributed to a single slice."""
    slice: SliceInfo
    entitlements: list[Entitlements] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Bundle report
# ---------------------------------------------------------------------------

class BundleInfo(BaseModel):
    """Metadata describing an analysed bundle.

    Attributes:
        path: Filesystem path of the bundle, archive or binary.
        storage: How the target is stored.
        metadata_path: Path of ``Info.plist`` inside the storage.
        executable_path: Path of the executable inside the storage.
        bundle_identifier: ``CFBundleIdentifier``.
        bundle_name: ``CFBundleName``.
        version: ``CFBundleShortVersionString``.
        executable_name: ``CFBundleExecutable``.
        platform: Target platform.
        binary_kind: Thin or fat executable.
    """
    path: str = ""
    storage: StorageKind = StorageKind.DIRECTORY
    metadata_path: Optional[str] = None
    executable_path: Optional[str] = None
    bundle_identifier: Optional[str] = None
    bundle_name: Optional[str] = None
    version: Optional[str] = None
    executable_name: Optional[str] = None
    platform: Optional[Platform] = None
    binary_kind: Optional[BinaryKind] = None


class BundleReport(BaseModel):
    """Complete extraction result for one bundle.

    Attributes:
        info: Bundle metadata.
        slices: Per-slice entitlement attribution, in descriptor order.
    """
    info: BundleInfo = Field(default_factory=BundleInfo)
    slices: list[SliceEntitlements] = Field(default_factory=list)

    @property
    def entitlements(self) -> list[Entitlements]:
        """All entitlement mappings, concatenated in slice order."""
        return [ent for item in self.slices for ent in item.entitlements]

    @property
    def signed(self) -> bool:
        return any(item.slice.signed for item in self.slices)

    def to_json_dict(self) -> dict[str, Any]:
        """JSON-safe dump; :meth:`model_validate` accepts it back."""
        return self.model_dump(mode="json")
