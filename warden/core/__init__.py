"""
Warden Core Module
===================

Error hierarchy, data models, bundle resolution and the extraction
engine.
"""

from warden.core.errors import (
    BadSignatureMagic,
    BinaryFormatError,
    BundleError,
    MalformedBinary,
    MalformedPlist,
    MissingExecutable,
    MissingMetadata,
    SignatureError,
    SignatureOutOfRange,
    SourceOutOfBounds,
    UnknownBinaryFormat,
    UnsupportedBundle,
    UnsupportedFatBinary,
    WardenError,
)
from warden.core.models import (
    BinaryKind,
    BundleInfo,
    BundleReport,
    Entitlements,
    Platform,
    SliceEntitlements,
    SliceInfo,
    StorageKind,
)

__all__ = [
    "BadSignatureMagic",
    "BinaryFormatError",
    "BinaryKind",
    "BundleError",
    "BundleInfo",
    "BundleReport",
    "Entitlements",
    "MalformedBinary",
    "MalformedPlist",
    "MissingExecutable",
    "MissingMetadata",
    "Platform",
    "SignatureError",
    "SignatureOutOfRange",
    "SliceEntitlements",
    "SliceInfo",
    "SourceOutOfBounds",
    "StorageKind",
    "UnknownBinaryFormat",
    "UnsupportedBundle",
    "UnsupportedFatBinary",
    "WardenError",
]
