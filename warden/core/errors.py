"""
Warden Error Hierarchy
=======================

Typed failures raised while locating bundle metadata, walking Mach-O
structures and decoding entitlement payloads.  Each error carries the
path and byte offset it concerns so that diagnostics can point at the
exact structure that was rejected.

Hierarchy::

    WardenError
    ├── BundleError
    │   ├── MissingMetadata
    │   ├── MissingExecutable
    │   └── UnsupportedBundle
    ├── BinaryFormatError
    │   ├── UnknownBinaryFormat
    │   ├── UnsupportedFatBinary
    │   ├── MalformedBinary
    │   └── SourceOutOfBounds
    ├── SignatureError
    │   ├── BadSignatureMagic
    │   └── SignatureOutOfRange
    └── MalformedPlist

The only expected non-error outcome is a binary without a code
signature load command; parsers return an empty list for it.
"""

from __future__ import annotations


class WardenError(Exception):
    """Base class for every failure raised by Warden.

    Args:
        message: Human-readable description.
        path:    Bundle, archive entry or binary the failure concerns.
        offset:  Byte offset of the offending structure, when known.
    """

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        offset: int | None = None,
    ) -> None:
        self.message = message
        self.path = path
        self.offset = offset
        super().__init__(self._render())

    def _render(self) -> str:
        parts = [self.message]
        if self.path:
            parts.append(f"path={self.path}")
        if self.offset is not None:
            parts.append(f"offset=0x{self.offset:x}")
        return " | ".join(parts)

    def with_path(self, path: str) -> WardenError:
        """Attach *path* when the raiser did not know it; returns ``self``."""
        if self.path is None:
            self.path = path
            self.args = (self._render(),)
        return self


# ---------------------------------------------------------------------------
# Structural bundle errors
# ---------------------------------------------------------------------------

class BundleError(WardenError):
    """The bundle layout could not be resolved."""


class MissingMetadata(BundleError):
    """No ``Info.plist`` was found in any recognised bundle layout."""


class MissingExecutable(BundleError):
    """The executable named by the metadata is absent from the bundle."""


class UnsupportedBundle(BundleError):
    """The target is neither a directory, a zip archive nor a Mach-O file."""


# ---------------------------------------------------------------------------
# Binary-format errors
# ---------------------------------------------------------------------------

class BinaryFormatError(WardenError):
    """The executable is not a well-formed Mach-O image."""


class UnknownBinaryFormat(BinaryFormatError):
    """The magic number matches neither a single-arch nor a fat header."""


class UnsupportedFatBinary(BinaryFormatError):
    """A fat header declares no architectures or an unreadable range."""


class MalformedBinary(BinaryFormatError):
    """A load command's declared size escapes the load-command region."""


class SourceOutOfBounds(BinaryFormatError):
    """A seek or read went past the end of the byte source."""


# ---------------------------------------------------------------------------
# Code-signature errors
# ---------------------------------------------------------------------------

class SignatureError(WardenError):
    """The code-signature superblob could not be read."""


class BadSignatureMagic(SignatureError):
    """The superblob magic is not the embedded-signature constant."""


class SignatureOutOfRange(SignatureError):
    """A blob index entry or blob length points outside the binary slice."""


# ---------------------------------------------------------------------------
# Decoding errors
# ---------------------------------------------------------------------------

class MalformedPlist(WardenError):
    """A property list payload could not be decoded into a dictionary."""
