"""
Warden Parsers
===============

Byte-level readers: the seekable byte source, the Mach-O entitlement
parser and the property-list decoder.
"""

from warden.parsers.macho import MachOParser, is_macho, parse_slice
from warden.parsers.plist import EntitlementsDecoder, load_plist
from warden.parsers.seekable import ByteOrder, SeekableSource

__all__ = [
    "ByteOrder",
    "EntitlementsDecoder",
    "MachOParser",
    "SeekableSource",
    "is_macho",
    "load_plist",
    "parse_slice",
]
