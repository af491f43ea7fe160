"""
Mach-O Entitlement Parser
==========================

Manual struct-based reader for Mach-O executables, limited to what is
needed to recover the entitlements embedded in a code signature:

    - single-architecture headers (32/64-bit, either byte order)
    - fat (universal) headers with ``fat_arch`` and ``fat_arch_64`` tables
    - the load-command walk, locating ``LC_CODE_SIGNATURE``
    - the code-signature superblob and its blob index
    - the embedded-entitlements blob (an XML property list)

Header and load-command fields are read in the byte order announced by
the slice's magic number.  Fat headers and every code-signature
structure are big-endian on disk regardless of the slice.

Each architecture of a fat binary is copied out and parsed by
:func:`parse_slice` as an independent byte string, so slices never
share a cursor.

References:
    - Apple. mach-o/loader.h, mach-o/fat.h (cctools).
    - Apple. osfmk/kern/cs_blobs.h (XNU).
    - Levin, J. (2017). *OS Internals, Volume III: Security & Insecurity.
      Chapter 5: Code Signing.
"""

from __future__ import annotations

from typing import Optional

from warden.core.errors import (
    BadSignatureMagic,
    MalformedBinary,
    SignatureOutOfRange,
    SourceOutOfBounds,
    UnknownBinaryFormat,
    UnsupportedFatBinary,
)
from warden.core.models import BinaryKind, Entitlements, SliceInfo
from warden.parsers.plist import EntitlementsDecoder
from warden.parsers.seekable import ByteOrder, SeekableSource


# ---------------------------------------------------------------------------
# Header magics
# ---------------------------------------------------------------------------

MH_MAGIC: int = 0xFEEDFACE
MH_CIGAM: int = 0xCEFAEDFE
MH_MAGIC_64: int = 0xFEEDFACF
MH_CIGAM_64: int = 0xCFFAEDFE

FAT_MAGIC: int = 0xCAFEBABE
FAT_MAGIC_64: int = 0xCAFEBABF

# Magic as read big-endian -> (address width, byte order of the slice)
_THIN_MAGICS: dict[int, tuple[int, ByteOrder]] = {
    MH_MAGIC: (32, ByteOrder.BIG),
    MH_CIGAM: (32, ByteOrder.LITTLE),
    MH_MAGIC_64: (64, ByteOrder.BIG),
    MH_CIGAM_64: (64, ByteOrder.LITTLE),
}

_FAT_MAGICS: frozenset[int] = frozenset({FAT_MAGIC, FAT_MAGIC_64})

# Java class files share FAT_MAGIC; their major version (45 or later)
# sits where nfat_arch would be.
_JAVA_CLASS_MIN_VERSION: int = 45

# ---------------------------------------------------------------------------
# Structure sizes
# ---------------------------------------------------------------------------

MACH_HEADER_SIZE: int = 28
MACH_HEADER_64_SIZE: int = 32
FAT_HEADER_SIZE: int = 8
FAT_ARCH_SIZE: int = 20
FAT_ARCH_64_SIZE: int = 32
LOAD_COMMAND_SIZE: int = 8
LINKEDIT_DATA_COMMAND_SIZE: int = 16

SUPERBLOB_HEADER_SIZE: int = 12
BLOB_INDEX_SIZE: int = 8
BLOB_HEADER_SIZE: int = 8

# ---------------------------------------------------------------------------
# Load commands
# ---------------------------------------------------------------------------

LC_REQ_DYLD: int = 0x80000000

LC_SEGMENT: int = 0x01
LC_SYMTAB: int = 0x02
LC_DYSYMTAB: int = 0x0B
LC_LOAD_DYLIB: int = 0x0C
LC_ID_DYLIB: int = 0x0D
LC_SEGMENT_64: int = 0x19
LC_UUID: int = 0x1B
LC_CODE_SIGNATURE: int = 0x1D
LC_SEGMENT_SPLIT_INFO: int = 0x1E
LC_REEXPORT_DYLIB: int = 0x1F | LC_REQ_DYLD
LC_ENCRYPTION_INFO: int = 0x21
LC_DYLD_INFO: int = 0x22
LC_DYLD_INFO_ONLY: int = 0x22 | LC_REQ_DYLD
LC_ENCRYPTION_INFO_64: int = 0x2C
LC_BUILD_VERSION: int = 0x32

# ---------------------------------------------------------------------------
# Code-signature blobs
# ---------------------------------------------------------------------------

CSMAGIC_REQUIREMENTS: int = 0xFADE0C01
CSMAGIC_CODEDIRECTORY: int = 0xFADE0C02
CSMAGIC_EMBEDDED_SIGNATURE: int = 0xFADE0CC0
CSMAGIC_EMBEDDED_ENTITLEMENTS: int = 0xFADE7171
CSMAGIC_EMBEDDED_DER_ENTITLEMENTS: int = 0xFADE7172
CSMAGIC_BLOBWRAPPER: int = 0xFADE0B01

CSSLOT_CODEDIRECTORY: int = 0
CSSLOT_REQUIREMENTS: int = 2
CSSLOT_ENTITLEMENTS: int = 5
CSSLOT_DER_ENTITLEMENTS: int = 7
CSSLOT_SIGNATURESLOT: int = 0x10000

# ---------------------------------------------------------------------------
# CPU types
# ---------------------------------------------------------------------------

CPU_ARCH_ABI64: int = 0x01000000
CPU_ARCH_ABI64_32: int = 0x02000000
CPU_SUBTYPE_MASK: int = 0xFF000000
_CPU_SUBTYPE_BITS: int = 0x00FFFFFF

CPU_TYPE_X86: int = 7
CPU_TYPE_X86_64: int = CPU_TYPE_X86 | CPU_ARCH_ABI64
CPU_TYPE_ARM: int = 12
CPU_TYPE_ARM64: int = CPU_TYPE_ARM | CPU_ARCH_ABI64
CPU_TYPE_ARM64_32: int = CPU_TYPE_ARM | CPU_ARCH_ABI64_32
CPU_TYPE_POWERPC: int = 18
CPU_TYPE_POWERPC64: int = CPU_TYPE_POWERPC | CPU_ARCH_ABI64

CPU_SUBTYPE_ARM64E: int = 2

_CPU_NAMES: dict[int, str] = {
    CPU_TYPE_X86: "i386",
    CPU_TYPE_X86_64: "x86_64",
    CPU_TYPE_ARM: "arm",
    CPU_TYPE_ARM64: "arm64",
    CPU_TYPE_ARM64_32: "arm64_32",
    CPU_TYPE_POWERPC: "ppc",
    CPU_TYPE_POWERPC64: "ppc64",
}


def arch_name(cpu_type: int, cpu_subtype: int) -> str:
    """Return the conventional architecture name for a cpu type/subtype pair."""
    if cpu_type == CPU_TYPE_ARM64 and (cpu_subtype & _CPU_SUBTYPE_BITS) == CPU_SUBTYPE_ARM64E:
        return "arm64e"
    return _CPU_NAMES.get(cpu_type, f"unknown(0x{cpu_type & 0xFFFFFFFF:x})")


def is_macho(data: bytes) -> bool:
    """Return ``True`` when *data* starts with a thin or fat Mach-O header."""
    return _kind_from_header(data) is not None


def _kind_from_header(header: bytes) -> Optional[BinaryKind]:
    if len(header) < 4:
        return None
    magic = int.from_bytes(header[:4], "big")
    if magic in _THIN_MAGICS:
        return BinaryKind.SINGLE
    if magic in _FAT_MAGICS and len(header) >= FAT_HEADER_SIZE:
        nfat_arch = int.from_bytes(header[4:8], "big")
        if nfat_arch < _JAVA_CLASS_MIN_VERSION:
            return BinaryKind.FAT
    return None


# ---------------------------------------------------------------------------
# Internal parsed structures
# ---------------------------------------------------------------------------

class _MachHeader:
    """Parsed ``mach_header`` / ``mach_header_64`` fields."""
    __slots__ = (
        "bits", "order", "cputype", "cpusubtype", "filetype",
        "ncmds", "sizeofcmds", "flags",
    )

    def __init__(self, bits: int, order: ByteOrder) -> None:
        self.bits = bits
        self.order = order
        self.cputype: int = 0
        self.cpusubtype: int = 0
        self.filetype: int = 0
        self.ncmds: int = 0
        self.sizeofcmds: int = 0
        self.flags: int = 0

    @property
    def size(self) -> int:
        return MACH_HEADER_64_SIZE if self.bits == 64 else MACH_HEADER_SIZE


class _FatArch:
    """Parsed ``fat_arch`` / ``fat_arch_64`` descriptor."""
    __slots__ = ("cputype", "cpusubtype", "offset", "size", "align")

    def __init__(self, cputype: int, cpusubtype: int, offset: int, size: int, align: int) -> None:
        self.cputype = cputype
        self.cpusubtype = cpusubtype
        self.offset = offset
        self.size = size
        self.align = align


# ---------------------------------------------------------------------------
# Slice parsing
# ---------------------------------------------------------------------------

def parse_slice(data: bytes, decoder: EntitlementsDecoder | None = None) -> list[Entitlements]:
    """Extract the entitlements of one single-architecture Mach-O image.

    Args:
        data: The complete bytes of the slice.
        decoder: Entitlement payload decoder; a default one is used if omitted.

    Returns:
        One mapping per code-signature entitlements blob (normally zero or one).

    Raises:
        UnknownBinaryFormat: *data* is not a single-architecture Mach-O.
        MalformedBinary: A load command escapes the load-command region.
        BadSignatureMagic: The code-signature superblob magic is wrong.
        SignatureOutOfRange: A blob lies outside the slice.
        MalformedPlist: The entitlements payload is not a dictionary plist.
    """
    _, entitlements = _read_slice(data, decoder or EntitlementsDecoder())
    return entitlements


def _read_slice(
    data: bytes,
    decoder: EntitlementsDecoder,
    *,
    index: int = 0,
    file_offset: int = 0,
    align: int = 0,
    name: str = "<slice>",
) -> tuple[SliceInfo, list[Entitlements]]:
    source = SeekableSource.from_bytes(data, name=name)
    info, entitlements = _walk_thin(source, 0, len(data), decoder)
    info.index = index
    info.offset = file_offset
    info.align = align
    return info, entitlements


def _read_thin_header(source: SeekableSource, start: int) -> _MachHeader:
    source.seek(start)
    magic = source.read_uint32(ByteOrder.BIG)
    if magic not in _THIN_MAGICS:
        raise UnknownBinaryFormat(
            f"Not a single-architecture Mach-O header (magic 0x{magic:08x})",
            path=source.name,
            offset=start,
        )
    bits, order = _THIN_MAGICS[magic]
    header = _MachHeader(bits, order)
    (
        header.cputype,
        header.cpusubtype,
        header.filetype,
        header.ncmds,
        header.sizeofcmds,
        header.flags,
    ) = source.read_struct("iiIIII", order)
    return header


def _walk_thin(
    source: SeekableSource,
    start: int,
    end: int,
    decoder: EntitlementsDecoder,
) -> tuple[SliceInfo, list[Entitlements]]:
    """Walk the load commands of the slice occupying ``[start, end)``."""
    header = _read_thin_header(source, start)
    order = header.order

    cmd_start = start + header.size
    cmd_end = cmd_start + header.sizeofcmds
    if cmd_end > end:
        raise MalformedBinary(
            f"sizeofcmds {header.sizeofcmds} extends past the slice",
            path=source.name,
            offset=cmd_start,
        )

    info = SliceInfo(
        cpu_type=header.cputype,
        cpu_subtype=header.cpusubtype & _CPU_SUBTYPE_BITS,
        arch=arch_name(header.cputype, header.cpusubtype),
        offset=start,
        size=end - start,
        bits=header.bits,
        endian=order.label,
        file_type=header.filetype,
        command_count=header.ncmds,
    )

    entitlements: list[Entitlements] = []
    cursor = cmd_start
    for number in range(header.ncmds):
        if cursor + LOAD_COMMAND_SIZE > cmd_end:
            raise MalformedBinary(
                f"Load command {number} of {header.ncmds} starts past sizeofcmds",
                path=source.name,
                offset=cursor,
            )
        source.seek(cursor)
        cmd, cmdsize = source.read_struct("II", order)
        if cmdsize < LOAD_COMMAND_SIZE or cursor + cmdsize > cmd_end:
            raise MalformedBinary(
                f"Load command {number} (0x{cmd:x}) declares cmdsize {cmdsize}",
                path=source.name,
                offset=cursor,
            )

        if cmd == LC_CODE_SIGNATURE:
            if cmdsize < LINKEDIT_DATA_COMMAND_SIZE:
                raise MalformedBinary(
                    f"LC_CODE_SIGNATURE cmdsize {cmdsize} is too small",
                    path=source.name,
                    offset=cursor,
                )
            dataoff = source.read_uint32(order)
            info.signed = True
            found = _read_signature(source, start, end, start + dataoff, decoder)
            if found is not None:
                entitlements.append(found)

        cursor += cmdsize

    return info, entitlements


def _read_signature(
    source: SeekableSource,
    slice_start: int,
    slice_end: int,
    sig_start: int,
    decoder: EntitlementsDecoder,
) -> Optional[Entitlements]:
    """Find the embedded-entitlements blob in the superblob at *sig_start*."""
    if sig_start + SUPERBLOB_HEADER_SIZE > slice_end:
        raise SignatureOutOfRange(
            f"Code signature at +0x{sig_start - slice_start:x} lies outside the slice",
            path=source.name,
            offset=sig_start,
        )

    source.seek(sig_start)
    magic, _length, count = source.read_struct("III", ByteOrder.BIG)
    if magic != CSMAGIC_EMBEDDED_SIGNATURE:
        raise BadSignatureMagic(
            f"Superblob magic 0x{magic:08x}, expected 0x{CSMAGIC_EMBEDDED_SIGNATURE:08x}",
            path=source.name,
            offset=sig_start,
        )

    index_start = sig_start + SUPERBLOB_HEADER_SIZE
    if index_start + count * BLOB_INDEX_SIZE > slice_end:
        raise SignatureOutOfRange(
            f"Blob index of {count} entries extends past the slice",
            path=source.name,
            offset=index_start,
        )

    for position in range(count):
        source.seek(index_start + position * BLOB_INDEX_SIZE)
        blob_type, blob_offset = source.read_struct("II", ByteOrder.BIG)
        blob_start = sig_start + blob_offset
        if blob_start + BLOB_HEADER_SIZE > slice_end:
            raise SignatureOutOfRange(
                f"Blob {position} (slot {blob_type}) at +0x{blob_offset:x} lies outside the slice",
                path=source.name,
                offset=blob_start,
            )

        source.seek(blob_start)
        blob_magic = source.read_uint32(ByteOrder.BIG)
        if blob_magic != CSMAGIC_EMBEDDED_ENTITLEMENTS:
            continue

        blob_length = source.read_uint32(ByteOrder.BIG)
        if blob_length < BLOB_HEADER_SIZE or blob_start + blob_length > slice_end:
            raise SignatureOutOfRange(
                f"Entitlements blob length {blob_length} is out of range",
                path=source.name,
                offset=blob_start,
            )
        payload = source.read(blob_length - BLOB_HEADER_SIZE)
        return decoder.decode_entitlements(payload, path=source.name)

    return None


# ---------------------------------------------------------------------------
# Mach-O Parser
# ---------------------------------------------------------------------------

class MachOParser:
    """Entitlement reader for thin and fat Mach-O binaries.

    Usage::

        with SeekableSource.from_file("MyApp.app/Contents/MacOS/MyApp") as src:
            parser = MachOParser(src)
            for ents in parser.read_entitlements():
                print(ents.value("com.apple.security.app-sandbox"))

    Args:
        source: Byte source positioned anywhere; every read seeks explicitly.
        decoder: Entitlement payload decoder.  Defaults to
            :class:`~warden.parsers.plist.EntitlementsDecoder`.
    """

    def __init__(
        self,
        source: SeekableSource,
        decoder: EntitlementsDecoder | None = None,
    ) -> None:
        self._source = source
        self._decoder = decoder or EntitlementsDecoder()

    # ------------------------------------------------------------------ #
    #  Public interface
    # ------------------------------------------------------------------ #

    def binary_kind(self, source_offset: int = 0) -> Optional[BinaryKind]:
        """Classify the header at *source_offset*; ``None`` if not Mach-O."""
        available = min(FAT_HEADER_SIZE, self._source.size - source_offset)
        if available < 4:
            return None
        return _kind_from_header(self._source.slice(source_offset, available))

    def read_entitlements(self, source_offset: int = 0) -> list[Entitlements]:
        """Return the entitlements of every slice, concatenated in slice order.

        An unsigned binary yields an empty list.

        Raises:
            UnknownBinaryFormat: No Mach-O or fat magic at *source_offset*.
            UnsupportedFatBinary: The fat header is empty or unreadable.
            BadSignatureMagic: A code-signature superblob has the wrong magic.
        """
        return [
            ents
            for _, slice_entitlements in self.read_slices(source_offset)
            for ents in slice_entitlements
        ]

    def read_slices(self, source_offset: int = 0) -> list[tuple[SliceInfo, list[Entitlements]]]:
        """Return each architecture slice with the entitlements found in it."""
        source = self._source
        try:
            magic = int.from_bytes(source.slice(source_offset, 4), "big")
        except SourceOutOfBounds as exc:
            raise UnknownBinaryFormat(
                "File too small for a Mach-O header",
                path=source.name,
                offset=source_offset,
            ) from exc

        if magic in _THIN_MAGICS:
            return [_walk_thin(source, source_offset, source.size, self._decoder)]
        if magic in _FAT_MAGICS:
            return self._read_fat(source_offset, magic == FAT_MAGIC_64)
        raise UnknownBinaryFormat(
            f"Unrecognised magic 0x{magic:08x}",
            path=source.name,
            offset=source_offset,
        )

    # ------------------------------------------------------------------ #
    #  Fat binaries
    # ------------------------------------------------------------------ #

    def _read_fat_archs(self, start: int, is_64: bool) -> list[_FatArch]:
        source = self._source
        source.seek(start + 4)
        nfat_arch = source.read_uint32(ByteOrder.BIG)
        if nfat_arch == 0:
            raise UnsupportedFatBinary(
                "Fat header declares no architectures",
                path=source.name,
                offset=start,
            )

        entry_size = FAT_ARCH_64_SIZE if is_64 else FAT_ARCH_SIZE
        if start + FAT_HEADER_SIZE + nfat_arch * entry_size > source.size:
            raise UnsupportedFatBinary(
                f"{nfat_arch} architecture descriptors extend past the file",
                path=source.name,
                offset=start + FAT_HEADER_SIZE,
            )

        archs: list[_FatArch] = []
        for _ in range(nfat_arch):
            if is_64:
                cputype, cpusubtype, offset, size, align, _reserved = source.read_struct(
                    "iiQQII", ByteOrder.BIG
                )
            else:
                cputype, cpusubtype, offset, size, align = source.read_struct(
                    "iiIII", ByteOrder.BIG
                )
            archs.append(_FatArch(cputype, cpusubtype, offset, size, align))
        return archs

    def _read_fat(self, start: int, is_64: bool) -> list[tuple[SliceInfo, list[Entitlements]]]:
        source = self._source
        results: list[tuple[SliceInfo, list[Entitlements]]] = []
        for index, arch in enumerate(self._read_fat_archs(start, is_64)):
            slice_start = start + arch.offset
            if arch.size == 0 or slice_start + arch.size > source.size:
                raise UnsupportedFatBinary(
                    f"Architecture {index} range +0x{arch.offset:x}/{arch.size} "
                    f"lies outside the file",
                    path=source.name,
                    offset=slice_start,
                )
            name = f"{source.name}[{arch_name(arch.cputype, arch.cpusubtype)}]"
            results.append(
                _read_slice(
                    source.slice(slice_start, arch.size),
                    self._decoder,
                    index=index,
                    file_offset=slice_start,
                    align=arch.align,
                    name=name,
                )
            )
        return results
