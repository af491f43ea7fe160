import struct

import pytest

from builders import (
    blob,
    build_fat,
    build_macho,
    build_superblob,
    plist_payload,
    signed_macho,
)
from warden.core.errors import (
    BadSignatureMagic,
    MalformedBinary,
    MalformedPlist,
    SignatureOutOfRange,
    UnknownBinaryFormat,
    UnsupportedFatBinary,
)
from warden.core.models import BinaryKind
from warden.parsers.macho import (
    CPU_TYPE_ARM64,
    CPU_TYPE_X86,
    CPU_TYPE_X86_64,
    CSMAGIC_CODEDIRECTORY,
    CSMAGIC_EMBEDDED_ENTITLEMENTS,
    CSMAGIC_EMBEDDED_SIGNATURE,
    FAT_MAGIC,
    FAT_MAGIC_64,
    MachOParser,
    arch_name,
    is_macho,
    parse_slice,
)
from warden.parsers.seekable import SeekableSource


def _parser(data: bytes) -> MachOParser:
    return MachOParser(SeekableSource.from_bytes(data, name="test-binary"))


# ---------------------------------------------------------------------------
# Single-architecture
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("bits", [32, 64])
@pytest.mark.parametrize("order", ["<", ">"])
def test_single_slice_entitlements(bits, order):
    values = {"com.apple.security.app-sandbox": True, "k": "v"}
    data = signed_macho(values, bits=bits, order=order, cputype=CPU_TYPE_X86)

    result = _parser(data).read_entitlements()

    assert len(result) == 1
    assert result[0].values == values


def test_slice_info_describes_header():
    data = signed_macho({"a": 1}, order="<", cputype=CPU_TYPE_ARM64, cpusubtype=2)
    [(info, ents)] = _parser(data).read_slices()
    assert info.arch == "arm64e"
    assert info.bits == 64
    assert info.endian == "little"
    assert info.command_count == 2
    assert info.file_type == 2
    assert info.signed is True
    assert info.size == len(data)
    assert ents[0].value("a") == 1


def test_unsigned_binary_yields_empty_list():
    data = build_macho(None)
    assert _parser(data).read_entitlements() == []
    [(info, ents)] = _parser(data).read_slices()
    assert info.signed is False
    assert ents == []


def test_signature_without_entitlements_blob_yields_nothing():
    data = build_macho(build_superblob(None))
    assert _parser(data).read_entitlements() == []


def test_entitlements_blob_after_other_blobs_is_found():
    payload = plist_payload({"x": True})
    blobs = [
        (0, blob(CSMAGIC_CODEDIRECTORY, b"\x00" * 8)),
        (2, blob(0xFADE0C01, b"\x00" * 4)),
        (5, blob(CSMAGIC_EMBEDDED_ENTITLEMENTS, payload)),
    ]
    offset = 12 + 8 * len(blobs)
    index, body = b"", b""
    for slot, data in blobs:
        index += struct.pack(">II", slot, offset)
        body += data
        offset += len(data)
    superblob = struct.pack(">III", CSMAGIC_EMBEDDED_SIGNATURE, offset, len(blobs)) + index + body

    [ents] = _parser(build_macho(superblob)).read_entitlements()
    assert ents.values == {"x": True}


def test_wrong_superblob_magic():
    data = build_macho(build_superblob(plist_payload({"a": 1}), magic=0xFADE0CC1))
    with pytest.raises(BadSignatureMagic) as info:
        _parser(data).read_entitlements()
    assert "0xfade0cc1" in str(info.value)


def test_blob_offset_outside_slice():
    superblob = struct.pack(">III", CSMAGIC_EMBEDDED_SIGNATURE, 20, 1) + struct.pack(">II", 5, 0x10000)
    with pytest.raises(SignatureOutOfRange):
        _parser(build_macho(superblob)).read_entitlements()


def test_entitlements_blob_length_past_slice():
    body = struct.pack(">II", CSMAGIC_EMBEDDED_ENTITLEMENTS, 0x1000) + b"<plist/>"
    superblob = struct.pack(">III", CSMAGIC_EMBEDDED_SIGNATURE, 20 + len(body), 1)
    superblob += struct.pack(">II", 5, 20) + body
    with pytest.raises(SignatureOutOfRange):
        _parser(build_macho(superblob)).read_entitlements()


def test_malformed_entitlements_payload():
    data = build_macho(build_superblob(b"<?xml version='1.0'?><plist><array>"))
    with pytest.raises(MalformedPlist):
        _parser(data).read_entitlements()


def test_cmdsize_below_minimum_is_rejected():
    data = bytearray(build_macho(None))
    struct.pack_into("<I", data, 32 + 4, 4)
    with pytest.raises(MalformedBinary):
        _parser(bytes(data)).read_entitlements()


def test_cmdsize_past_sizeofcmds_is_rejected():
    data = bytearray(build_macho(None))
    struct.pack_into("<I", data, 32 + 4, 64)
    with pytest.raises(MalformedBinary):
        _parser(bytes(data)).read_entitlements()


def test_ncmds_beyond_region_is_rejected():
    data = bytearray(build_macho(None))
    struct.pack_into("<I", data, 16, 3)
    with pytest.raises(MalformedBinary):
        _parser(bytes(data)).read_entitlements()


def test_unknown_magic_reports_offset():
    with pytest.raises(UnknownBinaryFormat) as info:
        _parser(b"\x7fELF" + b"\x00" * 60).read_entitlements()
    assert info.value.offset == 0
    assert "0x7f454c46" in str(info.value)


def test_parsing_is_idempotent(sandboxed_macho):
    parser = _parser(sandboxed_macho)
    first = parser.read_entitlements()
    assert parser.read_entitlements() == first


def test_parse_slice_is_pure(sandboxed_macho):
    assert parse_slice(sandboxed_macho) == parse_slice(sandboxed_macho)
    assert parse_slice(sandboxed_macho)[0].value("com.apple.security.app-sandbox") is True


def test_parse_slice_rejects_fat_input(universal_macho):
    with pytest.raises(UnknownBinaryFormat):
        parse_slice(universal_macho)


# ---------------------------------------------------------------------------
# Fat binaries
# ---------------------------------------------------------------------------

def test_fat_slices_in_descriptor_order():
    data = build_fat([
        (CPU_TYPE_X86_64, signed_macho({"slice": "intel"}, cputype=CPU_TYPE_X86_64)),
        (CPU_TYPE_ARM64, signed_macho({"slice": "arm"}, cputype=CPU_TYPE_ARM64)),
    ])

    parser = _parser(data)
    assert [e.value("slice") for e in parser.read_entitlements()] == ["intel", "arm"]

    slices = parser.read_slices()
    assert [info.arch for info, _ in slices] == ["x86_64", "arm64"]
    assert [info.index for info, _ in slices] == [0, 1]
    assert all(info.offset % 16 == 0 for info, _ in slices)
    assert parser.binary_kind() is BinaryKind.FAT


def test_fat_with_unsigned_slice_skips_it():
    data = build_fat([
        (CPU_TYPE_X86_64, build_macho(None, cputype=CPU_TYPE_X86_64)),
        (CPU_TYPE_ARM64, signed_macho({"only": "arm"})),
    ])
    assert [e.values for e in _parser(data).read_entitlements()] == [{"only": "arm"}]


def test_fat_64_descriptors():
    first = signed_macho({"n": 1}, cputype=CPU_TYPE_X86_64)
    offset = 8 + 32
    data = struct.pack(">II", FAT_MAGIC_64, 1)
    data += struct.pack(">iiQQII", CPU_TYPE_X86_64, 3, offset, len(first), 0, 0)
    data += first
    [ents] = _parser(data).read_entitlements()
    assert ents.values == {"n": 1}


def test_zero_architectures_rejected_before_descriptors():
    data = struct.pack(">II", FAT_MAGIC, 0)
    with pytest.raises(UnsupportedFatBinary):
        _parser(data).read_entitlements()


def test_descriptor_table_past_end():
    data = struct.pack(">II", FAT_MAGIC, 4) + b"\x00" * 20
    with pytest.raises(UnsupportedFatBinary):
        _parser(data).read_entitlements()


def test_architecture_range_past_end():
    data = struct.pack(">II", FAT_MAGIC, 1) + struct.pack(">iiIII", CPU_TYPE_ARM64, 0, 28, 4096, 0)
    with pytest.raises(UnsupportedFatBinary):
        _parser(data).read_entitlements()


def test_failing_slice_aborts_whole_extraction():
    bad = build_macho(build_superblob(plist_payload({"a": 1}), magic=0xDEADBEEF))
    data = build_fat([
        (CPU_TYPE_X86_64, signed_macho({"ok": True}, cputype=CPU_TYPE_X86_64)),
        (CPU_TYPE_ARM64, bad),
    ])
    with pytest.raises(BadSignatureMagic) as info:
        _parser(data).read_entitlements()
    assert "[arm64]" in info.value.path


def test_fat_slice_that_is_not_macho():
    data = build_fat([(CPU_TYPE_ARM64, b"\x00" * 64)])
    with pytest.raises(UnknownBinaryFormat):
        _parser(data).read_entitlements()


# ---------------------------------------------------------------------------
# Detection helpers
# ---------------------------------------------------------------------------

def test_is_macho_detection(sandboxed_macho, universal_macho):
    assert is_macho(sandboxed_macho)
    assert is_macho(universal_macho)
    assert not is_macho(b"PK\x03\x04")
    assert not is_macho(b"")
    # Java class file, major version 52
    assert not is_macho(struct.pack(">II", FAT_MAGIC, 52))


def test_binary_kind(sandboxed_macho):
    assert _parser(sandboxed_macho).binary_kind() is BinaryKind.SINGLE
    assert _parser(b"abc").binary_kind() is None
    assert _parser(b"\x00" * 16).binary_kind() is None


def test_arch_names():
    assert arch_name(CPU_TYPE_X86_64, 3) == "x86_64"
    assert arch_name(CPU_TYPE_ARM64, 0) == "arm64"
    assert arch_name(CPU_TYPE_ARM64, 0x80000002 - (1 << 32)) == "arm64e"
    assert arch_name(99, 0) == "unknown(0x63)"
