"""Byte-level builders for Mach-O images, signatures and bundle trees."""

from __future__ import annotations

import plistlib
import struct
import zipfile
from pathlib import Path
from typing import Any, Optional, Sequence

from warden.parsers.macho import (
    CPU_TYPE_ARM64,
    CSMAGIC_CODEDIRECTORY,
    CSMAGIC_EMBEDDED_ENTITLEMENTS,
    CSMAGIC_EMBEDDED_SIGNATURE,
    CSSLOT_CODEDIRECTORY,
    CSSLOT_ENTITLEMENTS,
    FAT_MAGIC,
    LC_CODE_SIGNATURE,
    LC_UUID,
    MH_MAGIC,
    MH_MAGIC_64,
)

MH_EXECUTE = 2

SANDBOXED = {
    "com.apple.security.app-sandbox": True,
    "com.apple.security.application-groups": ["group.org.example.demo"],
    "com.apple.security.network.client": True,
}

UUID_COMMAND_SIZE = 24
SIGNATURE_COMMAND_SIZE = 16


def plist_payload(values: dict[str, Any]) -> bytes:
    return plistlib.dumps(values, fmt=plistlib.FMT_XML)


def blob(magic: int, body: bytes) -> bytes:
    return struct.pack(">II", magic, 8 + len(body)) + body


def build_superblob(
    payload: Optional[bytes],
    *,
    magic: int = CSMAGIC_EMBEDDED_SIGNATURE,
) -> bytes:
    """A superblob holding a code-directory stub and, optionally, entitlements."""
    blobs = [(CSSLOT_CODEDIRECTORY, blob(CSMAGIC_CODEDIRECTORY, b"\x00" * 16))]
    if payload is not None:
        blobs.append((CSSLOT_ENTITLEMENTS, blob(CSMAGIC_EMBEDDED_ENTITLEMENTS, payload)))

    offset = 12 + 8 * len(blobs)
    index = b""
    body = b""
    for slot, data in blobs:
        index += struct.pack(">II", slot, offset)
        body += data
        offset += len(data)
    return struct.pack(">III", magic, offset, len(blobs)) + index + body


def build_macho(
    signature: Optional[bytes] = None,
    *,
    bits: int = 64,
    order: str = "<",
    cputype: int = CPU_TYPE_ARM64,
    cpusubtype: int = 0,
) -> bytes:
    """A minimal executable: LC_UUID, plus LC_CODE_SIGNATURE when signed."""
    header_size = 32 if bits == 64 else 28
    commands = struct.pack(order + "II", LC_UUID, UUID_COMMAND_SIZE) + bytes(range(16))
    ncmds = 1
    sizeofcmds = UUID_COMMAND_SIZE
    if signature is not None:
        sizeofcmds += SIGNATURE_COMMAND_SIZE
        commands += struct.pack(
            order + "IIII",
            LC_CODE_SIGNATURE,
            SIGNATURE_COMMAND_SIZE,
            header_size + sizeofcmds,
            len(signature),
        )
        ncmds += 1

    magic = MH_MAGIC_64 if bits == 64 else MH_MAGIC
    header = struct.pack(
        order + "IiiIIII", magic, cputype, cpusubtype, MH_EXECUTE, ncmds, sizeofcmds, 0
    )
    if bits == 64:
        header += struct.pack(order + "I", 0)
    return header + commands + (signature or b"")


def signed_macho(values: dict[str, Any], **kwargs: Any) -> bytes:
    return build_macho(build_superblob(plist_payload(values)), **kwargs)


def build_fat(slices: Sequence[tuple[int, bytes]], *, align: int = 4) -> bytes:
    """A fat binary with one 20-byte ``fat_arch`` per ``(cputype, data)``."""
    offset = 8 + 20 * len(slices)
    table = b""
    body = b""
    for cputype, data in slices:
        pad = (-offset) % (1 << align)
        body += b"\x00" * pad
        offset += pad
        table += struct.pack(">iiIII", cputype, 0, offset, len(data), align)
        body += data
        offset += len(data)
    return struct.pack(">II", FAT_MAGIC, len(slices)) + table + body


# ---------------------------------------------------------------------------
# Bundle trees
# ---------------------------------------------------------------------------

def write_tree(root: Path, files: dict[str, bytes]) -> Path:
    for rel, data in files.items():
        target = root / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
    return root


def macos_app_files(
    executable: Optional[bytes],
    *,
    name: str = "Demo",
    info: Optional[dict[str, Any]] = None,
    prefix: str = "",
) -> dict[str, bytes]:
    descriptor = {"CFBundleIdentifier": "org.example.demo", "CFBundleName": name}
    if executable is not None:
        descriptor["CFBundleExecutable"] = name
    descriptor.update(info or {})
    files = {f"{prefix}Contents/Info.plist": plistlib.dumps(descriptor)}
    if executable is not None:
        files[f"{prefix}Contents/MacOS/{name}"] = executable
    files[f"{prefix}Contents/Resources/en.lproj/InfoPlist.strings"] = b"\"CFBundleName\" = \"Demo\";\n"
    return files


def ios_app_files(executable: bytes, *, name: str = "Demo") -> dict[str, bytes]:
    descriptor = {
        "CFBundleIdentifier": "org.example.ios",
        "CFBundleExecutable": name,
        "DTPlatformName": "iphoneos",
    }
    return {
        f"Payload/{name}.app/Info.plist": plistlib.dumps(descriptor, fmt=plistlib.FMT_BINARY),
        f"Payload/{name}.app/{name}": executable,
        f"Payload/{name}.app/Assets.car": b"\x00" * 64,
    }


def zip_directory(source: Path, archive: Path, *, directory_entries: bool = True) -> Path:
    """Zip *source* with paths relative to it, optionally omitting directory entries."""
    with zipfile.ZipFile(archive, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for path in sorted(source.rglob("*")):
            rel = path.relative_to(source).as_posix()
            if path.is_dir():
                if directory_entries:
                    zf.writestr(rel + "/", b"")
            else:
                zf.write(path, rel)
    return archive


def zip_files(archive: Path, files: dict[str, bytes]) -> Path:
    with zipfile.ZipFile(archive, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for rel, data in files.items():
            zf.writestr(rel, data)
    return archive


def mark_encrypted(archive: Path) -> Path:
    """Set the encryption bit on every central-directory entry of *archive*."""
    data = bytearray(archive.read_bytes())
    start = data.find(b"PK\x01\x02")
    while start != -1:
        data[start + 8] |= 0x01
        start = data.find(b"PK\x01\x02", start + 4)
    archive.write_bytes(bytes(data))
    return archive
