from pathlib import Path

import pytest

from builders import (
    SANDBOXED,
    build_fat,
    macos_app_files,
    signed_macho,
    write_tree,
    zip_directory,
)
from warden.parsers.macho import CPU_TYPE_ARM64, CPU_TYPE_X86_64


@pytest.fixture
def sandboxed_macho():
    return signed_macho(SANDBOXED)


@pytest.fixture
def universal_macho():
    return build_fat([
        (CPU_TYPE_X86_64, signed_macho(SANDBOXED, cputype=CPU_TYPE_X86_64)),
        (CPU_TYPE_ARM64, signed_macho(SANDBOXED, cputype=CPU_TYPE_ARM64)),
    ])


@pytest.fixture
def app_dir(tmp_path: Path, universal_macho: bytes) -> Path:
    """An expanded ``Demo.app`` whose executable is a signed universal binary."""
    return write_tree(tmp_path / "Demo.app", macos_app_files(universal_macho))


@pytest.fixture
def app_zip(tmp_path: Path, app_dir: Path) -> Path:
    """``app_dir`` zipped without directory entries."""
    return zip_directory(app_dir, tmp_path / "Demo.zip", directory_entries=False)
