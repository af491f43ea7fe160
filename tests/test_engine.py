import pytest

from builders import (
    build_fat,
    build_macho,
    build_superblob,
    ios_app_files,
    macos_app_files,
    mark_encrypted,
    signed_macho,
    write_tree,
    zip_files,
)
from shared.config import ExtractorConfig, WardenConfig
from shared.logger import WardenLogger
from shared.models import Severity
from warden.core.engine import WardenEngine
from warden.core.errors import MalformedPlist, MissingExecutable, UnsupportedBundle
from warden.core.models import BinaryKind, BundleReport, Platform, StorageKind
from warden.parsers.macho import CPU_TYPE_ARM64, CPU_TYPE_X86_64


@pytest.fixture
def engine():
    return WardenEngine(logger=WardenLogger.quiet("engine-test"))


def _report(scan) -> BundleReport:
    return BundleReport.model_validate(scan.metadata["bundle_report"])


def _titles(scan) -> list[str]:
    return [finding.title for finding in scan.findings]


def test_analyze_folder(engine, app_dir):
    scan = engine.analyze(app_dir)
    report = _report(scan)

    assert scan.tool_name == "warden"
    assert scan.end_time is not None
    assert not scan.failed
    assert report.info.storage is StorageKind.DIRECTORY
    assert report.info.bundle_identifier == "org.example.demo"
    assert report.info.executable_path == "Contents/MacOS/Demo"
    assert report.info.binary_kind is BinaryKind.FAT
    assert report.info.platform is Platform.MACOS
    assert [item.slice.arch for item in report.slices] == ["x86_64", "arm64"]
    assert report.entitlements[0].value("com.apple.security.app-sandbox") is True
    assert scan.findings == []
    assert "Slices: 2" in scan.summary


def test_analyze_zip_matches_folder(engine, app_dir, app_zip):
    folder = _report(engine.analyze(app_dir))
    zipped = _report(engine.analyze(app_zip))
    assert zipped.info.storage is StorageKind.ZIP
    assert zipped.slices == folder.slices


def test_analyze_bare_binary(engine, tmp_path, sandboxed_macho):
    target = tmp_path / "tool"
    target.write_bytes(sandboxed_macho)
    report = _report(engine.analyze(target))
    assert report.info.storage is StorageKind.BINARY
    assert report.info.binary_kind is BinaryKind.SINGLE
    assert report.info.executable_name == "tool"
    assert len(report.entitlements) == 1


def test_unsigned_executable_finding(engine, tmp_path):
    root = write_tree(tmp_path / "Plain.app", macos_app_files(build_macho(None)))
    scan = engine.analyze(root)
    [finding] = scan.findings
    assert finding.title == "No entitlements"
    assert finding.severity is Severity.MEDIUM
    assert _report(scan).signed is False


def test_unsandboxed_macos_app_finding(engine, tmp_path):
    exe = signed_macho({"com.apple.security.network.client": True})
    root = write_tree(tmp_path / "Open.app", macos_app_files(exe))
    assert _titles(engine.analyze(root)) == ["App Sandbox not enabled"]


def test_ios_apps_are_not_flagged_for_sandbox(engine, tmp_path):
    archive = zip_files(tmp_path / "Demo.ipa", ios_app_files(signed_macho({"get-task-allow": True})))
    scan = engine.analyze(archive)
    assert _report(scan).info.platform is Platform.IOS
    assert scan.findings == []


def test_slices_with_different_entitlements(engine, tmp_path):
    exe = build_fat([
        (CPU_TYPE_X86_64, signed_macho({"com.apple.security.app-sandbox": True}, cputype=CPU_TYPE_X86_64)),
        (CPU_TYPE_ARM64, signed_macho({"com.apple.security.app-sandbox": True, "extra": 1})),
    ])
    root = write_tree(tmp_path / "Mixed.app", macos_app_files(exe))
    scan = engine.analyze(root)
    assert _titles(scan) == ["Slices carry different entitlements"]
    assert "extra" in scan.findings[0].evidence


def test_no_executable_finding(engine, tmp_path):
    root = write_tree(tmp_path / "Docs.app", macos_app_files(None))
    scan = engine.analyze(root)
    assert _titles(scan) == ["Bundle declares no executable"]
    assert scan.findings[0].severity is Severity.INFO


def test_typed_errors_propagate(engine, tmp_path):
    files = macos_app_files(b"\x00" * 8)
    del files["Contents/MacOS/Demo"]
    files["Contents/MacOS/Other"] = b"\x00"
    root = write_tree(tmp_path / "Gone.app", files)
    with pytest.raises(MissingExecutable):
        engine.analyze(root)
    with pytest.raises(UnsupportedBundle):
        engine.analyze(tmp_path / "does-not-exist")


def test_oversized_input_is_rejected(tmp_path, sandboxed_macho):
    config = WardenConfig(extractor=ExtractorConfig(max_file_size=64))
    engine = WardenEngine(config=config, logger=WardenLogger.quiet("engine-test"))
    target = tmp_path / "big"
    target.write_bytes(sandboxed_macho)
    with pytest.raises(UnsupportedBundle, match="File too large"):
        engine.analyze(target)


def test_analyze_many_isolates_failures(engine, tmp_path, app_dir, app_zip):
    junk = tmp_path / "junk.bin"
    junk.write_bytes(b"neither zip nor mach-o")

    scans = engine.analyze_many([app_dir, junk, app_zip])

    assert [scan.target for scan in scans] == [str(app_dir), str(junk), str(app_zip)]
    assert [scan.failed for scan in scans] == [False, True, False]
    failed = scans[1]
    assert failed.metadata["error_type"] == "UnsupportedBundle"
    assert failed.findings[0].severity is Severity.HIGH
    assert failed.summary.startswith("Analysis failed")
    assert engine.analyze_many([]) == []


def test_find_paths_and_list_binaries(engine, app_dir, app_zip):
    for target in (app_dir, app_zip):
        found = [node.path for node in engine.find_paths(target, r"\.plist$")]
        assert found == ["Contents/Info.plist"]
        binaries = engine.list_binaries(target)
        assert [node.path for node in binaries] == ["Contents/MacOS/Demo"]


BAD_DATE = (
    b'<?xml version="1.0" encoding="UTF-8"?>\n'
    b'<plist version="1.0"><dict><key>a</key><date>not-a-date</date></dict></plist>\n'
)


def test_unparseable_plists_fail_one_bundle_only(engine, tmp_path, app_dir):
    bad_entitlements = write_tree(
        tmp_path / "BadEnts.app", macos_app_files(build_macho(build_superblob(BAD_DATE)))
    )
    files = macos_app_files(signed_macho({"a": True}))
    files["Contents/Info.plist"] = BAD_DATE
    bad_info = write_tree(tmp_path / "BadInfo.app", files)

    with pytest.raises(MalformedPlist):
        engine.analyze(bad_entitlements)

    scans = engine.analyze_many([bad_entitlements, bad_info, app_dir])
    assert [scan.failed for scan in scans] == [True, True, False]
    assert {scan.metadata["error_type"] for scan in scans[:2]} == {"MalformedPlist"}


def test_encrypted_archive_fails_one_bundle_only(engine, tmp_path, app_zip):
    locked = mark_encrypted(
        zip_files(tmp_path / "Locked.ipa", ios_app_files(signed_macho({"get-task-allow": True})))
    )
    scans = engine.analyze_many([locked, app_zip])
    assert [scan.failed for scan in scans] == [True, False]
    assert scans[0].metadata["error_type"] == "UnsupportedBundle"
