"""
Warden Extraction Engine
=========================

Orchestrates entitlement extraction for one or many targets and wraps
each result in the shared :class:`~shared.models.ScanResult` envelope.

A target is one of:

    - an expanded bundle directory (``MyApp.app`` or an enclosing folder)
    - a zip archive of a bundle (``.zip`` / ``.ipa``)
    - a bare Mach-O executable

Pipeline (per target):
    1. Classify the target and enforce the size limit
    2. Locate ``Info.plist`` and the executable (bundles only)
    3. Walk every Mach-O slice and decode its entitlements blob
    4. Build the :class:`~warden.core.models.BundleReport`
    5. Generate findings

Extraction is synchronous.  :meth:`WardenEngine.analyze_many`
parallelises across targets with a thread pool; a single bundle is never
split across workers.
"""

from __future__ import annotations

import re
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Iterable, Sequence

from shared.config import WardenConfig
from shared.logger import WardenLogger
from shared.models import Finding, ScanResult, Severity

from warden.core.bundle import SANDBOX_ENTITLEMENT, AppBundle
from warden.core.errors import UnsupportedBundle, WardenError
from warden.core.models import (
    BundleInfo,
    BundleReport,
    Platform,
    SliceEntitlements,
    StorageKind,
)
from warden.parsers.macho import MACH_HEADER_64_SIZE, MachOParser, is_macho
from warden.parsers.plist import EntitlementsDecoder
from warden.parsers.seekable import SeekableSource
from warden.storage import BundleNode, open_storage

_TOOL_NAME = "warden"


# ---------------------------------------------------------------------------
# WardenEngine
# ---------------------------------------------------------------------------

class WardenEngine:
    """Extract entitlements from bundles, archives and bare binaries.

    Usage::

        engine = WardenEngine()
        scan = engine.analyze("Signal.ipa")
        report = scan.metadata["bundle_report"]

    Args:
        config: Warden configuration.  Defaults are used if not provided.
        logger: Logger instance.  One is built from *config* if not provided.
    """

    def __init__(
        self,
        config: WardenConfig | None = None,
        logger: WardenLogger | None = None,
    ) -> None:
        self._config: WardenConfig = config or WardenConfig()
        settings = self._config.global_settings
        self._logger: WardenLogger = logger or WardenLogger(
            "engine",
            log_level=settings.log_level,
            log_file=settings.log_file,
            json_logs=settings.log_json,
        )
        self._decoder = EntitlementsDecoder()

    # ------------------------------------------------------------------ #
    #  Single target
    # ------------------------------------------------------------------ #

    def analyze(self, path: str | Path) -> ScanResult:
        """Extract entitlements from *path* and report on them.

        Returns:
            A finalised :class:`ScanResult` whose ``metadata["bundle_report"]``
            holds the JSON form of the :class:`BundleReport`.

        Raises:
            WardenError: The target could not be opened or parsed.
        """
        target = Path(path)
        scan = ScanResult(tool_name=_TOOL_NAME, target=str(target))
        self._logger.info("Analysing %s", target)

        with self._logger.timed(f"analyze {target.name}"):
            report = self.build_report(target)

        for finding in self._generate_findings(report):
            scan.add_finding(finding)
        scan.metadata = {"bundle_report": report.to_json_dict()}

        summary_parts = [
            f"Extraction complete: {report.info.storage.value}",
            f"Slices: {len(report.slices)}",
            f"Entitlement sets: {len(report.entitlements)}",
            f"Findings: {scan.finding_count}",
        ]
        scan.finalize(" | ".join(summary_parts))
        self._logger.info(scan.summary)
        return scan

    def build_report(self, path: str | Path) -> BundleReport:
        """Classify *path* and extract its :class:`BundleReport`.

        Raises:
            UnsupportedBundle: The target does not exist, is too large, or is
                neither a bundle, a zip archive nor a Mach-O file.
        """
        target = Path(path).resolve()
        if not target.exists():
            raise UnsupportedBundle("No such file or directory", path=str(path))

        if target.is_file():
            size = target.stat().st_size
            limit = self._config.extractor.max_file_size
            if size > limit:
                raise UnsupportedBundle(
                    f"File too large: {size:,} bytes (max: {limit:,} bytes)",
                    path=str(target),
                )
            with target.open("rb") as fh:
                header = fh.read(MACH_HEADER_64_SIZE)
            if is_macho(header):
                return self._binary_report(target)

        with AppBundle.from_storage(
            open_storage(target),
            config=self._config.extractor,
            decoder=self._decoder,
            logger=self._logger,
        ) as bundle:
            return self._bundle_report(bundle, target)

    def _binary_report(self, path: Path) -> BundleReport:
        self._logger.debug("Treating %s as a bare Mach-O executable", path)
        with SeekableSource.from_file(path) as source:
            parser = MachOParser(source, self._decoder)
            kind = parser.binary_kind()
            slices = parser.read_slices()

        info = BundleInfo(
            path=str(path),
            storage=StorageKind.BINARY,
            executable_path=str(path),
            executable_name=path.name,
            binary_kind=kind,
        )
        return BundleReport(
            info=info,
            slices=[SliceEntitlements(slice=s, entitlements=e) for s, e in slices],
        )

    def _bundle_report(self, bundle: AppBundle, path: Path) -> BundleReport:
        node = bundle.executable_node()
        slices = bundle.slices()

        info = BundleInfo(
            path=str(path),
            storage=bundle.storage_kind,
            metadata_path=bundle.location.metadata.path,
            executable_path=node.path if node is not None else None,
            bundle_identifier=bundle.bundle_identifier,
            bundle_name=bundle.bundle_name,
            version=bundle.version,
            executable_name=bundle.executable_name,
            platform=bundle.platform,
            binary_kind=bundle.binary_kind() if node is not None else None,
        )
        return BundleReport(
            info=info,
            slices=[SliceEntitlements(slice=s, entitlements=e) for s, e in slices],
        )

    # ------------------------------------------------------------------ #
    #  Batch
    # ------------------------------------------------------------------ #

    def analyze_many(self, paths: Sequence[str | Path]) -> list[ScanResult]:
        """Analyse several targets concurrently, preserving input order.

        A target that fails yields a :class:`ScanResult` carrying the
        error instead of aborting the batch.
        """
        if not paths:
            return []
        workers = max(1, min(self._config.global_settings.max_workers, len(paths)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="warden") as pool:
            return list(pool.map(self._analyze_isolated, paths))

    def _analyze_isolated(self, path: str | Path) -> ScanResult:
        try:
            return self.analyze(path)
        except (WardenError, OSError) as exc:
            return self._failed_scan(path, exc)

    def _failed_scan(self, path: str | Path, exc: Exception) -> ScanResult:
        scan = ScanResult(tool_name=_TOOL_NAME, target=str(path))
        scan.metadata = {"error": str(exc), "error_type": type(exc).__name__}
        scan.add_finding(Finding(
            severity=Severity.HIGH,
            title="Entitlement extraction failed",
            description=f"{type(exc).__name__}: {exc}",
            evidence={"target": str(path), "error": str(exc)},
            recommendation="Check that the target is a complete, unmodified bundle or binary.",
        ))
        scan.finalize(f"Analysis failed: {exc}")
        self._logger.error(scan.summary)
        return scan

    # ------------------------------------------------------------------ #
    #  Diagnostics
    # ------------------------------------------------------------------ #

    def list_binaries(self, path: str | Path) -> list[BundleNode]:
        """Return every Mach-O file in the bundle at *path*."""
        with AppBundle.open(path, config=self._config.extractor, logger=self._logger) as bundle:
            return bundle.macho_binaries()

    def find_paths(self, path: str | Path, pattern: str | re.Pattern[str]) -> list[BundleNode]:
        """Return the nodes of the bundle at *path* matching *pattern*."""
        with open_storage(Path(path).resolve()) as storage:
            return storage.find(pattern)

    # ------------------------------------------------------------------ #
    #  Findings
    # ------------------------------------------------------------------ #

    def _generate_findings(self, report: BundleReport) -> list[Finding]:
        findings: list[Finding] = []
        info = report.info

        if info.storage is not StorageKind.BINARY and info.executable_path is None:
            findings.append(Finding(
                severity=Severity.INFO,
                title="Bundle declares no executable",
                description=f"{info.metadata_path} has no CFBundleExecutable entry.",
                evidence={"metadata": info.metadata_path},
            ))
            return findings

        entitlements = report.entitlements
        if not entitlements:
            findings.append(Finding(
                severity=Severity.MEDIUM if not report.signed else Severity.LOW,
                title="No entitlements",
                description=(
                    "The executable carries a code signature without an "
                    "entitlements blob."
                    if report.signed
                    else "The executable has no code signature."
                ),
                evidence={"signed": report.signed, "slices": len(report.slices)},
                recommendation="Sign the executable with an entitlements file.",
            ))
            return findings

        if info.platform is not Platform.IOS and not _sandboxed(report):
            findings.append(Finding(
                severity=Severity.MEDIUM,
                title="App Sandbox not enabled",
                description=f"{SANDBOX_ENTITLEMENT} is absent or false.",
                evidence={"value": _first_value(report, SANDBOX_ENTITLEMENT)},
                recommendation=f"Enable {SANDBOX_ENTITLEMENT} in the signing entitlements.",
            ))

        if _slices_differ(report.slices):
            findings.append(Finding(
                severity=Severity.MEDIUM,
                title="Slices carry different entitlements",
                description=(
                    "Architecture slices of the same executable were signed "
                    "with different entitlements."
                ),
                evidence={
                    item.slice.arch: sorted({k for e in item.entitlements for k in e.values})
                    for item in report.slices
                },
                recommendation="Re-sign every slice with the same entitlements file.",
            ))

        return findings


def _first_value(report: BundleReport, key: str) -> object:
    for ents in report.entitlements:
        if key in ents:
            return ents.value(key)
    return None


def _sandboxed(report: BundleReport) -> bool:
    return _first_value(report, SANDBOX_ENTITLEMENT) is True


def _slices_differ(slices: Iterable[SliceEntitlements]) -> bool:
    values = [[ents.values for ents in item.entitlements] for item in slices]
    return any(other != values[0] for other in values[1:])
