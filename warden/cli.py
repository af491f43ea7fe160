"""
Warden CLI -- Bundle Entitlement Extractor
===========================================

Click-based command-line interface for Warden.  Extracts the
code-signature entitlements of application bundles, zipped bundles and
bare Mach-O executables.

Usage::

    # Entitlements of an expanded macOS app
    warden /Applications/Safari.app

    # Several targets, analysed concurrently
    warden Signal.ipa Telegram.zip

    # Machine-readable output
    warden MyApp.zip --json

    # Write a JSON report
    warden MyApp.zip --output report.json

    # List every Mach-O binary inside a bundle
    warden MyApp.app --binaries

    # Search bundle paths
    warden MyApp.zip --find '\\.dylib$'

Exit status is 0 on success, 1 when any target could not be analysed
and 130 when interrupted.

References:
    - Click documentation: https://click.palletsprojects.com/
"""

from __future__ import annotations

import json
import re
import sys
from pathlib import Path
from typing import Optional

import click

from shared.config import WardenConfig
from shared.console import WardenConsole
from shared.logger import WardenLogger

from warden import __version__
from warden.core.engine import WardenEngine
from warden.core.errors import WardenError
from warden.core.models import BundleReport
from warden.output.console import WardenConsoleOutput
from warden.output.report import WardenReportGenerator


def _compile_pattern(
    ctx: click.Context, param: click.Parameter, value: Optional[str]
) -> Optional[re.Pattern[str]]:
    if value is None:
        return None
    try:
        return re.compile(value)
    except re.error as exc:
        raise click.BadParameter(f"invalid regular expression: {exc}") from exc


def _load_config(config_path: Optional[str]) -> WardenConfig:
    if config_path is not None:
        return WardenConfig.load(config_path)
    try:
        return WardenConfig.load()
    except (OSError, ValueError):
        return WardenConfig()


# ---------------------------------------------------------------------------
# Command
# ---------------------------------------------------------------------------

@click.command("warden")
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True))
@click.option(
    "--json", "json_output",
    is_flag=True,
    default=False,
    help="Output results as JSON to stdout.",
)
@click.option(
    "--output", "-o",
    "output_path",
    type=click.Path(),
    default=None,
    help="Write a JSON report (a directory of reports for several targets).",
)
@click.option(
    "--find", "-f",
    "pattern",
    callback=_compile_pattern,
    default=None,
    metavar="REGEX",
    help="List bundle paths matching REGEX instead of extracting.",
)
@click.option(
    "--binaries", "-b",
    is_flag=True,
    default=False,
    help="List Mach-O binaries in the bundle instead of extracting.",
)
@click.option(
    "--config", "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Path to a warden.toml configuration file.",
)
@click.option(
    "--verbose", "-v",
    is_flag=True,
    default=False,
    help="Enable verbose/debug output.",
)
@click.version_option(__version__, prog_name="warden")
def warden_cli(
    paths: tuple[str, ...],
    json_output: bool,
    output_path: Optional[str],
    pattern: Optional[re.Pattern[str]],
    binaries: bool,
    config_path: Optional[str],
    verbose: bool,
) -> None:
    """Warden -- extract entitlements from application bundles.

    PATHS are bundle directories, zip/ipa archives or Mach-O executables.

    Examples:

    \b
        # Expanded bundle
        warden /Applications/Calculator.app

    \b
        # Zipped bundle, JSON to stdout
        warden MyApp.zip --json
    """
    config = _load_config(config_path)
    settings = config.global_settings

    if verbose or settings.debug:
        log_level = "DEBUG"
    elif json_output:
        log_level = "WARNING"
    else:
        log_level = settings.log_level

    console = WardenConsole(quiet=json_output)
    logger = WardenLogger(
        "cli",
        log_level=log_level,
        log_file=settings.log_file,
        json_logs=settings.log_json,
    )
    engine = WardenEngine(
        config=config,
        logger=WardenLogger(
            "engine",
            log_level=log_level,
            log_file=settings.log_file,
            json_logs=settings.log_json,
        ),
    )

    try:
        if pattern is not None or binaries:
            _run_listing(engine, console, paths, pattern, json_output)
            return
        failed = _run_extraction(engine, console, logger, paths, json_output, output_path)
    except KeyboardInterrupt:
        console.warning("Analysis interrupted by user.")
        sys.exit(130)
    except WardenError as exc:
        console.error(str(exc))
        logger.debug("Extraction failed", exc_info=verbose)
        sys.exit(1)

    if failed:
        sys.exit(1)


def _run_listing(
    engine: WardenEngine,
    console: WardenConsole,
    paths: tuple[str, ...],
    pattern: Optional[re.Pattern[str]],
    json_output: bool,
) -> None:
    listing: dict[str, list[str]] = {}
    for path in paths:
        if pattern is not None:
            nodes = engine.find_paths(path, pattern)
        else:
            nodes = engine.list_binaries(path)
        listing[path] = [str(node) for node in nodes]

    if json_output:
        click.echo(json.dumps(listing, indent=2))
        return

    title = "Matching Paths" if pattern is not None else "Mach-O Binaries"
    for path, entries in listing.items():
        console.section(f"{title}: {path}")
        for entry in entries:
            console.print(entry, markup=False)
        console.info(f"{len(entries)} entr{'y' if len(entries) == 1 else 'ies'}")


def _run_extraction(
    engine: WardenEngine,
    console: WardenConsole,
    logger: WardenLogger,
    paths: tuple[str, ...],
    json_output: bool,
    output_path: Optional[str],
) -> bool:
    """Analyse *paths*; return ``True`` if any target failed."""
    with console.status("Reading entitlements..."):
        scans = engine.analyze_many(list(paths))

    if json_output:
        document = {"scans": [scan.model_dump(mode="json") for scan in scans]}
        click.echo(json.dumps(document, indent=2, default=str))
    else:
        display = WardenConsoleOutput(console=console)
        for scan in scans:
            if scan.failed:
                console.error(f"{scan.target}: {scan.metadata['error']}")
                continue
            display.display(BundleReport.model_validate(scan.metadata["bundle_report"]))
            if scan.findings:
                console.findings_table(scan.findings)
            console.blank()
            console.info(f"Scan Duration: {scan.duration_seconds:.2f}s")
            console.info(f"Findings: {scan.finding_count}")

    if output_path:
        generator = WardenReportGenerator()
        succeeded = [scan for scan in scans if not scan.failed]
        for scan in succeeded:
            if len(paths) == 1:
                target_path = Path(output_path)
            else:
                target_path = Path(output_path) / f"{Path(scan.target).name}.json"
            report = BundleReport.model_validate(scan.metadata["bundle_report"])
            written = generator.generate_json(report, target_path)
            logger.info("Report written to %s", written)
            console.success(f"JSON report saved: {written}")

    return any(scan.failed for scan in scans)


# ---------------------------------------------------------------------------
# Module entry point
# ---------------------------------------------------------------------------

def main() -> None:
    """Entry point for the ``warden`` script and ``python -m warden``."""
    warden_cli()


if __name__ == "__main__":
    main()
