"""
Warden Console Output
======================

Rich terminal rendering of a :class:`~warden.core.models.BundleReport`:
a bundle-information panel, the architecture slice table, and one
entitlement table per signed slice.
"""

from __future__ import annotations

import json
from typing import Any

from rich.markup import escape
from rich.panel import Panel

from shared.console import WardenConsole

from warden.core.models import BundleInfo, BundleReport, Entitlements, SliceInfo

_MAX_VALUE_WIDTH = 120


def _format_value(value: Any) -> str:
    """Render an entitlement value compactly for a table cell."""
    if isinstance(value, bool):
        return "[green]true[/green]" if value else "[red]false[/red]"
    if isinstance(value, (list, dict)):
        text = json.dumps(value, ensure_ascii=False, default=str)
    else:
        text = str(value)
    if len(text) > _MAX_VALUE_WIDTH:
        text = text[: _MAX_VALUE_WIDTH - 3] + "..."
    return escape(text)


# ---------------------------------------------------------------------------
# WardenConsoleOutput
# ---------------------------------------------------------------------------

class WardenConsoleOutput:
    """Rich terminal display for Warden bundle reports.

    Usage::

        output = WardenConsoleOutput()
        output.display(report)
    """

    def __init__(self, console: WardenConsole | None = None) -> None:
        self._console: WardenConsole = console or WardenConsole()

    def display(self, report: BundleReport) -> None:
        """Display the complete report."""
        self._console.section("Bundle Entitlements")
        self.display_info(report.info)

        if report.slices:
            self.display_slices([item.slice for item in report.slices])

        if not report.entitlements:
            self._console.warning("No entitlements found")
        for item in report.slices:
            for ents in item.entitlements:
                self.display_entitlements(item.slice, ents)

        self._console.divider()

    def display_info(self, info: BundleInfo) -> None:
        """Display the bundle metadata panel."""
        lines: list[str] = [
            f"[bold]Path:[/bold]        {escape(info.path)}",
            f"[bold]Storage:[/bold]     {info.storage.value}",
        ]
        optional = (
            ("Identifier", info.bundle_identifier),
            ("Name", info.bundle_name),
            ("Version", info.version),
            ("Platform", info.platform.value if info.platform else None),
            ("Metadata", info.metadata_path),
            ("Executable", info.executable_path),
            ("Binary", info.binary_kind.value if info.binary_kind else None),
        )
        for label, value in optional:
            if value:
                lines.append(f"[bold]{label + ':':<12}[/bold] {escape(value)}")

        panel = Panel(
            "\n".join(lines),
            title="[bold bright_cyan]Bundle Information[/bold bright_cyan]",
            border_style="bright_cyan",
            padding=(1, 2),
        )
        self._console.rich.print(panel)
        self._console.blank()

    def display_slices(self, slices: list[SliceInfo]) -> None:
        """Display the architecture slice table."""
        rows = [
            (
                s.index,
                s.arch,
                f"{s.bits}-bit {s.endian}",
                f"0x{s.offset:x}",
                f"{s.size:,}",
                s.command_count,
                "yes" if s.signed else "[red]no[/red]",
            )
            for s in slices
        ]
        self._console.table(
            "Architecture Slices",
            ["#", "Arch", "Layout", "Offset", "Size", "Commands", "Signed"],
            rows,
            styles=["dim", "bold bright_white", "", "cyan", "", "", ""],
        )
        self._console.blank()

    def display_entitlements(self, slice_info: SliceInfo, entitlements: Entitlements) -> None:
        """Display one slice's entitlement keys and values."""
        rows = [(escape(key), _format_value(entitlements.value(key))) for key in entitlements.keys()]
        self._console.table(
            f"Entitlements ({slice_info.arch})",
            ["Key", "Value"],
            rows,
            caption=f"{entitlements.count} entitlement(s)",
            styles=["bright_cyan", ""],
        )
        self._console.blank()
