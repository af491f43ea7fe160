"""
Warden Console Interface
=========================

Rich-powered console wrapper used by the CLI and the output renderers:
section rules, tagged status messages, key/value tables, the findings
table and a spinner, all sharing one theme. A quiet console swallows
everything, which is how ``--json`` keeps stdout machine readable.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator, Sequence

from rich.console import Console
from rich.status import Status
from rich.table import Table
from rich.theme import Theme

_THEME = Theme(
    {
        "warden.section": "bold bright_magenta",
        "warden.success": "bold green",
        "warden.warning": "bold yellow",
        "warden.error": "bold red",
        "warden.info": "bold bright_blue",
        "warden.critical": "bold white on red",
        "warden.high": "bold red",
        "warden.medium": "bold yellow",
        "warden.low": "bold bright_cyan",
    }
)

# (glyph, label, style) per message kind
_TAGS: dict[str, tuple[str, str, str]] = {
    "success": ("✔", "SUCCESS", "warden.success"),
    "warning": ("⚠", "WARNING", "warden.warning"),
    "error": ("✘", "ERROR", "warden.error"),
    "info": ("ℹ", "INFO", "warden.info"),
}

_SEVERITY_STYLES = {
    "CRITICAL": "warden.critical",
    "HIGH": "warden.high",
    "MEDIUM": "warden.medium",
    "LOW": "warden.low",
    "INFO": "warden.info",
}


def _grid(title: str, *, caption: str | None = None) -> Table:
    return Table(
        title=title,
        caption=caption,
        border_style="bright_cyan",
        header_style="bold bright_magenta",
        show_lines=True,
        padding=(0, 1),
    )


class WardenConsole:
    """Themed output for the Warden CLI.

    Usage::

        con = WardenConsole()
        con.section("Entitlements")
        con.success("Extraction complete")
    """

    def __init__(self, *, quiet: bool = False) -> None:
        self._console = Console(theme=_THEME, quiet=quiet, highlight=False)

    @property
    def rich(self) -> Console:
        """The wrapped :class:`rich.console.Console`."""
        return self._console

    def section(self, title: str) -> None:
        self._console.rule(f"  {title}  ", style="warden.section", characters="─")
        self._console.print()

    def _tagged(self, kind: str, message: str) -> None:
        glyph, label, style = _TAGS[kind]
        self._console.print(f"[{style}][{glyph}] {label}:[/{style}] {message}")

    def success(self, message: str) -> None:
        self._tagged("success", message)

    def warning(self, message: str) -> None:
        self._tagged("warning", message)

    def error(self, message: str) -> None:
        self._tagged("error", message)

    def info(self, message: str) -> None:
        self._tagged("info", message)

    def table(
        self,
        title: str,
        columns: Sequence[str],
        rows: Sequence[Sequence[Any]],
        *,
        caption: str | None = None,
        styles: Sequence[str] | None = None,
    ) -> None:
        """Print *rows* under *columns*; cells are stringified.

        *styles* gives an optional Rich style per column, matched by position.
        """
        styles = list(styles or [])
        styles += [""] * (len(columns) - len(styles))
        grid = _grid(title, caption=caption)
        for name, style in zip(columns, styles):
            grid.add_column(name, style=style)
        for row in rows:
            grid.add_row(*map(str, row))
        self._console.print(grid)

    def findings_table(self, findings: Sequence[Any]) -> None:
        """Numbered table of :class:`shared.models.Finding` objects."""
        grid = _grid("Findings")
        grid.add_column("#", style="dim", width=4, justify="right")
        grid.add_column("Severity", width=12)
        grid.add_column("Title")
        grid.add_column("Description", ratio=2)

        for number, finding in enumerate(findings, start=1):
            severity = str(getattr(finding.severity, "value", finding.severity)).upper()
            style = _SEVERITY_STYLES.get(severity)
            grid.add_row(
                str(number),
                f"[{style}]{severity}[/{style}]" if style else severity,
                finding.title,
                finding.description,
            )
        self._console.print(grid)

    @contextmanager
    def status(self, message: str = "Working...") -> Iterator[Status]:
        """Spinner shown while the block runs."""
        with self._console.status(
            f"[warden.info]{message}[/warden.info]",
            spinner="dots",
            spinner_style="bright_cyan",
        ) as spinner:
            yield spinner

    def print(self, *args: Any, **kwargs: Any) -> None:
        self._console.print(*args, **kwargs)

    def blank(self, count: int = 1) -> None:
        self._console.print("\n" * (count - 1))

    def divider(self, style: str = "dim") -> None:
        self._console.rule(style=style)
