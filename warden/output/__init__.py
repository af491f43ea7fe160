"""
Warden Output Module
=====================

Console display and JSON report generation for bundle reports.
"""

from warden.output.console import WardenConsoleOutput
from warden.output.report import WardenReportGenerator

__all__ = [
    "WardenConsoleOutput",
    "WardenReportGenerator",
]
