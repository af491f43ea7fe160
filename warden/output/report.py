"""
Warden Report Generator
========================

Writes a :class:`~warden.core.models.BundleReport` as a structured JSON
document for machine consumption.  Plist values that have no JSON
counterpart are converted: ``data`` to base64, ``date`` to ISO-8601.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from warden.core.models import BundleReport

_REPORT_TYPE = "warden_bundle_entitlements"
_REPORT_VERSION = "1.0.0"


class WardenReportGenerator:
    """Generate JSON reports from bundle reports.

    Usage::

        gen = WardenReportGenerator()
        gen.generate_json(report, "out/report.json")
    """

    def to_dict(self, report: BundleReport) -> dict[str, Any]:
        """Return the JSON-ready report document."""
        info = report.info
        return {
            "report_type": _REPORT_TYPE,
            "version": _REPORT_VERSION,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "bundle": info.model_dump(mode="json"),
            "signed": report.signed,
            "slices": [
                {
                    **item.slice.model_dump(mode="json"),
                    "entitlements": [ents.to_json_dict() for ents in item.entitlements],
                }
                for item in report.slices
            ],
            "entitlements": [ents.to_json_dict() for ents in report.entitlements],
        }

    def generate_json(self, report: BundleReport, output_path: str | Path) -> str:
        """Write the report to *output_path*.

        Returns:
            The absolute path of the generated report.
        """
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(self.to_dict(report), indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        return str(path.resolve())
