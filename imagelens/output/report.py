"""
ImageLens Report Generator
===========================

Structured JSON reports of image summaries, suitable for machine
consumption and for diffing the metadata of two builds.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from imagelens.core.models import ImageSummary

REPORT_TYPE: str = "imagelens_image_summary"
REPORT_VERSION: str = "1.0.0"


class LensReportGenerator:
    """Build and write JSON reports.

    Usage::

        reporter = LensReportGenerator()
        text = reporter.render_json(summary)
        reporter.generate_json(summary, "report.json")
    """

    def build(self, summary: ImageSummary) -> dict[str, Any]:
        return {
            "report_type": REPORT_TYPE,
            "version": REPORT_VERSION,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "image": summary.model_dump(mode="json"),
        }

    def render_json(self, summary: ImageSummary) -> str:
        return json.dumps(self.build(summary), indent=2, ensure_ascii=False, default=str)

    def generate_json(self, summary: ImageSummary, output_path: str | Path) -> str:
        """Write the JSON report to *output_path*.

        Args:
            summary: The summary to report.
            output_path: Filesystem path for the output JSON file.

        Returns:
            The absolute path of the generated report.
        """
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.render_json(summary), encoding="utf-8")
        return str(path.resolve())
