from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from deepcite.models.research import Report
from deepcite.tools.web_utils import slugify


class ReportExporter:
    """Writes final reports as standalone camelCase JSON documents."""

    def __init__(self, output_dir: str | Path):
        self.output_dir = Path(output_dir)

    def write(self, report: Report, *, now: datetime | None = None) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        stamp = (now or datetime.now(UTC)).strftime("%Y%m%dT%H%M%SZ")
        path = self.output_dir / f"{stamp}-{slugify(report.title)}.json"
        path.write_text(report.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
        return path
