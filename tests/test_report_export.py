from __future__ import annotations

import json
from datetime import UTC, datetime

from deepcite.models.research import Citation, Report, ReportMetadata
from deepcite.services.report_export import ReportExporter
from deepcite.tools.web_utils import is_valid_url, normalize_whitespace, slugify, truncate, word_count


def test_exporter_writes_camel_case_document(tmp_path):
    report = Report(
        title="Solid-State Batteries: What's Next?",
        executive_summary="Summary",
        citations=[Citation(id=1, url="https://a.com", title="A")],
        metadata=ReportMetadata(total_sources=1, sub_queries_answered=3, iteration_count=2),
    )
    path = ReportExporter(tmp_path / "out").write(report, now=datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC))

    assert path.name == "20260301T120000Z-solid-state-batteries-what-s-next.json"
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["executiveSummary"] == "Summary"
    assert payload["metadata"]["subQueriesAnswered"] == 3
    assert payload["citations"][0]["url"] == "https://a.com"


def test_web_utils():
    assert is_valid_url("https://example.com/x")
    assert not is_valid_url("mailto:someone@example.com")
    assert not is_valid_url("example.com")
    assert normalize_whitespace("  a \n\t b  ") == "a b"
    assert truncate("abcdef", 3) == "abc"
    assert word_count(" one  two\nthree ") == 3
    assert slugify("!!!") == "report"
