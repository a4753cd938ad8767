import json
from datetime import datetime, timezone

import generate_report
from generate_report import (
    generated_times,
    iteration_badge_class,
    render_report,
    scenario_cell,
    story_cell,
    write_report,
)
from sheet_analytics import build_aggregated_model

NOON_UTC = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def _model(with_index=False):
    grids = {
        "NR-1": [
            ["Tester", "Overall Status", "Defect", "Comments"],
            ["Alice", "Passed", "", "<script>alert(1)</script>"],
            ["Bob", "Failed", "BUG-9", ""],
        ],
    }
    names = ["NR-1"]
    if with_index:
        grids["Index"] = [
            ["Test Scenario", "Test Execution", "Description", "Test Story", "Status"],
            ["Login (https://wiki.example.com/login)", "EX-1", "Sign in", "NR-1", "Passed"],
        ]
        names.insert(0, "Index")
    return build_aggregated_model(grids, names)


def test_render_report_contains_tables_and_filters() -> None:
    out = render_report(_model(), generated_at=NOON_UTC, title="QA Report", base_url="")
    assert out.startswith("<!DOCTYPE html>")
    assert "<title>QA Report</title>" in out
    assert 'id="testerSelect"' in out
    assert '<option value="Alice">Alice</option>' in out
    assert 'data-tester="Bob"' in out
    assert "Total Tickets under Alice" in out
    assert "Iteration Cases: 1" in out
    assert "50.0%" in out
    assert "Index of Stories" not in out


def test_render_report_escapes_cell_text() -> None:
    out = render_report(_model(), generated_at=NOON_UTC, title="QA Report", base_url="")
    assert "&lt;script&gt;alert(1)&lt;/script&gt;" in out
    assert "<script>alert(1)</script>" not in out


def test_render_report_index_section() -> None:
    out = render_report(_model(with_index=True), generated_at=NOON_UTC, title="QA", base_url="https://jira.example.com/browse/")
    assert "Index of Stories" in out
    assert '<a href="https://wiki.example.com/login" target="_blank" rel="noopener">Login</a>' in out
    assert 'href="https://jira.example.com/browse/NR-1"' in out
    assert "indexStoriesBarChart" in out


def test_render_report_title_from_env(monkeypatch) -> None:
    monkeypatch.setenv("REPORT_TITLE", "O2C E2E Test Status Report")
    out = render_report(_model(), generated_at=NOON_UTC, base_url="")
    assert "<h1>O2C E2E Test Status Report</h1>" in out


def test_scenario_and_story_links() -> None:
    assert scenario_cell("https://x.io/a") == '<a href="https://x.io/a" target="_blank" rel="noopener">Link</a>'
    assert scenario_cell("NR-12", "https://j/") == '<a href="https://j/NR-12" target="_blank" rel="noopener">NR-12</a>'
    assert scenario_cell("NR-12") == "NR-12"
    assert scenario_cell("a & b") == "a &amp; b"
    assert story_cell("S-1", "") == "S-1"
    assert story_cell("", "https://j/") == ""


def test_iteration_badge_class() -> None:
    assert iteration_badge_class(1) == "itr-low"
    assert iteration_badge_class(3) == "itr-mid"
    assert iteration_badge_class(4) == "itr-high"


def test_generated_times_pst_and_ist() -> None:
    pst, ist = generated_times(NOON_UTC)
    assert pst == "01/15/2024, 04:00:00 AM"
    assert ist == "01/15/2024, 05:30:00 PM"


def test_write_report_and_main(tmp_path, capsys) -> None:
    model = _model()
    out = write_report(model, str(tmp_path / "r.html"), generated_at=NOON_UTC, title="QA", base_url="")
    assert (tmp_path / "r.html").read_text(encoding="utf-8").startswith("<!DOCTYPE html>")
    assert out == str(tmp_path / "r.html")

    data_path = tmp_path / "model.json"
    data_path.write_text(json.dumps(model), encoding="utf-8")
    assert generate_report.main([str(data_path), "--out", str(tmp_path / "main.html")]) == 0
    assert (tmp_path / "main.html").exists()
    assert "Written:" in capsys.readouterr().out


def test_main_missing_data(tmp_path, capsys) -> None:
    assert generate_report.main([str(tmp_path / "missing.json")]) == 1
    assert "Cannot read report data" in capsys.readouterr().err


def test_total_row_for_empty_model_is_zero_percent() -> None:
    out = render_report(build_aggregated_model({}, []), generated_at=NOON_UTC, base_url="")
    assert "<td><strong>0</strong></td><td><strong>0%</strong></td>" in out
    assert "<strong>100%</strong>" not in out
    assert "<strong>100%</strong>" in render_report(_model(), generated_at=NOON_UTC, base_url="")


def test_status_with_comma_survives_filter_data() -> None:
    grids = {"NR-1": [["Tester", "Overall Status"], ["Alice", "Passed, with notes"]]}
    out = render_report(build_aggregated_model(grids, ["NR-1"]), generated_at=NOON_UTC, base_url="")
    assert 'data-statuses="[&quot;Passed, with notes&quot;]"' in out
    assert "JSON.parse(block.dataset.statuses" in out
