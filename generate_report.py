#!/usr/bin/env python3
"""
Generate a single-file HTML test status report from sheet_report_latest.json.
Run: python generate_report.py [path/to/sheet_report_latest.json] [--out report.html]
Output: test_status_report.html
"""
import argparse
import html
import json
import os
import re
import sys
from datetime import datetime, timezone

from dateutil import tz
from dotenv import load_dotenv

STATUS_COLORS = {
    "Passed": "#4CAF50",
    "Failed": "#F44336",
    "Blocked": "#E91E63",
    "Not Started": "#9E9E9E",
    "In Progress": "#FF9800",
}
UNKNOWN_STATUS_COLOR = "#e0e0e0"
UNKNOWN_INDEX_STATUS_COLOR = "#ffe082"

DEFAULT_TITLE = "Test Status Report"
DEFAULT_OUTPUT = "test_status_report.html"

_URL = re.compile(r"https?://[^\s)]+")
_TICKET_KEY = re.compile(r"^[A-Z][A-Z0-9]*-\d+$")


def load_data(path=None):
    path = path or os.path.join(os.path.dirname(os.path.abspath(__file__)), "sheet_report_latest.json")
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def status_color(status, fallback=UNKNOWN_STATUS_COLOR):
    return STATUS_COLORS.get(status, fallback)


def js_data(obj):
    """JSON for inline <script>; keeps "</script>" in cell text from closing the tag."""
    return json.dumps(obj, ensure_ascii=False).replace("</", "<\\/")


def _link(url, text):
    return f'<a href="{html.escape(url)}" target="_blank" rel="noopener">{html.escape(text)}</a>'


def scenario_cell(text, base_url=""):
    """Scenario text holding a URL becomes a link; a bare ticket key links to base_url."""
    if "http" in text:
        m = _URL.search(text)
        if m:
            label = _URL.sub("", text, count=1).replace("(", "").replace(")", "").strip() or "Link"
            return _link(m.group(0), label)
    elif base_url and _TICKET_KEY.match(text.strip()):
        return _link(base_url + text.strip(), text.strip())
    return html.escape(text)


def story_cell(text, base_url=""):
    if text and base_url:
        return _link(base_url + text.strip(), text)
    return html.escape(text)


def iteration_badge_class(count):
    if count > 3:
        return "itr-high"
    if count > 1:
        return "itr-mid"
    return "itr-low"


def generated_times(now=None):
    now = now or datetime.now(timezone.utc)
    fmt = "%m/%d/%Y, %I:%M:%S %p"
    pst = now.astimezone(tz.gettz("America/Los_Angeles")).strftime(fmt)
    ist = now.astimezone(tz.gettz("Asia/Kolkata")).strftime(fmt)
    return pst, ist


def index_section(data, base_url=""):
    entries = data.get("index_entries") or []
    if not entries:
        return ""
    counts = data.get("index_status_counts") or {}
    labels = [s for s, c in counts.items() if c > 0]
    rows = "".join(
        "<tr>"
        f'<td>{scenario_cell(e.get("test_scenario", ""), base_url)}</td>'
        f'<td>{html.escape(e.get("test_execution", ""))}</td>'
        f'<td>{story_cell(e.get("test_story", ""), base_url)}</td>'
        f'<td>{html.escape(e.get("description", ""))}</td>'
        f'<td class="status-cell" style="background:{status_color(e.get("status", ""))}">{html.escape(e.get("status", ""))}</td>'
        "</tr>"
        for e in entries
    )
    chart = {
        "labels": labels,
        "counts": [counts[s] for s in labels],
        "colors": [status_color(s, UNKNOWN_INDEX_STATUS_COLOR) for s in labels],
    }
    return f"""
  <section>
    <h2>Index of Stories</h2>
    <div class="table-wrap">
      <table>
        <thead><tr><th>Test Scenario</th><th>Test Execution</th><th>Test Story</th><th>Description</th><th>Status</th></tr></thead>
        <tbody>{rows}</tbody>
      </table>
    </div>
    <h3>Stories by Status</h3>
    <div class="chart-wrap"><canvas id="indexStoriesBarChart"></canvas></div>
    <script>window.INDEX_CHART = {js_data(chart)};</script>
  </section>"""


def pivot_rows(data):
    status_list = data.get("status_list") or []
    out = []
    for t in data.get("testers") or []:
        cells = "".join(
            f'<td style="background:{status_color(s) if n > 0 else "transparent"}">{n}</td>'
            for s, n in zip(status_list, t["status_counts"])
        )
        out.append(f'<tr><td>{html.escape(t["tester_name"])}</td>{cells}<td><strong>{t["total"]}</strong></td></tr>')
    return "".join(out) if out else f'<tr><td colspan="{len(status_list) + 2}">No tester rows found</td></tr>'


def tester_block(t, status_list):
    counts = t.get("status_count_map") or {}
    summary = " ".join(
        f'<span class="badge" style="background:{status_color(s)}">{html.escape(s)}: <b>{counts[s]}</b></span>'
        for s in status_list if counts.get(s)
    )
    tickets = "".join(
        f'<div class="ticket {iteration_badge_class(d["iteration_case_count"])}">'
        f'<span class="ticket-name">{html.escape(d["ticket"])}</span>'
        f'<span class="itr-badge">Iteration Cases: {d["iteration_case_count"]}</span></div>'
        for d in t.get("ticket_details") or []
    )
    rows = "".join(
        f'<tr data-status="{html.escape(r["overall_status"])}">'
        f'<td>{html.escape(r["tester"])}</td>'
        f'<td>{html.escape(r["jira_ticket"])}</td>'
        f'<td>{html.escape(r["iteration"])}</td>'
        f'<td class="status-cell" style="background:{status_color(r["overall_status"])}">{html.escape(r["overall_status"])}</td>'
        f'<td class="defect">{html.escape(r["defect"])}</td>'
        f'<td>{html.escape(r["comments"])}</td>'
        "</tr>"
        for r in t.get("rows") or []
    )
    name = html.escape(t["tester_name"])
    statuses = html.escape(json.dumps(t.get("statuses") or []))
    return f"""
    <div class="aggregate-block" data-tester="{name}" data-statuses="{statuses}">
      <h3>{name} <span class="tag">TESTER</span></h3>
      <div class="status-summary">{summary}</div>
      <div class="ticket-total"><span>Total Tickets under {name}</span><span class="count">{t["unique_ticket_count"]}</span></div>
      <div class="tickets">{tickets}</div>
      <div class="table-wrap">
        <table>
          <thead><tr><th>Tester</th><th>Jira Ticket</th><th>Iteration</th><th>Status</th><th>Defect</th><th>Comments</th></tr></thead>
          <tbody>{rows}</tbody>
        </table>
      </div>
    </div>"""


def summary_rows(data):
    out = [
        f'<tr><td style="background:{status_color(s["status"])}"><strong>{html.escape(s["status"])}</strong></td>'
        f'<td>{s["count"]}</td><td>{s["percent"]}%</td></tr>'
        for s in data.get("status_summary") or []
    ]
    total = data.get("total_records", 0)
    out.append(f'<tr class="total-row"><td><strong>Total</strong></td><td><strong>{total}</strong></td><td><strong>{100 if total else 0}%</strong></td></tr>')
    return "".join(out)


_SCRIPT = """
    function filterTesterStatus() {
      var tester = document.getElementById('testerSelect').value;
      var status = document.getElementById('statusSelect').value;
      document.querySelectorAll('.aggregate-block').forEach(function(block) {
        var statuses = JSON.parse(block.dataset.statuses || '[]');
        var show = (tester === 'ALL' || block.dataset.tester === tester) && (status === 'ALL' || statuses.includes(status));
        block.classList.toggle('hidden', !show);
        block.querySelectorAll('tbody tr').forEach(function(tr) {
          tr.style.display = (status === 'ALL' || tr.dataset.status === status) ? '' : 'none';
        });
      });
    }
    window.addEventListener('DOMContentLoaded', function() {
      var statusList = DATA.status_list || [];
      var testers = DATA.testers || [];
      new Chart(document.getElementById('statusPieChart'), {
        type: 'pie',
        data: { labels: statusList, datasets: [{ data: statusList.map(function(s) { return DATA.global_status_counts[s] || 0; }), backgroundColor: COLORS }] },
        options: { plugins: { legend: { position: 'bottom' } } }
      });
      new Chart(document.getElementById('testerBarChart'), {
        type: 'bar',
        data: {
          labels: testers.map(function(t) { return t.tester_name; }),
          datasets: statusList.map(function(s, i) {
            return { label: s, data: testers.map(function(t) { return t.status_counts[i]; }), backgroundColor: COLORS[i] };
          })
        },
        options: { maintainAspectRatio: false, plugins: { legend: { position: 'top' } }, scales: { x: { stacked: true }, y: { stacked: true, beginAtZero: true } } }
      });
      var idx = window.INDEX_CHART;
      if (idx && document.getElementById('indexStoriesBarChart')) {
        new Chart(document.getElementById('indexStoriesBarChart'), {
          type: 'bar',
          data: { labels: idx.labels, datasets: [{ label: 'Count', data: idx.counts, backgroundColor: idx.colors }] },
          options: { maintainAspectRatio: false, plugins: { legend: { display: false } }, scales: { y: { beginAtZero: true } } }
        });
      }
    });
"""


def render_report(data, generated_at=None, title=None, base_url=None):
    """Model dict -> complete HTML document (no I/O)."""
    title = title or os.environ.get("REPORT_TITLE") or DEFAULT_TITLE
    base_url = os.environ.get("JIRA_TEST_RUN_URL", "") if base_url is None else base_url
    status_list = data.get("status_list") or []
    testers = data.get("testers") or []
    pst, ist = generated_times(generated_at)

    status_headers = "".join(
        f'<th style="background:{status_color(s)};color:#222">{html.escape(s)}</th>' for s in status_list
    )
    tester_options = "".join(
        f'<option value="{html.escape(t["tester_name"])}">{html.escape(t["tester_name"])}</option>' for t in testers
    )
    status_options = "".join(f'<option value="{html.escape(s)}">{html.escape(s)}</option>' for s in status_list)
    blocks = "".join(tester_block(t, status_list) for t in testers)
    chart_data = {
        "status_list": status_list,
        "global_status_counts": data.get("global_status_counts") or {},
        "testers": [{"tester_name": t["tester_name"], "status_counts": t["status_counts"]} for t in testers],
    }
    colors = [status_color(s) for s in status_list]

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>{html.escape(title)}</title>
  <script src="https://cdn.jsdelivr.net/npm/chart.js@4.4.0/dist/chart.umd.min.js"></script>
  <style>
    :root {{ --bg: #f4f6fb; --card: #ffffff; --text: #1f2937; --muted: #6b7280; --accent: #667eea; --border: #e5e7eb; --green: #10b981; --orange: #f59e0b; --red: #dc2626; }}
    * {{ box-sizing: border-box; }}
    body {{ font-family: 'Segoe UI', system-ui, sans-serif; background: var(--bg); color: var(--text); margin: 0; padding: 1rem; line-height: 1.5; }}
    .container {{ max-width: 1400px; margin: 0 auto; background: var(--card); border-radius: 16px; padding: 2rem; box-shadow: 0 10px 30px rgba(0,0,0,0.08); }}
    h1 {{ font-size: 2rem; margin: 0 0 0.5rem; text-align: center; }}
    .meta {{ color: var(--muted); font-size: 0.9rem; text-align: center; margin-bottom: 2rem; }}
    .meta span {{ background: #ede9fe; color: #5b21b6; padding: 2px 8px; border-radius: 6px; font-weight: 600; }}
    section {{ margin-bottom: 2.5rem; }}
    section h2 {{ font-size: 1.3rem; border-left: 5px solid var(--accent); padding-left: 0.75rem; }}
    .chart-wrap {{ max-width: 900px; height: 300px; margin-bottom: 1rem; }}
    .pie-wrap {{ display: flex; flex-wrap: wrap; gap: 2rem; align-items: center; justify-content: center; }}
    .pie-wrap .chart-wrap {{ width: 320px; height: 320px; }}
    table {{ width: 100%; border-collapse: collapse; font-size: 0.9rem; }}
    th, td {{ padding: 0.5rem 0.75rem; text-align: left; border-bottom: 1px solid var(--border); }}
    th {{ background: var(--accent); color: #fff; font-weight: 600; white-space: nowrap; }}
    .table-wrap {{ overflow-x: auto; }}
    .status-cell {{ color: #fff; font-weight: 700; text-align: center; border-radius: 4px; }}
    .hidden {{ display: none; }}
    .filter-section {{ padding: 1rem; background: #f8fafc; border: 1px solid var(--border); border-radius: 10px; }}
    .filter-section select {{ padding: 0.5rem 0.75rem; margin-right: 1rem; border-radius: 6px; border: 1px solid #cbd5e1; }}
    .aggregate-block {{ border: 1px solid var(--border); border-radius: 12px; padding: 1rem; margin: 1.25rem 0; }}
    .aggregate-block h3 {{ margin: 0 0 0.75rem; }}
    .tag {{ background: #374151; color: #fff; font-size: 0.65em; padding: 2px 8px; border-radius: 12px; vertical-align: middle; }}
    .badge {{ padding: 2px 8px; border-radius: 6px; margin-right: 6px; color: #fff; }}
    .ticket-total {{ display: flex; justify-content: space-between; background: #3b82f6; color: #fff; padding: 0.6rem 1rem; border-radius: 8px; margin: 0.75rem 0; font-weight: 600; }}
    .ticket {{ border-left: 4px solid var(--green); padding: 0.4rem 0.75rem; margin: 4px 0; background: #f8fafc; border-radius: 6px; }}
    .ticket.itr-mid {{ border-left-color: var(--orange); }}
    .ticket.itr-high {{ border-left-color: var(--red); }}
    .ticket-name {{ font-weight: 600; }}
    .itr-badge {{ margin-left: 0.5rem; font-size: 0.8em; font-weight: 700; }}
    .defect {{ color: var(--red); font-weight: 600; }}
    .total-row td {{ border-top: 2px solid #333; }}
  </style>
</head>
<body>
<div class="container">
  <h1>{html.escape(title)}</h1>
  <p class="meta">Generated: <span>{pst} PST</span> | <span>{ist} IST</span></p>
{index_section(data, base_url)}
  <section>
    <h2>Tester Name &times; Overall Status</h2>
    <div class="table-wrap">
      <table>
        <thead><tr><th>Tester Name</th>{status_headers}<th>Total</th></tr></thead>
        <tbody>{pivot_rows(data)}</tbody>
      </table>
    </div>
  </section>

  <section>
    <h2>Filter by Tester / Status</h2>
    <div class="filter-section">
      <label>Tester: </label>
      <select id="testerSelect" onchange="filterTesterStatus()"><option value="ALL">All Testers</option>{tester_options}</select>
      <label>Status: </label>
      <select id="statusSelect" onchange="filterTesterStatus()"><option value="ALL">All Statuses</option>{status_options}</select>
    </div>
  </section>

  <section>
    <h2>Details by Tester</h2>
    {blocks}
  </section>

  <section>
    <h2>Status Counts by Tester</h2>
    <div class="chart-wrap"><canvas id="testerBarChart"></canvas></div>
  </section>

  <section>
    <h2>Status Distribution</h2>
    <div class="pie-wrap">
      <div class="chart-wrap"><canvas id="statusPieChart"></canvas></div>
      <table style="max-width: 320px">
        <thead><tr><th>Status</th><th>Count</th><th>%</th></tr></thead>
        <tbody>{summary_rows(data)}</tbody>
      </table>
    </div>
  </section>
</div>
<script>
  const DATA = {js_data(chart_data)};
  const COLORS = {js_data(colors)};
{_SCRIPT}</script>
</body>
</html>"""


def write_report(data, out_path=None, **kwargs):
    out_path = out_path or os.path.join(os.path.dirname(os.path.abspath(__file__)), DEFAULT_OUTPUT)
    html_out = render_report(data, **kwargs)
    with open(out_path, "w", encoding="utf-8") as f:
        f.write(html_out)
    return out_path


def main(argv=None):
    load_dotenv()
    ap = argparse.ArgumentParser(description="Render the test status HTML report from the JSON model.")
    ap.add_argument("data", nargs="?", default=None, help="Path to sheet_report_latest.json")
    ap.add_argument("--out", default=None, help=f"Output HTML (default: {DEFAULT_OUTPUT} next to this script)")
    args = ap.parse_args(argv)
    try:
        data = load_data(args.data)
    except (OSError, json.JSONDecodeError) as e:
        print(f"Cannot read report data: {e}", file=sys.stderr)
        return 1
    out_path = write_report(data, args.out)
    print(f"Written: {out_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main() or 0)
