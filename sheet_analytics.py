#!/usr/bin/env python3
"""
Build the tester/status model from a test-execution spreadsheet.
Run: python sheet_analytics.py [--spreadsheet-id ID] [--auth-code CODE]
Output: sheet_report_latest.json (+ a timestamped copy) next to this script.
"""
from __future__ import annotations

import argparse
import json as _json
import os
import re
import sys
from collections import Counter, defaultdict
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

import pandas as pd
import requests
from dotenv import load_dotenv

from sheets_client import SheetsClient


# ----------------------------
# Config
# ----------------------------
STATUS_ORDER = ["Passed", "Failed", "Blocked", "In Progress", "Not Started"]
DEFAULT_STATUS = "Not Started"

# Empty iteration cells still count as one iteration case per ticket.
DEFAULT_ITERATION_CASE = "1"

INDEX_SHEET_NAME = "index"


def _contains(label):
    return lambda text: label in text.lower()


# field -> predicate over header cell text; first matching column wins
HEADER_MATCHERS = {
    "tester": _contains("tester"),
    "status": _contains("overall status"),
    "defect": _contains("defect"),
    "comments": _contains("comment"),
    "iteration": _contains("iteration"),
}

# Legacy index sheets have no labelled header; these positions are used when a label is missing.
INDEX_COLUMNS = {
    "test_scenario": ("test scenario", 0),
    "test_execution": ("test execution", 1),
    "test_story": ("test story", 3),
    "description": ("description", 2),
    "status": ("status", 4),
}

_ITR_IN_NAME = re.compile(r"(itr[- ]?\d+)", re.IGNORECASE)
_ITR_PREFIX = re.compile(r"^\s*itr[- ]?", re.IGNORECASE)


class SheetInputError(ValueError):
    """Grids and sheet names handed to the pipeline do not line up."""


# ----------------------------
# Helpers
# ----------------------------
def _text(value) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def cell(row, idx: int) -> str:
    """Cell text at idx; missing columns (-1) and short rows read as ""."""
    if idx < 0 or row is None or idx >= len(row):
        return ""
    return _text(row[idx])


def is_index_sheet(name: str) -> bool:
    return (name or "").lower() == INDEX_SHEET_NAME


# ----------------------------
# Header detection
# ----------------------------
def find_header_row(rows, matchers=None) -> int | None:
    is_tester = (matchers or HEADER_MATCHERS)["tester"]
    for i, row in enumerate(rows or []):
        if any(is_tester(_text(c)) for c in row or [] if c):
            return i
    return None


def locate_columns(header, matchers=None) -> dict[str, int]:
    matchers = matchers or HEADER_MATCHERS
    columns = {}
    for field, matches in matchers.items():
        columns[field] = next(
            (i for i, c in enumerate(header or []) if c and matches(_text(c))),
            -1,
        )
    return columns


def locate_header(rows, matchers=None) -> dict[str, Any]:
    """
    Find the header row (first row with a cell mentioning "tester") and the
    column index of each known field. row_index is None when there is no
    header; missing columns are -1.
    """
    row_index = find_header_row(rows, matchers)
    if row_index is None:
        return {"row_index": None, "columns": {f: -1 for f in (matchers or HEADER_MATCHERS)}}
    return {"row_index": row_index, "columns": locate_columns(rows[row_index], matchers)}


# ----------------------------
# Iteration labels
# ----------------------------
def strip_itr_prefix(value: str) -> str:
    return _ITR_PREFIX.sub("", _text(value), count=1).strip()


def resolve_iteration(row, iteration_idx: int, sheet_name: str) -> str:
    if iteration_idx != -1:
        raw = cell(row, iteration_idx)
    else:
        m = _ITR_IN_NAME.search(sheet_name or "")
        raw = m.group(1) if m else ""
    return strip_itr_prefix(raw)


# ----------------------------
# Row normalization
# ----------------------------
def normalize_sheet(sheet_name: str, rows, matchers=None):
    """
    Turn one sheet grid into records.
    Returns (records, summary); summary row_count is the number of records emitted.
    """
    if not rows:
        return [], {"name": sheet_name, "row_count": 0, "header_found": False}

    header = locate_header(rows, matchers)
    if header["row_index"] is None:
        return [], {"name": sheet_name, "row_count": 0, "header_found": False}

    cols = header["columns"]
    records = []
    for row in rows[header["row_index"] + 1:]:
        tester = cell(row, cols["tester"])
        if not tester.strip():
            continue
        status = cell(row, cols["status"]).strip() or DEFAULT_STATUS
        records.append({
            "tester": tester,
            "jira_ticket": sheet_name,
            "iteration": resolve_iteration(row, cols["iteration"], sheet_name),
            "overall_status": status,
            "defect": cell(row, cols["defect"]),
            "comments": cell(row, cols["comments"]),
        })
    return records, {"name": sheet_name, "row_count": len(records), "header_found": True}


def _ordered_grids(grids, sheet_names):
    """Pair each sheet name with its grid, in sheet_names order."""
    if isinstance(grids, Mapping):
        return [(name, grids.get(name) or []) for name in sheet_names]
    if isinstance(grids, Sequence) and not isinstance(grids, (str, bytes)):
        if len(grids) != len(sheet_names):
            raise SheetInputError(
                f"Got {len(grids)} grids for {len(sheet_names)} sheet names; the data source returned a mismatched batch."
            )
        return [(name, grid or []) for name, grid in zip(sheet_names, grids)]
    raise SheetInputError(f"Grids must be a mapping or a sequence, not {type(grids).__name__}")


def normalize_sheets(grids, sheet_names, matchers=None):
    """
    Records for every non-index sheet, in sheet order then row order.
    Returns (records, summaries, index_rows); index_rows is None unless the
    index sheet has more than one row.
    """
    records, summaries = [], []
    index_rows = None
    for name, rows in _ordered_grids(grids, sheet_names):
        if is_index_sheet(name):
            if rows and len(rows) > 1:
                index_rows = rows
            continue
        sheet_records, summary = normalize_sheet(name, rows, matchers)
        records.extend(sheet_records)
        summaries.append(summary)
    return records, summaries, index_rows


# ----------------------------
# Index sheet
# ----------------------------
def locate_index_columns(header) -> dict[str, int]:
    columns = {field: fallback for field, (_, fallback) in INDEX_COLUMNS.items()}
    for i, c in enumerate(header or []):
        lc = _text(c).lower()
        for field, (label, _) in INDEX_COLUMNS.items():
            if label in lc:
                columns[field] = i
    return columns


def parse_index_sheet(rows):
    """
    Index sheet -> (entries, status_counts). Entirely blank rows are dropped;
    entries with a blank status are listed but not tallied.
    """
    if not rows or len(rows) <= 1:
        return [], {}
    cols = locate_index_columns(rows[0])
    entries = []
    status_counts = Counter()
    for row in rows[1:]:
        if not any(_text(c) for c in row or []):
            continue
        entry = {field: cell(row, idx) for field, idx in cols.items()}
        entries.append(entry)
        status = entry["status"].strip()
        if status:
            status_counts[status] += 1
    return entries, dict(status_counts)


# ----------------------------
# Aggregation
# ----------------------------
def status_display_order(records) -> list[str]:
    seen = []
    for r in records:
        st = r.get("overall_status")
        if st and st not in seen:
            seen.append(st)
    ordered = [s for s in STATUS_ORDER if s in seen]
    return ordered + [s for s in seen if s not in STATUS_ORDER]


def group_by_tester(records) -> dict[str, dict[str, Any]]:
    grouped: dict[str, dict[str, Any]] = {}
    for r in records:
        key = _text(r.get("tester")).strip()
        if not key:
            continue
        g = grouped.setdefault(key, {"tester": key, "rows": [], "status_counts": Counter(), "ticket_iterations": defaultdict(set)})
        g["rows"].append(r)
        g["status_counts"][r["overall_status"]] += 1
        g["ticket_iterations"][r["jira_ticket"]].add(r.get("iteration") or DEFAULT_ITERATION_CASE)
    return grouped


def sort_testers(names) -> list[str]:
    return sorted(names, key=lambda n: (n.lower(), n))


def global_status_counts(records, status_list) -> dict[str, int]:
    counts = Counter(r["overall_status"] for r in records)
    return {s: counts[s] for s in status_list}


def aggregate(records) -> dict[str, Any]:
    status_list = status_display_order(records)
    grouped = group_by_tester(records)
    return {
        "status_list": status_list,
        "sorted_tester_names": sort_testers(grouped),
        "groups": grouped,
        "global_status_counts": global_status_counts(records, status_list),
    }


# ----------------------------
# Report model
# ----------------------------
def percent(count: int, total: int) -> str:
    if not total:
        return "0"
    return f"{count / total * 100:.1f}"


def _tester_entry(group, status_list):
    counts = group["status_counts"]
    rank = {s: i for i, s in enumerate(status_list)}
    return {
        "tester_name": group["tester"],
        "status_counts": [counts.get(s, 0) for s in status_list],
        "status_count_map": dict(counts),
        "statuses": [s for s in status_list if counts.get(s)],
        "total": len(group["rows"]),
        "unique_ticket_count": len(group["ticket_iterations"]),
        "ticket_details": [
            {"ticket": ticket, "iteration_case_count": len(iterations)}
            for ticket, iterations in group["ticket_iterations"].items()
        ],
        "rows": [dict(r) for r in sorted(group["rows"], key=lambda r: rank.get(r["overall_status"], len(rank)))],
    }


def build_report_model(aggregated, index_entries=None, index_status_counts=None, sheet_summaries=None):
    status_list = aggregated["status_list"]
    counts = aggregated["global_status_counts"]
    total = sum(counts.values())
    return {
        "status_list": list(status_list),
        "sorted_tester_names": list(aggregated["sorted_tester_names"]),
        "testers": [_tester_entry(aggregated["groups"][n], status_list) for n in aggregated["sorted_tester_names"]],
        "global_status_counts": dict(counts),
        "status_summary": [{"status": s, "count": counts[s], "percent": percent(counts[s], total)} for s in status_list],
        "total_records": total,
        "index_entries": [dict(e) for e in index_entries or []],
        "index_status_counts": dict(index_status_counts or {}),
        "sheet_summaries": [dict(s) for s in sheet_summaries or []],
    }


def build_aggregated_model(grids, sheet_names, matchers=None) -> dict[str, Any]:
    """
    grids: mapping sheet name -> grid, or a sequence aligned with sheet_names.
    Same input always gives the same model.
    """
    records, summaries, index_rows = normalize_sheets(grids, sheet_names, matchers)
    index_entries, index_counts = parse_index_sheet(index_rows)
    return build_report_model(aggregate(records), index_entries, index_counts, summaries)


# ----------------------------
# Main
# ----------------------------
def print_summaries(model):
    summaries = model.get("sheet_summaries") or []
    if summaries:
        print("\nSheets:")
        print(pd.DataFrame(summaries).to_string(index=False))
    testers = model.get("testers") or []
    if testers:
        df = pd.DataFrame(
            [t["status_counts"] + [t["total"], t["unique_ticket_count"]] for t in testers],
            columns=model["status_list"] + ["Total", "Tickets"],
            index=[t["tester_name"] for t in testers],
        )
        print("\nTester x Overall Status:")
        print(df.to_string())
    no_header = [s["name"] for s in summaries if not s["header_found"]]
    if no_header:
        print(f"\nNo tester header found in: {', '.join(no_header)}", file=sys.stderr)


def fetch_model(client) -> dict[str, Any]:
    print("Fetching spreadsheet metadata...")
    names = client.list_sheet_names()
    data_sheets = [n for n in names if not is_index_sheet(n)]
    print(f"  Found {len(data_sheets)} sheets")
    print("Fetching all sheet data in batch...")
    grids = client.fetch_all_grids(names)
    model = build_aggregated_model(grids, names)
    print(f"Processed {len(data_sheets)} sheets, {model['total_records']} rows")
    return model


def save_model(model, out_dir=None):
    out_dir = out_dir or os.path.dirname(os.path.abspath(__file__))
    latest_path = os.path.join(out_dir, "sheet_report_latest.json")
    run_ts = model.get("run_iso_ts") or datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    ts_path = os.path.join(out_dir, f"sheet_report_{run_ts.replace(':', '-')}.json")
    for path in (latest_path, ts_path):
        with open(path, "w", encoding="utf-8") as f:
            _json.dump(model, f, indent=2, ensure_ascii=False)
    return latest_path, ts_path


def main(argv=None) -> int:
    load_dotenv()
    ap = argparse.ArgumentParser(description="Aggregate test-execution sheets by tester and status.")
    ap.add_argument("--spreadsheet-id", default=os.environ.get("GOOGLE_SHEETS_SPREADSHEET_ID"))
    ap.add_argument("--auth-code", default=os.environ.get("GOOGLE_AUTH_CODE"))
    ap.add_argument("--out-dir", default=None, help="Where to write the JSON (default: next to this script)")
    args = ap.parse_args(argv)
    if not args.spreadsheet_id:
        print("Set GOOGLE_SHEETS_SPREADSHEET_ID or pass --spreadsheet-id.", file=sys.stderr)
        return 1

    try:
        client = SheetsClient.from_env(args.spreadsheet_id, auth_code=args.auth_code)
        model = fetch_model(client)
    except (RuntimeError, requests.RequestException) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    model["run_iso_ts"] = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    model["spreadsheet_id"] = args.spreadsheet_id
    print_summaries(model)

    latest_path, ts_path = save_model(model, args.out_dir)
    print(f"\nResults saved to: {latest_path}")
    print(f"              and: {ts_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
