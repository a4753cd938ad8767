#!/usr/bin/env python3
"""
One-shot report run: fetch every sheet, build the model, write the JSON and the HTML report.
Meant to be triggered by cron / Task Scheduler (e.g. every 6 hours).

Usage:
  python run_report.py
  python run_report.py --auth-code <code>   # first run, after visiting the printed consent URL
"""
from __future__ import annotations

import argparse
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

import requests
from dotenv import load_dotenv

import generate_report
import sheet_analytics
from sheets_client import SheetsClient


def main(argv=None) -> int:
    load_dotenv()
    ap = argparse.ArgumentParser(description="Fetch the spreadsheet and write the HTML test status report.")
    ap.add_argument("--spreadsheet-id", default=os.environ.get("GOOGLE_SHEETS_SPREADSHEET_ID"))
    ap.add_argument("--auth-code", default=os.environ.get("GOOGLE_AUTH_CODE"))
    ap.add_argument("--out", default=None, help=f"Output HTML (default: {generate_report.DEFAULT_OUTPUT} next to this script)")
    args = ap.parse_args(argv)
    if not args.spreadsheet_id:
        print("Please set GOOGLE_SHEETS_SPREADSHEET_ID in your environment or pass --spreadsheet-id.", file=sys.stderr)
        return 1

    try:
        client = SheetsClient.from_env(args.spreadsheet_id, auth_code=args.auth_code)
        model = sheet_analytics.fetch_model(client)
    except (RuntimeError, requests.RequestException) as e:
        print(f"Error during report generation: {e}", file=sys.stderr)
        return 1
    model["run_iso_ts"] = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    model["spreadsheet_id"] = args.spreadsheet_id

    # JSON lands next to the HTML when --out is given
    sheet_analytics.save_model(model, os.path.dirname(os.path.abspath(args.out)) if args.out else None)
    html_path = Path(generate_report.write_report(model, args.out)).resolve()
    print("Report generation complete!")
    print(f"HTML report saved at: {html_path}")
    print(f"Open in a browser: {html_path.as_uri()}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
