"""
Google Sheets data source: sheet titles + every tab's values in one batch call.
OAuth client secrets come from oauth-credentials.json; the user token is kept in google-token.json.
"""
from __future__ import annotations

import json
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import requests
from dateutil import parser as dtparser
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import AuthorizedSession, Request
from google.oauth2.credentials import Credentials

SCOPES = ["https://www.googleapis.com/auth/spreadsheets.readonly"]
SHEETS_API = "https://sheets.googleapis.com/v4/spreadsheets"
AUTH_URI = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"

# Refresh tokens that expire within this window before using them.
REFRESH_MARGIN = timedelta(seconds=60)


def default_credentials_path() -> Path:
    return Path(os.environ.get("GOOGLE_OAUTH_CREDENTIALS") or Path.cwd() / "oauth-credentials.json")


def default_token_path() -> Path:
    return Path(os.environ.get("GOOGLE_TOKEN_PATH") or Path.cwd() / "google-token.json")


# ----------------------------
# OAuth
# ----------------------------
def load_client_config(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise RuntimeError(f"{path.name} not found. Download the OAuth client JSON to {path}.")
    with open(path, encoding="utf-8") as f:
        raw = json.load(f)
    conf = raw.get("installed") or raw.get("web")
    if not conf or not conf.get("client_id") or not conf.get("client_secret"):
        raise RuntimeError(f"{path} has no 'installed' or 'web' client with client_id and client_secret.")
    redirect_uris = conf.get("redirect_uris") or []
    return {
        "client_id": conf["client_id"],
        "client_secret": conf["client_secret"],
        "redirect_uri": redirect_uris[0] if redirect_uris else "http://localhost",
        "token_uri": conf.get("token_uri") or TOKEN_URI,
    }


def consent_url(client: dict[str, Any]) -> str:
    req = requests.Request("GET", AUTH_URI, params={
        "client_id": client["client_id"],
        "redirect_uri": client["redirect_uri"],
        "response_type": "code",
        "scope": " ".join(SCOPES),
        "access_type": "offline",
    })
    return req.prepare().url


def save_token(creds: Credentials, token_path: Path) -> None:
    token_path.write_text(creds.to_json(), encoding="utf-8")


def _utcnow() -> datetime:
    # google-auth keeps expiry as naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def exchange_code(client: dict[str, Any], code: str, timeout=60) -> Credentials:
    r = requests.post(client["token_uri"], data={
        "code": code,
        "client_id": client["client_id"],
        "client_secret": client["client_secret"],
        "redirect_uri": client["redirect_uri"],
        "grant_type": "authorization_code",
    }, timeout=timeout)
    if r.status_code >= 400:
        raise RuntimeError(f"Token exchange failed {r.status_code}: {r.text[:500]}")
    tok = r.json()
    expires_in = tok.get("expires_in")
    return Credentials(
        token=tok.get("access_token"),
        refresh_token=tok.get("refresh_token"),
        token_uri=client["token_uri"],
        client_id=client["client_id"],
        client_secret=client["client_secret"],
        scopes=SCOPES,
        expiry=_utcnow() + timedelta(seconds=int(expires_in)) if expires_in else None,
    )


def _parse_expiry(value) -> datetime | None:
    if not value:
        return None
    dt = dtparser.isoparse(value)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def read_token(token_path: Path, client: dict[str, Any]) -> Credentials:
    """
    Stored token -> Credentials. Any field may be missing (Google omits refresh_token
    when the user consented before); client fields fall back to the OAuth client file.
    """
    with open(token_path, encoding="utf-8") as f:
        info = json.load(f)
    if not isinstance(info, dict):
        raise ValueError("token file is not a JSON object")
    return Credentials(
        token=info.get("token"),
        refresh_token=info.get("refresh_token"),
        token_uri=info.get("token_uri") or client["token_uri"],
        client_id=info.get("client_id") or client["client_id"],
        client_secret=info.get("client_secret") or client["client_secret"],
        scopes=info.get("scopes") or SCOPES,
        expiry=_parse_expiry(info.get("expiry")),
    )


def needs_refresh(creds: Credentials) -> bool:
    if not creds.token:
        return True
    return creds.expiry is not None and creds.expiry < _utcnow() + REFRESH_MARGIN


def load_credentials(credentials_path: Path | None = None, token_path: Path | None = None,
                     auth_code: str | None = None) -> Credentials:
    """
    Stored token first (refreshed when about to expire), then a one-time auth code.
    With neither, raises RuntimeError carrying the consent URL.
    """
    credentials_path = credentials_path or default_credentials_path()
    token_path = token_path or default_token_path()
    client = load_client_config(credentials_path)

    if token_path.exists():
        try:
            creds = read_token(token_path, client)
        except ValueError as e:
            raise RuntimeError(
                f"Cannot read token {token_path} ({e}). Delete it and visit:\n{consent_url(client)}\n"
                "Then run again with --auth-code <code> (or set GOOGLE_AUTH_CODE)."
            ) from e
        if needs_refresh(creds):
            try:
                creds.refresh(Request())
                save_token(creds, token_path)
            except GoogleAuthError as e:
                print(f"Warning: token refresh failed ({e}); continuing with existing token", file=sys.stderr)
        return creds

    if auth_code:
        creds = exchange_code(client, auth_code)
        save_token(creds, token_path)
        return creds

    raise RuntimeError(
        f"No token at {token_path}. Visit:\n{consent_url(client)}\n"
        "Then run again with --auth-code <code> (or set GOOGLE_AUTH_CODE)."
    )


# ----------------------------
# Sheets client
# ----------------------------
def quote_range(sheet_name: str) -> str:
    return "'" + sheet_name.strip().replace("'", "''") + "'"


class SheetsClient:
    def __init__(self, spreadsheet_id, session):
        if not spreadsheet_id:
            raise RuntimeError("Missing spreadsheet id. Set GOOGLE_SHEETS_SPREADSHEET_ID.")
        self.spreadsheet_id = spreadsheet_id
        self.session = session
        self.session.headers.update({"Accept": "application/json"})

    @classmethod
    def from_env(cls, spreadsheet_id=None, auth_code=None):
        print("Authenticating...")
        creds = load_credentials(auth_code=auth_code or os.environ.get("GOOGLE_AUTH_CODE"))
        print("Authenticated\n")
        return cls(spreadsheet_id or os.environ.get("GOOGLE_SHEETS_SPREADSHEET_ID"), AuthorizedSession(creds))

    def _get(self, path, params=None, timeout=60):
        url = f"{SHEETS_API}/{self.spreadsheet_id}{path}"
        r = self.session.get(url, params=params or {}, timeout=timeout)
        if r.status_code >= 400:
            raise RuntimeError(f"GET {url} failed {r.status_code}: {r.text[:500]}")
        return r.json()

    def list_sheet_names(self) -> list[str]:
        data = self._get("", params={"fields": "sheets.properties.title"})
        return [(s.get("properties") or {}).get("title", "") for s in data.get("sheets") or []]

    def fetch_all_grids(self, names) -> dict[str, list[list[str]]]:
        """All tabs in one values:batchGet call; tabs without values map to []."""
        names = list(names)
        if not names:
            return {}
        data = self._get("/values:batchGet", params={"ranges": [quote_range(n) for n in names]})
        value_ranges = data.get("valueRanges") or []
        grids = {}
        for idx, name in enumerate(names):
            vr = value_ranges[idx] if idx < len(value_ranges) else {}
            grids[name] = vr.get("values") or []
        return grids
