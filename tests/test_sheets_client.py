import json
from datetime import datetime, timedelta, timezone

import pytest
from google.auth.exceptions import RefreshError, TransportError

import sheets_client
from sheets_client import SheetsClient, consent_url, load_client_config, load_credentials, quote_range


class _Response:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code
        self.text = json.dumps(payload)

    def json(self):
        return self._payload


class _Session:
    def __init__(self, *responses):
        self.headers = {}
        self.calls = []
        self._responses = list(responses)

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params))
        return self._responses.pop(0)


def _write_client(tmp_path, section="installed"):
    path = tmp_path / "oauth-credentials.json"
    path.write_text(json.dumps({section: {
        "client_id": "cid",
        "client_secret": "secret",
        "redirect_uris": ["http://localhost:8080"],
    }}), encoding="utf-8")
    return path


def test_list_sheet_names() -> None:
    session = _Session(_Response({"sheets": [{"properties": {"title": "Index"}}, {"properties": {"title": "NR-1"}}]}))
    client = SheetsClient("sheet-id", session)
    assert client.list_sheet_names() == ["Index", "NR-1"]
    url, params = session.calls[0]
    assert url == "https://sheets.googleapis.com/v4/spreadsheets/sheet-id"
    assert params == {"fields": "sheets.properties.title"}
    assert session.headers["Accept"] == "application/json"


def test_fetch_all_grids_uses_one_batch_call() -> None:
    session = _Session(_Response({"valueRanges": [
        {"range": "'NR-1'!A1:B2", "values": [["Tester"], ["Alice"]]},
        {"range": "'Empty'!A1:Z1000"},
    ]}))
    client = SheetsClient("sheet-id", session)
    grids = client.fetch_all_grids(["NR-1 ", "Empty"])
    assert grids == {"NR-1 ": [["Tester"], ["Alice"]], "Empty": []}
    assert len(session.calls) == 1
    url, params = session.calls[0]
    assert url.endswith("/sheet-id/values:batchGet")
    assert params == {"ranges": ["'NR-1'", "'Empty'"]}


def test_fetch_all_grids_without_names_makes_no_call() -> None:
    session = _Session()
    assert SheetsClient("sheet-id", session).fetch_all_grids([]) == {}
    assert session.calls == []


def test_http_error_raises() -> None:
    client = SheetsClient("sheet-id", _Session(_Response({"error": "nope"}, status_code=403)))
    with pytest.raises(RuntimeError, match="failed 403"):
        client.list_sheet_names()


def test_missing_spreadsheet_id() -> None:
    with pytest.raises(RuntimeError, match="GOOGLE_SHEETS_SPREADSHEET_ID"):
        SheetsClient("", _Session())


def test_quote_range_escapes_quotes() -> None:
    assert quote_range(" It's ITR-2 ") == "'It''s ITR-2'"


def test_load_client_config_web_section(tmp_path) -> None:
    client = load_client_config(_write_client(tmp_path, section="web"))
    assert client["client_id"] == "cid"
    assert client["redirect_uri"] == "http://localhost:8080"
    assert client["token_uri"] == sheets_client.TOKEN_URI


def test_missing_client_file(tmp_path) -> None:
    with pytest.raises(RuntimeError, match="not found"):
        load_client_config(tmp_path / "oauth-credentials.json")


def test_no_token_and_no_code_raises_with_consent_url(tmp_path) -> None:
    creds_path = _write_client(tmp_path)
    with pytest.raises(RuntimeError) as exc:
        load_credentials(creds_path, tmp_path / "google-token.json")
    assert "accounts.google.com" in str(exc.value)
    assert "access_type=offline" in consent_url(load_client_config(creds_path))


def test_stored_token_is_used_without_refresh(tmp_path, monkeypatch) -> None:
    token_path = tmp_path / "google-token.json"
    token_path.write_text(json.dumps({"token": "tok", "refresh_token": "r", "expiry": "2099-01-01T00:00:00Z"}), encoding="utf-8")

    def fail_refresh(self, request):
        raise AssertionError("should not refresh")

    monkeypatch.setattr(sheets_client.Credentials, "refresh", fail_refresh)
    creds = load_credentials(_write_client(tmp_path), token_path)
    assert creds.token == "tok"
    assert creds.client_id == "cid"


def test_refresh_failure_keeps_existing_token(tmp_path, monkeypatch, capsys) -> None:
    token_path = tmp_path / "google-token.json"
    token_path.write_text(json.dumps({"token": "old", "refresh_token": "r", "expiry": "2000-01-01T00:00:00Z"}), encoding="utf-8")

    def broken_refresh(self, request):
        raise RefreshError("invalid_grant")

    monkeypatch.setattr(sheets_client.Credentials, "refresh", broken_refresh)
    creds = load_credentials(_write_client(tmp_path), token_path)
    assert creds.token == "old"
    assert "token refresh failed" in capsys.readouterr().err


def test_auth_code_is_exchanged_and_saved(tmp_path, monkeypatch) -> None:
    posted = {}

    def fake_post(url, data=None, timeout=None):
        posted.update(data)
        return _Response({"access_token": "fresh", "refresh_token": "rt", "expires_in": 3599})

    monkeypatch.setattr(sheets_client.requests, "post", fake_post)
    token_path = tmp_path / "google-token.json"
    creds = load_credentials(_write_client(tmp_path), token_path, auth_code="4/abc")
    assert creds.token == "fresh"
    assert posted["code"] == "4/abc"
    assert posted["grant_type"] == "authorization_code"
    saved = json.loads(token_path.read_text(encoding="utf-8"))
    assert saved["token"] == "fresh"
    assert saved["refresh_token"] == "rt"


def test_refresh_transport_error_keeps_existing_token(tmp_path, monkeypatch, capsys) -> None:
    token_path = tmp_path / "google-token.json"
    token_path.write_text(json.dumps({"token": "old", "refresh_token": "r", "expiry": "2000-01-01T00:00:00Z"}), encoding="utf-8")

    def offline_refresh(self, request):
        raise TransportError("connection refused")

    monkeypatch.setattr(sheets_client.Credentials, "refresh", offline_refresh)
    creds = load_credentials(_write_client(tmp_path), token_path)
    assert creds.token == "old"
    assert "connection refused" in capsys.readouterr().err


def test_token_expiring_within_margin_is_refreshed(tmp_path, monkeypatch) -> None:
    token_path = tmp_path / "google-token.json"
    soon = datetime.now(timezone.utc) + timedelta(seconds=30)
    token_path.write_text(json.dumps({
        "token": "old",
        "refresh_token": "r",
        "expiry": soon.strftime("%Y-%m-%dT%H:%M:%SZ"),
    }), encoding="utf-8")

    def refresh(self, request):
        self.token = "new"
        self.expiry = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(hours=1)

    monkeypatch.setattr(sheets_client.Credentials, "refresh", refresh)
    creds = load_credentials(_write_client(tmp_path), token_path)
    assert creds.token == "new"
    assert json.loads(token_path.read_text(encoding="utf-8"))["token"] == "new"


def test_token_saved_without_refresh_token_loads_on_next_run(tmp_path, monkeypatch) -> None:
    # Google leaves out refresh_token when the user already granted consent
    monkeypatch.setattr(sheets_client.requests, "post",
                        lambda url, data=None, timeout=None: _Response({"access_token": "fresh", "expires_in": 3599}))
    token_path = tmp_path / "google-token.json"
    creds_path = _write_client(tmp_path)
    load_credentials(creds_path, token_path, auth_code="4/abc")
    assert "refresh_token" not in json.loads(token_path.read_text(encoding="utf-8"))

    def fail_refresh(self, request):
        raise AssertionError("should not refresh")

    monkeypatch.setattr(sheets_client.Credentials, "refresh", fail_refresh)
    creds = load_credentials(creds_path, token_path)
    assert creds.token == "fresh"
    assert creds.refresh_token is None
    assert creds.client_id == "cid"


def test_minimal_token_file_loads(tmp_path) -> None:
    token_path = tmp_path / "google-token.json"
    token_path.write_text(json.dumps({"token": "abc", "expiry": "2099-01-01T00:00:00Z"}), encoding="utf-8")
    creds = load_credentials(_write_client(tmp_path), token_path)
    assert creds.token == "abc"
    assert creds.expiry == datetime(2099, 1, 1)
    assert creds.token_uri == sheets_client.TOKEN_URI


def test_unreadable_token_file_raises_with_consent_url(tmp_path) -> None:
    token_path = tmp_path / "google-token.json"
    token_path.write_text("not json", encoding="utf-8")
    with pytest.raises(RuntimeError) as exc:
        load_credentials(_write_client(tmp_path), token_path)
    assert "accounts.google.com" in str(exc.value)
