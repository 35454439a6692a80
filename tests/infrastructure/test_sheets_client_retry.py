from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import gspread
import pytest

from prodtrack.domain.sheets_errors import SheetsPermissionError, SheetsRateLimitError
from prodtrack.infrastructure.sheets_client import SheetsClient
from tests.fakes import FakeWorksheet


class _RateLimitResp:
    status_code = 429
    text = "RESOURCE_EXHAUSTED: Quota exceeded for read requests"


class _ForbiddenResp:
    status_code = 403
    text = '{"error": {"code": 403, "message": "The caller does not have permission", "status": "PERMISSION_DENIED"}}'


def _open_client(monkeypatch, worksheets: dict[str, FakeWorksheet], *, sleeps: list[float] | None = None) -> SheetsClient:
    spreadsheet = SimpleNamespace(id="sheet-123", worksheet=lambda name: worksheets[name])
    fake_gspread = SimpleNamespace(open_by_key=lambda _spreadsheet_id: spreadsheet)
    monkeypatch.setattr("gspread.service_account", lambda filename: fake_gspread)
    client = SheetsClient(sleep=(sleeps.append if sleeps is not None else lambda _seconds: None))
    client.open_spreadsheet(Path("/tmp/cred.json"), "sheet-123")
    return client


def test_open_spreadsheet_retries_rate_limit(monkeypatch) -> None:
    calls = {"count": 0}
    sleeps: list[float] = []

    def fake_open_by_key(_spreadsheet_id: str):
        calls["count"] += 1
        if calls["count"] < 3:
            raise gspread.exceptions.APIError(_RateLimitResp())
        return SimpleNamespace(id="sheet-id", title="Demo")

    monkeypatch.setattr("gspread.service_account", lambda filename: SimpleNamespace(open_by_key=fake_open_by_key))

    client = SheetsClient(sleep=sleeps.append)
    spreadsheet = client.open_spreadsheet(Path("/tmp/cred.json"), "sheet-id")

    assert spreadsheet.id == "sheet-id"
    assert client.is_open
    assert calls["count"] == 3
    assert sleeps == [1, 2]


def test_open_spreadsheet_exceeds_retry_limit(monkeypatch) -> None:
    def fake_open_by_key(_spreadsheet_id: str):
        raise gspread.exceptions.APIError(_RateLimitResp())

    monkeypatch.setattr("gspread.service_account", lambda filename: SimpleNamespace(open_by_key=fake_open_by_key))

    with pytest.raises(SheetsRateLimitError):
        SheetsClient(sleep=lambda _seconds: None).open_spreadsheet(Path("/tmp/cred.json"), "sheet-id")


def test_read_all_values_is_never_cached(monkeypatch) -> None:
    worksheet = FakeWorksheet("productions", [["id", "title"], ["e1", "Old"]])
    client = _open_client(monkeypatch, {"productions": worksheet})

    first = client.read_all_values("productions")
    worksheet.values[1][1] = "A Title"
    second = client.read_all_values("productions")

    assert first[1][1] == "Old"
    assert second[1][1] == "A Title"


def test_update_cell_writes_single_range(monkeypatch) -> None:
    worksheet = FakeWorksheet("productions", [["id", "title"], ["e1", "Old"]])
    client = _open_client(monkeypatch, {"productions": worksheet})

    client.update_cell("productions", "B2", "B Title")

    assert worksheet.updates == [("B2", [["B Title"]])]


def test_get_worksheet_without_open_spreadsheet_fails() -> None:
    with pytest.raises(RuntimeError):
        SheetsClient().get_worksheet("productions")


def test_with_write_retry_backs_off_until_success() -> None:
    sleeps: list[float] = []
    client = SheetsClient(sleep=sleeps.append)
    calls = {"count": 0}

    def flaky_operation() -> str:
        calls["count"] += 1
        if calls["count"] < 4:
            raise gspread.exceptions.APIError(_RateLimitResp())
        return "ok"

    assert client._with_write_retry("worksheet.update(productions, B2)", flaky_operation) == "ok"
    assert sleeps == [1, 2, 4]


def test_with_write_retry_permission_error_logs_context(monkeypatch) -> None:
    client = SheetsClient()
    client._spreadsheet = SimpleNamespace(id="spreadsheet-123")
    captured: dict[str, object] = {}

    def fake_log_permission_error(error, *, spreadsheet_id=None, worksheet_name=None) -> None:  # noqa: ANN001
        captured.update(error=error, spreadsheet_id=spreadsheet_id, worksheet_name=worksheet_name)

    monkeypatch.setattr(client, "_log_permission_error", fake_log_permission_error)

    def fail_operation():
        raise gspread.exceptions.APIError(_ForbiddenResp())

    with pytest.raises(SheetsPermissionError):
        client._with_write_retry("worksheet.update(productions, B2)", fail_operation)

    assert isinstance(captured["error"], SheetsPermissionError)
    assert captured["spreadsheet_id"] == "spreadsheet-123"
    assert captured["worksheet_name"] == "productions"


def test_with_write_retry_non_api_exception_is_reraised() -> None:
    client = SheetsClient()

    def fail_operation():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        client._with_write_retry("worksheet.update(productions, B2)", fail_operation)
