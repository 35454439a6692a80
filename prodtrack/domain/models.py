from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SheetsConfig:
    spreadsheet_id: str
    credentials_path: str
    id_column: str = "id"
