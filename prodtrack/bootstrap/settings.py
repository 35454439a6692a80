from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from prodtrack.domain.models import SheetsConfig
from prodtrack.domain.ports import SheetsConfigStorePort

DEFAULT_ID_COLUMN = "id"
DEFAULT_API_BASE_URL = "http://127.0.0.1:8000"


def project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _es_escribible(directorio: Path) -> bool:
    try:
        directorio.mkdir(parents=True, exist_ok=True)
        sonda = directorio / "_write_test.tmp"
        sonda.write_text("ok", encoding="utf-8")
        sonda.unlink(missing_ok=True)
    except OSError:
        return False
    return True


def resolve_log_dir() -> Path:
    """Primer directorio escribible: PRODTRACK_LOG_DIR, <proyecto>/logs o el temporal del sistema."""
    env_dir = os.environ.get("PRODTRACK_LOG_DIR")
    candidatos = [Path(env_dir)] if env_dir else []
    candidatos += [project_root() / "logs", Path(tempfile.gettempdir()) / "prodtrack" / "logs"]
    for candidato in candidatos:
        if _es_escribible(candidato):
            return candidato
    ultimo_recurso = project_root()
    ultimo_recurso.mkdir(parents=True, exist_ok=True)
    return ultimo_recurso


@dataclass(frozen=True)
class Settings:
    sheets: SheetsConfig | None
    api_base_url: str = DEFAULT_API_BASE_URL

    @property
    def is_configured(self) -> bool:
        return self.sheets is not None and bool(self.sheets.spreadsheet_id and self.sheets.credentials_path)


def _env(nombre: str) -> str:
    return os.environ.get(nombre, "").strip()


def load_settings(config_store: SheetsConfigStorePort | None = None) -> Settings:
    """Las variables PRODTRACK_* tienen prioridad sobre el config.json local."""
    stored = config_store.load() if config_store is not None else None
    spreadsheet_id = _env("PRODTRACK_SPREADSHEET_ID") or (stored.spreadsheet_id if stored else "")
    credentials_path = _env("PRODTRACK_CREDENTIALS_PATH") or (stored.credentials_path if stored else "")
    id_column = _env("PRODTRACK_ID_COLUMN") or (stored.id_column if stored else DEFAULT_ID_COLUMN)

    sheets = None
    if spreadsheet_id or credentials_path:
        sheets = SheetsConfig(spreadsheet_id=spreadsheet_id, credentials_path=credentials_path, id_column=id_column)
    return Settings(sheets=sheets, api_base_url=_env("PRODTRACK_API_BASE_URL") or DEFAULT_API_BASE_URL)
