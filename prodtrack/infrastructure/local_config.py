from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from prodtrack.domain.models import SheetsConfig

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "config.json"

# Claves de config.json -> campos de SheetsConfig.
_CLAVES = {
    "sheets_spreadsheet_id": "spreadsheet_id",
    "path_credentials_json": "credentials_path",
    "id_column": "id_column",
}


def resolve_appdata_dir() -> Path:
    if home := os.environ.get("PRODTRACK_HOME"):
        return Path(home)
    xdg = os.environ.get("XDG_CONFIG_HOME")
    return (Path(xdg) if xdg else Path.home() / ".config") / "prodtrack"


class SheetsConfigStore:
    """config.json local con el spreadsheet y la ruta de credenciales."""

    def __init__(self, base_dir: Path | None = None) -> None:
        base = base_dir or resolve_appdata_dir()
        self._config_path = base / CONFIG_FILE_NAME
        self._credentials_path = base / "secrets" / "credentials.json"

    def credentials_path(self) -> Path:
        return self._credentials_path

    def load(self) -> SheetsConfig | None:
        try:
            raw = json.loads(self._config_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError):
            logger.exception("config.json ilegible en %s; se ignora", self._config_path)
            return None
        campos = {campo: str(raw.get(clave, "")).strip() for clave, campo in _CLAVES.items()}
        if not campos["spreadsheet_id"] and not campos["credentials_path"]:
            return None
        campos["credentials_path"] = campos["credentials_path"] or str(self._credentials_path)
        campos["id_column"] = campos["id_column"] or "id"
        return SheetsConfig(**campos)

    def save(self, config: SheetsConfig) -> SheetsConfig:
        payload = {clave: getattr(config, campo) for clave, campo in _CLAVES.items()}
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        self._config_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        return config
