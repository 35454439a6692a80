from __future__ import annotations

import json
from pathlib import Path

from prodtrack.domain.models import SheetsConfig
from prodtrack.infrastructure import local_config
from prodtrack.infrastructure.local_config import SheetsConfigStore


def test_resolve_appdata_dir_usa_variable_de_entorno(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("PRODTRACK_HOME", str(tmp_path / "home"))

    assert local_config.resolve_appdata_dir() == tmp_path / "home"


def test_resolve_appdata_dir_usa_xdg(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.delenv("PRODTRACK_HOME", raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))

    assert local_config.resolve_appdata_dir() == tmp_path / "xdg" / "prodtrack"


def test_load_devuelve_none_si_no_existe_config(tmp_path: Path) -> None:
    assert SheetsConfigStore(base_dir=tmp_path).load() is None


def test_load_devuelve_none_con_json_invalido(tmp_path: Path) -> None:
    (tmp_path / "config.json").write_text("{ invalido", encoding="utf-8")

    assert SheetsConfigStore(base_dir=tmp_path).load() is None


def test_save_y_load_conservan_configuracion(tmp_path: Path) -> None:
    store = SheetsConfigStore(base_dir=tmp_path)

    store.save(SheetsConfig(spreadsheet_id="sheet-1", credentials_path="/tmp/cred.json", id_column="codigo"))

    payload = json.loads((tmp_path / "config.json").read_text(encoding="utf-8"))
    assert payload["sheets_spreadsheet_id"] == "sheet-1"
    assert store.load() == SheetsConfig(spreadsheet_id="sheet-1", credentials_path="/tmp/cred.json", id_column="codigo")


def test_load_usa_credenciales_por_defecto(tmp_path: Path) -> None:
    (tmp_path / "config.json").write_text(json.dumps({"sheets_spreadsheet_id": "sheet-1"}), encoding="utf-8")

    config = SheetsConfigStore(base_dir=tmp_path).load()

    assert config is not None
    assert config.credentials_path == str(tmp_path / "secrets" / "credentials.json")
    assert config.id_column == "id"
