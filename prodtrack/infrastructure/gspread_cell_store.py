from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any

from prodtrack.domain.cells import CellKey
from prodtrack.domain.models import SheetsConfig
from prodtrack.domain.ports import CellStorePort, SheetsClientPort
from prodtrack.domain.sheets_errors import SheetsCellNotFoundError
from prodtrack.infrastructure.sheets_client_puros import localizar_celda, notacion_a1, valor_en

logger = logging.getLogger(__name__)


class GspreadCellStore(CellStorePort):
    """Adaptador de celda sobre Google Sheets.

    Cada colección es una pestaña; la fila 1 son los field ids y la columna
    de id identifica la entidad. Cada lectura baja la pestaña completa.
    """

    def __init__(self, client: SheetsClientPort, config: SheetsConfig) -> None:
        self._client = client
        self._config = config
        self._open_lock = threading.Lock()

    def read(self, key: CellKey) -> Any:
        self._ensure_open()
        values = self._client.read_all_values(key.collection_name)
        row, column = self._locate(values, key)
        return valor_en(values, row, column)

    def write(self, key: CellKey, value: Any) -> None:
        self._ensure_open()
        values = self._client.read_all_values(key.collection_name)
        row, column = self._locate(values, key)
        a1 = notacion_a1(row, column)
        logger.debug("Escribiendo %s en %s!%s", key, key.collection_name, a1)
        self._client.update_cell(key.collection_name, a1, value)

    def _locate(self, values: list[list[Any]], key: CellKey) -> tuple[int, int]:
        position = localizar_celda(
            values,
            id_column=self._config.id_column,
            entity_id=key.entity_id,
            field_id=key.field_id,
        )
        if position is None:
            raise SheetsCellNotFoundError(f"Celda no encontrada: {key}")
        return position

    def _ensure_open(self) -> None:
        with self._open_lock:
            if getattr(self._client, "is_open", True):
                return
            self._client.open_spreadsheet(Path(self._config.credentials_path), self._config.spreadsheet_id)
