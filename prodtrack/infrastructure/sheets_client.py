from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, TypeVar

import gspread
from google.auth.exceptions import DefaultCredentialsError, TransportError

from prodtrack.core.operational_logging import log_operational_error
from prodtrack.domain.ports import SheetsClientPort
from prodtrack.domain.sheets_errors import SheetsPermissionError, SheetsRateLimitError
from prodtrack.infrastructure.sheets_client_puros import (
    calcular_backoff_escritura,
    calcular_backoff_lectura,
    debe_reintentar,
    extraer_worksheet_desde_operacion,
    resolver_spreadsheet_id,
)
from prodtrack.infrastructure.sheets_errors import map_gspread_exception

logger = logging.getLogger(__name__)

T = TypeVar("T")

_BASE_BACKOFF_SECONDS = 1


@dataclass(frozen=True)
class _RetryPolicy:
    etiqueta: str
    max_intentos: int
    backoff: Callable[[int, float], float]
    mensaje_agotado: str


_LECTURA = _RetryPolicy(
    etiqueta="lectura",
    max_intentos=5,
    backoff=calcular_backoff_lectura,
    mensaje_agotado="Límite de Google Sheets alcanzado. Espera 1 minuto y reintenta.",
)
_ESCRITURA = _RetryPolicy(
    etiqueta="escritura",
    max_intentos=5,
    backoff=calcular_backoff_escritura,
    mensaje_agotado="Límite de escritura de Google Sheets alcanzado. Espera 1 minuto y reintenta.",
)


class SheetsClient(SheetsClientPort):
    """Cliente gspread compartido por los hilos de trabajo del guard.

    Solo se cachean los handles de las pestañas; los valores se leen siempre
    frescos porque la comparación previa a cada escritura depende de ellos.
    """

    def __init__(self, *, sleep: Callable[[float], None] = time.sleep) -> None:
        self._spreadsheet: gspread.Spreadsheet | None = None
        self._worksheets: dict[str, gspread.Worksheet] = {}
        self._lock = threading.Lock()
        self._sleep = sleep

    @property
    def is_open(self) -> bool:
        return self._spreadsheet is not None

    def open_spreadsheet(self, credentials_path: Path, spreadsheet_id: str) -> gspread.Spreadsheet:
        logger.info("Abriendo hoja %s con credenciales %s", spreadsheet_id, Path(credentials_path).name)
        try:
            gc = gspread.service_account(filename=str(credentials_path))
        except (FileNotFoundError, json.JSONDecodeError, DefaultCredentialsError, ValueError, OSError) as exc:
            raise map_gspread_exception(exc) from exc
        spreadsheet = self._with_rate_limit_retry(
            "open_spreadsheet",
            lambda: gc.open_by_key(spreadsheet_id),
            spreadsheet_id=spreadsheet_id,
        )
        with self._lock:
            self._spreadsheet = spreadsheet
            self._worksheets = {}
        return spreadsheet

    def get_worksheet(self, name: str) -> gspread.Worksheet:
        with self._lock:
            spreadsheet = self._spreadsheet
            worksheet = self._worksheets.get(name)
        if worksheet is not None:
            return worksheet
        if spreadsheet is None:
            raise RuntimeError("Spreadsheet no inicializado. Llama a open_spreadsheet primero.")
        worksheet = self._with_rate_limit_retry(f"spreadsheet.worksheet({name})", lambda: spreadsheet.worksheet(name))
        with self._lock:
            self._worksheets.setdefault(name, worksheet)
        return worksheet

    def read_all_values(self, worksheet_name: str) -> list[list[str]]:
        worksheet = self.get_worksheet(worksheet_name)
        return self._with_rate_limit_retry(f"worksheet.get_all_values({worksheet_name})", worksheet.get_all_values)

    def update_cell(self, worksheet_name: str, a1_notation: str, value: Any) -> None:
        worksheet = self.get_worksheet(worksheet_name)
        self._with_write_retry(
            f"worksheet.update({worksheet_name}, {a1_notation})",
            lambda: worksheet.update(range_name=a1_notation, values=[[value]], value_input_option="RAW"),
        )

    def _with_rate_limit_retry(self, operation_name: str, operation: Callable[[], T], *, spreadsheet_id: str | None = None) -> T:
        return self._retrying(_LECTURA, operation_name, operation, spreadsheet_id)

    def _with_write_retry(self, operation_name: str, operation: Callable[[], T], *, spreadsheet_id: str | None = None) -> T:
        return self._retrying(_ESCRITURA, operation_name, operation, spreadsheet_id)

    def _retrying(
        self,
        policy: _RetryPolicy,
        operation_name: str,
        operation: Callable[[], T],
        spreadsheet_id: str | None,
    ) -> T:
        intento = 1
        while True:
            try:
                return operation()
            except (gspread.exceptions.APIError, TransportError) as exc:
                mapped_error = map_gspread_exception(exc)
                if not isinstance(mapped_error, SheetsRateLimitError):
                    self._handle_permission_error(mapped_error, operation_name, spreadsheet_id)
                    raise mapped_error from exc
                if not debe_reintentar(intento, policy.max_intentos):
                    logger.error("Rate limit persistente en %s de %s tras %s intentos", policy.etiqueta, operation_name, intento)
                    raise SheetsRateLimitError(policy.mensaje_agotado) from exc
                espera = policy.backoff(intento, _BASE_BACKOFF_SECONDS)
                logger.warning(
                    "Rate limit en %s (%s). intento=%s/%s espera=%ss",
                    policy.etiqueta,
                    operation_name,
                    intento,
                    policy.max_intentos,
                    espera,
                )
                self._sleep(espera)
                intento += 1

    def _handle_permission_error(self, mapped_error: Exception, operation_name: str, spreadsheet_id: str | None) -> None:
        if not isinstance(mapped_error, SheetsPermissionError):
            return
        try:
            self._log_permission_error(
                mapped_error,
                spreadsheet_id=resolver_spreadsheet_id(spreadsheet_id, self._spreadsheet),
                worksheet_name=extraer_worksheet_desde_operacion(operation_name),
            )
        except Exception:  # pragma: no cover - el log nunca debe tapar el error original
            logger.exception("No se pudo registrar un error de permisos de Google Sheets")

    @staticmethod
    def _log_permission_error(
        error: SheetsPermissionError,
        *,
        spreadsheet_id: str | None = None,
        worksheet_name: str | None = None,
    ) -> None:
        log_operational_error(
            "Escritura de celda rechazada: permisos insuficientes en Google Sheets",
            exc=error,
            extra={"operation": "sheets_permission_check", "spreadsheet_id": spreadsheet_id, "worksheet": worksheet_name},
        )
