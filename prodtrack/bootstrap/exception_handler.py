from __future__ import annotations

import json
import logging
import traceback
from datetime import datetime, timezone
from types import TracebackType

from prodtrack.bootstrap.logging import CRASH_LOG_NAME
from prodtrack.bootstrap.settings import resolve_log_dir
from prodtrack.core.observability import generate_correlation_id, get_correlation_id, set_correlation_id
from prodtrack.core.operational_logging import generate_incident_id


def _asegurar_correlation_id() -> str:
    actual = get_correlation_id()
    if not actual:
        actual = generate_correlation_id()
        set_correlation_id(actual)
    return actual


def _escribir_fallback_crash_log(
    *,
    incident_id: str,
    correlation_id: str,
    exc_type: type[BaseException],
    exc_value: BaseException,
    exc_traceback: TracebackType | None,
) -> None:
    """Escribe el incidente directamente en crash.log cuando el logging no está disponible."""
    destino = resolve_log_dir()
    destino.mkdir(parents=True, exist_ok=True)
    registro = json.dumps(
        {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": "CRITICAL",
            "incident_id": incident_id,
            "correlation_id": correlation_id,
            "error_type": exc_type.__name__,
            "error_message": str(exc_value),
            "stacktrace": "".join(traceback.format_exception(exc_type, exc_value, exc_traceback)),
        },
        ensure_ascii=False,
    )
    with (destino / CRASH_LOG_NAME).open("a", encoding="utf-8") as fichero:
        fichero.write(registro + "\n")


def manejar_excepcion_global(
    exc_type: type[BaseException], exc_value: BaseException, exc_traceback: TracebackType | None
) -> str:
    """Registra una excepción que llegó hasta el punto de entrada.

    Devuelve el ID de incidente que la CLI muestra por stderr.
    """
    incident_id = generate_incident_id()
    contexto = {"incident_id": incident_id, "correlation_id": _asegurar_correlation_id()}
    try:
        logging.getLogger("prodtrack.global_exception").critical(
            "Excepción no controlada. incident_id=%s",
            incident_id,
            exc_info=(exc_type, exc_value, exc_traceback),
            extra=contexto,
        )
    except Exception:  # noqa: BLE001
        _escribir_fallback_crash_log(
            exc_type=exc_type,
            exc_value=exc_value,
            exc_traceback=exc_traceback,
            **contexto,
        )
    return incident_id
