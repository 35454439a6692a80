from __future__ import annotations

import sys

from prodtrack.bootstrap.exception_handler import manejar_excepcion_global
from prodtrack.entrypoints.cli import EXIT_FAILED, main


try:
    raise SystemExit(main())
except SystemExit:
    raise
except Exception:  # noqa: BLE001
    exc_type, exc_value, exc_traceback = sys.exc_info()
    if exc_type is None or exc_value is None:
        raise SystemExit(EXIT_FAILED)
    incident_id = manejar_excepcion_global(exc_type, exc_value, exc_traceback)
    sys.stderr.write(f"Error inesperado. ID de incidente: {incident_id}\n")
    raise SystemExit(EXIT_FAILED)
