from __future__ import annotations

import json
import types
from types import SimpleNamespace

from prodtrack.bootstrap import exception_handler


class _LoggerFake:
    def __init__(self, *, fail: bool = False) -> None:
        self.calls: list[dict[str, object]] = []
        self._fail = fail

    def critical(self, message: str, incident_id: str, *, exc_info, extra) -> None:  # noqa: ANN001
        if self._fail:
            raise RuntimeError("handler roto")
        self.calls.append({"message": message, "incident_id": incident_id, "exc_info": exc_info, "extra": extra})


def test_manejar_excepcion_global_loguea_con_incidente(monkeypatch) -> None:
    logger = _LoggerFake()
    monkeypatch.setattr(exception_handler, "logging", SimpleNamespace(getLogger=lambda _name: logger))
    monkeypatch.setattr(exception_handler, "generate_incident_id", lambda: "INC-TEST-123")
    monkeypatch.setattr(exception_handler, "_asegurar_correlation_id", lambda: "corr-001")

    try:
        raise ValueError("fallo esperado")
    except ValueError as exc:
        incident_id = exception_handler.manejar_excepcion_global(ValueError, exc, exc.__traceback__)

    assert incident_id == "INC-TEST-123"
    assert logger.calls[0]["extra"] == {"incident_id": "INC-TEST-123", "correlation_id": "corr-001"}


def test_manejar_excepcion_global_usa_fallback_si_el_log_falla(monkeypatch) -> None:
    fallback_called: dict[str, object] = {}
    monkeypatch.setattr(exception_handler, "logging", SimpleNamespace(getLogger=lambda _name: _LoggerFake(fail=True)))
    monkeypatch.setattr(exception_handler, "generate_incident_id", lambda: "INC-TEST-456")
    monkeypatch.setattr(exception_handler, "_asegurar_correlation_id", lambda: "corr-999")

    def _fake_fallback(**kwargs) -> None:  # noqa: ANN003
        fallback_called.update(kwargs)

    monkeypatch.setattr(exception_handler, "_escribir_fallback_crash_log", _fake_fallback)

    try:
        raise RuntimeError("explota")
    except RuntimeError as exc:
        incident_id = exception_handler.manejar_excepcion_global(RuntimeError, exc, exc.__traceback__)

    assert incident_id == "INC-TEST-456"
    assert fallback_called["correlation_id"] == "corr-999"
    assert fallback_called["exc_type"] is RuntimeError
    assert isinstance(fallback_called["exc_traceback"], types.TracebackType)


def test_fallback_crash_log_escribe_jsonl(monkeypatch, tmp_path) -> None:
    monkeypatch.setattr(exception_handler, "resolve_log_dir", lambda: tmp_path)

    try:
        raise KeyError("x")
    except KeyError as exc:
        exception_handler._escribir_fallback_crash_log(
            incident_id="INC-1",
            correlation_id="corr-1",
            exc_type=KeyError,
            exc_value=exc,
            exc_traceback=exc.__traceback__,
        )

    payload = json.loads((tmp_path / "crash.log").read_text(encoding="utf-8").splitlines()[-1])
    assert payload["incident_id"] == "INC-1"
    assert payload["error_type"] == "KeyError"
