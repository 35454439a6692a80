from __future__ import annotations

import json
from dataclasses import dataclass

import gspread
from google.auth.exceptions import DefaultCredentialsError, TransportError

from prodtrack.core.errors import InfraError
from prodtrack.domain.sheets_errors import (
    SheetsApiDisabledError,
    SheetsConfigError,
    SheetsCredentialsError,
    SheetsNotFoundError,
    SheetsPermissionError,
    SheetsRateLimitError,
)


class SheetsClientError(InfraError):
    pass


@dataclass(frozen=True)
class _ApiErrorRule:
    error_type: type[InfraError]
    message: str
    status_codes: frozenset[int]
    markers: tuple[str, ...]

    def matches(self, text_lower: str, status_code: int | None) -> bool:
        if status_code in self.status_codes:
            return True
        return any(marker in text_lower for marker in self.markers)


# El orden importa: una API deshabilitada también llega como 403.
_API_ERROR_RULES = (
    _ApiErrorRule(
        SheetsRateLimitError,
        "Límite de Google Sheets alcanzado. Espera 1 minuto y reintenta.",
        frozenset({429, 500, 503}),
        ("[429]", "resource_exhausted", "rate_limit_exceeded", "quota exceeded", "requests per minute per user"),
    ),
    _ApiErrorRule(
        SheetsApiDisabledError,
        "La API de Google Sheets no está habilitada en el proyecto de Google Cloud.",
        frozenset(),
        ("google sheets api has not been used", "it is disabled"),
    ),
    _ApiErrorRule(
        SheetsNotFoundError,
        "El Spreadsheet ID no es válido o la pestaña no existe.",
        frozenset({404}),
        ("[404]", "requested entity was not found"),
    ),
    _ApiErrorRule(
        SheetsPermissionError,
        "La hoja no está compartida con la cuenta de servicio.",
        frozenset({403}),
        ("[403]", "permission_denied"),
    ),
)


def classify_api_error(text_lower: str, status_code: int | None) -> InfraError:
    for rule in _API_ERROR_RULES:
        if rule.matches(text_lower, status_code):
            return rule.error_type(rule.message)
    return SheetsConfigError(text_lower)


def _api_error_details(ex: gspread.exceptions.APIError) -> tuple[str, int | None]:
    response = getattr(ex, "response", None)
    text = getattr(response, "text", "") or str(ex)
    return text.strip().lower(), getattr(response, "status_code", None)


def _credentials_error(ex: Exception) -> SheetsCredentialsError:
    if isinstance(ex, FileNotFoundError):
        where = f" en {ex.filename}" if ex.filename else ""
        return SheetsCredentialsError(f"No se encuentra credentials.json{where}.")
    return SheetsCredentialsError("El credentials.json no es válido. Revisa el contenido del archivo.")


def map_gspread_exception(ex: Exception) -> InfraError:
    """Traduce errores de gspread/google-auth a la taxonomía de errores de hojas.

    Los errores de transporte se tratan como transitorios (mismo tipo que el
    rate limit) para que el cliente los reintente con backoff.
    """
    if isinstance(ex, InfraError):
        return ex
    if isinstance(ex, gspread.exceptions.WorksheetNotFound):
        return SheetsNotFoundError(f"No existe la pestaña {ex}.")
    if isinstance(ex, gspread.exceptions.APIError):
        return classify_api_error(*_api_error_details(ex))
    if isinstance(ex, TransportError):
        return SheetsRateLimitError("No se pudo contactar con Google Sheets. Reintenta en unos segundos.")
    if isinstance(ex, (FileNotFoundError, json.JSONDecodeError, DefaultCredentialsError)):
        return _credentials_error(ex)
    if isinstance(ex, AttributeError):
        return SheetsClientError(str(ex))
    return SheetsConfigError(str(ex))
