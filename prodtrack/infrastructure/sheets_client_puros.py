from __future__ import annotations

from typing import Any


def extraer_worksheet_desde_operacion(operation_name: str) -> str | None:
    start = operation_name.find("(")
    end = operation_name.rfind(")")
    if start < 0 or end <= start:
        return None
    worksheet_name = operation_name[start + 1 : end].split(",", 1)[0].strip()
    return worksheet_name or None


def resolver_spreadsheet_id(spreadsheet_id: str | None, spreadsheet: Any | None) -> str | None:
    if spreadsheet_id:
        return spreadsheet_id
    if spreadsheet is None:
        return None
    return getattr(spreadsheet, "id", None)


def calcular_backoff_lectura(intento: int, base_segundos: float = 1) -> float:
    return base_segundos * (2 ** (intento - 1))


def calcular_backoff_escritura(intento: int, base_segundos: float = 1) -> float:
    return base_segundos * (2 ** (intento - 1))


def debe_reintentar(intento: int, max_intentos: int) -> bool:
    return intento < max_intentos


def letra_columna(indice: int) -> str:
    """Índice de columna base 0 a letra A1 (0 -> A, 25 -> Z, 26 -> AA)."""
    if indice < 0:
        raise ValueError("indice no puede ser negativo")
    letras = ""
    actual = indice
    while actual >= 0:
        letras = chr(65 + (actual % 26)) + letras
        actual = actual // 26 - 1
    return letras


def notacion_a1(fila: int, columna: int) -> str:
    """Fila y columna base 0 a notación A1 (la fila 0 es la cabecera, 1 en la hoja)."""
    return f"{letra_columna(columna)}{fila + 1}"


def normalizar_cabecera(valor: Any) -> str:
    return str(valor or "").strip().lower()


def localizar_columna(cabeceras: list[Any], field_id: str) -> int | None:
    buscado = normalizar_cabecera(field_id)
    for indice, cabecera in enumerate(cabeceras):
        if normalizar_cabecera(cabecera) == buscado:
            return indice
    return None


def localizar_celda(
    valores: list[list[Any]],
    *,
    id_column: str,
    entity_id: str,
    field_id: str,
) -> tuple[int, int] | None:
    """Devuelve (fila, columna) base 0 de la celda o None si no existe.

    La primera fila es la cabecera. Si la cabecera no contiene la columna de id
    se usa la primera columna.
    """
    if not valores:
        return None
    cabeceras = valores[0]
    columna = localizar_columna(cabeceras, field_id)
    if columna is None:
        return None
    columna_id = localizar_columna(cabeceras, id_column)
    if columna_id is None:
        columna_id = 0
    buscado = str(entity_id).strip()
    for fila, celdas in enumerate(valores[1:], start=1):
        if columna_id < len(celdas) and str(celdas[columna_id]).strip() == buscado:
            return fila, columna
    return None


def valor_en(valores: list[list[Any]], fila: int, columna: int) -> str:
    celdas = valores[fila] if fila < len(valores) else []
    if columna >= len(celdas):
        return ""
    valor = celdas[columna]
    return "" if valor is None else str(valor)
