from __future__ import annotations

import json
from typing import Any


def normalize_cell_value(value: Any) -> str:
    """Forma canónica con la que se comparan valores de celda.

    La hoja devuelve las celdas vacías como "" y los números ya renderizados
    como texto, así que None y "" son equivalentes y 5 coincide con "5".
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, sort_keys=True, ensure_ascii=False, default=str)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def values_equal(left: Any, right: Any) -> bool:
    return normalize_cell_value(left) == normalize_cell_value(right)
