from __future__ import annotations

import inspect
from collections import Counter, defaultdict
from contextlib import contextmanager
from functools import wraps
from threading import Lock
from time import perf_counter
from typing import Any, Callable, Iterator


def _resumen(muestras: list[float]) -> dict[str, float]:
    if not muestras:
        return {"count": 0, "last": 0.0, "avg": 0.0, "max": 0.0}
    return {
        "count": len(muestras),
        "last": muestras[-1],
        "avg": sum(muestras) / len(muestras),
        "max": max(muestras),
    }


class MetricsRegistry:
    """Contadores y tiempos en memoria del proceso (cas.*, batch.*, cache.*)."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._counters: Counter[str] = Counter()
        self._timings: defaultdict[str, list[float]] = defaultdict(list)

    def contador(self, nombre: str) -> int:
        with self._lock:
            return self._counters[nombre]

    def incrementar(self, nombre: str, valor: int = 1) -> None:
        with self._lock:
            self._counters[nombre] += valor

    def registrar_tiempo(self, nombre: str, milisegundos: float) -> None:
        with self._lock:
            self._timings[nombre].append(milisegundos)

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._timings.clear()

    def snapshot(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            counters = dict(self._counters)
            timings = {nombre: _resumen(muestras) for nombre, muestras in self._timings.items()}
        return {"counters": counters, "timings_ms": timings}


metrics_registry = MetricsRegistry()


@contextmanager
def _cronometro(nombre_metrica: str) -> Iterator[None]:
    inicio = perf_counter()
    try:
        yield
    finally:
        metrics_registry.registrar_tiempo(nombre_metrica, (perf_counter() - inicio) * 1000)


def medir_tiempo(nombre_metrica: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Mide cada llamada; en corutinas el tiempo incluye todo lo esperado dentro."""

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        if inspect.iscoroutinefunction(func):

            @wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                with _cronometro(nombre_metrica):
                    return await func(*args, **kwargs)

            return async_wrapper

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            with _cronometro(nombre_metrica):
                return func(*args, **kwargs)

        return wrapper

    return decorator
