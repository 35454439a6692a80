from __future__ import annotations

import copy
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from prodtrack.core.metrics import MetricsRegistry, metrics_registry
from prodtrack.domain.cells import CellKey, Committed, Conflicted, Failed, UpdateOutcome
from prodtrack.domain.ports import QueryCachePort, QueryKey
from prodtrack.domain.values import values_equal

logger = logging.getLogger(__name__)

Mutator = Callable[[Any], Any]

ID_FIELD = "id"


def _matches_entity(record: Any, entity_id: str) -> bool:
    return isinstance(record, dict) and str(record.get(ID_FIELD, "")).strip() == entity_id


def _records_of(data: Any) -> list[Any] | None:
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get("items"), list):
        return data["items"]
    return None


def contains_entity(data: Any, entity_id: str) -> bool:
    if _matches_entity(data, entity_id):
        return True
    records = _records_of(data)
    return records is not None and any(_matches_entity(record, entity_id) for record in records)


def read_cell(data: Any, key: CellKey) -> tuple[bool, Any]:
    """(encontrado, valor) del campo de la entidad dentro de los datos cacheados."""
    if _matches_entity(data, key.entity_id):
        return key.field_id in data, data.get(key.field_id)
    for record in _records_of(data) or ():
        if _matches_entity(record, key.entity_id):
            return key.field_id in record, record.get(key.field_id)
    return False, None


def cell_mutator(key: CellKey, value: Any) -> Mutator:
    """Mutator que fija ``key.field_id`` en el registro de la entidad.

    Entiende registros sueltos (vista de detalle), listas de registros y
    páginas ``{"items": [...]}`` (vistas de lista). Otros datos no se tocan.
    """

    def _mutate(data: Any) -> Any:
        if _matches_entity(data, key.entity_id):
            data[key.field_id] = value
            return data
        for record in _records_of(data) or ():
            if _matches_entity(record, key.entity_id):
                record[key.field_id] = value
        return data

    return _mutate


@dataclass(frozen=True)
class LocalSnapshot:
    query_key: QueryKey
    previous: Any
    applied: Any = None
    cell_key: CellKey | None = None
    guessed_value: Any = None
    sequence: int | None = None


class OptimisticCacheReconciler:
    def __init__(self, cache: QueryCachePort, *, metrics: MetricsRegistry = metrics_registry) -> None:
        self._cache = cache
        self._metrics = metrics
        # Secuencias globales: una clave liberada nunca reutiliza un número en vuelo.
        self._counter = itertools.count(1)
        self._latest: dict[CellKey, int] = {}

    @property
    def cache(self) -> QueryCachePort:
        return self._cache

    def begin_edit(self, cell_key: CellKey) -> int:
        sequence = next(self._counter)
        self._latest[cell_key] = sequence
        return sequence

    def latest_sequence(self, cell_key: CellKey) -> int:
        return self._latest.get(cell_key, 0)

    def pending_keys(self) -> int:
        return len(self._latest)

    def release(self, cell_key: CellKey, sequence: int) -> None:
        """Olvida la celda si ``sequence`` sigue siendo su última edición."""
        if self._latest.get(cell_key) == sequence:
            del self._latest[cell_key]

    def is_current(self, snapshot: LocalSnapshot) -> bool:
        if snapshot.cell_key is None or snapshot.sequence is None:
            return True
        return self._latest.get(snapshot.cell_key) == snapshot.sequence

    def apply_optimistic(
        self,
        query_key: QueryKey,
        mutator: Mutator,
        *,
        cell_key: CellKey | None = None,
        guessed_value: Any = None,
        sequence: int | None = None,
    ) -> LocalSnapshot:
        if not self._cache.contains(query_key):
            raise KeyError(f"La consulta {query_key!r} no está en caché")
        previous = copy.deepcopy(self._cache.get(query_key))
        applied = mutator(copy.deepcopy(previous))
        self._cache.set(query_key, applied)
        return LocalSnapshot(
            query_key=query_key,
            previous=previous,
            applied=copy.deepcopy(applied),
            cell_key=cell_key,
            guessed_value=guessed_value,
            sequence=sequence,
        )

    def commit(self, query_key: QueryKey, outcome: UpdateOutcome, snapshot: LocalSnapshot) -> None:
        if not isinstance(outcome, Committed):
            raise ValueError("Solo se confirma un resultado Committed")
        if snapshot.cell_key is None or values_equal(outcome.new_value, snapshot.guessed_value):
            return
        if not self._cache.contains(query_key):
            return
        authoritative = cell_mutator(snapshot.cell_key, outcome.new_value)
        self._cache.set(query_key, authoritative(copy.deepcopy(self._cache.get(query_key))))

    def rollback(self, query_key: QueryKey, snapshot: LocalSnapshot) -> None:
        """Restaura la entrada tal y como estaba antes de la edición.

        Si otra edición tocó la misma entrada mientras tanto, solo se revierte
        la celda propia para no pisar el valor optimista ajeno.
        """
        current = self._cache.get(query_key) if self._cache.contains(query_key) else None
        if snapshot.cell_key is None or current is None or current == snapshot.applied:
            self._cache.set(query_key, copy.deepcopy(snapshot.previous))
        else:
            found, previous_value = read_cell(snapshot.previous, snapshot.cell_key)
            if found:
                self._cache.set(query_key, cell_mutator(snapshot.cell_key, previous_value)(copy.deepcopy(current)))
        self._metrics.incrementar("cache.rollback")

    def settle(self, outcome: UpdateOutcome, snapshots: Iterable[LocalSnapshot]) -> bool:
        """Aplica el resultado a la caché e invalida las consultas tocadas.

        Devuelve False si la edición fue reemplazada por otra más reciente de la
        misma celda; en ese caso la caché optimista nueva no se toca.
        """
        snapshots = list(snapshots)
        current = all(self.is_current(snapshot) for snapshot in snapshots)
        try:
            if not current:
                self._metrics.incrementar("cache.stale_outcome")
                logger.info("Resultado descartado: edición reemplazada por otra más reciente")
            elif isinstance(outcome, Committed):
                for snapshot in snapshots:
                    self.commit(snapshot.query_key, outcome, snapshot)
            elif isinstance(outcome, (Conflicted, Failed)):
                for snapshot in reversed(snapshots):
                    self.rollback(snapshot.query_key, snapshot)
        finally:
            self.invalidate(snapshot.query_key for snapshot in snapshots)
            if current:
                for snapshot in snapshots:
                    if snapshot.cell_key is not None and snapshot.sequence is not None:
                        self.release(snapshot.cell_key, snapshot.sequence)
        return current

    def invalidate(self, query_keys: Iterable[QueryKey]) -> None:
        seen: set[QueryKey] = set()
        for query_key in query_keys:
            if query_key in seen:
                continue
            seen.add(query_key)
            self._cache.invalidate(query_key)
