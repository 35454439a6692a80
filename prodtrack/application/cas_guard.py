from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from prodtrack.application.key_locks import KeyedLockTable
from prodtrack.core.errors import InfraError, is_retryable
from prodtrack.core.metrics import MetricsRegistry, medir_tiempo, metrics_registry
from prodtrack.core.observability import log_event
from prodtrack.core.operational_logging import generate_incident_id, log_operational_error
from prodtrack.domain.cells import (
    CellKey,
    Committed,
    ConflictRecord,
    Conflicted,
    Failed,
    FailureKind,
    UpdateIntent,
    UpdateOutcome,
)
from prodtrack.domain.ports import CellStorePort, UpdateTransportPort
from prodtrack.domain.values import values_equal

logger = logging.getLogger(__name__)

BlockingRunner = Callable[..., Awaitable[Any]]


class CompareAndSwapGuard(UpdateTransportPort):
    """Server-side compare-and-swap over a store that only offers read and write.

    The read-compare-write section for a key runs under that key's lock, so two
    intents carrying the same stale original can never both pass the check.
    Different keys proceed independently.
    """

    def __init__(
        self,
        store: CellStorePort,
        *,
        locks: KeyedLockTable[CellKey] | None = None,
        run_blocking: BlockingRunner = asyncio.to_thread,
        metrics: MetricsRegistry = metrics_registry,
    ) -> None:
        self._store = store
        self._locks: KeyedLockTable[CellKey] = locks if locks is not None else KeyedLockTable()
        self._run_blocking = run_blocking
        self._metrics = metrics

    @property
    def locks(self) -> KeyedLockTable[CellKey]:
        return self._locks

    @medir_tiempo("cas.apply")
    async def apply(self, intent: UpdateIntent) -> UpdateOutcome:
        async with self._locks.hold(intent.key):
            # La llamada al store sigue en su hilo aunque se cancele quien espera:
            # el lock no se suelta hasta que termina.
            task = asyncio.ensure_future(self._apply_locked(intent))
            try:
                outcome = await asyncio.shield(task)
            except asyncio.CancelledError:
                await _wait_until_done(task)
                logger.info("Actualización de %s cancelada tras terminar la escritura en curso", intent.key)
                raise
        self._metrics.incrementar(f"cas.{type(outcome).__name__.lower()}")
        return outcome

    async def _apply_locked(self, intent: UpdateIntent) -> UpdateOutcome:
        try:
            current = await self._run_blocking(self._store.read, intent.key)
            if not intent.force and not values_equal(current, intent.original_value):
                return self._conflict(intent, current)
            await self._run_blocking(self._store.write, intent.key, intent.new_value)
        except InfraError as exc:
            log_operational_error(
                "Fallo de almacenamiento aplicando actualización de celda",
                exc=exc,
                extra={"cell": str(intent.key), "request_id": intent.request_id, "force": intent.force},
            )
            return Failed(reason=str(exc), kind=FailureKind.STORAGE, retryable=is_retryable(exc))
        except Exception as exc:  # noqa: BLE001
            incident_id = generate_incident_id()
            log_operational_error(
                "Error interno aplicando actualización de celda",
                exc=exc,
                extra={"cell": str(intent.key), "request_id": intent.request_id},
                incident_id=incident_id,
            )
            return Failed(
                reason=f"Error interno. ID de incidente: {incident_id}",
                kind=FailureKind.INTERNAL,
                incident_id=incident_id,
            )
        logger.debug("Celda %s actualizada (force=%s)", intent.key, intent.force)
        return Committed(new_value=intent.new_value)

    @staticmethod
    def _conflict(intent: UpdateIntent, current: Any) -> Conflicted:
        conflict = ConflictRecord(
            key=intent.key,
            client_original_value=intent.original_value,
            server_current_value=current,
            attempted_value=intent.new_value,
        )
        log_event(
            logger,
            "cas_conflict_detected",
            {
                "cell": str(intent.key),
                "request_id": intent.request_id,
                "original_value": intent.original_value,
                "current_value": current,
            },
        )
        return Conflicted(conflict=conflict)


async def _wait_until_done(task: asyncio.Future[Any]) -> None:
    while not task.done():
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            continue
