from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Sequence

from prodtrack.application.conflict_resolution import ConflictResolutionController
from prodtrack.core.metrics import MetricsRegistry, metrics_registry
from prodtrack.core.observability import OperationContext, log_event
from prodtrack.core.operational_logging import generate_incident_id, log_operational_error
from prodtrack.domain.cells import (
    BatchIntent,
    BatchOutcome,
    CellKey,
    Conflicted,
    Failed,
    FailureKind,
    UpdateIntent,
    UpdateOutcome,
)
from prodtrack.domain.ports import BatchTransportPort, ConflictPolicy

logger = logging.getLogger(__name__)


def group_by_key(batch: Sequence[UpdateIntent]) -> dict[CellKey, list[int]]:
    """Índices de cada clave en orden de envío."""
    groups: dict[CellKey, list[int]] = {}
    for index, intent in enumerate(batch):
        groups.setdefault(intent.key, []).append(index)
    return groups


class BatchCoordinator:
    """Fans a batch out to the controller, one independent submission per item.

    Distinct keys run concurrently; repeated keys run one after another in the
    order they were submitted. A failing item never blocks or undoes its
    siblings.

    With a ``batch_transport`` the whole batch travels in one round trip and
    only the conflicting items go back through the policy.
    """

    def __init__(
        self,
        controller: ConflictResolutionController,
        *,
        batch_transport: BatchTransportPort | None = None,
        metrics: MetricsRegistry = metrics_registry,
    ) -> None:
        self._controller = controller
        self._batch_transport = batch_transport
        self._metrics = metrics

    async def submit_batch(self, batch: Iterable[UpdateIntent], policy: ConflictPolicy | None = None) -> BatchOutcome:
        intents: BatchIntent = tuple(batch)
        if not intents:
            return BatchOutcome(per_item=())
        with OperationContext("cell_batch_update"):
            if self._batch_transport is not None:
                per_item = list((await self._batch_transport.apply_batch(intents)).per_item)
                if policy is not None:
                    await self._resolve_in_place(intents, per_item, policy)
            else:
                per_item = await self._submit_each(intents, policy)
            outcome = BatchOutcome(per_item=tuple(per_item))
            self._report(outcome)
        return outcome

    async def resolve_conflicts(
        self,
        batch: Iterable[UpdateIntent],
        outcome: BatchOutcome,
        policy: ConflictPolicy,
    ) -> BatchOutcome:
        """Vuelve a pasar por la política solo los ítems en conflicto."""
        intents: BatchIntent = tuple(batch)
        if len(intents) != len(outcome.per_item):
            raise ValueError("El resultado no corresponde al lote indicado.")
        per_item = list(outcome.per_item)
        with OperationContext("cell_batch_resolution"):
            await self._resolve_in_place(intents, per_item, policy)
            resolved = BatchOutcome(per_item=tuple(per_item))
            self._report(resolved)
        return resolved

    async def _submit_each(self, intents: BatchIntent, policy: ConflictPolicy | None) -> list[UpdateOutcome]:
        results: list[UpdateOutcome | None] = [None] * len(intents)

        async def _run_group(indexes: list[int]) -> None:
            for index in indexes:
                intent = intents[index]
                results[index] = await self._isolated(intent, lambda: self._controller.submit(intent, policy))

        await asyncio.gather(*(_run_group(indexes) for indexes in group_by_key(intents).values()))
        return [result for result in results if result is not None]

    async def _resolve_in_place(self, intents: BatchIntent, per_item: list[UpdateOutcome], policy: ConflictPolicy) -> None:
        groups: dict[CellKey, list[int]] = {}
        for index, item in enumerate(per_item):
            if isinstance(item, Conflicted):
                groups.setdefault(intents[index].key, []).append(index)

        async def _resolve_group(indexes: list[int]) -> None:
            for index in indexes:
                item = per_item[index]
                if isinstance(item, Conflicted):
                    per_item[index] = await self._isolated(
                        intents[index], lambda: self._controller.resolve(item.conflict, policy)
                    )

        await asyncio.gather(*(_resolve_group(indexes) for indexes in groups.values()))

    @staticmethod
    async def _isolated(intent: UpdateIntent, submission: Callable[[], Awaitable[UpdateOutcome]]) -> UpdateOutcome:
        """Un error de un ítem queda como Failed de ese ítem; el resto del lote sigue."""
        try:
            return await submission()
        except Exception as exc:  # noqa: BLE001
            incident_id = generate_incident_id()
            log_operational_error(
                "Error en un ítem del lote de actualización",
                exc=exc,
                extra={"cell": str(intent.key), "request_id": intent.request_id},
                incident_id=incident_id,
            )
            return Failed(reason=str(exc) or type(exc).__name__, kind=FailureKind.INTERNAL, incident_id=incident_id)

    def _report(self, outcome: BatchOutcome) -> None:
        self._metrics.incrementar("batch.items", len(outcome.per_item))
        log_event(
            logger,
            "cell_batch_finished",
            {
                "items": len(outcome.per_item),
                "committed": outcome.committed_count,
                "conflicted": len(outcome.conflicted_indexes()),
                "failed": len(outcome.failed_indexes()),
                "overall_success": outcome.overall_success,
            },
        )
