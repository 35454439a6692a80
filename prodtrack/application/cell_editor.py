from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from prodtrack.application.batch_coordinator import BatchCoordinator
from prodtrack.application.cache_reconciler import LocalSnapshot, OptimisticCacheReconciler, cell_mutator, contains_entity
from prodtrack.application.conflict_resolution import ConflictResolutionController
from prodtrack.domain.cells import (
    BatchOutcome,
    CellKey,
    ConflictRecord,
    Conflicted,
    Failed,
    UpdateIntent,
    UpdateOutcome,
)
from prodtrack.domain.ports import ConflictPolicy, QueryKey

logger = logging.getLogger(__name__)


def detail_query_key(collection_name: str, entity_id: str) -> QueryKey:
    return ("entity", collection_name, entity_id)


def list_query_key(collection_name: str) -> QueryKey:
    return ("entities", collection_name)


@dataclass(frozen=True)
class EditResult:
    outcome: UpdateOutcome
    stale: bool = False

    @property
    def conflict(self) -> ConflictRecord | None:
        return self.outcome.conflict if isinstance(self.outcome, Conflicted) else None

    @property
    def failure(self) -> Failed | None:
        return self.outcome if isinstance(self.outcome, Failed) else None


@dataclass(frozen=True)
class BatchEditResult:
    outcome: BatchOutcome
    items: tuple[EditResult, ...]

    @property
    def overall_success(self) -> bool:
        return self.outcome.overall_success


class CellEditor:
    """UI-facing edit flow: optimistic cache write, submit, then commit or roll back."""

    def __init__(
        self,
        reconciler: OptimisticCacheReconciler,
        controller: ConflictResolutionController,
        batch_coordinator: BatchCoordinator | None = None,
    ) -> None:
        self._reconciler = reconciler
        self._controller = controller
        self._batch_coordinator = batch_coordinator or BatchCoordinator(controller)

    def affected_query_keys(self, key: CellKey) -> list[QueryKey]:
        cache = self._reconciler.cache
        preferred = [detail_query_key(key.collection_name, key.entity_id), list_query_key(key.collection_name)]
        affected = [query_key for query_key in preferred if cache.contains(query_key)]
        for query_key in cache.keys():
            if query_key in preferred or query_key in affected:
                continue
            if key.collection_name in query_key and contains_entity(cache.get(query_key), key.entity_id):
                affected.append(query_key)
        return affected

    def _apply(self, intent: UpdateIntent) -> tuple[int, list[LocalSnapshot]]:
        sequence = self._reconciler.begin_edit(intent.key)
        mutator = cell_mutator(intent.key, intent.new_value)
        return sequence, [
            self._reconciler.apply_optimistic(
                query_key,
                mutator,
                cell_key=intent.key,
                guessed_value=intent.new_value,
                sequence=sequence,
            )
            for query_key in self.affected_query_keys(intent.key)
        ]

    def _abort(self, intent: UpdateIntent, sequence: int, snapshots: list[LocalSnapshot]) -> None:
        for snapshot in reversed(snapshots):
            if self._reconciler.is_current(snapshot):
                self._reconciler.rollback(snapshot.query_key, snapshot)
        self._reconciler.invalidate(snapshot.query_key for snapshot in snapshots)
        self._reconciler.release(intent.key, sequence)

    def _settle(self, intent: UpdateIntent, sequence: int, snapshots: list[LocalSnapshot], outcome: UpdateOutcome) -> EditResult:
        current = self._reconciler.settle(outcome, snapshots)
        self._reconciler.release(intent.key, sequence)
        return EditResult(outcome=outcome, stale=not current)

    async def edit(self, intent: UpdateIntent, policy: ConflictPolicy | None = None) -> EditResult:
        sequence, snapshots = self._apply(intent)
        try:
            outcome = await self._controller.submit(intent, policy)
        except BaseException:
            self._abort(intent, sequence, snapshots)
            raise
        if isinstance(outcome, Failed):
            logger.warning("Edición de %s fallida: %s", intent.key, outcome.reason)
        return self._settle(intent, sequence, snapshots, outcome)

    async def edit_batch(self, batch: Iterable[UpdateIntent], policy: ConflictPolicy | None = None) -> BatchEditResult:
        intents = tuple(batch)
        applied = [self._apply(intent) for intent in intents]
        try:
            outcome = await self._batch_coordinator.submit_batch(intents, policy)
        except BaseException:
            for intent, (sequence, snapshots) in reversed(list(zip(intents, applied))):
                self._abort(intent, sequence, snapshots)
            raise
        items = tuple(
            self._settle(intent, sequence, snapshots, item_outcome)
            for intent, (sequence, snapshots), item_outcome in zip(intents, applied, outcome.per_item)
        )
        return BatchEditResult(outcome=outcome, items=items)
