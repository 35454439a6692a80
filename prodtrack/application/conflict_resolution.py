from __future__ import annotations

import inspect
import logging

from prodtrack.core.metrics import MetricsRegistry, metrics_registry
from prodtrack.core.observability import OperationContext, log_event
from prodtrack.domain.cells import (
    Committed,
    ConflictRecord,
    Conflicted,
    Failed,
    ResolutionChoice,
    UpdateIntent,
    UpdateOutcome,
)
from prodtrack.domain.ports import ConflictPolicy, UpdateTransportPort

logger = logging.getLogger(__name__)


def fixed_policy(choice: ResolutionChoice | str) -> ConflictPolicy:
    resolved = ResolutionChoice.parse(choice)

    def _policy(_conflict: ConflictRecord) -> ResolutionChoice:
        return resolved

    return _policy


async def ask_policy(policy: ConflictPolicy, conflict: ConflictRecord) -> ResolutionChoice:
    raw_choice = policy(conflict)
    if inspect.isawaitable(raw_choice):
        raw_choice = await raw_choice
    return ResolutionChoice.parse(raw_choice)


class ConflictResolutionController:
    """Submits update intents and applies exactly one resolution step on conflict.

    Without a policy a conflict is returned unresolved; with one, the policy is
    consulted once and there is no retry loop beyond the forced resubmission
    that ``overwrite`` implies.
    """

    def __init__(self, transport: UpdateTransportPort, *, metrics: MetricsRegistry = metrics_registry) -> None:
        self._transport = transport
        self._metrics = metrics

    async def submit(self, intent: UpdateIntent, policy: ConflictPolicy | None = None) -> UpdateOutcome:
        with OperationContext("cell_update", request_id=intent.request_id):
            outcome = await self._transport.apply(intent)
            if isinstance(outcome, (Committed, Failed)):
                return outcome
            if policy is None:
                return outcome
            return await self._resolve(intent, outcome, policy)

    async def resolve(self, conflict: ConflictRecord, policy: ConflictPolicy) -> UpdateOutcome:
        intent = conflict.to_intent()
        with OperationContext("cell_conflict_resolution", request_id=intent.request_id):
            return await self._resolve(intent, Conflicted(conflict=conflict), policy)

    async def _resolve(self, intent: UpdateIntent, conflicted: Conflicted, policy: ConflictPolicy) -> UpdateOutcome:
        conflict = conflicted.conflict
        choice = await ask_policy(policy, conflict)
        self._metrics.incrementar(f"resolution.{choice.value}")
        log_event(
            logger,
            "conflict_resolution_chosen",
            {
                "cell": str(conflict.key),
                "request_id": intent.request_id,
                "choice": choice.value,
            },
        )
        if choice is ResolutionChoice.OVERWRITE:
            forced_outcome = await self._transport.apply(intent.with_force())
            if isinstance(forced_outcome, Conflicted):
                logger.warning("Conflicto inesperado tras forzar la escritura de %s", conflict.key)
            return forced_outcome
        if choice is ResolutionChoice.KEEP_SERVER:
            return Committed(new_value=conflict.server_current_value)
        return conflicted
