from __future__ import annotations

import logging
from typing import Any, Sequence

import httpx

from prodtrack.core.errors import ValidationError
from prodtrack.domain.cells import BatchOutcome, Failed, FailureKind, UpdateIntent, UpdateOutcome
from prodtrack.domain.ports import BatchTransportPort, UpdateTransportPort
from prodtrack.infrastructure.update_payloads import (
    batch_outcome_from_response,
    batch_to_payload,
    intent_to_payload,
    outcome_from_response,
)

logger = logging.getLogger(__name__)

CELL_PATH = "/api/cells"
BATCH_PATH = "/api/cells/batch"
DEFAULT_TIMEOUT_SECONDS = 30.0


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {"error": response.text or f"HTTP {response.status_code}"}
    return body if isinstance(body, dict) else {"error": str(body)}


class HttpUpdateTransport(UpdateTransportPort, BatchTransportPort):
    """Client side of the cell update wire contract.

    Network errors become ``Failed(kind=transport)``; retrying them is left to
    the caller.
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    @classmethod
    def for_base_url(cls, base_url: str, *, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> "HttpUpdateTransport":
        return cls(httpx.AsyncClient(base_url=base_url, timeout=timeout))

    async def aclose(self) -> None:
        await self._client.aclose()

    async def apply(self, intent: UpdateIntent) -> UpdateOutcome:
        try:
            response = await self._client.put(CELL_PATH, json=intent_to_payload(intent))
        except httpx.HTTPError as exc:
            logger.warning("Fallo de red enviando %s: %s", intent.key, exc)
            return Failed(reason=f"Error de red: {exc}", kind=FailureKind.TRANSPORT, retryable=True)
        return outcome_from_response(intent, response.status_code, _json_body(response))

    async def apply_batch(self, batch: Sequence[UpdateIntent]) -> BatchOutcome:
        intents = tuple(batch)
        try:
            response = await self._client.post(BATCH_PATH, json=batch_to_payload(intents))
        except httpx.HTTPError as exc:
            logger.warning("Fallo de red enviando lote de %s celdas: %s", len(intents), exc)
            failure = Failed(reason=f"Error de red: {exc}", kind=FailureKind.TRANSPORT, retryable=True)
            return BatchOutcome(per_item=tuple(failure for _ in intents))
        body = _json_body(response)
        if response.status_code != 200:
            failure = outcome_from_response(intents[0], response.status_code, body) if intents else None
            if not isinstance(failure, Failed):
                failure = Failed(reason=str(body.get("error") or f"HTTP {response.status_code}"))
            return BatchOutcome(per_item=tuple(failure for _ in intents))
        try:
            return batch_outcome_from_response(intents, body)
        except ValidationError as exc:
            failure = Failed(reason=str(exc), kind=FailureKind.TRANSPORT)
            return BatchOutcome(per_item=tuple(failure for _ in intents))
