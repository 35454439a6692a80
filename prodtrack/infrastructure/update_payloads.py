from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from prodtrack.core.errors import ValidationError
from prodtrack.domain.cells import (
    BatchIntent,
    BatchOutcome,
    CellKey,
    Committed,
    ConflictRecord,
    Conflicted,
    Failed,
    FailureKind,
    UpdateIntent,
    UpdateOutcome,
    new_request_id,
)

STATUS_OK = 200
STATUS_BAD_REQUEST = 400
STATUS_CONFLICT = 409
STATUS_INTERNAL = 500
STATUS_BAD_GATEWAY = 502
STATUS_UNAVAILABLE = 503


class CellUpdatePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    collection_name: str = Field(alias="collectionName", min_length=1)
    entity_id: str = Field(alias="entityId", min_length=1)
    field_id: str = Field(alias="fieldId", min_length=1)
    original_value: Any = Field(default=None, alias="originalValue")
    new_value: Any = Field(alias="newValue")
    force: bool = False
    request_id: str | None = Field(default=None, alias="requestId")

    def to_intent(self) -> UpdateIntent:
        return UpdateIntent(
            key=CellKey(self.collection_name, self.entity_id, self.field_id),
            original_value=self.original_value,
            new_value=self.new_value,
            force=self.force,
            request_id=self.request_id or new_request_id(),
        )


class BatchUpdatePayload(BaseModel):
    updates: list[CellUpdatePayload]

    def to_batch(self) -> BatchIntent:
        return tuple(update.to_intent() for update in self.updates)


def _first_error_message(exc: PydanticValidationError) -> tuple[str, str | None]:
    errors = exc.errors()
    if not errors:
        return "Petición inválida.", None
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"Campo inválido {location}: {first.get('msg', '')}".strip(), location or None


def intent_from_payload(payload: Mapping[str, Any]) -> UpdateIntent:
    try:
        return CellUpdatePayload.model_validate(payload).to_intent()
    except PydanticValidationError as exc:
        message, location = _first_error_message(exc)
        raise ValidationError(message, field=location) from exc


def batch_from_payload(payload: Mapping[str, Any]) -> BatchIntent:
    try:
        return BatchUpdatePayload.model_validate(payload).to_batch()
    except PydanticValidationError as exc:
        message, location = _first_error_message(exc)
        raise ValidationError(message, field=location) from exc


def intent_to_payload(intent: UpdateIntent) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "collectionName": intent.key.collection_name,
        "entityId": intent.key.entity_id,
        "fieldId": intent.key.field_id,
        "originalValue": intent.original_value,
        "newValue": intent.new_value,
        "requestId": intent.request_id,
    }
    if intent.force:
        payload["force"] = True
    return payload


def batch_to_payload(batch: Sequence[UpdateIntent]) -> dict[str, Any]:
    return {"updates": [intent_to_payload(intent) for intent in batch]}


def failure_status(failure: Failed) -> int:
    if failure.kind is FailureKind.VALIDATION:
        return STATUS_BAD_REQUEST
    if failure.kind is FailureKind.INTERNAL:
        return STATUS_INTERNAL
    if failure.retryable:
        return STATUS_UNAVAILABLE
    return STATUS_BAD_GATEWAY


def outcome_to_response(intent: UpdateIntent, outcome: UpdateOutcome) -> tuple[int, dict[str, Any]]:
    if isinstance(outcome, Committed):
        return STATUS_OK, {"success": True, "updatedValue": outcome.new_value, "requestId": intent.request_id}
    if isinstance(outcome, Conflicted):
        conflict = outcome.conflict
        return STATUS_CONFLICT, {
            "success": False,
            "conflict": True,
            "error": "conflict",
            "message": "La celda fue modificada por otro usuario.",
            "currentValue": conflict.server_current_value,
            "originalValue": conflict.client_original_value,
            "detectedAt": conflict.detected_at.isoformat(),
            "requestId": intent.request_id,
        }
    body: dict[str, Any] = {
        "success": False,
        "error": outcome.reason,
        "errorKind": outcome.kind.value,
        "retryable": outcome.retryable,
        "requestId": intent.request_id,
    }
    if outcome.incident_id:
        body["incidentId"] = outcome.incident_id
    return failure_status(outcome), body


def _parse_detected_at(raw: Any) -> datetime:
    if isinstance(raw, str) and raw:
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            pass
    return datetime.now(timezone.utc)


def _failure_kind_for_status(status_code: int, raw_kind: Any) -> FailureKind:
    try:
        return FailureKind(raw_kind)
    except ValueError:
        pass
    if status_code in (STATUS_BAD_REQUEST, 422):
        return FailureKind.VALIDATION
    if status_code > STATUS_INTERNAL:
        return FailureKind.STORAGE
    return FailureKind.INTERNAL


def outcome_from_response(intent: UpdateIntent, status_code: int, body: Mapping[str, Any] | None) -> UpdateOutcome:
    body = body or {}
    if status_code == STATUS_CONFLICT or body.get("conflict") is True:
        return Conflicted(
            conflict=ConflictRecord(
                key=intent.key,
                client_original_value=body.get("originalValue", intent.original_value),
                server_current_value=body.get("currentValue"),
                detected_at=_parse_detected_at(body.get("detectedAt")),
                attempted_value=intent.new_value,
            )
        )
    if 200 <= status_code < 300 and body.get("success") is True:
        return Committed(new_value=body.get("updatedValue", intent.new_value))
    return Failed(
        reason=str(body.get("error") or f"HTTP {status_code}"),
        kind=_failure_kind_for_status(status_code, body.get("errorKind")),
        retryable=bool(body.get("retryable", status_code == STATUS_UNAVAILABLE)),
        incident_id=body.get("incidentId"),
    )


def _item_body(intent: UpdateIntent, outcome: UpdateOutcome) -> dict[str, Any]:
    _, body = outcome_to_response(intent, outcome)
    body.update(
        {
            "collectionName": intent.key.collection_name,
            "entityId": intent.key.entity_id,
            "fieldId": intent.key.field_id,
        }
    )
    return body


def batch_outcome_to_response(batch: Sequence[UpdateIntent], outcome: BatchOutcome) -> dict[str, Any]:
    results = [_item_body(intent, item) for intent, item in zip(batch, outcome.per_item)]
    conflicts = [
        {
            "collectionName": intent.key.collection_name,
            "entityId": intent.key.entity_id,
            "fieldId": intent.key.field_id,
            "originalValue": item.conflict.client_original_value,
            "currentValue": item.conflict.server_current_value,
            "newValue": intent.new_value,
        }
        for intent, item in zip(batch, outcome.per_item)
        if isinstance(item, Conflicted)
    ]
    return {
        "success": outcome.overall_success,
        "results": results,
        "conflicts": conflicts,
        "totalUpdated": outcome.committed_count,
    }


def _item_status(body: Mapping[str, Any]) -> int:
    if body.get("success") is True:
        return STATUS_OK
    if body.get("conflict") is True:
        return STATUS_CONFLICT
    kind = body.get("errorKind")
    if kind == FailureKind.VALIDATION.value:
        return STATUS_BAD_REQUEST
    if kind == FailureKind.INTERNAL.value:
        return STATUS_INTERNAL
    return STATUS_UNAVAILABLE if body.get("retryable") else STATUS_BAD_GATEWAY


def batch_outcome_from_response(batch: Sequence[UpdateIntent], body: Mapping[str, Any]) -> BatchOutcome:
    results = body.get("results")
    if not isinstance(results, list) or len(results) != len(batch):
        raise ValidationError("La respuesta del lote no corresponde a las actualizaciones enviadas.")
    return BatchOutcome(
        per_item=tuple(
            outcome_from_response(intent, _item_status(result), result) for intent, result in zip(batch, results)
        )
    )
