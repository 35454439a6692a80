from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from prodtrack.core.errors import ValidationError


def _require_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} debe ser texto.", field=field_name)
    cleaned = value.strip()
    if not cleaned:
        raise ValidationError(f"{field_name} no puede estar vacío.", field=field_name)
    return cleaned


@dataclass(frozen=True)
class CellKey:
    collection_name: str
    entity_id: str
    field_id: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "collection_name", _require_text(self.collection_name, "collectionName"))
        object.__setattr__(self, "entity_id", _require_text(self.entity_id, "entityId"))
        object.__setattr__(self, "field_id", _require_text(self.field_id, "fieldId"))

    def __str__(self) -> str:
        return f"{self.collection_name}|{self.entity_id}/{self.field_id}"


def new_request_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class UpdateIntent:
    key: CellKey
    original_value: Any
    new_value: Any
    force: bool = False
    request_id: str = field(default_factory=new_request_id)

    def with_force(self) -> "UpdateIntent":
        return replace(self, force=True)


@dataclass(frozen=True)
class ConflictRecord:
    key: CellKey
    client_original_value: Any
    server_current_value: Any
    detected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    attempted_value: Any = None

    def to_intent(self, *, force: bool = False) -> UpdateIntent:
        return UpdateIntent(
            key=self.key,
            original_value=self.client_original_value,
            new_value=self.attempted_value,
            force=force,
        )


class FailureKind(str, Enum):
    STORAGE = "storage"
    VALIDATION = "validation"
    TRANSPORT = "transport"
    INTERNAL = "internal"


@dataclass(frozen=True)
class Committed:
    new_value: Any


@dataclass(frozen=True)
class Conflicted:
    conflict: ConflictRecord


@dataclass(frozen=True)
class Failed:
    reason: str
    kind: FailureKind = FailureKind.INTERNAL
    retryable: bool = False
    incident_id: str | None = None


UpdateOutcome = Union[Committed, Conflicted, Failed]


class ResolutionChoice(str, Enum):
    OVERWRITE = "overwrite"
    KEEP_SERVER = "keep_server"
    EDIT_AGAIN = "edit_again"

    @classmethod
    def parse(cls, raw: Any) -> "ResolutionChoice":
        if isinstance(raw, cls):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError as exc:
            raise ValidationError(f"Opción de resolución desconocida: {raw!r}", field="resolution") from exc


BatchIntent = tuple[UpdateIntent, ...]


@dataclass(frozen=True)
class BatchOutcome:
    per_item: tuple[UpdateOutcome, ...]

    @property
    def overall_success(self) -> bool:
        return all(isinstance(outcome, Committed) for outcome in self.per_item)

    @property
    def committed_count(self) -> int:
        return sum(1 for outcome in self.per_item if isinstance(outcome, Committed))

    def conflicted_indexes(self) -> list[int]:
        return [index for index, outcome in enumerate(self.per_item) if isinstance(outcome, Conflicted)]

    def failed_indexes(self) -> list[int]:
        return [index for index, outcome in enumerate(self.per_item) if isinstance(outcome, Failed)]

    def conflicts(self) -> list[ConflictRecord]:
        return [outcome.conflict for outcome in self.per_item if isinstance(outcome, Conflicted)]
