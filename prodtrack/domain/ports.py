from __future__ import annotations

from pathlib import Path
from typing import Any, Awaitable, Callable, Hashable, Iterable, Protocol, Union

from prodtrack.domain.cells import BatchIntent, BatchOutcome, CellKey, ConflictRecord, ResolutionChoice, UpdateIntent, UpdateOutcome
from prodtrack.domain.models import SheetsConfig

QueryKey = tuple[Hashable, ...]

ConflictPolicy = Callable[[ConflictRecord], Union[ResolutionChoice, str, Awaitable[Union[ResolutionChoice, str]]]]


class CellStorePort(Protocol):
    """Lectura/escritura de una única celda. Las llamadas pueden bloquear."""

    def read(self, key: CellKey) -> Any:
        ...

    def write(self, key: CellKey, value: Any) -> None:
        ...


class UpdateTransportPort(Protocol):
    async def apply(self, intent: UpdateIntent) -> UpdateOutcome:
        ...


class BatchTransportPort(Protocol):
    async def apply_batch(self, batch: BatchIntent) -> BatchOutcome:
        ...


class QueryCachePort(Protocol):
    def get(self, query_key: QueryKey) -> Any:
        ...

    def contains(self, query_key: QueryKey) -> bool:
        ...

    def set(self, query_key: QueryKey, data: Any) -> None:
        ...

    def remove(self, query_key: QueryKey) -> None:
        ...

    def keys(self) -> Iterable[QueryKey]:
        ...

    def invalidate(self, query_key: QueryKey) -> None:
        ...


class SheetsConfigStorePort(Protocol):
    def load(self) -> SheetsConfig | None:
        ...

    def save(self, config: SheetsConfig) -> SheetsConfig:
        ...

    def credentials_path(self) -> Path:
        ...


class SheetsClientPort(Protocol):
    def open_spreadsheet(self, credentials_path: Path, spreadsheet_id: str):
        ...

    def read_all_values(self, worksheet_name: str) -> list[list[str]]:
        ...

    def update_cell(self, worksheet_name: str, a1_notation: str, value: Any) -> None:
        ...
