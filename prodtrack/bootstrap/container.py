from __future__ import annotations

from dataclasses import dataclass

from prodtrack.application.batch_coordinator import BatchCoordinator
from prodtrack.application.cache_reconciler import OptimisticCacheReconciler
from prodtrack.application.cas_guard import CompareAndSwapGuard
from prodtrack.application.cell_editor import CellEditor
from prodtrack.application.conflict_resolution import ConflictResolutionController
from prodtrack.bootstrap.settings import Settings, load_settings
from prodtrack.domain.ports import BatchTransportPort, CellStorePort, QueryCachePort, UpdateTransportPort
from prodtrack.domain.sheets_errors import SheetsConfigError
from prodtrack.infrastructure.gspread_cell_store import GspreadCellStore
from prodtrack.infrastructure.http_transport import HttpUpdateTransport
from prodtrack.infrastructure.local_config import SheetsConfigStore
from prodtrack.infrastructure.query_cache import InMemoryQueryCache
from prodtrack.infrastructure.sheets_client import SheetsClient


@dataclass
class AppContainer:
    settings: Settings
    cell_store: CellStorePort
    guard: CompareAndSwapGuard
    controller: ConflictResolutionController
    batch_coordinator: BatchCoordinator


@dataclass
class ClientContainer:
    transport: UpdateTransportPort
    controller: ConflictResolutionController
    batch_coordinator: BatchCoordinator
    reconciler: OptimisticCacheReconciler
    editor: CellEditor


def build_container(settings: Settings | None = None, *, cell_store: CellStorePort | None = None) -> AppContainer:
    resolved_settings = settings or load_settings(SheetsConfigStore())
    if cell_store is None:
        if not resolved_settings.is_configured or resolved_settings.sheets is None:
            raise SheetsConfigError(
                "Falta configurar PRODTRACK_SPREADSHEET_ID y PRODTRACK_CREDENTIALS_PATH (o config.json)."
            )
        cell_store = GspreadCellStore(SheetsClient(), resolved_settings.sheets)

    guard = CompareAndSwapGuard(cell_store)
    controller = ConflictResolutionController(guard)
    return AppContainer(
        settings=resolved_settings,
        cell_store=cell_store,
        guard=guard,
        controller=controller,
        batch_coordinator=BatchCoordinator(controller),
    )


def build_client(
    transport: UpdateTransportPort | None = None,
    *,
    batch_transport: BatchTransportPort | None = None,
    cache: QueryCachePort | None = None,
    settings: Settings | None = None,
) -> ClientContainer:
    if transport is None:
        resolved_settings = settings or load_settings()
        http_transport = HttpUpdateTransport.for_base_url(resolved_settings.api_base_url)
        transport = http_transport
        batch_transport = batch_transport or http_transport
    controller = ConflictResolutionController(transport)
    batch_coordinator = BatchCoordinator(controller, batch_transport=batch_transport)
    reconciler = OptimisticCacheReconciler(cache if cache is not None else InMemoryQueryCache())
    return ClientContainer(
        transport=transport,
        controller=controller,
        batch_coordinator=batch_coordinator,
        reconciler=reconciler,
        editor=CellEditor(reconciler, controller, batch_coordinator),
    )
