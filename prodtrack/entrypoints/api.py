"""HTTP surface for cell updates: ``PUT /api/cells`` and ``POST /api/cells/batch``."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from prodtrack.bootstrap.container import AppContainer
from prodtrack.core.errors import ValidationError
from prodtrack.core.observability import OperationContext
from prodtrack.core.operational_logging import generate_incident_id, log_operational_error
from prodtrack.infrastructure.update_payloads import (
    STATUS_BAD_REQUEST,
    STATUS_INTERNAL,
    STATUS_OK,
    batch_from_payload,
    batch_outcome_to_response,
    intent_from_payload,
    outcome_to_response,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cells", tags=["cells"])


def get_container(request: Request) -> AppContainer:
    return request.app.state.container


@router.put("")
async def update_cell(
    payload: Annotated[dict[str, Any], Body()],
    container: Annotated[AppContainer, Depends(get_container)],
) -> JSONResponse:
    """Actualiza una celda con comprobación de valor original (409 si otro usuario la cambió)."""
    intent = intent_from_payload(payload)
    outcome = await container.controller.submit(intent)
    status_code, body = outcome_to_response(intent, outcome)
    return JSONResponse(status_code=status_code, content=body)


@router.post("/batch")
async def update_cells_batch(
    payload: Annotated[dict[str, Any], Body()],
    container: Annotated[AppContainer, Depends(get_container)],
) -> JSONResponse:
    """Cada ítem se resuelve por separado; la respuesta siempre es 200."""
    batch = batch_from_payload(payload)
    outcome = await container.batch_coordinator.submit_batch(batch)
    return JSONResponse(status_code=STATUS_OK, content=batch_outcome_to_response(batch, outcome))


async def _validation_error_handler(_request: Request, exc: ValidationError) -> JSONResponse:
    body: dict[str, Any] = {"success": False, "error": str(exc), "errorKind": "validation", "retryable": False}
    if exc.field:
        body["field"] = exc.field
    return JSONResponse(status_code=STATUS_BAD_REQUEST, content=body)


async def _request_validation_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = str(errors[0].get("msg", "Petición inválida.")) if errors else "Petición inválida."
    return JSONResponse(
        status_code=STATUS_BAD_REQUEST,
        content={"success": False, "error": message, "errorKind": "validation", "retryable": False},
    )


async def _unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    incident_id = generate_incident_id()
    log_operational_error(
        "Error inesperado atendiendo petición HTTP",
        exc=exc,
        extra={"path": request.url.path, "method": request.method},
        incident_id=incident_id,
    )
    return JSONResponse(
        status_code=STATUS_INTERNAL,
        content={
            "success": False,
            "error": "Error interno inesperado.",
            "errorKind": "internal",
            "retryable": False,
            "incidentId": incident_id,
        },
    )


def create_app(container: AppContainer) -> FastAPI:
    app = FastAPI(title="prodtrack")
    app.state.container = container
    app.include_router(router)
    app.add_exception_handler(ValidationError, _validation_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unexpected_error_handler)

    @app.middleware("http")
    async def _correlation_scope(request: Request, call_next: Any) -> Any:
        with OperationContext(f"http {request.method} {request.url.path}"):
            return await call_next(request)

    return app
