from __future__ import annotations

import logging
import uuid
from typing import Any

from prodtrack.core.observability import get_correlation_id, get_request_id

operational_logger = logging.getLogger("prodtrack.operational_error")


def generate_incident_id() -> str:
    return f"INC-{uuid.uuid4().hex[:12].upper()}"


def log_operational_error(
    message: str,
    *,
    exc: BaseException,
    extra: dict[str, Any] | None = None,
    incident_id: str | None = None,
) -> None:
    metadata = dict(extra or {})
    correlation_id = metadata.get("correlation_id") or get_correlation_id()
    if correlation_id:
        metadata["correlation_id"] = correlation_id
    request_id = metadata.get("request_id") or get_request_id()
    if request_id:
        metadata["request_id"] = request_id
    if incident_id:
        metadata["incident_id"] = incident_id
    operational_logger.error(
        message,
        exc_info=(type(exc), exc, exc.__traceback__),
        extra={"correlation_id": correlation_id, "incident_id": incident_id, "extra": metadata},
    )
