from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from prodtrack.application.conflict_resolution import fixed_policy
from prodtrack.bootstrap.container import AppContainer, build_container
from prodtrack.bootstrap.logging import configure_logging, install_exception_hook
from prodtrack.bootstrap.settings import resolve_log_dir
from prodtrack.core.errors import AppError, ValidationError
from prodtrack.domain.cells import BatchOutcome, Committed, Conflicted, Failed, FailureKind, ResolutionChoice, UpdateOutcome
from prodtrack.infrastructure.update_payloads import (
    batch_from_payload,
    batch_outcome_to_response,
    intent_from_payload,
    outcome_to_response,
)

EXIT_COMMITTED = 0
EXIT_CONFLICTED = 1
EXIT_FAILED = 2
EXIT_INVALID = 3

logger = logging.getLogger("prodtrack.cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="prodtrack", description="Actualización de celdas con control de conflictos")
    subparsers = parser.add_subparsers(dest="command", required=True)

    update = subparsers.add_parser("update", help="Actualiza una celda")
    update.add_argument("--collection", required=True, help="Colección (hoja)")
    update.add_argument("--entity", required=True, help="ID de la entidad (fila)")
    update.add_argument("--field", required=True, help="Campo (columna)")
    update.add_argument("--original", default=None, help="Valor que el cliente leyó")
    update.add_argument("--value", required=True, help="Nuevo valor")
    update.add_argument("--force", action="store_true", help="Escribe sin comprobar el valor original")
    update.add_argument(
        "--on-conflict",
        choices=[choice.value for choice in ResolutionChoice],
        default=None,
        help="Resolución automática si hay conflicto",
    )

    batch = subparsers.add_parser("batch", help="Aplica un lote de actualizaciones desde un JSON")
    batch.add_argument("--file", required=True, type=Path, help='Fichero con {"updates": [...]}')
    batch.add_argument(
        "--on-conflict",
        choices=[choice.value for choice in ResolutionChoice],
        default=None,
        help="Resolución automática para cada ítem en conflicto",
    )

    serve = subparsers.add_parser("serve", help="Arranca la API HTTP")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    return parser


def exit_code_for(outcome: UpdateOutcome) -> int:
    if isinstance(outcome, Committed):
        return EXIT_COMMITTED
    if isinstance(outcome, Conflicted):
        return EXIT_CONFLICTED
    if isinstance(outcome, Failed) and outcome.kind is FailureKind.VALIDATION:
        return EXIT_INVALID
    return EXIT_FAILED


def batch_exit_code_for(outcome: BatchOutcome) -> int:
    if outcome.overall_success:
        return EXIT_COMMITTED
    if outcome.committed_count == 0 and not outcome.conflicted_indexes():
        return EXIT_FAILED
    return EXIT_CONFLICTED


def _write_json(payload: dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")


def _read_batch_file(path: Path) -> dict[str, Any]:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ValidationError(f"No se pudo leer el lote {path}: {exc}", field="file") from exc
    if not isinstance(raw, dict):
        raise ValidationError("El lote debe ser un objeto JSON con la clave 'updates'.", field="file")
    return raw


async def _run_update(args: argparse.Namespace, container: AppContainer) -> int:
    intent = intent_from_payload(
        {
            "collectionName": args.collection,
            "entityId": args.entity,
            "fieldId": args.field,
            "originalValue": args.original,
            "newValue": args.value,
            "force": args.force,
        }
    )
    policy = fixed_policy(args.on_conflict) if args.on_conflict else None
    outcome = await container.controller.submit(intent, policy)
    _, body = outcome_to_response(intent, outcome)
    _write_json(body)
    return exit_code_for(outcome)


async def _run_batch(args: argparse.Namespace, container: AppContainer) -> int:
    batch = batch_from_payload(_read_batch_file(args.file))
    policy = fixed_policy(args.on_conflict) if args.on_conflict else None
    outcome = await container.batch_coordinator.submit_batch(batch, policy)
    _write_json(batch_outcome_to_response(batch, outcome))
    return batch_exit_code_for(outcome)


def _serve(args: argparse.Namespace, container: AppContainer) -> int:
    import uvicorn

    from prodtrack.entrypoints.api import create_app

    uvicorn.run(create_app(container), host=args.host, port=args.port)
    return EXIT_COMMITTED


def main(argv: list[str] | None = None, *, container: AppContainer | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    log_dir = resolve_log_dir()
    configure_logging(log_dir)
    install_exception_hook(log_dir)

    try:
        resolved_container = container or build_container()
    except AppError as exc:
        logger.error("No se pudo inicializar prodtrack: %s", exc)
        sys.stderr.write(f"{exc}\n")
        return EXIT_FAILED

    if args.command == "serve":
        return _serve(args, resolved_container)

    runner = _run_update if args.command == "update" else _run_batch
    try:
        return asyncio.run(runner(args, resolved_container))
    except ValidationError as exc:
        logger.warning("Entrada inválida: %s", exc)
        _write_json({"success": False, "error": str(exc), "errorKind": FailureKind.VALIDATION.value})
        return EXIT_INVALID


if __name__ == "__main__":
    raise SystemExit(main())
