from __future__ import annotations

import json
import sys

import pytest

from prodtrack.bootstrap.container import build_container
from prodtrack.bootstrap.settings import Settings
from prodtrack.entrypoints import cli
from tests.fakes import InMemoryCellStore, title_key


@pytest.fixture(autouse=True)
def _restore_excepthook(monkeypatch):
    monkeypatch.setattr(sys, "excepthook", sys.excepthook)


def _container(store: InMemoryCellStore):
    return build_container(Settings(sheets=None), cell_store=store)


def _update_args(original: str, value: str, *extra: str) -> list[str]:
    return [
        "update",
        "--collection",
        "productions",
        "--entity",
        "e1",
        "--field",
        "title",
        "--original",
        original,
        "--value",
        value,
        *extra,
    ]


def test_update_committed_exits_zero(capsys) -> None:
    store = InMemoryCellStore({title_key(): "Old"})

    exit_code = cli.main(_update_args("Old", "A Title"), container=_container(store))

    output = json.loads(capsys.readouterr().out)
    assert exit_code == cli.EXIT_COMMITTED
    assert output["updatedValue"] == "A Title"


def test_update_conflict_exits_one(capsys) -> None:
    store = InMemoryCellStore({title_key(): "A Title"})

    exit_code = cli.main(_update_args("Old", "B Title"), container=_container(store))

    output = json.loads(capsys.readouterr().out)
    assert exit_code == cli.EXIT_CONFLICTED
    assert output["currentValue"] == "A Title"


def test_update_on_conflict_overwrite(capsys) -> None:
    store = InMemoryCellStore({title_key(): "A Title"})

    exit_code = cli.main(_update_args("Old", "B Title", "--on-conflict", "overwrite"), container=_container(store))

    capsys.readouterr()
    assert exit_code == cli.EXIT_COMMITTED
    assert store.values[title_key()] == "B Title"


def test_update_storage_failure_exits_two(capsys) -> None:
    exit_code = cli.main(_update_args("Old", "x"), container=_container(InMemoryCellStore()))

    capsys.readouterr()
    assert exit_code == cli.EXIT_FAILED


def test_update_invalid_input_exits_three(capsys) -> None:
    exit_code = cli.main(
        ["update", "--collection", " ", "--entity", "e1", "--field", "title", "--value", "x"],
        container=_container(InMemoryCellStore()),
    )

    assert json.loads(capsys.readouterr().out)["errorKind"] == "validation"
    assert exit_code == cli.EXIT_INVALID


def test_batch_partial_exits_one(tmp_path, capsys) -> None:
    store = InMemoryCellStore({title_key("e1"): "Old", title_key("e2"): "Server"})
    batch_file = tmp_path / "updates.json"
    batch_file.write_text(
        json.dumps(
            {
                "updates": [
                    {"collectionName": "productions", "entityId": "e1", "fieldId": "title", "originalValue": "Old", "newValue": "New"},
                    {"collectionName": "productions", "entityId": "e2", "fieldId": "title", "originalValue": "Stale", "newValue": "Mine"},
                ]
            }
        ),
        encoding="utf-8",
    )

    exit_code = cli.main(["batch", "--file", str(batch_file)], container=_container(store))

    output = json.loads(capsys.readouterr().out)
    assert exit_code == cli.EXIT_CONFLICTED
    assert output["totalUpdated"] == 1


def test_batch_missing_file_is_invalid(tmp_path, capsys) -> None:
    exit_code = cli.main(["batch", "--file", str(tmp_path / "nope.json")], container=_container(InMemoryCellStore()))

    capsys.readouterr()
    assert exit_code == cli.EXIT_INVALID


def test_unconfigured_sheets_exits_two(capsys) -> None:
    exit_code = cli.main(_update_args("Old", "x"))

    assert exit_code == cli.EXIT_FAILED
    assert "PRODTRACK_SPREADSHEET_ID" in capsys.readouterr().err


def test_unknown_resolution_is_rejected_by_argparse() -> None:
    with pytest.raises(SystemExit):
        cli.main(_update_args("Old", "x", "--on-conflict", "merge"), container=_container(InMemoryCellStore()))
