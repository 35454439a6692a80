from __future__ import annotations

import pytest

from prodtrack.core.errors import ValidationError
from prodtrack.domain.cells import (
    BatchOutcome,
    CellKey,
    Committed,
    ConflictRecord,
    Conflicted,
    Failed,
    ResolutionChoice,
    UpdateIntent,
)


def test_cell_key_strips_components_and_is_hashable() -> None:
    key = CellKey(" productions ", "e1", " title")

    assert key == CellKey("productions", "e1", "title")
    assert {key: 1}[CellKey("productions", "e1", "title")] == 1
    assert str(key) == "productions|e1/title"


@pytest.mark.parametrize("args", [("", "e1", "title"), ("productions", "  ", "title"), ("productions", "e1", None)])
def test_cell_key_rejects_blank_components(args) -> None:
    with pytest.raises(ValidationError):
        CellKey(*args)


def test_with_force_keeps_value_and_request_id() -> None:
    intent = UpdateIntent(CellKey("productions", "e1", "title"), "Old", "New")

    forced = intent.with_force()

    assert forced.force is True
    assert forced.new_value == "New"
    assert forced.request_id == intent.request_id
    assert intent.force is False


def test_conflict_record_replays_attempted_value() -> None:
    conflict = ConflictRecord(
        key=CellKey("productions", "e1", "title"),
        client_original_value="Old",
        server_current_value="A Title",
        attempted_value="B Title",
    )

    intent = conflict.to_intent()

    assert intent.original_value == "Old"
    assert intent.new_value == "B Title"
    assert conflict.detected_at.tzinfo is not None


def test_resolution_choice_parse() -> None:
    assert ResolutionChoice.parse("Keep_Server") is ResolutionChoice.KEEP_SERVER
    assert ResolutionChoice.parse(ResolutionChoice.OVERWRITE) is ResolutionChoice.OVERWRITE
    with pytest.raises(ValidationError):
        ResolutionChoice.parse("merge")


def test_batch_outcome_helpers() -> None:
    conflict = ConflictRecord(CellKey("c", "e", "f"), "a", "b")
    outcome = BatchOutcome(per_item=(Committed("x"), Conflicted(conflict), Failed("boom"), Committed("y")))

    assert outcome.overall_success is False
    assert outcome.committed_count == 2
    assert outcome.conflicted_indexes() == [1]
    assert outcome.failed_indexes() == [2]
    assert outcome.conflicts() == [conflict]
    assert BatchOutcome(per_item=(Committed("x"),)).overall_success is True
