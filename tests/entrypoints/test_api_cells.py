from __future__ import annotations

from fastapi.testclient import TestClient

from prodtrack.bootstrap.container import build_container
from prodtrack.bootstrap.settings import Settings
from prodtrack.domain.sheets_errors import SheetsRateLimitError
from prodtrack.entrypoints.api import create_app
from tests.fakes import InMemoryCellStore, title_key


def _client(store: InMemoryCellStore) -> TestClient:
    return TestClient(create_app(build_container(Settings(sheets=None), cell_store=store)), raise_server_exceptions=False)


def _body(original: str, new: str, **extra) -> dict:
    payload = {"collectionName": "productions", "entityId": "e1", "fieldId": "title", "originalValue": original, "newValue": new}
    payload.update(extra)
    return payload


def test_put_commits() -> None:
    store = InMemoryCellStore({title_key(): "Old"})

    response = _client(store).put("/api/cells", json=_body("Old", "A Title", requestId="req-1"))

    assert response.status_code == 200
    assert response.json() == {"success": True, "updatedValue": "A Title", "requestId": "req-1"}
    assert store.values[title_key()] == "A Title"


def test_put_conflict_returns_409_with_both_values() -> None:
    client = _client(InMemoryCellStore({title_key(): "Old"}))
    client.put("/api/cells", json=_body("Old", "A Title"))

    response = client.put("/api/cells", json=_body("Old", "B Title"))

    body = response.json()
    assert response.status_code == 409
    assert body["conflict"] is True
    assert body["currentValue"] == "A Title"
    assert body["originalValue"] == "Old"
    assert body["detectedAt"]


def test_put_force_overwrites() -> None:
    store = InMemoryCellStore({title_key(): "A Title"})

    response = _client(store).put("/api/cells", json=_body("Old", "B Title", force=True))

    assert response.status_code == 200
    assert store.values[title_key()] == "B Title"


def test_put_invalid_payload_is_400() -> None:
    client = _client(InMemoryCellStore())

    missing_field = client.put("/api/cells", json={"collectionName": "productions", "newValue": "x"})
    not_an_object = client.put("/api/cells", json=["x"])

    assert missing_field.status_code == 400
    assert missing_field.json()["errorKind"] == "validation"
    assert not_an_object.status_code == 400


def test_put_storage_errors_map_to_gateway_statuses() -> None:
    missing = _client(InMemoryCellStore()).put("/api/cells", json=_body("", "x"))
    throttled = _client(InMemoryCellStore({title_key(): "Old"}, fail_on_write=SheetsRateLimitError("cuota"))).put(
        "/api/cells", json=_body("Old", "x")
    )

    assert missing.status_code == 502
    assert throttled.status_code == 503
    assert throttled.json()["retryable"] is True


def test_put_internal_error_returns_incident_id() -> None:
    response = _client(InMemoryCellStore({title_key(): "Old"}, fail_on_read=KeyError("boom"))).put(
        "/api/cells", json=_body("Old", "x")
    )

    assert response.status_code == 500
    assert response.json()["incidentId"].startswith("INC-")


def test_batch_is_always_200_with_per_item_results() -> None:
    store = InMemoryCellStore({title_key("e1"): "Old", title_key("e2"): "Server"})

    response = _client(store).post(
        "/api/cells/batch",
        json={
            "updates": [
                {"collectionName": "productions", "entityId": "e1", "fieldId": "title", "originalValue": "Old", "newValue": "New"},
                {"collectionName": "productions", "entityId": "e2", "fieldId": "title", "originalValue": "Stale", "newValue": "Mine"},
            ]
        },
    )

    body = response.json()
    assert response.status_code == 200
    assert body["success"] is False
    assert body["totalUpdated"] == 1
    assert [result["success"] for result in body["results"]] == [True, False]
    assert body["conflicts"] == [
        {
            "collectionName": "productions",
            "entityId": "e2",
            "fieldId": "title",
            "originalValue": "Stale",
            "currentValue": "Server",
            "newValue": "Mine",
        }
    ]


def test_batch_invalid_payload_is_400() -> None:
    response = _client(InMemoryCellStore()).post("/api/cells/batch", json={"updates": "nope"})

    assert response.status_code == 400
