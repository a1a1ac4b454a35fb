from __future__ import annotations

from datetime import datetime, timezone

from bson import ObjectId
from bson.errors import InvalidDocument
from pymongo.errors import DocumentTooLarge, ServerSelectionTimeoutError

CHILD_ID = ObjectId("65e0e6335dffb466f21a1c01")


def _url(child_id=CHILD_ID) -> str:
    return f"/api/children/{child_id}/events"


def _seed_child(store) -> None:
    store.seed("children", {"_id": CHILD_ID, "firstName": "Lev"})


def _seed_open_block(store) -> ObjectId:
    return store.seed(
        "events",
        {
            "childId": CHILD_ID,
            "type": "sleep_start",
            "startTime": datetime(2024, 1, 1, 20, 0, tzinfo=timezone.utc),
            "source": "manual",
            "createdAt": datetime(2024, 1, 1, 20, 0, tzinfo=timezone.utc),
        },
    )[0]


def test_list_events_returns_sorted_serialized_events(client, store, auth_headers) -> None:
    _seed_child(store)
    caregiver_id = ObjectId()
    parent_id = ObjectId()
    later_id, earlier_id = store.seed(
        "events",
        {
            "childId": CHILD_ID,
            "type": "sleep_start",
            "startTime": datetime(2024, 1, 2, 20, 0, tzinfo=timezone.utc),
        },
        {
            "childId": CHILD_ID,
            "type": "sleep_start",
            "startTime": datetime(2024, 1, 1, 20, 0, tzinfo=timezone.utc),
            "endTime": datetime(2024, 1, 2, 6, 0, tzinfo=timezone.utc),
            "parentEventId": parent_id,
            "source": "manual",
            "meta": {"caregiverId": caregiver_id, "notes": "Bedtime"},
            "createdAt": datetime(2024, 1, 1, 19, 50, tzinfo=timezone.utc),
        },
    )
    store.seed(
        "events",
        {
            "childId": ObjectId(),
            "type": "sleep_start",
            "startTime": datetime(2024, 1, 1, 21, 0, tzinfo=timezone.utc),
        },
    )

    response = client.get(
        _url(),
        params={"from": "2024-01-01T00:00:00Z", "to": "2024-01-03T00:00:00Z", "type": "sleep_start"},
        headers=auth_headers("pro"),
    )

    assert response.status_code == 200
    assert response.headers["x-correlation-id"]
    body = response.json()
    assert body["count"] == 2
    assert body["limit"] == 500
    assert [event["id"] for event in body["events"]] == [str(earlier_id), str(later_id)]
    assert body["events"][0] == {
        "id": str(earlier_id),
        "childId": str(CHILD_ID),
        "type": "sleep_start",
        "startTime": "2024-01-01T20:00:00.000Z",
        "endTime": "2024-01-02T06:00:00.000Z",
        "parentEventId": str(parent_id),
        "source": "manual",
        "meta": {"caregiverId": str(caregiver_id), "notes": "Bedtime"},
        "createdAt": "2024-01-01T19:50:00.000Z",
        "updatedAt": None,
    }

    children_call = store.calls_for("find_one", "children")[0]
    assert children_call[2] == {"_id": CHILD_ID}
    assert children_call[3] == {"_id": 1}
    _, _, query, _, sort, limit = store.calls_for("find", "events")[0]
    assert query == {
        "childId": CHILD_ID,
        "type": "sleep_start",
        "startTime": {
            "$gte": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "$lte": datetime(2024, 1, 3, tzinfo=timezone.utc),
        },
    }
    assert sort == [("startTime", 1), ("_id", 1)]
    assert limit == 500


def test_list_events_rejects_bad_filters_before_db(client, store, auth_headers) -> None:
    cases = [
        ({"type": "unknown"}, "Invalid event type"),
        ({"from": "not-a-date"}, "from must be a valid ISO date"),
        ({"to": "   "}, "to must not be empty"),
        (
            {"from": "2024-01-03T00:00:00Z", "to": "2024-01-01T00:00:00Z"},
            "from must be earlier than to",
        ),
    ]
    for params, message in cases:
        response = client.get(_url(), params=params, headers=auth_headers())
        assert response.status_code == 400, params
        assert response.json() == {"error": message}
    assert store.calls == []


def test_list_events_unknown_child(client, store, auth_headers) -> None:
    response = client.get(_url(), headers=auth_headers())
    assert response.status_code == 404
    assert response.json() == {"error": "Child not found"}


def test_list_events_invalid_child_id(client, auth_headers) -> None:
    response = client.get(_url("not-an-object-id"), headers=auth_headers())
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid childId"}


def test_event_routes_require_pro_role(client, store, auth_headers) -> None:
    _seed_child(store)

    anonymous = client.get(_url())
    assert anonymous.status_code == 401
    assert anonymous.json() == {"error": "Unauthorized"}

    for method in ("get", "post"):
        response = getattr(client, method)(_url(), headers=auth_headers("user"))
        assert response.status_code == 403
        assert response.json() == {"error": "Forbidden"}

    admin = client.get(_url(), headers=auth_headers("admin"))
    assert admin.status_code == 200


def test_create_event_defaults_source(client, store, auth_headers) -> None:
    _seed_child(store)

    response = client.post(
        _url(),
        json={
            "type": "sleep_start",
            "startTime": "2024-01-01T20:00:00Z",
            "endTime": "2024-01-02T06:00:00Z",
        },
        headers=auth_headers(),
    )

    assert response.status_code == 201
    event = response.json()["event"]
    assert event["source"] == "manual"
    assert event["startTime"] == "2024-01-01T20:00:00.000Z"
    assert event["endTime"] == "2024-01-02T06:00:00.000Z"
    assert event["createdAt"]

    inserted = store.calls_for("insert_one", "events")[0][2]
    assert inserted["childId"] == CHILD_ID
    assert inserted["source"] == "manual"
    assert inserted["startTime"] == datetime(2024, 1, 1, 20, 0, tzinfo=timezone.utc)
    assert "parentEventId" not in inserted


def test_create_night_wake_inside_open_block(client, store, auth_headers) -> None:
    _seed_child(store)
    block_id = _seed_open_block(store)

    response = client.post(
        _url(),
        json={
            "type": "night_wake",
            "startTime": "2024-01-02T02:00:00Z",
            "parentEventId": str(block_id),
        },
        headers=auth_headers(),
    )

    assert response.status_code == 201
    assert response.json()["event"]["parentEventId"] == str(block_id)
    parent_lookup = store.calls_for("find_one", "events")[0]
    assert parent_lookup[2] == {"_id": block_id, "childId": CHILD_ID}
    assert parent_lookup[3] == {"_id": 1, "startTime": 1, "endTime": 1}


def test_create_night_wake_before_block_start(client, store, auth_headers) -> None:
    _seed_child(store)
    block_id = _seed_open_block(store)

    response = client.post(
        _url(),
        json={
            "type": "night_wake",
            "startTime": "2024-01-01T10:00:00Z",
            "parentEventId": str(block_id),
        },
        headers=auth_headers(),
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid event payload"
    assert len(body["details"]) == 1
    assert body["details"][0].startswith("startTime:")
    assert store.calls_for("insert_one") == []


def test_create_night_wake_without_parent(client, store, auth_headers) -> None:
    _seed_child(store)

    response = client.post(
        _url(),
        json={"type": "night_wake", "startTime": "2024-01-02T02:00:00Z", "parentEventId": None},
        headers=auth_headers(),
    )

    assert response.status_code == 400
    assert response.json()["details"][0].startswith("type:")


def test_create_rejects_missing_parent_event(client, store, auth_headers) -> None:
    _seed_child(store)
    other_child_block = store.seed(
        "events",
        {
            "childId": ObjectId(),
            "type": "sleep_start",
            "startTime": datetime(2024, 1, 1, 20, 0, tzinfo=timezone.utc),
        },
    )[0]

    response = client.post(
        _url(),
        json={
            "type": "night_wake",
            "startTime": "2024-01-02T02:00:00Z",
            "parentEventId": str(other_child_block),
        },
        headers=auth_headers(),
    )

    assert response.status_code == 400
    assert response.json() == {"error": "parentEventId not found for the provided child"}


def test_create_rejects_parent_without_start_time(client, store, auth_headers) -> None:
    _seed_child(store)
    broken = store.seed("events", {"childId": CHILD_ID, "type": "sleep_start"})[0]

    response = client.post(
        _url(),
        json={"type": "night_wake", "startTime": "2024-01-02T02:00:00Z", "parentEventId": str(broken)},
        headers=auth_headers(),
    )

    assert response.status_code == 500
    assert response.json() == {"error": "Parent event is missing a valid startTime"}


def test_create_rejects_malformed_payloads(client, store, auth_headers) -> None:
    _seed_child(store)
    headers = {**auth_headers(), "content-type": "application/json"}

    invalid_json = client.post(_url(), content="{not json", headers=headers)
    assert invalid_json.status_code == 400
    assert invalid_json.json() == {"error": "Invalid JSON payload"}

    cases = [
        ([1, 2], "Payload must be an object"),
        (
            {"type": "night_wake", "startTime": "2024-01-02T02:00:00Z", "parentEventId": "abc"},
            "parentEventId must be a valid ObjectId",
        ),
        ({"type": "extra", "startTime": "2024-01-02T02:00:00Z", "meta": "notes"}, "meta must be an object"),
    ]
    for payload, message in cases:
        response = client.post(_url(), json=payload, headers=auth_headers())
        assert response.status_code == 400
        assert response.json() == {"error": message}


def test_create_reports_schema_violations(client, store, auth_headers) -> None:
    _seed_child(store)

    response = client.post(
        _url(),
        json={"type": "feeding_solids", "startTime": "2024-01-02T12:00:00Z", "meta": {"nightFeeding": True}},
        headers=auth_headers(),
    )
    assert response.status_code == 400
    assert response.json()["details"] == [
        "meta.nightFeeding: feeding_solids can never be marked as a night feeding"
    ]

    missing = client.post(_url(), json={"type": "extra"}, headers=auth_headers())
    assert missing.status_code == 400
    assert missing.json()["details"][0].startswith("startTime:")


def test_create_unknown_child(client, store, auth_headers) -> None:
    response = client.post(
        _url(),
        json={"type": "sleep_start", "startTime": "2024-01-01T20:00:00Z"},
        headers=auth_headers(),
    )
    assert response.status_code == 404
    assert response.json() == {"error": "Child not found"}


def test_create_unacknowledged_insert(client, store, auth_headers) -> None:
    _seed_child(store)
    store.acknowledge_inserts = False

    response = client.post(
        _url(),
        json={"type": "sleep_start", "startTime": "2024-01-01T20:00:00Z"},
        headers=auth_headers(),
    )
    assert response.status_code == 500
    assert response.json() == {"error": "Failed to persist event"}


def test_database_errors_become_internal_errors(client, store, auth_headers) -> None:
    _seed_child(store)
    store.error = ServerSelectionTimeoutError("no servers")

    listed = client.get(_url(), headers=auth_headers())
    created = client.post(
        _url(),
        json={"type": "sleep_start", "startTime": "2024-01-01T20:00:00Z"},
        headers=auth_headers(),
    )

    for response in (listed, created):
        assert response.status_code == 500
        assert response.json() == {"error": "Internal Server Error"}


def test_encoding_errors_become_json_internal_errors(client, store, auth_headers) -> None:
    _seed_child(store)
    failures = [
        InvalidDocument("cannot encode object"),
        DocumentTooLarge("document too large"),
        UnicodeEncodeError("utf-8", "\ud800", 0, 1, "surrogates not allowed"),
    ]

    for failure in failures:
        store.error = failure
        response = client.post(
            _url(),
            json={"type": "extra", "startTime": "2024-01-01T20:00:00Z"},
            headers={**auth_headers(), "x-correlation-id": "corr-500"},
        )
        assert response.status_code == 500
        assert response.json() == {"error": "Internal Server Error"}
        assert response.headers["x-correlation-id"] == "corr-500"
        assert response.headers["X-Content-Type-Options"] == "nosniff"


def test_create_rejects_non_finite_numbers(client, store, auth_headers) -> None:
    _seed_child(store)

    response = client.post(
        _url(),
        content='{"type": "extra", "startTime": "2024-01-01T20:00:00Z",'
        ' "meta": {"durationMinutes": 1e400}}',
        headers={**auth_headers(), "content-type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["details"][0].startswith("meta.durationMinutes:")
    assert store.calls_for("insert_one") == []
