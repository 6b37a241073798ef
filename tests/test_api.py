"""Tests for the FastAPI application endpoints."""
from __future__ import annotations

from bson import ObjectId
from fastapi.testclient import TestClient

from musa.api.app import create_app
from musa.api.auth import Principal
from musa.domain.errors import Unauthorized

TOKEN = "secret-token"


def _create(client, **body):
    return client.post("/api/v1/Contents", json={"token": TOKEN, **body})


def test_health(client) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_translation_group_scenario(client, database) -> None:
    created = _create(client, title="Colosseo", lang="it", _maps_to_=["lang"])
    assert created.status_code == 200
    body = created.json()
    assert body["request"] == "create"
    assert body["status"] == 1
    map_id = body["map_id"]
    it_id = body["_id"]

    child = client.get(f"/api/v1/Contents/map/lang/it/{map_id}").json()
    assert child["status"] == 1
    assert child["found"] == {"value": "it", "docID": it_id}

    duplicate = _create(client, title="Copia", lang="it", _maps_to_=[map_id])
    assert duplicate.status_code == 400
    assert duplicate.json()["status"] == -1
    assert duplicate.json()["err"] == {"kind": "conflict", "message": "it already in MAP"}

    french = _create(client, title="Colisee", lang="fr", _maps_to_=[map_id])
    assert french.json()["status"] == 1
    assert french.json()["map_id"] == map_id
    maps = database["maps"].storage
    assert len(maps) == 1 and len(maps[0]["children"]) == 2

    document = client.get(f"/api/v1/Contents/map/lang/fr/{map_id}/document").json()
    assert document["found"]["title"] == "Colisee"
    assert document["found"]["_maps_to_"] == [map_id]

    deleted = client.delete(f"/api/v1/Contents/{it_id}/{TOKEN}")
    assert deleted.json() == {"request": "delete", "status": 1, "id": it_id}
    assert [child["value"] for child in maps[0]["children"]] == ["fr"]


def test_find_by_id_and_key(client) -> None:
    doc_id = _create(client, title="Colosseo", lang="it").json()["_id"]

    found = client.get(f"/api/V1/Contents/id/{doc_id}").json()
    assert found["found"]["_id"] == doc_id

    by_key = client.get("/api/v1/Contents/key/lang/it").json()
    assert [doc["_id"] for doc in by_key["found"]] == [doc_id]
    assert client.get("/api/v1/Contents/key/lang/de").json()["found"] == []

    everything = client.get("/api/v1/Contents").json()
    assert everything["request"] == "find" and len(everything["found"]) == 1


def test_find_missing_id_is_client_error(client) -> None:
    response = client.get(f"/api/v1/Contents/id/{ObjectId()}")
    assert response.status_code == 400
    assert response.json()["status"] == -1
    assert response.json()["err"]["kind"] == "not_found"


def test_unknown_model_version_and_filter(client) -> None:
    assert client.get("/api/v1/Unknown").status_code == 400
    assert client.get("/api/v1/Maps").status_code == 400
    response = client.get("/api/v9/Contents")
    assert response.status_code == 400
    assert response.json()["err"]["message"] == "Unsupported version v9"
    assert client.get("/api/v1/Contents/tag/x").json()["err"]["kind"] == "malformed_request"
    assert client.get("/api/v1/Contents/map/lang/it").status_code == 400


def test_writes_require_token(client, database) -> None:
    missing = client.post("/api/v1/Contents", json={"title": "x"})
    assert missing.status_code == 401
    assert missing.json()["request"] == "authenticate"

    wrong = client.post("/api/v1/Contents", json={"title": "x", "token": "nope"})
    assert wrong.status_code == 401
    assert database["contents"].storage == []

    doc_id = _create(client, title="Colosseo").json()["_id"]
    assert client.delete(f"/api/v1/Contents/{doc_id}").status_code == 401
    assert client.delete(f"/api/v1/Contents/{doc_id}?token={TOKEN}").json()["status"] == 1


def test_token_is_not_stored(client, database) -> None:
    _create(client, title="Colosseo")
    assert "token" not in database["contents"].storage[0]


def test_update_endpoint(client) -> None:
    doc_id = _create(client, title="Colosseo", lang="it").json()["_id"]
    response = client.put(f"/api/v1/Contents/{doc_id}", json={"token": TOKEN, "title": "Colosseum"})
    assert response.json() == {"request": "update", "status": 1, "_id": doc_id}

    missing = client.put(f"/api/v1/Contents/{ObjectId()}", json={"token": TOKEN, "title": "x"})
    assert missing.status_code == 400
    assert missing.json()["request"] == "update"


def test_validation_and_body_errors(client) -> None:
    invalid = _create(client, lang="it")
    assert invalid.status_code == 400
    assert invalid.json()["err"]["kind"] == "validation_error"

    not_json = client.post(
        "/api/v1/Contents", content=b"title=x", headers={"content-type": "application/x-www-form-urlencoded"}
    )
    assert not_json.status_code == 400


def test_backend_failure_is_500(client, database) -> None:
    database["contents"].fail_on.add("find")
    response = client.get("/api/v1/Contents")
    assert response.status_code == 500
    assert response.json()["err"]["kind"] == "backend_failure"


def test_filter_without_parameters_is_malformed(client) -> None:
    for path in ("/api/v1/Contents/id", "/api/v1/Contents/key/lang", "/api/v1/Contents/map"):
        response = client.get(path)
        assert response.status_code == 400
        assert response.json()["request"] == "find"
        assert response.json()["status"] == -1
        assert response.json()["err"]["kind"] == "malformed_request"


def test_find_by_key_uses_declared_field_type(client, database) -> None:
    database["pois"].storage.append({"_id": ObjectId(), "name": "Colosseo", "lat": 41.89})

    found = client.get("/api/v1/Pois/key/lat/41.89").json()
    assert [poi["name"] for poi in found["found"]] == ["Colosseo"]

    bad = client.get("/api/v1/Pois/key/lat/north")
    assert bad.status_code == 400
    assert bad.json()["err"]["kind"] == "validation_error"


class _KeyVerifier:
    def __init__(self) -> None:
        self.seen = []

    def verify(self, token):
        self.seen.append(token)
        if token != "museum-key":
            raise Unauthorized("Unauthorized")
        return Principal(subject="curator")


def test_custom_token_verifier(settings, database) -> None:
    verifier = _KeyVerifier()
    client = TestClient(create_app(settings, database=database, verifier=verifier))

    assert client.post("/api/v1/Contents", json={"title": "x", "token": TOKEN}).status_code == 401
    created = client.post("/api/v1/Contents", json={"title": "x", "token": "museum-key"})
    assert created.json()["status"] == 1
    assert client.delete(f"/api/v1/Contents/{created.json()['_id']}/museum-key").json()["status"] == 1
    assert verifier.seen == [TOKEN, "museum-key", "museum-key"]
