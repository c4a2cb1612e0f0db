import json

import pytest
from fastapi.testclient import TestClient

from voice_intake.api.voice import get_pipeline, get_processing_store
from voice_intake.api_server import app

from tests.conftest import model_answer


@pytest.fixture
def client(pipeline, store):
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    app.dependency_overrides[get_processing_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides = {}


@pytest.fixture
def catalog_json(catalog) -> str:
    return json.dumps([c.model_dump() for c in catalog])


def _post_audio(client, catalog_json, kind="failure", audio=b"voice-bytes"):
    return client.post(
        f"/voice/{kind}",
        files={"audio": ("note.webm", audio, "audio/webm")},
        data={"user_id": "tech-7", "organization_id": "acme", "catalog": catalog_json},
    )


class TestSubmit:

    def test_completed(self, client, catalog_json):
        response = _post_audio(client, catalog_json)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "completed"
        assert body["record"]["entity_id"] == 42
        assert body["record"]["kind"] == "failure"
        assert body["priority"]["priority"] == "P1"
        assert response.headers["X-Request-ID"]

    def test_needs_clarification(self, client, catalog_json, language_model):
        language_model.complete_json.return_value = model_answer(primary_identifier="press")

        body = _post_audio(client, catalog_json).json()

        assert body["status"] == "needs_clarification"
        assert body["outcome"] == "ambiguous"
        assert len(body["shortlist"]) == 3

    def test_failed_run_is_a_result_payload(self, client, catalog_json, language_model):
        language_model.complete_json.return_value = "not json at all"

        response = _post_audio(client, catalog_json)

        assert response.status_code == 200
        assert response.json()["status"] == "failed"
        assert response.json()["stage"] == "extraction"

    def test_invalid_catalog(self, client):
        response = _post_audio(client, '[{"name": "no id"}]')
        assert response.status_code == 422

    def test_unknown_kind(self, client, catalog_json):
        response = _post_audio(client, catalog_json, kind="invoice")
        assert response.status_code == 422


class TestLogs:

    def test_resolve_flow(self, client, catalog_json, language_model):
        language_model.complete_json.return_value = model_answer(primary_identifier="press")
        log_id = _post_audio(client, catalog_json).json()["log_id"]

        status = client.get(f"/voice/logs/{log_id}")
        assert status.json()["status"] == "AWAITING_CLARIFICATION"

        resolved = client.post(
            f"/voice/logs/{log_id}/resolve",
            json={"candidate_id": 1, "user_id": "supervisor-1"},
        )
        assert resolved.status_code == 200
        assert resolved.json()["record"]["entity_id"] == 1

        again = client.post(
            f"/voice/logs/{log_id}/resolve",
            json={"candidate_id": 1, "user_id": "supervisor-1"},
        )
        assert again.status_code == 409

    def test_resolve_unknown_log(self, client):
        response = client.post("/voice/logs/nope/resolve", json={"candidate_id": 1, "user_id": "u"})
        assert response.status_code == 404

    def test_retry_after_failed_save(self, client, catalog_json, store):
        store.fail_commit = True
        failed = _post_audio(client, catalog_json).json()
        assert failed["stage"] == "persistence"

        store.fail_commit = False
        response = client.post(f"/voice/logs/{failed['log_id']}/retry", json={"user_id": "tech-7"})

        assert response.status_code == 200
        assert response.json()["status"] == "completed"

    def test_missing_log(self, client):
        assert client.get("/voice/logs/nope").status_code == 404


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
