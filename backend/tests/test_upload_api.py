import re
from datetime import timedelta

import pytest

from cv_intake.config import Settings
from cv_intake.main import create_app
from cv_intake.models.upload_record import FileInfo, UploadRecord, UploadStage, utcnow
from cv_intake.services.pipeline import PipelineClients

from conftest import SAMPLE_CV

UPLOAD_ID_RE = re.compile(r"^[A-Za-z0-9_-]{16,}$")


async def _upload(client, content=SAMPLE_CV.encode(), filename="cv.txt", mime="text/plain", **fields):
    return await client.post("/upload", files={"file": (filename, content, mime)}, data=fields)


@pytest.mark.asyncio
async def test_valid_upload_is_accepted_with_received_record(client, app, store):
    response = await _upload(client, name="Jane Doe", email="jane@example.com")

    assert response.status_code == 202
    body = response.json()
    assert body["success"] is True
    assert UPLOAD_ID_RE.match(body["uploadId"])
    assert body["fileInfo"] == {"name": "cv.txt", "type": "text/plain", "size": len(SAMPLE_CV.encode())}
    assert body["fields"]["email"] == "jane@example.com"

    upload_id = body["uploadId"]
    assert store.history[upload_id][0] == "received"
    first = await store.get(upload_id)
    assert first is not None

    await app.state.runner.join(upload_id)


@pytest.mark.asyncio
async def test_upload_runs_to_completion_and_can_be_polled(client, app, fakes):
    upload_id = (await _upload(client, email="jane@example.com")).json()["uploadId"]
    await app.state.runner.join(upload_id)

    response = await client.get("/upload", params={"id": upload_id})
    assert response.status_code == 200
    status = response.json()["status"]
    assert status["stage"] == "completed"
    assert status["progress"] == 100
    assert status["cvUrl"] == fakes["storage"].url
    assert status["fileInfo"]["name"] == "cv.txt"
    assert "version" not in status
    assert fakes["email"].sent == [(None, "jane@example.com", "cv.txt")]


@pytest.mark.asyncio
async def test_polling_completed_upload_twice_is_identical(client, app):
    upload_id = (await _upload(client)).json()["uploadId"]
    await app.state.runner.join(upload_id)

    first = (await client.get(f"/upload/{upload_id}")).json()["status"]
    second = (await client.get("/upload", params={"id": upload_id})).json()["status"]
    assert (first["stage"], first["progress"]) == (second["stage"], second["progress"]) == ("completed", 100)
    assert first == second


@pytest.mark.asyncio
async def test_missing_file_is_rejected(client, store):
    response = await client.post("/upload", data={"name": "Jane"})
    assert response.status_code == 400
    assert response.json()["success"] is False
    assert len(store) == 0


@pytest.mark.asyncio
async def test_empty_file_is_rejected(client, store):
    response = await _upload(client, content=b"")
    assert response.status_code == 400
    assert len(store) == 0


@pytest.mark.asyncio
async def test_oversize_file_is_rejected_without_record(client, store, settings):
    response = await _upload(client, content=b"x" * (settings.max_upload_bytes + 1))
    assert response.status_code == 413
    body = response.json()
    assert body["success"] is False
    assert "less than" in body["error"]
    assert len(store) == 0


@pytest.mark.asyncio
async def test_unsupported_mime_type_is_rejected_without_record(client, store):
    response = await _upload(client, content=b"\x89PNG....", filename="photo.png", mime="image/png")
    assert response.status_code == 415
    assert "Unsupported file type" in response.json()["error"]
    assert len(store) == 0


@pytest.mark.asyncio
async def test_unknown_id_returns_not_found(client):
    response = await client.get("/upload", params={"id": "does-not-exist"})
    assert response.status_code == 404
    assert response.json()["success"] is False
    assert response.json()["error"] == "Not found"

    response = await client.get("/upload/does-not-exist")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_missing_id_query_is_bad_request(client):
    response = await client.get("/upload")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_stale_record_is_marked_timed_out(client, store):
    record = UploadRecord(id="stale-upload", file_info=FileInfo(name="cv.pdf", type="application/pdf", size=10))
    stored = await store.set(record)
    # Backdate the record as if the process handling it had died
    old = stored.model_copy(update={"last_updated": utcnow() - timedelta(minutes=10)})
    await store._set_raw("upload:stale-upload", old.to_json())

    response = await client.get("/upload/stale-upload")
    status = response.json()["status"]
    assert status["stage"] == "error"
    assert status["error"] == "Processing timed out"


@pytest.mark.asyncio
async def test_retry_restarts_failed_upload(client, app, fakes, store):
    fakes["sheets"].always_fail = True
    upload_id = (await _upload(client)).json()["uploadId"]
    await app.state.runner.join(upload_id)
    assert (await store.get(upload_id)).stage == UploadStage.ERROR

    fakes["sheets"].always_fail = False
    response = await client.post(f"/upload/{upload_id}/retry")
    assert response.status_code == 202
    assert response.json()["retryCount"] == 1

    await app.state.runner.join(upload_id)
    record = await store.get(upload_id)
    assert record.stage == UploadStage.COMPLETED
    assert record.retry_count == 1
    assert record.error is None


@pytest.mark.asyncio
async def test_retry_of_completed_upload_conflicts(client, app):
    upload_id = (await _upload(client)).json()["uploadId"]
    await app.state.runner.join(upload_id)

    response = await client.post(f"/upload/{upload_id}/retry")
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_retry_of_unknown_upload_is_not_found(client):
    response = await client.post("/upload/nope/retry")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_intake_without_status_store_is_unavailable():
    from httpx import ASGITransport, AsyncClient

    settings = Settings(_env_file=None, use_memory_store=False, kv_rest_api_url="", kv_rest_api_token="")
    app = create_app(settings, PipelineClients(store=None))
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.post("/upload", files={"file": ("cv.txt", b"hello", "text/plain")})
        health = await ac.get("/health")

    assert response.status_code == 503
    assert "KV_REST_API_URL" in response.json()["message"]
    assert health.status_code == 200
    assert health.json()["config"]["hasStatusStore"] is False
