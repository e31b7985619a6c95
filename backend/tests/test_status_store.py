import json

import httpx
import pytest

from cv_intake.errors import StatusStoreError
from cv_intake.models.upload_record import FileInfo, UploadRecord, UploadStage
from cv_intake.services.status_store import InMemoryStatusStore, RedisRestStatusStore, upload_key


def _record(upload_id="abc"):
    return UploadRecord(id=upload_id, file_info=FileInfo(name="cv.pdf", type="application/pdf", size=1234))


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.mark.asyncio
async def test_set_then_get_round_trips_aliases():
    store = InMemoryStatusStore()
    stored = await store.set(_record())

    loaded = await store.get("abc")
    assert loaded == stored
    assert loaded.version == 1
    assert json.loads(loaded.to_json())["fileInfo"]["name"] == "cv.pdf"


@pytest.mark.asyncio
async def test_records_expire_after_ttl():
    clock = FakeClock()
    store = InMemoryStatusStore(ttl_seconds=3600, clock=clock)
    await store.set(_record())

    clock.now += 3599
    assert await store.get("abc") is not None
    clock.now += 2
    assert await store.get("abc") is None


@pytest.mark.asyncio
async def test_compare_and_set_detects_concurrent_writer():
    store = InMemoryStatusStore()
    original = await store.set(_record())

    first = await store.compare_and_set(original.advance(UploadStage.EXTRACTING_TEXT), original.version)
    assert first is not None
    assert first.version == original.version + 1

    stale = await store.compare_and_set(original.fail("late writer"), original.version)
    assert stale is None
    assert (await store.get("abc")).stage == UploadStage.EXTRACTING_TEXT


@pytest.mark.asyncio
async def test_compare_and_set_on_expired_record_raises():
    clock = FakeClock()
    store = InMemoryStatusStore(ttl_seconds=10, clock=clock)
    original = await store.set(_record())
    clock.now += 11

    with pytest.raises(StatusStoreError):
        await store.compare_and_set(original, original.version)


@pytest.mark.asyncio
async def test_update_applies_mutation_and_bumps_last_updated():
    store = InMemoryStatusStore()
    original = await store.set(_record())

    updated = await store.update("abc", lambda r: r.advance(UploadStage.UPLOADING_TO_CLOUD))

    assert updated.stage == UploadStage.UPLOADING_TO_CLOUD
    assert updated.progress == 40
    assert updated.last_updated >= original.last_updated


@pytest.mark.asyncio
async def test_update_of_missing_record_raises():
    store = InMemoryStatusStore()
    with pytest.raises(StatusStoreError):
        await store.update("nope", lambda r: r)


class FakeRedis:
    """Just enough of the Upstash REST protocol for GET, SET and the compare-and-set script."""

    def __init__(self):
        self.data = {}
        self.commands = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer secret-token"
        command = json.loads(request.content)
        self.commands.append(command)
        name = command[0]

        if name == "GET":
            return httpx.Response(200, json={"result": self.data.get(command[1])})
        if name == "SET":
            self.data[command[1]] = command[2]
            return httpx.Response(200, json={"result": "OK"})
        if name == "EVAL":
            _, _script, _numkeys, key, expected, value, _ttl = command
            current = self.data.get(key)
            if current is None:
                return httpx.Response(200, json={"result": -1})
            if json.loads(current)["version"] != int(expected):
                return httpx.Response(200, json={"result": 0})
            self.data[key] = value
            return httpx.Response(200, json={"result": 1})
        return httpx.Response(400, json={"error": f"ERR unknown command '{name}'"})


@pytest.fixture
def redis():
    return FakeRedis()


@pytest.fixture
def redis_store(redis):
    client = httpx.AsyncClient(transport=httpx.MockTransport(redis.handler))
    return RedisRestStatusStore("https://kv.example.com/", "secret-token", ttl_seconds=3600, client=client)


@pytest.mark.asyncio
async def test_redis_store_writes_with_ttl_and_reads_back(redis, redis_store):
    await redis_store.set(_record())

    set_command = redis.commands[-1]
    assert set_command[:2] == ["SET", upload_key("abc")]
    assert set_command[3:] == ["EX", "3600"]

    loaded = await redis_store.get("abc")
    assert loaded.id == "abc"
    assert await redis_store.get("missing") is None
    await redis_store.close()


@pytest.mark.asyncio
async def test_redis_store_update_goes_through_eval(redis, redis_store):
    await redis_store.set(_record())

    updated = await redis_store.update("abc", lambda r: r.advance(UploadStage.EXTRACTING_TEXT))

    assert updated.stage == UploadStage.EXTRACTING_TEXT
    assert redis.commands[-1][0] == "EVAL"
    assert json.loads(redis.data["upload:abc"])["stage"] == "extracting_text"


@pytest.mark.asyncio
async def test_redis_error_reply_raises_status_store_error():
    def handler(request):
        return httpx.Response(401, json={"error": "WRONGPASS invalid password"})

    store = RedisRestStatusStore(
        "https://kv.example.com", "bad", client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )
    with pytest.raises(StatusStoreError, match="WRONGPASS"):
        await store.get("abc")
