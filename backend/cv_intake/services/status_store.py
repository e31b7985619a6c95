"""
Upload Status Store

Keeps one UploadRecord per upload under ``upload:<id>`` with a TTL.
Records are read-modify-written as whole objects; ``compare_and_set`` guards
against interleaved writers by checking the record version.
"""
import asyncio
import logging
import time
from typing import Callable, Dict, Optional, Tuple

import httpx

from ..errors import StatusStoreError
from ..models.upload_record import UploadRecord, utcnow

logger = logging.getLogger(__name__)

KEY_PREFIX = "upload:"
DEFAULT_TTL_SECONDS = 3600
UPDATE_ATTEMPTS = 5

# Returns 1 on success, 0 on version mismatch, -1 when the key is gone
_COMPARE_AND_SET_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if not current then
  return -1
end
if tonumber(cjson.decode(current)['version']) ~= tonumber(ARGV[1]) then
  return 0
end
redis.call('SET', KEYS[1], ARGV[2], 'EX', tonumber(ARGV[3]))
return 1
"""


def upload_key(upload_id: str) -> str:
    return f"{KEY_PREFIX}{upload_id}"


def _stamp(record: UploadRecord, version: int) -> UploadRecord:
    return record.model_copy(update={"last_updated": utcnow(), "version": version})


class UploadStatusStore:
    """Typed access to upload records. Subclasses provide the raw key-value calls."""

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds

    async def _get_raw(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def _set_raw(self, key: str, value: str) -> None:
        raise NotImplementedError

    async def _cas_raw(self, key: str, expected_version: int, value: str) -> int:
        raise NotImplementedError

    async def get(self, upload_id: str) -> Optional[UploadRecord]:
        raw = await self._get_raw(upload_key(upload_id))
        if raw is None:
            return None
        return UploadRecord.from_json(raw)

    async def set(self, record: UploadRecord) -> UploadRecord:
        """Unconditional write. Used for the initial record."""
        stored = _stamp(record, record.version + 1)
        await self._set_raw(upload_key(record.id), stored.to_json())
        return stored

    async def compare_and_set(self, record: UploadRecord, expected_version: int) -> Optional[UploadRecord]:
        """
        Write ``record`` only if the stored version still equals ``expected_version``.

        Returns the stored record, or None when another writer got there
        first. Raises StatusStoreError if the record has expired.
        """
        stored = _stamp(record, expected_version + 1)
        result = await self._cas_raw(upload_key(record.id), expected_version, stored.to_json())
        if result == -1:
            raise StatusStoreError(f"Upload {record.id} expired from the status store")
        if result == 0:
            return None
        return stored

    async def update(self, upload_id: str, mutate: Callable[[UploadRecord], UploadRecord]) -> UploadRecord:
        """Read-modify-write through compare-and-set, retried on contention."""
        for attempt in range(UPDATE_ATTEMPTS):
            current = await self.get(upload_id)
            if current is None:
                raise StatusStoreError(f"Upload {upload_id} not found in the status store")
            stored = await self.compare_and_set(mutate(current), current.version)
            if stored is not None:
                return stored
            logger.debug(f"[StatusStore] Version conflict on {upload_id}, attempt {attempt + 1}")
        raise StatusStoreError(f"Upload {upload_id} kept changing underneath update")

    async def close(self) -> None:
        pass


class InMemoryStatusStore(UploadStatusStore):
    """Process-local store for development and tests. Honours the TTL on read."""

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        super().__init__(ttl_seconds)
        self._clock = clock
        self._data: Dict[str, Tuple[str, float]] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def _get_raw(self, key: str) -> Optional[str]:
        return self._live(key)

    async def _set_raw(self, key: str, value: str) -> None:
        self._data[key] = (value, self._clock() + self.ttl_seconds)

    async def _cas_raw(self, key: str, expected_version: int, value: str) -> int:
        async with self._lock:
            current = self._live(key)
            if current is None:
                return -1
            if UploadRecord.from_json(current).version != expected_version:
                return 0
            self._data[key] = (value, self._clock() + self.ttl_seconds)
            return 1

    def __len__(self) -> int:
        return len([key for key in list(self._data) if self._live(key) is not None])


class RedisRestStatusStore(UploadStatusStore):
    """
    Upstash-compatible Redis REST client.

    Each command is POSTed as a JSON array to the base URL; the reply is
    ``{"result": ...}`` or ``{"error": "..."}``.
    """

    def __init__(
        self,
        url: str,
        token: str,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(ttl_seconds)
        self.url = url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=10.0)
        self._headers = {"Authorization": f"Bearer {token}"}

    async def _command(self, *args):
        try:
            response = await self._client.post(self.url, json=[str(a) for a in args], headers=self._headers)
        except httpx.HTTPError as e:
            raise StatusStoreError(f"Status store unreachable: {e}") from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if response.status_code != 200 or "error" in payload:
            detail = payload.get("error") or response.text[:200]
            raise StatusStoreError(f"Status store command {args[0]} failed ({response.status_code}): {detail}")
        return payload.get("result")

    async def _get_raw(self, key: str) -> Optional[str]:
        return await self._command("GET", key)

    async def _set_raw(self, key: str, value: str) -> None:
        await self._command("SET", key, value, "EX", self.ttl_seconds)

    async def _cas_raw(self, key: str, expected_version: int, value: str) -> int:
        result = await self._command("EVAL", _COMPARE_AND_SET_SCRIPT, 1, key, expected_version, value, self.ttl_seconds)
        return int(result)

    async def close(self) -> None:
        await self._client.aclose()
