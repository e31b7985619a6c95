import pytest
from httpx import ASGITransport, AsyncClient

from cv_intake.config import Settings
from cv_intake.errors import EmailError, SheetError, StorageError
from cv_intake.main import create_app
from cv_intake.schemas.cv import ParsedCV
from cv_intake.services.cv_parser import StructuringResult
from cv_intake.services.pipeline import PipelineClients
from cv_intake.services.status_store import InMemoryStatusStore
from cv_intake.services.storage import StorageClient

SAMPLE_CV = """Jane Doe
Colombo, Sri Lanka
jane@example.com | 0771234567
linkedin.com/in/janedoe

Education
BSc in Computer Science - University of Colombo
"""


class RecordingStore(InMemoryStatusStore):
    """In-memory store that remembers the stage of every successful write."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.history = {}

    def _remember(self, record):
        self.history.setdefault(record.id, []).append(record.stage.value)

    async def set(self, record):
        stored = await super().set(record)
        self._remember(stored)
        return stored

    async def compare_and_set(self, record, expected_version):
        stored = await super().compare_and_set(record, expected_version)
        if stored is not None:
            self._remember(stored)
        return stored


class FakeStructurer:
    """Stands in for Gemini; returns a canned result."""

    def __init__(self, result=None, error=None):
        self.result = result or StructuringResult(ParsedCV())
        self.error = error
        self.calls = []

    @property
    def enabled(self):
        return True

    async def structure(self, text):
        self.calls.append(text)
        if self.error:
            raise self.error
        return self.result


class FakeStorage(StorageClient):
    def __init__(self, failures=0, url="https://files.example.com/cv.pdf"):
        self.failures = failures
        self.url = url
        self.uploads = []

    async def upload(self, data, filename, mime_type):
        self.uploads.append((filename, mime_type, len(data)))
        if self.failures:
            self.failures -= 1
            raise StorageError("bucket unavailable")
        return self.url


class FakeSheets:
    def __init__(self, always_fail=False):
        self.always_fail = always_fail
        self.rows = []
        self.attempts = 0

    async def append_submission(self, cv, fields, file_info, cv_url):
        self.attempts += 1
        if self.always_fail:
            raise SheetError("quota exceeded")
        self.rows.append((cv, fields, file_info, cv_url))


class FakeEmail:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    @property
    def enabled(self):
        return True

    async def send_confirmation(self, name, email, filename):
        if self.fail:
            raise EmailError(f"Failed to send confirmation email to {email}: smtp down")
        self.sent.append((name, email, filename))


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        use_memory_store=True,
        retry_base_delay=0.0,
        max_upload_bytes=4096,
        gemini_api_key="",
        kv_rest_api_url="",
        kv_rest_api_token="",
    )


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def fakes():
    return {
        "structurer": FakeStructurer(),
        "storage": FakeStorage(),
        "sheets": FakeSheets(),
        "email": FakeEmail(),
    }


@pytest.fixture
def clients(store, fakes):
    return PipelineClients(store=store, **fakes)


@pytest.fixture
async def app(settings, clients):
    application = create_app(settings, clients)
    yield application
    await application.state.runner.shutdown()


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
