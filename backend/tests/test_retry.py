import pytest

from cv_intake.errors import SheetError, StorageError
from cv_intake.services.retry import with_retry


class Flaky:
    def __init__(self, failures, error=StorageError("temporary")):
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.mark.asyncio
async def test_succeeds_after_transient_failures_with_exponential_backoff():
    fn, sleep = Flaky(failures=2), RecordingSleep()

    result = await with_retry(fn, attempts=3, base_delay=1.0, retry_on=(StorageError,), sleep=sleep)

    assert result == "ok"
    assert fn.calls == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_last_error_is_raised_when_attempts_run_out():
    fn, sleep = Flaky(failures=5, error=SheetError("quota")), RecordingSleep()

    with pytest.raises(SheetError, match="quota"):
        await with_retry(fn, attempts=3, base_delay=0.5, retry_on=(SheetError,), sleep=sleep)

    assert fn.calls == 3
    assert sleep.delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_errors_outside_retry_on_propagate_immediately():
    fn, sleep = Flaky(failures=1, error=ValueError("bug")), RecordingSleep()

    with pytest.raises(ValueError):
        await with_retry(fn, attempts=3, retry_on=(StorageError,), sleep=sleep)

    assert fn.calls == 1
    assert sleep.delays == []
