import asyncio
import logging
from typing import Awaitable, Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    base_delay: float = 1.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    label: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await ``fn()`` up to ``attempts`` times.

    The delay before retry n is ``base_delay * 2 ** (n - 1)``. The last
    exception is re-raised once attempts are exhausted; exceptions outside
    ``retry_on`` propagate immediately.
    """
    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except retry_on as e:
            if attempt == attempts:
                logger.error(f"[Retry] {label} failed after {attempts} attempts: {e}")
                raise
            delay = base_delay * 2 ** (attempt - 1)
            logger.warning(f"[Retry] {label} attempt {attempt}/{attempts} failed: {e}; retrying in {delay:.1f}s")
            await sleep(delay)
    raise RuntimeError("attempts must be >= 1")
