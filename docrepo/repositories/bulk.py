from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Generic, Iterable, Optional, TypeVar

from docrepo.errors import (
    AggregateBulkError,
    BulkFailure,
    OperationCancelledError,
    ThrottlingError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_CONCURRENCY = 10
DEFAULT_MAX_RETRIES = 5
DEFAULT_BASE_DELAY = 0.1


class BulkOperationCoordinator(Generic[T]):
    """Apply a single-item operation to many items with bounded parallelism.

    - At most ``max_concurrency`` operations are in flight at once.
    - A :class:`ThrottlingError` is retried after the store's ``retry_after``
      or, when absent, after ``base_delay * 2**attempt`` seconds.
    - Items that still fail after ``max_retries`` retries (or that fail with
      any other error) are collected; the rest of the run is unaffected.
    - ``cancel`` is checked before an item takes a slot and between retries.
      In-flight store calls are never interrupted.

    When the run ends with failures an :class:`AggregateBulkError` is raised;
    items not listed in it were applied.
    """

    def __init__(
        self,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = DEFAULT_BASE_DELAY,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        self.max_concurrency = int(max_concurrency)
        self.max_retries = int(max_retries)
        self.base_delay = float(base_delay)

    def compute_delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Seconds to wait before retry number ``attempt + 1``."""
        if retry_after is not None:
            return max(0.0, float(retry_after))
        return self.base_delay * float(2**attempt)

    async def run(
        self,
        items: Iterable[T],
        operation: Callable[[T], Awaitable[object]],
        *,
        cancel: Optional[asyncio.Event] = None,
        description: str = "bulk operation",
    ) -> int:
        """Run ``operation`` for every item and return how many succeeded."""
        pending = list(items)
        if not pending:
            return 0

        semaphore = asyncio.Semaphore(self.max_concurrency)
        failures: list[BulkFailure] = []
        failures_lock = asyncio.Lock()
        skipped = 0
        succeeded = 0

        def cancelled() -> bool:
            return cancel is not None and cancel.is_set()

        async def record_failure(item: T, error: BaseException) -> None:
            async with failures_lock:
                failures.append(BulkFailure(item=item, error=error))

        async def process(item: T) -> None:
            nonlocal skipped, succeeded
            if cancelled():
                skipped += 1
                return
            async with semaphore:
                if cancelled():
                    skipped += 1
                    return
                attempt = 0
                while True:
                    try:
                        await operation(item)
                    except ThrottlingError as exc:
                        if attempt >= self.max_retries:
                            logger.error(
                                "%s: giving up on item after %d retries: %s",
                                description,
                                attempt,
                                exc,
                            )
                            await record_failure(item, exc)
                            return
                        delay = self.compute_delay(attempt, exc.retry_after)
                        attempt += 1
                        logger.warning(
                            "%s: throttled, retrying in %.2fs (attempt %d/%d)",
                            description,
                            delay,
                            attempt,
                            self.max_retries,
                        )
                        await asyncio.sleep(delay)
                        if cancelled():
                            skipped += 1
                            return
                    except Exception as exc:
                        logger.error("%s: item failed: %s", description, exc)
                        await record_failure(item, exc)
                        return
                    else:
                        succeeded += 1
                        return

        await asyncio.gather(*(process(item) for item in pending))

        logger.info(
            "%s finished: %d succeeded, %d failed, %d skipped",
            description,
            succeeded,
            len(failures),
            skipped,
        )
        if failures:
            raise AggregateBulkError(description, failures, cancelled=skipped)
        if skipped:
            raise OperationCancelledError(description, skipped)
        return succeeded
