"""Exception hierarchy for the repository engine.

Every error raised by the repositories derives from :class:`RepositoryError`
so adapters can translate them in one place. Store adapters report backend
failures with :class:`StoreError` and its subclasses; the repositories turn
the ones with dedicated handling (412, 429) into the matching error types.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Sequence

HTTP_BAD_REQUEST = 400
HTTP_NOT_FOUND = 404
HTTP_CONFLICT = 409
HTTP_PRECONDITION_FAILED = 412
HTTP_TOO_MANY_REQUESTS = 429


class RepositoryError(RuntimeError):
    """Base class for every error raised by :mod:`docrepo`."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StoreError(RepositoryError):
    """Raised by a store adapter when the backend rejects a request."""


class NotFoundError(StoreError):
    """The addressed document, database or container does not exist."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=HTTP_NOT_FOUND)


class ThrottlingError(StoreError):
    """Backend rate-limit signal; ``retry_after`` is in seconds when known."""

    def __init__(self, message: str, retry_after: Optional[float] = None) -> None:
        super().__init__(message, status_code=HTTP_TOO_MANY_REQUESTS)
        self.retry_after = retry_after


class OptimisticConcurrencyError(RepositoryError):
    """The etag sent with a save no longer matches the stored document."""

    def __init__(self, message: str, item_id: str = "", etag: str = "") -> None:
        super().__init__(message, status_code=HTTP_PRECONDITION_FAILED)
        self.item_id = item_id
        self.etag = etag


class ConfigurationError(RepositoryError):
    """Invalid or missing configuration, raised at construction time."""

    def __init__(self, message: str, key: Optional[str] = None) -> None:
        if key:
            message = f"Configuration error for '{key}': {message}"
        super().__init__(message)
        self.key = key


class ProvisioningError(RepositoryError):
    """Creating or attaching to the database/container failed."""

    def __init__(self, message: str, database_name: str, container_name: str) -> None:
        super().__init__(message)
        self.database_name = database_name
        self.container_name = container_name


class PartitionKeyMismatchError(RepositoryError):
    """A batch chunk holds items that do not share one partition key."""

    def __init__(self, message: str, batch_number: int) -> None:
        super().__init__(message, status_code=HTTP_BAD_REQUEST)
        self.batch_number = batch_number


class BatchOperationError(RepositoryError):
    """The store rejected a transactional chunk of a batch save."""

    def __init__(
        self,
        batch_number: int,
        total_batches: int,
        batch_size: int,
        message: str,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(
            f"Batch {batch_number}/{total_batches} (size: {batch_size}) failed: {message}",
            status_code=status_code,
        )
        self.batch_number = batch_number
        self.total_batches = total_batches
        self.batch_size = batch_size


@dataclass(frozen=True)
class BulkFailure:
    """One item a bulk operation gave up on, with the last error seen."""

    item: Any
    error: BaseException


class AggregateBulkError(RepositoryError):
    """Collects every item a bulk operation could not complete."""

    def __init__(
        self, description: str, failures: Sequence[BulkFailure], cancelled: int = 0
    ) -> None:
        message = f"{description}: {len(failures)} item(s) failed"
        if cancelled:
            message = f"{message}, {cancelled} item(s) not attempted after cancellation"
        super().__init__(message)
        self.failures: list[BulkFailure] = list(failures)
        self.cancelled = cancelled

    @property
    def errors(self) -> list[BaseException]:
        return [f.error for f in self.failures]


class OperationCancelledError(RepositoryError):
    """A bulk operation stopped early because its cancel signal was set."""

    def __init__(self, description: str, skipped: int) -> None:
        super().__init__(f"{description} cancelled; {skipped} item(s) not attempted")
        self.skipped = skipped
