"""Bounded retry of object store calls on connection pool exhaustion."""

from __future__ import annotations

import logging
import time
from typing import Callable, Generic, Protocol, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
    wait_random,
)

from filestore.infra.observability.metrics import STORE_RETRIES
from filestore.infra.storage.client import StorageClient, StoreClientError

logger = logging.getLogger(__name__)

T = TypeVar("T")
R_co = TypeVar("R_co", covariant=True)


class StoreOperation(Protocol[R_co]):
    """A unit of work against the object store, given the client to use."""

    def __call__(self, client: StorageClient) -> R_co: ...


def is_connection_pool_timeout(exc: BaseException) -> bool:
    return isinstance(exc, StoreClientError) and exc.is_connection_pool_timeout()


def _log_retry(retry_state: RetryCallState) -> None:
    STORE_RETRIES.labels("connection_pool_timeout").inc()
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.warning(
        "Timeout waiting for a pooled connection, retrying in %.3fs (attempt %s): %s",
        delay,
        retry_state.attempt_number,
        exc,
    )


class RetryingOperationExecutor(Generic[T]):
    """Runs an operation, retrying only when the connection pool timed out.

    The wait before the k-th retry is ``k`` seconds plus up to one second of
    jitter. Every other failure propagates on the first attempt.

    botocore builds its urllib3 pools with ``block=False``: an exhausted pool
    opens an extra connection instead of raising ``EmptyPoolError``. With
    ``S3StorageClient`` the retry budget therefore only applies to transports
    configured with a blocking pool; the default boto3 client never triggers
    it.
    """

    def __init__(
        self,
        operation: StoreOperation[T],
        max_attempts: int,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._operation = operation
        self._max_attempts = max_attempts if max_attempts > 0 else 1
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def execute(self, client: StorageClient) -> T:
        retrying = Retrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_incrementing(start=1, increment=1) + wait_random(0, 1),
            retry=retry_if_exception(is_connection_pool_timeout),
            before_sleep=_log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        return retrying(self._operation, client)

    def execute_void(self, client: StorageClient) -> None:
        self.execute(client)
