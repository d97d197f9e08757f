"""Failure classification, bounded retries and the status-write fallback.

Every collaborator call made by a stage goes through ErrorPolicy.call(),
which retries only transient failures. Anything that escapes a stage is
classified once more by the orchestrator to build the final reason.
"""

import asyncio
import logging
import subprocess
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx
from google.genai.errors import ClientError, ServerError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from reelpipe.db.store import SERVER_TIMESTAMP, JobRecordStore
from reelpipe.orchestrator.state import Status

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MAX_REASON_LENGTH = 500

_TRANSIENT_HTTP_CODES = {408, 425, 429, 500, 502, 503, 504}


class PipelineError(Exception):
    """Base class for errors raised by pipeline stages."""


class InvalidInputError(PipelineError):
    """Generated content failed a structural invariant. Never retried."""


class TransientServiceError(PipelineError):
    """A collaborator reported a temporary fault worth retrying."""


class ServiceError(PipelineError):
    """A collaborator failed in a way retrying will not fix."""


class StatusWriteError(PipelineError):
    """Both attempts to persist a status update failed."""


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    INVALID_INPUT = "invalid_input"
    FATAL = "fatal"


def classify(exc: BaseException) -> ErrorKind:
    """Map an exception raised during a stage to its failure class."""
    if isinstance(exc, InvalidInputError):
        return ErrorKind.INVALID_INPUT
    if isinstance(exc, TransientServiceError):
        return ErrorKind.TRANSIENT
    if isinstance(exc, httpx.HTTPStatusError):
        if exc.response.status_code in _TRANSIENT_HTTP_CODES:
            return ErrorKind.TRANSIENT
        return ErrorKind.FATAL
    if isinstance(exc, (httpx.TransportError, httpx.TimeoutException)):
        return ErrorKind.TRANSIENT
    if isinstance(exc, ServerError):
        return ErrorKind.TRANSIENT
    if isinstance(exc, ClientError):
        return ErrorKind.TRANSIENT if getattr(exc, "code", 0) == 429 else ErrorKind.FATAL
    if isinstance(exc, subprocess.CalledProcessError):
        return ErrorKind.FATAL
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, ConnectionError)):
        return ErrorKind.TRANSIENT
    return ErrorKind.FATAL


def is_transient(exc: BaseException) -> bool:
    return classify(exc) is ErrorKind.TRANSIENT


class ErrorPolicy:
    """Retry and reason-building policy shared by all stages of a run.

    Args:
        max_attempts: Total attempts per collaborator call (first try included).
        base_delay: Exponential backoff multiplier in seconds.
        max_delay: Upper bound on a single backoff wait.
        call_timeout: Per-attempt timeout in seconds, or None for no limit.
        jitter: Maximum random seconds added to every backoff wait.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 2.0,
        max_delay: float = 30.0,
        call_timeout: Optional[float] = 300.0,
        jitter: float = 1.0,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.call_timeout = call_timeout
        self.jitter = jitter

    @classmethod
    def from_settings(cls, pipeline_config) -> "ErrorPolicy":
        return cls(
            max_attempts=pipeline_config.retry_max_attempts,
            base_delay=pipeline_config.retry_base_delay,
            max_delay=pipeline_config.retry_max_delay,
            call_timeout=pipeline_config.call_timeout,
        )

    async def call(
        self,
        label: str,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Invoke a collaborator, retrying transient failures with backoff.

        The last exception is re-raised unchanged once attempts are exhausted
        or as soon as a non-transient failure occurs.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, max=self.max_delay)
            + wait_random(0, self.jitter),
            retry=retry_if_exception(is_transient),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                attempt_number = attempt.retry_state.attempt_number
                if attempt_number > 1:
                    logger.info(f"{label}: attempt {attempt_number}/{self.max_attempts}")
                if self.call_timeout is None:
                    return await fn(*args, **kwargs)
                return await asyncio.wait_for(fn(*args, **kwargs), timeout=self.call_timeout)

    def failure_reason(self, stage_label: str, exc: BaseException) -> str:
        """Build the user-visible failure reason for an escaped stage error."""
        kind = classify(exc)
        detail = str(exc) or type(exc).__name__
        if kind is ErrorKind.INVALID_INPUT:
            reason = detail
        elif kind is ErrorKind.TRANSIENT:
            reason = f"{stage_label} failed after {self.max_attempts} attempts: {detail}"
        else:
            reason = f"{stage_label} failed: {detail}"
        return reason[:_MAX_REASON_LENGTH]


async def write_status(
    store: JobRecordStore,
    job_id: str,
    status: Status,
    *,
    video_uri: Optional[str] = None,
    thumbnail_uri: Optional[str] = None,
) -> bool:
    """Persist a status update, falling back to a local timestamp once.

    The first attempt lets the store assign the update time; if it raises,
    the same update is retried with a locally generated UTC timestamp.

    Returns:
        True if the update was applied, False if the store refused it
        because the job already reached a terminal status.

    Raises:
        StatusWriteError: If both attempts fail.
    """
    try:
        return await store.update_status(
            job_id, status,
            timestamp=SERVER_TIMESTAMP,
            video_uri=video_uri,
            thumbnail_uri=thumbnail_uri,
        )
    except Exception as first_err:
        logger.warning(
            f"Job {job_id}: status write '{status}' failed with server timestamp "
            f"({type(first_err).__name__}: {first_err}); retrying with local timestamp"
        )

    try:
        return await store.update_status(
            job_id, status,
            timestamp=datetime.now(timezone.utc),
            video_uri=video_uri,
            thumbnail_uri=thumbnail_uri,
        )
    except Exception as retry_err:
        logger.error(f"Job {job_id}: status write '{status}' failed even with fallback timestamp: {retry_err}")
        raise StatusWriteError(f"Could not persist status '{status}' for job {job_id}") from retry_err
