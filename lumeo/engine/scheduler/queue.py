import asyncio
from typing import Awaitable, Callable, Optional

from lumeo.common import config
from lumeo.common.errors import MalformedResponse, TransportError
from lumeo.common.models.jobs import RemoteJobState
from lumeo.engine.scheduler.retry import RetryPolicy
from lumeo.engine.transport.http import HTTPRequest, Transport
from lumeo.engine.utils.logger import logger

ResponseParser = Callable[[bytes], RemoteJobState]


class RequestQueue:
    """
    Admission control for outbound submissions.

    At most `max_concurrent` submissions hold a slot at once; the rest wait
    in FIFO order on the semaphore. A slot covers the whole submission,
    retries and backoff included, so it bounds in-flight remote load rather
    than raw HTTP calls.
    """

    def __init__(
        self,
        transport: Transport,
        retry_policy: Optional[RetryPolicy] = None,
        max_concurrent: int = config.MAX_CONCURRENT_SUBMISSIONS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.transport = transport
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_concurrent = max_concurrent
        self._slots = asyncio.Semaphore(max_concurrent)
        self._sleep = sleep
        self.active = 0
        self.waiting = 0

    async def submit(self, request: HTTPRequest, parse: ResponseParser, job_id: Optional[str] = None) -> RemoteJobState:
        self.waiting += 1
        try:
            await self._slots.acquire()
        finally:
            self.waiting -= 1

        self.active += 1
        try:
            return await self._attempt_until_done(request, parse, job_id)
        finally:
            self.active -= 1
            self._slots.release()

    async def _attempt_until_done(self, request: HTTPRequest, parse: ResponseParser, job_id: Optional[str]) -> RemoteJobState:
        attempt = 0
        while True:
            try:
                body = await self.transport.send(request)
                return decode_response(body, parse, job_id)
            except TransportError as e:
                delay = self.retry_policy.should_retry(e, attempt)
                if delay is None:
                    if e.retryable:
                        logger.error(f"Submission failed after {attempt + 1} attempts: {e}", extra={"event": "retries_exhausted", "job_id": job_id})
                    else:
                        logger.error(f"Submission failed ({e.kind.value}), not retrying: {e}", extra={"event": "submit_failed", "job_id": job_id})
                    raise
                attempt += 1
                logger.warning(
                    f"Submission attempt {attempt} failed ({e.kind.value}). Retrying in {delay:.1f}s...",
                    extra={"event": "retry", "job_id": job_id}
                )
                await self._sleep(delay)


def decode_response(body: bytes, parse: ResponseParser, job_id: Optional[str] = None) -> RemoteJobState:
    """Runs a provider parser, turning any decode failure into MalformedResponse."""
    try:
        return parse(body)
    except (ValueError, KeyError, TypeError) as e:
        raw = body.decode("utf-8", errors="replace")
        logger.error(f"Malformed response: {e}. Raw payload: {raw}", extra={"event": "decode_error", "job_id": job_id})
        raise MalformedResponse(message=f"Could not decode response: {e}", body=raw) from e
