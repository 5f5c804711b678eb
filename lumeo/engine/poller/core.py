import asyncio
from typing import Callable, Dict, Optional, Union

from lumeo.common import config
from lumeo.common.errors import TransportError
from lumeo.common.models.jobs import RemoteJobState
from lumeo.engine.scheduler.queue import ResponseParser, decode_response
from lumeo.engine.store.jobs import JobStore
from lumeo.engine.transport.http import HTTPRequest, Transport
from lumeo.engine.utils.logger import logger

UpdateCallback = Callable[[RemoteJobState], None]
TerminalCallback = Callable[[Union[RemoteJobState, Exception]], None]


class CancellationToken:
    """Cooperative cancellation: stops future scheduling, never aborts I/O."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def sleep(self, delay: float) -> bool:
        """Waits `delay` seconds. Returns False if cancelled meanwhile."""
        if self.cancelled:
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return True
        return False


class Watch:
    """Handle for one job's polling loop."""

    def __init__(self, job_id: str, token: CancellationToken):
        self.job_id = job_id
        self.token = token
        self.polls = 0
        self.task: Optional[asyncio.Task] = None
        self._result: "asyncio.Future[Union[RemoteJobState, Exception]]" = asyncio.get_running_loop().create_future()

    def cancel(self):
        if not self.token.cancelled:
            logger.info("Watch cancelled", extra={"event": "watch_cancelled", "job_id": self.job_id})
        self.token.cancel()
        if not self._result.done():
            self._result.cancel()

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    @property
    def done(self) -> bool:
        return self._result.done()

    def _resolve(self, outcome: Union[RemoteJobState, Exception]):
        if not self._result.done():
            self._result.set_result(outcome)

    async def wait(self) -> Optional[Union[RemoteJobState, Exception]]:
        """Terminal state or error; None when the watch was cancelled first."""
        try:
            return await asyncio.shield(self._result)
        except asyncio.CancelledError:
            if self.cancelled:
                return None
            raise


class Poller:
    """
    Re-checks remote job status on a fixed interval until terminal.
    One task per watched job; watches are not serialized with each other.
    """

    def __init__(self, transport: Transport, store: JobStore, interval_sec: float = config.POLL_INTERVAL_SEC):
        self.transport = transport
        self.store = store
        self.interval_sec = interval_sec
        self.watches: Dict[str, Watch] = {}

    def watch(
        self,
        job_id: str,
        request: HTTPRequest,
        parse: ResponseParser,
        on_update: Optional[UpdateCallback] = None,
        on_terminal: Optional[TerminalCallback] = None,
    ) -> Watch:
        existing = self.watches.get(job_id)
        if existing is not None and not existing.done:
            return existing

        watch = Watch(job_id, CancellationToken())
        current = self.store.get(job_id)
        if current is not None and current.is_terminal:
            logger.debug("Job already terminal, not polling", extra={"event": "watch_skipped", "job_id": job_id})
            watch._resolve(current)
            return watch

        self.watches[job_id] = watch
        watch.task = asyncio.create_task(self._run(watch, request, parse, on_update, on_terminal))
        return watch

    def cancel(self, job_id: str) -> bool:
        watch = self.watches.pop(job_id, None)
        if watch is None:
            return False
        watch.cancel()
        return True

    def cancel_all(self):
        for job_id in list(self.watches.keys()):
            self.cancel(job_id)

    async def _run(self, watch: Watch, request: HTTPRequest, parse: ResponseParser,
                   on_update: Optional[UpdateCallback], on_terminal: Optional[TerminalCallback]):
        logger.info(f"Polling started ({self.interval_sec}s interval)", extra={"event": "watch_started", "job_id": watch.job_id})
        loop = asyncio.get_running_loop()
        try:
            while not watch.cancelled:
                tick_started = loop.time()
                current = self.store.get(watch.job_id)
                if current is not None and current.is_terminal:
                    self._finish(watch, current, on_terminal)
                    return

                watch.polls += 1
                try:
                    body = await self.transport.send(request)
                    state = decode_response(body, parse, watch.job_id)
                except TransportError as e:
                    if watch.cancelled:
                        return
                    logger.error(f"Poll {watch.polls} failed: {e}", extra={"event": "poll_failed", "job_id": watch.job_id})
                    self._finish(watch, e, on_terminal)
                    return

                # In-flight responses still land in the store after cancellation
                state = self.store.upsert(state)
                if watch.cancelled:
                    return

                if on_update is not None:
                    on_update(state)

                if state.is_terminal:
                    logger.info(f"Job reached {state.status.value} after {watch.polls} polls", extra={"event": "watch_terminal", "job_id": watch.job_id})
                    self._finish(watch, state, on_terminal)
                    return

                # Fixed rate: the time spent on this tick counts toward the interval
                delay = max(0.0, self.interval_sec - (loop.time() - tick_started))
                if not await watch.token.sleep(delay):
                    return
        except Exception as e:
            logger.exception(f"Watch crashed: {e}", extra={"event": "watch_crashed", "job_id": watch.job_id})
            if not watch.cancelled and not watch.done:
                self._finish(watch, e, on_terminal)
        finally:
            if self.watches.get(watch.job_id) is watch:
                self.watches.pop(watch.job_id, None)

    def _finish(self, watch: Watch, outcome: Union[RemoteJobState, Exception], on_terminal: Optional[TerminalCallback]):
        watch._resolve(outcome)
        if on_terminal is not None:
            on_terminal(outcome)
