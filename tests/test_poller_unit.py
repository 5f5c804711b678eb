import asyncio
import unittest
from unittest.mock import patch

from lumeo.common.errors import TransientServerError, TransportErrorKind
from lumeo.common.models.jobs import JobStatus, RemoteJobState
from lumeo.engine.poller.core import CancellationToken, Poller
from lumeo.engine.store.jobs import JobStore
from lumeo.engine.transport.http import HTTPRequest, Transport

POLL = HTTPRequest("GET", "https://api.example.com/v1/predictions/job-1")


def body(status, job_id="job-1", logs=None):
    return RemoteJobState(id=job_id, status=status, logs=logs).model_dump_json().encode()


def parse(raw: bytes) -> RemoteJobState:
    return RemoteJobState.model_validate_json(raw)


class SequenceTransport:
    def __init__(self, script):
        self.script = list(script)
        self.calls = 0

    async def send(self, request):
        self.calls += 1
        result = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(result, Exception):
            raise result
        return result


class SlowTransport(SequenceTransport):
    def __init__(self, script, latency):
        super().__init__(script)
        self.latency = latency

    async def send(self, request):
        await asyncio.sleep(self.latency)
        return await super().send(request)


class GateTransport:
    """Holds every response until the test opens the gate."""

    def __init__(self, response):
        self.response = response
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def send(self, request):
        self.entered.set()
        await self.gate.wait()
        return self.response


class TestCancellationToken(unittest.TestCase):
    def test_sleep_reports_cancellation(self):
        loop = asyncio.new_event_loop()

        async def run():
            token = CancellationToken()
            finished = await token.sleep(0.001)
            token.cancel()
            return finished, await token.sleep(10)

        try:
            self.assertEqual(loop.run_until_complete(run()), (True, False))
        finally:
            loop.close()


class TestPoller(unittest.TestCase):
    def setUp(self):
        self.loop = asyncio.new_event_loop()
        self.store = JobStore()
        self.updates = []
        self.terminals = []

    def tearDown(self):
        self.loop.close()

    def on_update(self, state):
        self.updates.append(state.status)

    def test_first_poll_is_immediate(self):
        transport = SequenceTransport([body("processing")])

        async def run():
            poller = Poller(transport, self.store, interval_sec=10)
            watch = poller.watch("job-1", POLL, parse, self.on_update)
            await asyncio.sleep(0.05)
            calls = transport.calls
            poller.cancel_all()
            await watch.task
            return calls

        self.assertEqual(self.loop.run_until_complete(run()), 1)
        self.assertEqual(self.updates, [JobStatus.PROCESSING])

    def test_tick_duration_counts_toward_interval(self):
        transport = SlowTransport([body("processing"), body("processing"), body("succeeded")], latency=0.03)
        delays = []
        original_sleep = CancellationToken.sleep

        async def recording_sleep(token, delay):
            delays.append(delay)
            return await original_sleep(token, delay)

        async def run():
            poller = Poller(transport, self.store, interval_sec=0.05)
            return await poller.watch("job-1", POLL, parse).wait()

        with patch.object(CancellationToken, "sleep", recording_sleep):
            result = self.loop.run_until_complete(run())

        self.assertEqual(result.status, JobStatus.SUCCEEDED)
        self.assertEqual(len(delays), 2)
        for delay in delays:
            self.assertGreaterEqual(delay, 0.0)
            self.assertLess(delay, 0.03)

    def test_defaults(self):
        self.assertEqual(Poller(SequenceTransport([body("queued")]), self.store).interval_sec, 2.0)
        self.assertEqual(Transport().timeout_sec, 30.0)

    def test_polls_until_terminal(self):
        transport = SequenceTransport([body("queued"), body("processing"), body("processing"), body("succeeded")])

        async def run():
            poller = Poller(transport, self.store, interval_sec=0.001)
            watch = poller.watch("job-1", POLL, parse, self.on_update, self.terminals.append)
            result = await watch.wait()
            return poller, watch, result

        poller, watch, result = self.loop.run_until_complete(run())
        self.assertEqual(watch.polls, 4)
        self.assertEqual(transport.calls, 4)
        self.assertEqual(result.status, JobStatus.SUCCEEDED)
        self.assertEqual(len(self.terminals), 1)
        self.assertEqual(self.updates, [JobStatus.QUEUED, JobStatus.PROCESSING, JobStatus.PROCESSING, JobStatus.SUCCEEDED])
        self.assertEqual(self.store.get("job-1").status, JobStatus.SUCCEEDED)
        self.assertEqual(poller.watches, {})

    def test_cancel_after_second_tick(self):
        transport = SequenceTransport([body("processing")])
        holder = {}

        def on_update(state):
            self.updates.append(state.status)
            if len(self.updates) == 2:
                holder["watch"].cancel()

        async def run():
            poller = Poller(transport, self.store, interval_sec=0.001)
            holder["watch"] = poller.watch("job-1", POLL, parse, on_update, self.terminals.append)
            await holder["watch"].task
            await asyncio.sleep(0.02)
            return await holder["watch"].wait()

        result = self.loop.run_until_complete(run())
        self.assertIsNone(result)
        self.assertEqual(len(self.updates), 2)
        self.assertEqual(transport.calls, 2)
        self.assertEqual(self.terminals, [])

    def test_in_flight_response_lands_after_cancel(self):
        transport = GateTransport(body("processing", logs="step 40%"))

        async def run():
            poller = Poller(transport, self.store, interval_sec=0.001)
            watch = poller.watch("job-1", POLL, parse, self.on_update, self.terminals.append)
            await transport.entered.wait()
            self.assertTrue(poller.cancel("job-1"))
            transport.gate.set()
            await watch.task

        self.loop.run_until_complete(run())
        stored = self.store.get("job-1")
        self.assertEqual(stored.status, JobStatus.PROCESSING)
        self.assertEqual(stored.progress_percent, 40.0)
        self.assertEqual(self.updates, [])
        self.assertEqual(self.terminals, [])

    def test_poll_error_stops_polling(self):
        error = TransientServerError(TransportErrorKind.SERVER_ERROR, "HTTP 502", status_code=502)
        transport = SequenceTransport([body("processing"), error])

        async def run():
            poller = Poller(transport, self.store, interval_sec=0.001)
            watch = poller.watch("job-1", POLL, parse, self.on_update, self.terminals.append)
            return await watch.wait()

        result = self.loop.run_until_complete(run())
        self.assertIs(result, error)
        self.assertEqual(self.terminals, [error])
        self.assertEqual(transport.calls, 2)

    def test_terminal_job_is_never_polled(self):
        self.store.upsert(RemoteJobState(id="job-1", status="succeeded", outputs=["https://cdn/x.png"]))
        transport = SequenceTransport([body("processing")])

        async def run():
            poller = Poller(transport, self.store, interval_sec=0.001)
            watch = poller.watch("job-1", POLL, parse, self.on_update, self.terminals.append)
            return watch, await watch.wait()

        watch, result = self.loop.run_until_complete(run())
        self.assertEqual(transport.calls, 0)
        self.assertIsNone(watch.task)
        self.assertEqual(result.outputs, ["https://cdn/x.png"])

    def test_second_watch_reuses_live_watch(self):
        transport = SequenceTransport([body("processing")])

        async def run():
            poller = Poller(transport, self.store, interval_sec=0.001)
            first = poller.watch("job-1", POLL, parse)
            second = poller.watch("job-1", POLL, parse)
            poller.cancel_all()
            await first.task
            return first, second, poller

        first, second, poller = self.loop.run_until_complete(run())
        self.assertIs(first, second)
        self.assertFalse(poller.cancel("job-1"))

if __name__ == '__main__':
    unittest.main()
