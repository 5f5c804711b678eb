import asyncio
from typing import Callable, Dict, List, Optional

from lumeo.common.config import CredentialResolver
from lumeo.common.errors import (
    ConfigurationError,
    JobNotFoundError,
    RemoteJobFailed,
    TransportError,
    UnknownProviderError,
)
from lumeo.common.models.jobs import JobEnvelope, JobOutcome, JobStatus, ProviderID, RemoteJobState
from lumeo.common.storage.client import PersistenceAdapter
from lumeo.engine.poller.core import Poller
from lumeo.engine.scheduler.queue import RequestQueue, decode_response
from lumeo.engine.store.history import PayloadHistory
from lumeo.engine.store.jobs import JobStore
from lumeo.engine.transport.http import Transport
from lumeo.engine.utils.logger import logger
from lumeo.providers.base import ProviderAdapter
from lumeo.providers.factory import ProviderFactory

ProgressCallback = Callable[[RemoteJobState], None]
CompletionCallback = Callable[[JobOutcome], None]


class Orchestrator:
    """
    Owns one store, queue, poller and transport, and drives jobs through
    submit -> poll -> terminal for any registered provider.
    """

    def __init__(
        self,
        adapters: Optional[Dict[ProviderID, ProviderAdapter]] = None,
        credentials: Optional[CredentialResolver] = None,
        transport: Optional[Transport] = None,
        store: Optional[JobStore] = None,
        queue: Optional[RequestQueue] = None,
        poller: Optional[Poller] = None,
        persistence: Optional[PersistenceAdapter] = None,
        payloads: Optional[PayloadHistory] = None,
        namespace: str = "lumeo",
    ):
        self.adapters = adapters if adapters is not None else ProviderFactory.default_adapters()
        self.credentials = credentials or CredentialResolver()
        self.payloads = payloads or PayloadHistory()
        self.transport = transport or Transport(payload_sink=self.payloads)
        self.store = store or JobStore()
        self.queue = queue or RequestQueue(self.transport)
        self.poller = poller or Poller(self.transport, self.store)
        self.persistence = persistence
        self.namespace = namespace

    @property
    def payloads_key(self) -> str:
        return f"{self.namespace}_payloads"

    @property
    def responses_key(self) -> str:
        return f"{self.namespace}_responses"

    def adapter_for(self, provider_id: ProviderID) -> ProviderAdapter:
        adapter = self.adapters.get(provider_id)
        if adapter is None:
            raise UnknownProviderError(f"No adapter registered for provider '{provider_id}'")
        return adapter

    # --- Job lifecycle ---

    async def run_job(
        self,
        envelope: JobEnvelope,
        on_progress: Optional[ProgressCallback] = None,
        on_complete: Optional[CompletionCallback] = None,
        fresh_session: bool = True,
    ) -> JobOutcome:
        if fresh_session:
            self.start_new_session()

        log_extra = {"job_id": envelope.id, "provider": envelope.provider_id.value}
        try:
            adapter = self.adapter_for(envelope.provider_id)
            secret = self.credentials.get_credential(adapter.credential_key)
            request = adapter.submit_request(envelope, secret)
        except ConfigurationError as e:
            logger.error(f"Job rejected before submission: {e}", extra={"event": "config_error", **log_extra})
            return self._complete(JobOutcome(envelope_id=envelope.id, provider_id=envelope.provider_id, error=e), on_complete)

        logger.info("Submitting job", extra={"event": "submit", **log_extra})
        try:
            state = await self.queue.submit(request, adapter.parse_submit_response, job_id=envelope.id)
        except TransportError as e:
            return self._complete(JobOutcome(envelope_id=envelope.id, provider_id=envelope.provider_id, error=e), on_complete)

        state = self._record(state)
        logger.info(f"Accepted as {state.id} ({state.status.value})", extra={"event": "accepted", **log_extra})
        if on_progress is not None:
            on_progress(state)

        if state.is_terminal:
            return self._complete(self._outcome_for(envelope, state), on_complete)

        try:
            poll_request = adapter.poll_request(state, secret)
        except ConfigurationError as e:
            logger.error(f"Cannot poll {state.id}: {e}", extra={"event": "config_error", **log_extra})
            return self._complete(JobOutcome(envelope_id=envelope.id, provider_id=envelope.provider_id, state=state, error=e), on_complete)

        watch = self.poller.watch(state.id, poll_request, adapter.parse_poll_response, on_update=on_progress)
        result = await watch.wait()

        if result is None:
            logger.info("Job watch cancelled", extra={"event": "job_cancelled", **log_extra})
            return JobOutcome(envelope_id=envelope.id, provider_id=envelope.provider_id, state=self.store.get(state.id), cancelled=True)
        if isinstance(result, Exception):
            outcome = JobOutcome(envelope_id=envelope.id, provider_id=envelope.provider_id, state=self.store.get(state.id), error=result)
        else:
            outcome = self._outcome_for(envelope, result)
        return self._complete(outcome, on_complete)

    async def run_batch(
        self,
        envelopes: List[JobEnvelope],
        on_progress: Optional[ProgressCallback] = None,
        on_complete: Optional[CompletionCallback] = None,
    ) -> List[JobOutcome]:
        """Resets the session once, then runs every envelope through the shared queue."""
        self.start_new_session()
        return await asyncio.gather(*[
            self.run_job(envelope, on_progress, on_complete, fresh_session=False)
            for envelope in envelopes
        ])

    def start_new_session(self):
        """Drops finished history entries and stale payloads before a new batch."""
        removed = self.store.clear_history(finished_only=True)
        self.payloads.clear()
        if removed:
            logger.info(f"New session: cleared {removed} finished history entries", extra={"event": "session_reset"})

    def _record(self, state: RemoteJobState) -> RemoteJobState:
        state = self.store.upsert(state)
        self.store.append_to_history(state)
        return state

    def _outcome_for(self, envelope: JobEnvelope, state: RemoteJobState) -> JobOutcome:
        error = None
        if state.status in (JobStatus.FAILED, JobStatus.CANCELED):
            error = RemoteJobFailed(state)
        return JobOutcome(envelope_id=envelope.id, provider_id=envelope.provider_id, state=state, error=error)

    def _complete(self, outcome: JobOutcome, on_complete: Optional[CompletionCallback]) -> JobOutcome:
        message = f"Job finished: {outcome.status.value}"
        if outcome.error is not None:
            message += f" ({outcome.error})"
        logger.info(message, extra={"event": "complete", "job_id": outcome.envelope_id, "provider": outcome.provider_id.value})
        if on_complete is not None:
            on_complete(outcome)
        return outcome

    # --- Single-job operations ---

    def get_job(self, job_id: str) -> RemoteJobState:
        state = self.store.get(job_id)
        if state is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return state

    def _adapter_and_secret(self, state: RemoteJobState):
        if state.provider_id is None:
            raise UnknownProviderError(f"Job {state.id} has no provider")
        adapter = self.adapter_for(state.provider_id)
        return adapter, self.credentials.get_credential(adapter.credential_key)

    async def refresh_job(self, job_id: str) -> RemoteJobState:
        """Polls a job once, outside of any watch."""
        state = self.get_job(job_id)
        if state.is_terminal:
            return state
        adapter, secret = self._adapter_and_secret(state)
        body = await self.transport.send(adapter.poll_request(state, secret))
        return self._record(decode_response(body, adapter.parse_poll_response, job_id))

    async def cancel_job(self, job_id: str) -> RemoteJobState:
        """Stops the local watch and asks the provider to cancel the job."""
        state = self.get_job(job_id)
        self.poller.cancel(job_id)
        if state.is_terminal:
            return state
        adapter, secret = self._adapter_and_secret(state)
        logger.info("Requesting remote cancel", extra={"event": "cancel", "job_id": job_id})
        body = await self.transport.send(adapter.cancel_request(state, secret))
        return self._record(decode_response(body, adapter.parse_poll_response, job_id))

    def cancel_watch(self, job_id: str) -> bool:
        return self.poller.cancel(job_id)

    # --- History ---

    def history(self) -> List[RemoteJobState]:
        return self.store.history()

    def delete_history_entry(self, job_id: str):
        if not self.store.remove(job_id):
            raise JobNotFoundError(f"Job {job_id} not found")

    def clear_history(self) -> int:
        removed = self.store.clear_history()
        self.payloads.clear()
        return removed

    # --- Persistence ---

    def snapshot(self, persistence: Optional[PersistenceAdapter] = None) -> int:
        persistence = persistence or self.persistence
        if persistence is None:
            raise ConfigurationError("No persistence backend configured")
        self.payloads.save(persistence, self.payloads_key)
        saved = self.store.snapshot(persistence, self.responses_key)
        logger.info(f"Snapshot saved: {saved} responses, {len(self.payloads)} payloads", extra={"event": "snapshot"})
        return saved

    def restore(self, persistence: Optional[PersistenceAdapter] = None) -> int:
        persistence = persistence or self.persistence
        if persistence is None:
            raise ConfigurationError("No persistence backend configured")
        payload_count = self.payloads.load(persistence, self.payloads_key)
        restored = self.store.restore(persistence, self.responses_key)
        logger.info(f"Restored {restored} responses, {payload_count} payloads", extra={"event": "restore"})
        return restored

    async def close(self):
        self.poller.cancel_all()
        await self.transport.close()
