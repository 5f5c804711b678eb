from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from lumeo.common.errors import ConfigurationError, JobNotFoundError, LumeoError, TransportError
from lumeo.common.models.jobs import JobEnvelope, JobOutcome, JobStatus, ProviderID, RemoteJobState
from lumeo.engine.core import Orchestrator
from lumeo.engine.utils.logger import log_buffer as engine_log_buffer, logger

router = APIRouter()

# --- Models ---

class JobSubmission(BaseModel):
    provider_id: ProviderID
    parameters: Dict[str, Any] = Field(default_factory=dict)

class JobResponse(BaseModel):
    envelope_id: str
    provider_id: ProviderID
    status: JobStatus
    job: Optional[RemoteJobState] = None
    error: Optional[str] = None
    cancelled: bool = False

    @classmethod
    def from_outcome(cls, outcome: JobOutcome) -> "JobResponse":
        return cls(
            envelope_id=outcome.envelope_id,
            provider_id=outcome.provider_id,
            status=outcome.status,
            job=outcome.state,
            error=str(outcome.error) if outcome.error is not None else None,
            cancelled=outcome.cancelled,
        )

# --- Dependencies ---

def get_orchestrator(request: Request) -> Orchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Orchestrator not initialized")
    return orchestrator

# --- Jobs ---

@router.post("/jobs", response_model=JobResponse)
async def submit_job(submission: JobSubmission, orchestrator: Orchestrator = Depends(get_orchestrator)):
    try:
        envelope = JobEnvelope(provider_id=submission.provider_id, parameters=submission.parameters)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    logger.info("Received job submission", extra={"event": "api_submit", "job_id": envelope.id, "provider": envelope.provider_id.value})
    outcome = await orchestrator.run_job(envelope)
    return JobResponse.from_outcome(outcome)

@router.get("/jobs", response_model=List[RemoteJobState])
async def list_jobs(active: bool = False, orchestrator: Orchestrator = Depends(get_orchestrator)):
    if active:
        return orchestrator.store.active()
    states = [orchestrator.store.get(job_id) for job_id in orchestrator.store.all_ids()]
    states = [s for s in states if s is not None]
    states.sort(key=lambda s: s.last_updated, reverse=True)
    return states

@router.get("/jobs/{job_id}", response_model=RemoteJobState)
async def get_job(job_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    return orchestrator.get_job(job_id)

@router.post("/jobs/{job_id}/refresh", response_model=RemoteJobState)
async def refresh_job(job_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    return await orchestrator.refresh_job(job_id)

@router.post("/jobs/{job_id}/cancel", response_model=RemoteJobState)
async def cancel_job(job_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    return await orchestrator.cancel_job(job_id)

# --- History ---

@router.get("/history", response_model=List[RemoteJobState])
async def get_history(orchestrator: Orchestrator = Depends(get_orchestrator)):
    return orchestrator.history()

@router.delete("/history")
async def clear_history(orchestrator: Orchestrator = Depends(get_orchestrator)):
    removed = orchestrator.clear_history()
    return {"status": "cleared", "removed": removed}

@router.delete("/history/{job_id}")
async def delete_history_entry(job_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    orchestrator.delete_history_entry(job_id)
    return {"status": "deleted", "job_id": job_id}

@router.get("/payloads", response_model=List[str])
async def get_payloads(orchestrator: Orchestrator = Depends(get_orchestrator)):
    return orchestrator.payloads.entries()

# --- Logs ---

@router.get("/logs")
async def get_logs(request: Request, limit: int = 100, job_id: Optional[str] = None):
    buffer = getattr(request.app.state, "log_buffer", None)
    if buffer is None:
        buffer = engine_log_buffer
    return buffer.tail(limit=limit, job_id=job_id)

# --- Error mapping ---

def status_for(error: LumeoError) -> int:
    if isinstance(error, JobNotFoundError):
        return 404
    if isinstance(error, ConfigurationError):
        return 422
    if isinstance(error, TransportError):
        return 502
    return 500
