import time
import uuid
from enum import Enum
from types import MappingProxyType
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from lumeo.common.models.json_value import JSONValue


class ProviderID(str, Enum):
    REPLICATE = "replicate"
    FOOOCUS = "fooocus"
    COMFYUI_AWS = "comfyui_aws"
    CHATGPT = "chatgpt"


class JobStatus(str, Enum):
    QUEUED = "queued"
    STARTING = "starting"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELED})


class JobEnvelope(BaseModel):
    """One generation request, before any provider has accepted it."""
    model_config = ConfigDict(frozen=True)

    provider_id: ProviderID
    parameters: Mapping[str, Any] = Field(default_factory=dict, validate_default=True)
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    submitted_at: float = Field(default_factory=time.time)

    @field_validator("parameters")
    @classmethod
    def validate_parameters(cls, v):
        # Round-trip through the tagged union so non-JSON values fail here
        # and the envelope holds its own read-only copy
        return MappingProxyType(JSONValue.from_python(dict(v)).to_python())

    @field_serializer("parameters")
    def serialize_parameters(self, v):
        return dict(v)


class RemoteJobState(BaseModel):
    """Provider's view of a job, as last observed."""
    id: str
    request_id: Optional[str] = None
    provider_id: Optional[ProviderID] = None
    status: JobStatus
    outputs: List[str] = Field(default_factory=list)
    error_message: Optional[str] = None
    progress_percent: Optional[float] = None
    logs: Optional[str] = None
    poll_uri: str = ""
    cancel_uri: str = ""
    last_updated: float = Field(default_factory=time.time)

    @field_validator("progress_percent")
    @classmethod
    def clamp_progress(cls, v):
        if v is None:
            return v
        return max(0.0, min(100.0, float(v)))

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class JobOutcome(BaseModel):
    """Result handed to `on_complete` and returned by `Orchestrator.run_job`."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    envelope_id: str
    provider_id: ProviderID
    state: Optional[RemoteJobState] = None
    error: Optional[Exception] = None
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.state is not None and self.state.status == JobStatus.SUCCEEDED

    @property
    def status(self) -> JobStatus:
        # Submit failures never produce a remote state: local terminal failure
        if self.state is None:
            return JobStatus.FAILED
        # Polling stopped on an error before the provider reported an outcome
        if self.error is not None and not self.state.is_terminal:
            return JobStatus.FAILED
        return self.state.status
