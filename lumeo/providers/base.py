import abc
import json
import logging
import time
from typing import Any, Dict, List, Optional

from lumeo.common.config import ProviderConfig
from lumeo.common.errors import InvalidParametersError
from lumeo.common.models.jobs import JobEnvelope, JobStatus, ProviderID, RemoteJobState
from lumeo.common.models.json_value import JSONKind, JSONValue
from lumeo.engine.transport.http import HTTPRequest

STATUS_ALIASES = {
    "cancelled": JobStatus.CANCELED,
}


def parse_status(raw: Any) -> JobStatus:
    if not isinstance(raw, str):
        raise ValueError(f"Status must be a string, got {raw!r}")
    value = raw.strip().lower()
    if value in STATUS_ALIASES:
        return STATUS_ALIASES[value]
    return JobStatus(value)


def outputs_from(value: Optional[JSONValue]) -> List[str]:
    """Provider `output` may be a list, a single string, or null."""
    if value is None:
        return []
    if value.kind is JSONKind.NULL:
        return []
    if value.kind is JSONKind.STRING:
        return [value.value] if value.value else []
    if value.kind is JSONKind.ARRAY:
        return [item.as_str() for item in value.value if not item.is_null]
    if value.kind in (JSONKind.NUMBER, JSONKind.BOOL, JSONKind.OBJECT):
        raise ValueError(f"Unexpected output shape: {value.kind.value}")
    raise ValueError(f"Unknown JSON kind: {value.kind}")


class ProviderAdapter(abc.ABC):
    """
    Translates between the orchestrator and one provider's REST contract.
    The orchestrator only ever sees bytes going out and RemoteJobState
    coming back.
    """

    def __init__(self, config: ProviderConfig):
        self.config = config
        self.logger = logging.getLogger(f"lumeo.provider.{config.provider_id.value}")

    @property
    def provider_id(self) -> ProviderID:
        return self.config.provider_id

    @property
    def credential_key(self) -> str:
        return self.config.credential_key

    @abc.abstractmethod
    def build_request(self, parameters: Dict[str, Any]) -> bytes:
        """Encode envelope parameters into the provider's submit body."""
        pass

    @abc.abstractmethod
    def parse_submit_response(self, body: bytes) -> RemoteJobState:
        pass

    def parse_poll_response(self, body: bytes) -> RemoteJobState:
        # Poll responses share the submit response shape for every provider so far
        return self.parse_submit_response(body)

    def headers(self, secret: str) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {secret}",
            "Content-Type": "application/json",
        }
        headers.update(self.config.extra_headers)
        return headers

    def submit_request(self, envelope: JobEnvelope, secret: str) -> HTTPRequest:
        body = self.build_request(envelope.parameters)
        return HTTPRequest("POST", self.config.endpoint, self.headers(secret), body)

    def poll_request(self, state: RemoteJobState, secret: str) -> HTTPRequest:
        return HTTPRequest("GET", state.poll_uri, self.headers(secret))

    def cancel_request(self, state: RemoteJobState, secret: str) -> HTTPRequest:
        return HTTPRequest("POST", state.cancel_uri, self.headers(secret))

    # --- Helpers ---

    @staticmethod
    def require(parameters: Dict[str, Any], key: str) -> Any:
        value = parameters.get(key)
        if value is None or value == "":
            raise InvalidParametersError(f"Missing required parameter '{key}'")
        return value

    @staticmethod
    def encode(payload: Dict[str, Any]) -> bytes:
        return json.dumps(payload).encode("utf-8")

    @staticmethod
    def now() -> float:
        return time.time()
