from enum import Enum
from typing import Optional


class TransportErrorKind(str, Enum):
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    CLIENT_ERROR = "client_error"
    NETWORK_TIMEOUT = "network_timeout"
    NETWORK_UNREACHABLE = "network_unreachable"
    DECODE_ERROR = "decode_error"


RETRYABLE_KINDS = frozenset({
    TransportErrorKind.RATE_LIMITED,
    TransportErrorKind.SERVER_ERROR,
    TransportErrorKind.NETWORK_TIMEOUT,
    TransportErrorKind.NETWORK_UNREACHABLE,
})


class LumeoError(Exception):
    """Base class for every orchestrator failure."""


# --- Configuration (raised before any network call) ---

class ConfigurationError(LumeoError):
    """Missing credential, invalid URL or unknown provider."""


class MissingCredentialError(ConfigurationError):
    def __init__(self, key: str):
        super().__init__(f"Credential '{key}' not found in environment or key directory")
        self.key = key


class InvalidURLError(ConfigurationError):
    def __init__(self, url: str):
        super().__init__(f"Invalid URL: {url!r}")
        self.url = url


class UnknownProviderError(ConfigurationError):
    pass


class InvalidParametersError(ConfigurationError):
    """Envelope parameters cannot be turned into a provider request."""


# --- Transport ---

class TransportError(LumeoError):
    """One failed HTTP exchange, classified by `kind`."""

    def __init__(self, kind: TransportErrorKind, message: str = "", status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message or kind.value)
        self.kind = kind
        self.status_code = status_code
        self.body = body

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    @classmethod
    def from_kind(cls, kind: TransportErrorKind, message: str = "", status_code: Optional[int] = None, body: Optional[str] = None) -> "TransportError":
        error_cls = _KIND_TO_CLASS.get(kind, TransportError)
        return error_cls(kind, message, status_code=status_code, body=body)

    def __repr__(self):
        return f"{type(self).__name__}(kind={self.kind.value}, status_code={self.status_code})"


class AuthError(TransportError):
    """401/403. Fatal, never retried."""


class RateLimited(TransportError):
    """429. Retryable."""


class TransientServerError(TransportError):
    """5xx, timeout or unreachable host. Retryable."""


class ClientRequestError(TransportError):
    """Any other 4xx. Fatal."""


class MalformedResponse(TransportError):
    """Response body could not be decoded. Fatal."""

    def __init__(self, kind: TransportErrorKind = TransportErrorKind.DECODE_ERROR, message: str = "", status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(kind, message, status_code=status_code, body=body)


_KIND_TO_CLASS = {
    TransportErrorKind.UNAUTHORIZED: AuthError,
    TransportErrorKind.FORBIDDEN: AuthError,
    TransportErrorKind.RATE_LIMITED: RateLimited,
    TransportErrorKind.SERVER_ERROR: TransientServerError,
    TransportErrorKind.NETWORK_TIMEOUT: TransientServerError,
    TransportErrorKind.NETWORK_UNREACHABLE: TransientServerError,
    TransportErrorKind.CLIENT_ERROR: ClientRequestError,
    TransportErrorKind.DECODE_ERROR: MalformedResponse,
}


# --- Remote job outcome ---

class RemoteJobFailed(LumeoError):
    """Provider reported the job as failed or canceled."""

    def __init__(self, state):
        message = state.error_message or f"Job {state.status.value}"
        super().__init__(f"Job {state.id} {state.status.value}: {message}")
        self.state = state


class JobNotFoundError(LumeoError):
    """Requested job id is not in the store."""
