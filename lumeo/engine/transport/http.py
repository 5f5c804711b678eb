import time
from dataclasses import dataclass, field
from typing import Dict, Optional

import httpx

from lumeo.common import config
from lumeo.common.errors import InvalidURLError, TransportError, TransportErrorKind
from lumeo.engine.store.history import PayloadHistory
from lumeo.engine.utils.logger import logger


@dataclass(frozen=True)
class HTTPRequest:
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None

    def __post_init__(self):
        try:
            parsed = httpx.URL(self.url)
        except (httpx.InvalidURL, TypeError):
            raise InvalidURLError(self.url)
        if parsed.scheme not in ("http", "https") or not parsed.host:
            raise InvalidURLError(self.url)


def classify_status(status_code: int) -> Optional[TransportErrorKind]:
    """Maps an HTTP status to an error kind, or None for 2xx."""
    if 200 <= status_code < 300:
        return None
    if status_code == 401:
        return TransportErrorKind.UNAUTHORIZED
    if status_code == 403:
        return TransportErrorKind.FORBIDDEN
    if status_code == 429:
        return TransportErrorKind.RATE_LIMITED
    if 400 <= status_code < 500:
        return TransportErrorKind.CLIENT_ERROR
    # 5xx, plus unexpected 1xx/3xx
    return TransportErrorKind.SERVER_ERROR


class Transport:
    """
    Performs exactly one HTTP exchange per `send` call.
    Retries are the caller's concern (see RequestQueue).
    """

    def __init__(
        self,
        payload_sink: Optional[PayloadHistory] = None,
        timeout_sec: float = config.REQUEST_TIMEOUT_SEC,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.payload_sink = payload_sink
        self.timeout_sec = timeout_sec
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout_sec)
            self._owns_client = True
        return self._client

    async def close(self):
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def send(self, request: HTTPRequest) -> bytes:
        if request.body is not None and self.payload_sink is not None:
            # Recorded before the call so failed submissions are auditable too
            self.payload_sink.append(request.body.decode("utf-8", errors="replace"))

        client = await self._get_client()
        start_ts = time.time()
        try:
            resp = await client.request(
                request.method,
                request.url,
                headers=request.headers,
                content=request.body,
                timeout=self.timeout_sec,
            )
        except httpx.TimeoutException as e:
            logger.warning(f"{request.method} {request.url} timed out after {self.timeout_sec}s", extra={"event": "transport_timeout"})
            raise TransportError.from_kind(TransportErrorKind.NETWORK_TIMEOUT, str(e) or "Request timed out")
        except httpx.TransportError as e:
            logger.warning(f"{request.method} {request.url} unreachable: {e}", extra={"event": "transport_unreachable"})
            raise TransportError.from_kind(TransportErrorKind.NETWORK_UNREACHABLE, str(e) or "Network unreachable")

        latency = (time.time() - start_ts) * 1000
        logger.debug(f"{request.method} {request.url} -> {resp.status_code} ({latency:.2f}ms)")

        kind = classify_status(resp.status_code)
        if kind is not None:
            raise TransportError.from_kind(
                kind,
                f"HTTP {resp.status_code} from {request.url}",
                status_code=resp.status_code,
                body=resp.text,
            )
        return resp.content
