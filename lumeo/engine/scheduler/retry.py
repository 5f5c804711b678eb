from typing import Optional

from lumeo.common import config
from lumeo.common.errors import RETRYABLE_KINDS, TransportError


class RetryPolicy:
    """
    Exponential backoff for submission calls: `base_delay * 2**attempt`,
    where `attempt` counts retries already made (0 for the first failure).
    """

    def __init__(self, base_delay: float = config.RETRY_BASE_DELAY_SEC, max_retries: int = config.MAX_RETRIES):
        self.base_delay = base_delay
        self.max_retries = max_retries

    def should_retry(self, error: Exception, attempt: int) -> Optional[float]:
        if not isinstance(error, TransportError):
            return None
        if error.kind not in RETRYABLE_KINDS:
            return None
        if attempt >= self.max_retries:
            return None
        return self.base_delay * (2 ** attempt)
