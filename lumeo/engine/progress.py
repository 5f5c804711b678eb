import re
from typing import Optional

PERCENT_PATTERN = re.compile(r"(\d{1,3})%")


def highest_percentage(logs: Optional[str]) -> Optional[float]:
    """Largest `NN%` value in free-text logs, capped at 100. None if absent."""
    if not logs:
        return None
    values = [int(m) for m in PERCENT_PATTERN.findall(logs)]
    values = [v for v in values if v <= 100]
    if not values:
        return None
    return float(max(values))


def merge_progress(*candidates: Optional[float]) -> Optional[float]:
    """Maximum of the known values; keeps reported progress non-decreasing."""
    known = [c for c in candidates if c is not None]
    if not known:
        return None
    return max(known)
