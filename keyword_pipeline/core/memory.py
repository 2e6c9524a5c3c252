"""Process memory sampling."""

import psutil

_BYTES_PER_MB = 1024 * 1024


def current_memory_mb() -> float:
    """Resident set size of this process in MB, rounded to 0.1."""
    rss = psutil.Process().memory_info().rss
    return round(rss / _BYTES_PER_MB, 1)
