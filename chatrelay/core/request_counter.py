"""Process-wide request sequence used to correlate log lines."""

import itertools
from threading import Lock

_lock = Lock()
_counter = itertools.count(1)
_last_issued = 0


def next_request_id() -> int:
    """Return the next request id (1, 2, 3, ...). Safe across threads."""
    global _last_issued
    with _lock:
        _last_issued = next(_counter)
        return _last_issued


def current_request_count() -> int:
    """Return the most recently issued id (0 before the first request)."""
    with _lock:
        return _last_issued
