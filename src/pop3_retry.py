"""
POP3 Retry Logic

Transparent retry wrapper for poplib connections that handles transient
server errors with exponential backoff. POP3 servers signal these with the
RFC 2449 / RFC 3206 response codes [SYS/TEMP] and [IN-USE].
"""

from __future__ import annotations

import poplib
import time


class ConnectionProxy:
    """Transparent proxy that retries POP3 commands on transient server errors.

    Wraps a poplib.POP3 or POP3_SSL connection. poplib raises error_proto for
    every -ERR reply; for methods in RETRYABLE_METHODS a transient -ERR is
    retried, anything else propagates on the first attempt.
    """

    TRANSIENT_PATTERNS = [b"[SYS/TEMP]", b"[IN-USE]", b"try again", b"temporarily unavailable"]

    # Commands that leave no server state behind when they fail
    RETRYABLE_METHODS = frozenset({"stat", "list", "retr", "dele", "uidl", "top", "noop"})

    def __init__(self, conn, max_retries=3, initial_wait=5, log_fn=print):
        if max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {max_retries}")
        if initial_wait < 0:
            raise ValueError(f"initial_wait must be >= 0, got {initial_wait}")
        self._conn = conn
        self._max_retries = max_retries
        self._initial_wait = initial_wait
        self._log_fn = log_fn

    @classmethod
    def _is_transient_error(cls, error):
        """Check if a poplib error carries a transient response code."""
        for item in error.args:
            if isinstance(item, str):
                item = item.encode("utf-8", errors="ignore")
            if not isinstance(item, bytes):
                continue
            lowered = item.lower()
            for pattern in cls.TRANSIENT_PATTERNS:
                if pattern.lower() in lowered:
                    return True
        return False

    def __getattr__(self, name):
        attr = getattr(self._conn, name)
        if name not in self.RETRYABLE_METHODS or not callable(attr):
            return attr

        def wrapper(*args, **kwargs):
            for attempt in range(self._max_retries):
                try:
                    return attr(*args, **kwargs)
                except poplib.error_proto as e:
                    if not self._is_transient_error(e) or attempt + 1 >= self._max_retries:
                        raise
                    wait = self._initial_wait * (2**attempt)
                    self._log_fn(
                        f"Server busy ({name.upper()}), retrying in {wait}s... "
                        f"(attempt {attempt + 1}/{self._max_retries})"
                    )
                    time.sleep(wait)

        return wrapper
