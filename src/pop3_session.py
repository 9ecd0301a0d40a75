"""
POP3 Session Management

An authenticated, exclusively owned session to one remote mailbox.
Combines pop3_common (connection and authentication) with pop3_retry
(transient error handling) and exposes the primitives the archive pipeline
needs: enumerate, fetch raw, delete by index, and graceful close.

Message numbers are only meaningful for the lifetime of the session that
produced them; they are never stored.
"""

from __future__ import annotations

import poplib

import pop3_common
import pop3_retry
from auth import pop3_oauth2
from pop3_common import Pop3ProtocolError

CRLF = b"\r\n"


def build_pop3_conf(host, user, password, port=None, client_id=None, client_secret=None, label=None):
    """
    Build a standard POP3 connection config dict.

    If client_id is provided, acquires an OAuth2 token (with error handling and
    sys.exit(1) on failure). Otherwise, builds a password-auth config.

    Returns:
        Dict with keys: host, port, user, password, oauth2_token, oauth2_provider
    """
    oauth2_token = None
    oauth2_provider = None

    if client_id:
        oauth2_token, oauth2_provider = pop3_oauth2.acquire_token(host, client_id, user, client_secret, label)

    return {
        "host": host,
        "port": port,
        "user": user,
        "password": password,
        "oauth2_token": oauth2_token,
        "oauth2_provider": oauth2_provider,
    }


class Pop3Session:
    """Authenticated POP3 session; use as a context manager so it always closes."""

    def __init__(self, conn, log_fn=pop3_common.safe_print):
        self._conn = conn
        self._log_fn = log_fn
        self._closed = False

    @classmethod
    def open(
        cls,
        host,
        port,
        username,
        password=None,
        oauth2_token=None,
        *,
        timeout=pop3_common.DEFAULT_TIMEOUT,
        max_retries=3,
        initial_wait=5,
        log_fn=pop3_common.safe_print,
    ):
        """Connect and authenticate; never returns a half-authenticated session."""
        conn = pop3_common.get_pop3_connection(
            host, username, password, oauth2_token, port=port, timeout=timeout
        )
        proxy = pop3_retry.ConnectionProxy(conn, max_retries=max_retries, initial_wait=initial_wait, log_fn=log_fn)
        return cls(proxy, log_fn=log_fn)

    @classmethod
    def from_conf(cls, conf, **kwargs):
        return cls.open(
            conf["host"],
            conf.get("port"),
            conf["user"],
            conf.get("password"),
            conf.get("oauth2_token"),
            **kwargs,
        )

    def list_all(self):
        """Return [(index, size), ...] for every message, ordered by index."""
        try:
            _resp, lines, _octets = self._conn.list()
        except (poplib.error_proto, OSError) as e:
            raise Pop3ProtocolError(f"failed to list messages: {e}") from e

        listing = []
        for line in lines:
            parts = line.split()
            try:
                listing.append((int(parts[0]), int(parts[1])))
            except (IndexError, ValueError) as e:
                raise Pop3ProtocolError(f"malformed LIST line: {line!r}") from e
        listing.sort()
        return listing

    def fetch(self, index):
        """Return the full raw message (headers included) as sent by the server."""
        try:
            _resp, lines, _octets = self._conn.retr(index)
        except (poplib.error_proto, OSError) as e:
            raise Pop3ProtocolError(f"failed to retrieve message {index}: {e}", index=index) from e
        if not lines:
            return b""
        return CRLF.join(lines) + CRLF

    def delete(self, index):
        """Mark a message for deletion; the server removes it on a clean QUIT."""
        try:
            self._conn.dele(index)
        except (poplib.error_proto, OSError) as e:
            raise Pop3ProtocolError(f"failed to delete message {index}: {e}", index=index) from e

    def close(self):
        """Send QUIT and release the socket. Never raises."""
        if self._closed:
            return
        self._closed = True
        try:
            self._conn.quit()
        except (poplib.error_proto, OSError) as e:
            self._log_fn(f"Warning: POP3 logout failed: {e}")
            try:
                self._conn.close()
            except OSError as close_error:
                self._log_fn(f"Warning: could not close POP3 socket: {close_error}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
