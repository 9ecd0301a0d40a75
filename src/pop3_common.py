"""
POP3 Common Utilities

Shared functionality for the POP3 archiver: connection setup over POP3S,
the error taxonomy used across the pipeline, and Message-ID extraction.
"""

from __future__ import annotations

import base64
import poplib
import re
import ssl
import urllib.parse
from email import policy
from email.parser import BytesParser

# Ports
DEFAULT_POP3S_PORT = 995
DEFAULT_POP3_PORT = 110

# Socket timeout (seconds) applied to every POP3 connection
DEFAULT_TIMEOUT = 60

HEADER_MESSAGE_ID = "Message-ID"

# Message lines (HTML mail especially) routinely exceed poplib's 2048-byte default
poplib._MAXLINE = 1 << 20

SSL_SCHEMES = {"pop3s", "pop3+ssl", "pop3ssl", "ssl"}
PLAIN_SCHEMES = {"pop3", "tcp"}


class Pop3ArchiveError(Exception):
    """Base class for all archiver errors.

    ``stage`` names the pipeline stage that failed (filled in by the pipeline
    when the raising component does not know it) and ``index`` is the POP3
    message number involved, if any.
    """

    def __init__(self, message, *, stage=None, index=None):
        super().__init__(message)
        self.stage = stage
        self.index = index


class Pop3ConnectionError(Pop3ArchiveError, ConnectionError):
    """Network, TLS or greeting failure while opening a session."""


class Pop3AuthError(Pop3ArchiveError):
    """The server rejected the credentials."""


class Pop3ProtocolError(Pop3ArchiveError):
    """LIST, RETR or DELE failed inside an authenticated session."""


class ArchiveReadError(Pop3ArchiveError):
    """The existing mbox archive could not be read."""


class ArchiveWriteError(Pop3ArchiveError):
    """New messages could not be durably appended to the mbox archive."""


def safe_print(message: str) -> None:
    """Print a progress line immediately (stdout may be a pipe)."""
    print(message, flush=True)


def parse_pop3_host(host: str, port: int | None = None) -> tuple[str, int, bool]:
    """
    Resolve a host setting into (hostname, port, use_ssl).

    Accepts a bare hostname or a URL such as ``pop3s://mail.example.com:995``.
    ``pop3://`` selects an unencrypted connection (local testing only).
    An explicit ``port`` wins over a port embedded in the URL.
    """
    if not host:
        raise ValueError("POP3 host is required")

    use_ssl = True
    hostname = host
    url_port = None
    if "://" in host:
        parsed = urllib.parse.urlparse(host)
        scheme = parsed.scheme.lower()
        if not scheme or not parsed.hostname:
            raise ValueError(f"Invalid POP3 host: {host}")
        if scheme in PLAIN_SCHEMES:
            use_ssl = False
        elif scheme not in SSL_SCHEMES:
            raise ValueError(f"Unsupported POP3 scheme: {scheme}")
        hostname = parsed.hostname
        url_port = parsed.port

    resolved_port = port or url_port or (DEFAULT_POP3S_PORT if use_ssl else DEFAULT_POP3_PORT)
    return hostname, int(resolved_port), use_ssl


def _authenticate_xoauth2(conn, user, oauth2_token):
    """Run AUTH XOAUTH2 with an initial response (RFC 2449 / RFC 5034)."""
    auth_string = f"user={user}\x01auth=Bearer {oauth2_token}\x01\x01"
    encoded = base64.b64encode(auth_string.encode()).decode("ascii")
    resp = conn._shortcmd(f"AUTH XOAUTH2 {encoded}")
    if resp.startswith(b"+ ") or resp == b"+":
        # Server sent a SASL challenge carrying the error details; an empty
        # reply makes it finish the exchange with -ERR.
        conn._putcmd("")
        conn._getresp()
        raise poplib.error_proto(resp)
    return resp


def get_pop3_connection(host, user, password=None, oauth2_token=None, *, port=None, timeout=DEFAULT_TIMEOUT):
    """
    Establishes a POP3 connection (TLS by default) and authenticates.
    Supports both USER/PASS and OAuth 2.0 (AUTH XOAUTH2).

    Returns the authenticated poplib connection. Raises Pop3ConnectionError
    when the server cannot be reached or greets with an error, and
    Pop3AuthError when the credentials are rejected. A connection that fails
    authentication is closed before the error is raised.
    """
    if not user:
        raise Pop3AuthError(f"Username is required for {host}")
    if not password and not oauth2_token:
        raise Pop3AuthError(f"Either password or oauth2_token is required for {host}")

    try:
        hostname, resolved_port, use_ssl = parse_pop3_host(host, port)
    except ValueError as e:
        raise Pop3ConnectionError(str(e)) from e

    try:
        if use_ssl:
            context = ssl.create_default_context()
            conn = poplib.POP3_SSL(hostname, resolved_port, timeout=timeout, context=context)
        else:
            conn = poplib.POP3(hostname, resolved_port, timeout=timeout)
    except (OSError, poplib.error_proto) as e:
        raise Pop3ConnectionError(f"Connection error to {hostname}:{resolved_port}: {e}") from e

    try:
        if oauth2_token:
            _authenticate_xoauth2(conn, user, oauth2_token)
        else:
            conn.user(user)
            conn.pass_(password)
    except poplib.error_proto as e:
        conn.close()
        raise Pop3AuthError(f"Authentication failed for {user}@{hostname}: {_describe_response(e)}") from e
    except OSError as e:
        conn.close()
        raise Pop3ConnectionError(f"Connection lost during authentication to {hostname}: {e}") from e

    return conn


def _describe_response(error):
    """Render a poplib error (which usually wraps the raw -ERR line) as text."""
    if error.args and isinstance(error.args[0], bytes):
        return error.args[0].decode("utf-8", errors="replace")
    return str(error)


def decode_message_id(msg_id):
    """
    Decodes a Message-ID header value by unfolding continuation lines.
    Returns the stripped Message-ID string or None if empty.
    """
    if not msg_id:
        return None
    return re.sub(r"\r?\n[ \t]+", " ", str(msg_id)).strip() or None


def extract_message_id(raw_message):
    """
    Extracts the Message-ID from a raw message (bytes or str).

    Only the header block is parsed; the lookup is case-insensitive and the
    first occurrence wins. Returns None when the header is absent or empty.
    """
    if not raw_message:
        return None

    try:
        # compat32 keeps the raw value; policy.default truncates folded IDs
        parser = BytesParser(policy=policy.compat32)
        if isinstance(raw_message, str):
            raw_message = raw_message.encode("utf-8", errors="ignore")

        msg = parser.parsebytes(raw_message, headersonly=True)
        return decode_message_id(msg.get(HEADER_MESSAGE_ID))
    except Exception:
        pass
    return None
