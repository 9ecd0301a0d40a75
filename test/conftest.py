"""
Shared pytest fixtures and utilities for POP3 archiver tests.
"""

import os
import sys

import pytest

# Ensure src/tools are in path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../src")))
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../tools")))

from mock_pop3_server import start_server_thread
from pop3_common import Pop3ProtocolError


def make_message(msg_id=None, subject="Test", body="Body"):
    """Build a raw CRLF message, optionally with a Message-ID header."""
    headers = [f"Subject: {subject}", "From: sender@example.com"]
    if msg_id is not None:
        headers.append(f"Message-ID: {msg_id}")
    return ("\r\n".join(headers) + "\r\n\r\n" + body + "\r\n").encode()


def make_html_message(msg_id=None, width=3000):
    """A message whose body has a very long line plus lines that need dot-stuffing and mbox quoting."""
    body = "\r\n".join(
        [
            "<html><body><p>" + "x" * width + "</p></body></html>",
            ".hidden behind a dot",
            "..",
            "From the desk of the sender",
            ".",
        ]
    )
    return make_message(msg_id, subject="Newsletter", body=body)


@pytest.fixture
def mock_pop3_server():
    """
    Factory fixture that starts mock POP3 servers on free ports.
    Returns (server, port); all servers are shut down after the test.
    """
    servers = []

    def _create(messages=None, **kwargs):
        thread, server = start_server_thread(0, messages, **kwargs)
        servers.append((thread, server))
        return server, server.server_address[1]

    yield _create

    for thread, server in servers:
        server.shutdown()
        server.server_close()
        thread.join(timeout=2)


class FakeSession:
    """
    In-memory stand-in for pop3_session.Pop3Session.

    Records every call in ``events`` (a list that can be shared with fake
    archive functions) so tests can assert on ordering.
    """

    def __init__(self, messages=(), fail_fetch=(), fail_delete=(), events=None):
        self.messages = list(messages)
        self.fail_fetch = set(fail_fetch)
        self.fail_delete = set(fail_delete)
        self.events = events if events is not None else []
        self.deleted = []
        self.closed = False

    def list_all(self):
        self.events.append(("list",))
        return [(i, len(m)) for i, m in enumerate(self.messages, start=1)]

    def fetch(self, index):
        self.events.append(("fetch", index))
        if index in self.fail_fetch:
            raise Pop3ProtocolError(f"failed to retrieve message {index}: -ERR unavailable", index=index)
        return self.messages[index - 1]

    def delete(self, index):
        self.events.append(("delete", index))
        if index in self.fail_delete:
            raise Pop3ProtocolError(f"failed to delete message {index}: -ERR locked", index=index)
        self.deleted.append(index)

    def close(self):
        self.events.append(("close",))
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


__all__ = [
    "mock_pop3_server",
    "make_message",
    "make_html_message",
    "FakeSession",
]
