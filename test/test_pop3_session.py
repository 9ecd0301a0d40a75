"""
Tests for pop3_session.py

Tests cover:
- build_pop3_conf() with and without OAuth2
- Opening authenticated sessions against the mock POP3 server
- list_all / fetch / delete primitives and their error mapping
- close() never raising, and context manager release on every path
"""

import os
import poplib
import sys
from unittest.mock import MagicMock, patch

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../src")))

import pop3_session
from conftest import make_html_message, make_message
from pop3_common import Pop3AuthError, Pop3ProtocolError
from pop3_session import Pop3Session


def _open(port, **kwargs):
    return Pop3Session.open(f"pop3://localhost:{port}", None, "user", "pass", initial_wait=0, **kwargs)


class TestBuildPop3Conf:
    def test_password_auth(self):
        conf = pop3_session.build_pop3_conf("pop.example.com", "user@example.com", "pass123", port=1995)

        assert conf == {
            "host": "pop.example.com",
            "port": 1995,
            "user": "user@example.com",
            "password": "pass123",
            "oauth2_token": None,
            "oauth2_provider": None,
        }

    def test_oauth2_acquires_token(self):
        with patch.object(
            pop3_session.pop3_oauth2, "acquire_token", return_value=("tok", "microsoft")
        ) as mock_acquire:
            conf = pop3_session.build_pop3_conf(
                "outlook.office365.com", "user@example.com", None, client_id="cid", client_secret="sec"
            )

        mock_acquire.assert_called_once_with("outlook.office365.com", "cid", "user@example.com", "sec", None)
        assert conf["oauth2_token"] == "tok"
        assert conf["oauth2_provider"] == "microsoft"


class TestSessionAgainstServer:
    def test_list_all_is_ordered_and_sized(self, mock_pop3_server):
        msgs = [make_message("<1@t>"), make_message("<2@t>", body="longer body"), make_message("<3@t>")]
        _, port = mock_pop3_server(msgs)

        with _open(port) as session:
            listing = session.list_all()

        assert listing == [(1, len(msgs[0])), (2, len(msgs[1])), (3, len(msgs[2]))]

    def test_empty_mailbox(self, mock_pop3_server):
        _, port = mock_pop3_server([])

        with _open(port) as session:
            assert session.list_all() == []

    def test_fetch_returns_exact_bytes(self, mock_pop3_server):
        raw = b"Subject: dots\r\nMessage-ID: <d@t>\r\n\r\n.leading dot\r\n..two dots\r\nFrom here\r\n"
        _, port = mock_pop3_server([raw])

        with _open(port) as session:
            assert session.fetch(1) == raw

    def test_fetch_long_lines_and_stuffed_dots(self, mock_pop3_server):
        raw = make_html_message("<long@t>", width=100_000)
        server, port = mock_pop3_server([raw, make_message("<2@t>")])

        with _open(port) as session:
            assert session.fetch(1) == raw
            assert session.fetch(2) == make_message("<2@t>")

        assert "QUIT" in server.commands

    def test_fetch_failure_names_index(self, mock_pop3_server):
        server, port = mock_pop3_server([make_message("<1@t>"), make_message("<2@t>")])
        server.fail_retr.add(2)

        with _open(port) as session:
            with pytest.raises(Pop3ProtocolError, match="message 2") as exc_info:
                session.fetch(2)

        assert exc_info.value.index == 2

    def test_delete_takes_effect_on_quit(self, mock_pop3_server):
        server, port = mock_pop3_server([make_message("<1@t>"), make_message("<2@t>")])

        with _open(port) as session:
            session.delete(1)
            assert len(server.messages) == 2

        assert server.messages == [make_message("<2@t>")]

    def test_delete_failure_names_index(self, mock_pop3_server):
        server, port = mock_pop3_server([make_message("<1@t>")])
        server.fail_dele.add(1)

        with _open(port) as session:
            with pytest.raises(Pop3ProtocolError, match="delete message 1") as exc_info:
                session.delete(1)

        assert exc_info.value.index == 1
        assert len(server.messages) == 1

    def test_transient_list_error_is_retried(self, mock_pop3_server):
        server, port = mock_pop3_server([make_message("<1@t>")])
        server.transient_failures["LIST"] = 2

        with _open(port, log_fn=lambda _m: None) as session:
            assert session.list_all() == [(1, len(make_message("<1@t>")))]

    def test_bad_credentials(self, mock_pop3_server):
        _, port = mock_pop3_server([], password="right")

        with pytest.raises(Pop3AuthError):
            Pop3Session.open(f"pop3://localhost:{port}", None, "user", "wrong")

    def test_context_manager_closes_on_error(self, mock_pop3_server):
        server, port = mock_pop3_server([make_message("<1@t>")])

        with pytest.raises(RuntimeError):
            with _open(port) as session:
                session.delete(1)
                raise RuntimeError("boom")

        assert "QUIT" in server.commands
        # QUIT still commits; callers decide what to delete before raising
        assert server.messages == []


class TestClose:
    def test_close_is_idempotent(self):
        conn = MagicMock()
        session = Pop3Session(conn, log_fn=lambda _m: None)

        session.close()
        session.close()

        conn.quit.assert_called_once()

    def test_quit_failure_is_logged_not_raised(self):
        conn = MagicMock()
        conn.quit.side_effect = poplib.error_proto(b"-ERR some deleted messages not removed")
        logs = []
        session = Pop3Session(conn, log_fn=logs.append)

        session.close()

        conn.close.assert_called_once()
        assert "logout failed" in logs[0]

    def test_socket_error_on_quit_is_swallowed(self):
        conn = MagicMock()
        conn.quit.side_effect = ConnectionResetError("reset by peer")
        conn.close.side_effect = OSError("already closed")
        logs = []
        session = Pop3Session(conn, log_fn=logs.append)

        session.close()

        assert len(logs) == 2

    def test_list_malformed_line(self):
        conn = MagicMock()
        conn.list.return_value = (b"+OK", [b"garbage"], 7)
        session = Pop3Session(conn)

        with pytest.raises(Pop3ProtocolError, match="malformed LIST line"):
            session.list_all()

    def test_list_network_error(self):
        conn = MagicMock()
        conn.list.side_effect = TimeoutError("timed out")
        session = Pop3Session(conn)

        with pytest.raises(Pop3ProtocolError, match="failed to list messages"):
            session.list_all()
