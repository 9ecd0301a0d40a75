"""
POP3 Archive Pipeline

Retrieves every message from a POP3 mailbox, archives the new ones into an
mbox file, and only then deletes them from the server.

Stages run strictly one after another:

    connect -> enumerate/fetch -> filter duplicates -> write (fsync) -> delete | skip -> close

Nothing is deleted unless the archive write has returned, and the write only
returns after the file has been fsynced. Duplicates are detected against a
snapshot of the archive's Message-IDs taken before anything is appended.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Optional

import mbox_archive
import pop3_common
from pop3_common import Pop3ArchiveError

STAGE_CONNECT = "connect"
STAGE_FETCH = "fetch"
STAGE_FILTER = "filter"
STAGE_WRITE = "write"
STAGE_DELETE = "delete"


@dataclass(frozen=True)
class Message:
    """One retrieved message. ``index`` is only valid within the session that fetched it."""

    index: int
    content: bytes

    @property
    def message_id(self) -> Optional[str]:
        return pop3_common.extract_message_id(self.content)


@dataclass
class DeletionResult:
    index: int
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RunOutcome:
    retrieved: int = 0
    duplicates: int = 0
    archived: int = 0
    deleted: int = 0
    deletion_failures: int = 0
    deletion_skipped: bool = False
    error: Optional[Exception] = None
    deletions: list[DeletionResult] = field(default_factory=list)


@contextmanager
def _stage(name):
    """Tag pipeline errors raised inside the block with the stage they came from."""
    try:
        yield
    except Pop3ArchiveError as e:
        if e.stage is None:
            e.stage = name
        raise


def fetch_all_messages(session) -> list[Message]:
    """Fetch every message in ascending index order. Any failure aborts the whole fetch."""
    messages = []
    for index, _size in session.list_all():
        messages.append(Message(index=index, content=session.fetch(index)))
    return messages


def partition_messages(messages, existing_ids, log_fn=pop3_common.safe_print):
    """
    Split messages into (new, duplicates) against a Message-ID snapshot.

    Messages without a Message-ID cannot be matched and are always new.
    """
    new_messages = []
    duplicates = []
    for message in messages:
        msg_id = message.message_id
        if msg_id and msg_id in existing_ids:
            duplicates.append(message)
            log_fn(f"Skipping duplicate message (Message-ID: {msg_id})")
        else:
            new_messages.append(message)
    return new_messages, duplicates


def delete_messages(session, messages, log_fn=pop3_common.safe_print) -> list[DeletionResult]:
    """Attempt DELE for every message; failures are recorded, never raised."""
    results = []
    for message in messages:
        try:
            session.delete(message.index)
        except Pop3ArchiveError as e:
            if e.stage is None:
                e.stage = STAGE_DELETE
            log_fn(f"Warning: failed to delete message {message.index}: {e}")
            results.append(DeletionResult(message.index, e))
        else:
            results.append(DeletionResult(message.index))
    return results


def run_pipeline(
    session_factory: Callable,
    mbox_path: str,
    dry_run: bool = False,
    *,
    scan: Callable = mbox_archive.scan_message_ids,
    append: Callable = mbox_archive.append_messages,
    log_fn: Callable = pop3_common.safe_print,
) -> RunOutcome:
    """
    Run one retrieval: connect, fetch all, archive new messages, then delete.

    ``session_factory`` returns an open session (see pop3_session.Pop3Session).
    ``scan`` and ``append`` default to the mbox archive functions.

    Errors before deletion propagate (tagged with their stage) after the
    session is closed. Deletion errors are collected; the first one is
    returned as ``RunOutcome.error``.
    """
    outcome = RunOutcome()

    with _stage(STAGE_CONNECT):
        session = session_factory()
    log_fn("Connected and authenticated successfully")

    with session:
        log_fn("Fetching messages...")
        with _stage(STAGE_FETCH):
            messages = fetch_all_messages(session)

        if not messages:
            log_fn("No messages to download")
            return outcome

        outcome.retrieved = len(messages)
        log_fn(f"Retrieved {len(messages)} message(s)")

        with _stage(STAGE_FILTER):
            existing_ids = scan(mbox_path)
        new_messages, duplicates = partition_messages(messages, existing_ids, log_fn)
        outcome.duplicates = len(duplicates)
        if duplicates:
            log_fn(f"Found {len(duplicates)} duplicate message(s), skipping...")

        if new_messages:
            log_fn(f"Writing messages to {mbox_path}...")
            with _stage(STAGE_WRITE):
                outcome.archived = append(mbox_path, [m.content for m in new_messages])
            log_fn(f"Wrote {outcome.archived} new message(s) to mbox")
        else:
            log_fn("All messages are duplicates, nothing to write")

        # Every fetched message is now either freshly fsynced or already in the archive.
        if dry_run:
            outcome.deletion_skipped = True
            log_fn("Dry-run mode: Skipping deletion from server")
            return outcome

        log_fn("Deleting messages from server...")
        outcome.deletions = delete_messages(session, messages, log_fn)
        failures = [r for r in outcome.deletions if not r.ok]
        outcome.deleted = len(outcome.deletions) - len(failures)
        outcome.deletion_failures = len(failures)
        if failures:
            outcome.error = failures[0].error
        else:
            log_fn("Messages deleted from server")

    return outcome
