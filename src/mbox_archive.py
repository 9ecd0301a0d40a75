"""
mbox Archive

Local append-only archive of retrieved messages in standard mbox format,
readable by any mbox tool (mutt, Thunderbird import, Python's mailbox module).

- scan_message_ids: one read-only pass over an existing archive collecting
  the Message-IDs it already holds.
- append_messages: appends new entries, each behind a synthetic envelope line,
  and fsyncs the file before returning.
"""

from __future__ import annotations

import mailbox
import os
import time

import pop3_common
from pop3_common import ArchiveReadError, ArchiveWriteError

# POP3 exposes no envelope metadata, so every entry gets the same placeholder sender
ENVELOPE_SENDER = "MAILER-DAEMON"

# The archive holds personal correspondence: owner read/write only
ARCHIVE_FILE_MODE = 0o600

MBOX_SEPARATOR = b"From "


def scan_message_ids(path):
    """
    Returns the set of Message-IDs already present in the archive at ``path``.

    A missing or empty file is an empty archive. A file that does not start
    with an mbox envelope line is rejected with ArchiveReadError rather than
    silently treated as empty. Entries without a Message-ID contribute nothing.
    """
    message_ids = set()
    if not os.path.exists(path):
        return message_ids

    try:
        with open(path, "rb") as f:
            head = f.read(len(MBOX_SEPARATOR))
    except OSError as e:
        raise ArchiveReadError(f"failed to open mbox file for reading: {e}") from e

    if not head:
        return message_ids
    if head != MBOX_SEPARATOR:
        raise ArchiveReadError(f"{path} is not an mbox file (first line does not start with 'From ')")

    try:
        box = mailbox.mbox(path, create=False)
    except (OSError, mailbox.Error) as e:
        raise ArchiveReadError(f"failed to open mbox file for reading: {e}") from e

    try:
        for key in box.iterkeys():
            msg_id = pop3_common.extract_message_id(box.get_bytes(key))
            if msg_id:
                message_ids.add(msg_id)
    except (OSError, mailbox.Error) as e:
        raise ArchiveReadError(f"failed to read message from mbox: {e}") from e
    finally:
        box.close()

    return message_ids


def envelope_line(when=None):
    """Build the 'From ' separator line for an entry written at ``when`` (epoch seconds)."""
    stamp = time.asctime(time.gmtime(when))
    return f"From {ENVELOPE_SENDER} {stamp}".encode("ascii")


def _ensure_archive_file(path):
    """Create the archive with owner-only permissions; existing files are left as they are."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, ARCHIVE_FILE_MODE)
    os.close(fd)


def append_messages(path, messages, when=None):
    """
    Appends raw messages to the archive and fsyncs before returning.

    ``messages`` is an ordered sequence of raw message bytes. Each entry is
    framed by mailbox.mbox (envelope line, '>From ' quoting of body lines that
    start with 'From ', blank line separator); the message bytes are otherwise
    written unchanged. Returns the number of entries written.

    A successful return means the data has reached the disk: callers rely on
    this before deleting anything at the source.
    """
    if not messages:
        return 0

    from_line = envelope_line(when) + b"\n"
    try:
        _ensure_archive_file(path)
        box = mailbox.mbox(path, create=True)
        try:
            for position, content in enumerate(messages, 1):
                try:
                    # A leading 'From ' line is consumed by mailbox as the envelope,
                    # so the message itself is always written whole.
                    box.add(from_line + content)
                except (OSError, mailbox.Error) as e:
                    raise ArchiveWriteError(f"failed to write entry {position} of {len(messages)}: {e}") from e
            # with only appends pending, mailbox flushes and fsyncs the file in place
            box.flush()
        finally:
            box.close()
    except ArchiveWriteError:
        raise
    except (OSError, mailbox.Error) as e:
        raise ArchiveWriteError(f"failed to write mbox file {path}: {e}") from e

    return len(messages)
