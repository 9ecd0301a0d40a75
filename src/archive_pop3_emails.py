"""
POP3 Email Archive Script

Downloads every message from a POP3S mailbox into a local mbox file, then
deletes the messages from the server.

Features:
- Safe ordering: messages are only deleted after the mbox file has been
  written and fsynced.
- Incremental: messages whose Message-ID is already in the mbox file are not
  written again, so repeated runs against the same file are idempotent.
- Dry run: download and archive without deleting anything on the server.
- OAuth2: XOAUTH2 for Outlook / Microsoft 365 and Gmail.

Configuration:
  POP3_HOST, POP3_PORT, POP3_USERNAME, POP3_PASSWORD: Server credentials.
  OAUTH2_CLIENT_ID, OAUTH2_CLIENT_SECRET: OAuth2 instead of a password.
  MBOX_PATH: Destination mbox file (default ./messages.mbox).
  DRY_RUN: Set to 1/true/yes to keep messages on the server.

Usage:
  python3 archive_pop3_emails.py --host pop.example.com --user me@example.com --mbox ./mail.mbox
  python3 archive_pop3_emails.py --dry-run
"""

import argparse
import os
import sys
from typing import Optional

import pop3_archive
import pop3_common
import pop3_session
from auth import pop3_oauth2

DEFAULT_MBOX_PATH = "./messages.mbox"
DEFAULT_RETRIES = 3

TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name):
    return (os.getenv(name) or "").strip().lower() in TRUTHY


def build_parser():
    default_host = os.getenv("POP3_HOST")
    default_user = os.getenv("POP3_USERNAME")
    default_pass = os.getenv("POP3_PASSWORD")
    default_client_id = os.getenv("OAUTH2_CLIENT_ID")

    parser = argparse.ArgumentParser(description="Archive POP3 emails to a local mbox file, then delete them.")
    parser.add_argument(
        "--host",
        default=default_host,
        required=not bool(default_host),
        help="POP3S server, hostname or pop3s://host:port (or POP3_HOST)",
    )
    # String defaults from the environment go through type=int like command-line values
    parser.add_argument(
        "--port",
        type=int,
        default=os.getenv("POP3_PORT") or None,
        help=f"POP3S port (or POP3_PORT, default {pop3_common.DEFAULT_POP3S_PORT})",
    )
    parser.add_argument(
        "--user",
        default=default_user,
        required=not bool(default_user),
        help="Username (or POP3_USERNAME)",
    )

    auth_group = parser.add_mutually_exclusive_group(required=not bool(default_pass or default_client_id))
    auth_group.add_argument("--pass", dest="password", default=default_pass, help="Password (or POP3_PASSWORD)")
    auth_group.add_argument(
        "--oauth2-client-id",
        dest="client_id",
        default=default_client_id,
        help="OAuth2 Client ID (or OAUTH2_CLIENT_ID)",
    )
    parser.add_argument(
        "--oauth2-client-secret",
        dest="client_secret",
        default=os.getenv("OAUTH2_CLIENT_SECRET"),
        help="OAuth2 Client Secret, required for Google (or OAUTH2_CLIENT_SECRET)",
    )

    parser.add_argument(
        "--mbox",
        dest="mbox_path",
        default=os.getenv("MBOX_PATH") or DEFAULT_MBOX_PATH,
        help=f"Path to output mbox file (or MBOX_PATH, default {DEFAULT_MBOX_PATH})",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=_env_flag("DRY_RUN"),
        help="Download messages without deleting them from the server (or DRY_RUN)",
    )
    parser.add_argument(
        "--timeout",
        type=int,
        default=os.getenv("POP3_TIMEOUT") or pop3_common.DEFAULT_TIMEOUT,
        help="Socket timeout in seconds (or POP3_TIMEOUT)",
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=os.getenv("POP3_RETRIES") or DEFAULT_RETRIES,
        help="Attempts per command when the server reports a temporary error (or POP3_RETRIES)",
    )
    return parser


def print_outcome(outcome, mbox_path):
    print("\n--- Run Summary ---")
    print(f"Retrieved       : {outcome.retrieved}")
    print(f"Duplicates      : {outcome.duplicates}")
    print(f"Newly archived  : {outcome.archived}")
    if outcome.deletion_skipped:
        print("Deleted         : skipped (dry-run)")
    else:
        print(f"Deleted         : {outcome.deleted}")
        print(f"Delete failures : {outcome.deletion_failures}")
    print("-------------------")

    if outcome.retrieved == 0:
        return
    if outcome.deletion_skipped:
        print(
            f"\nSuccessfully downloaded {outcome.retrieved} message(s) to {mbox_path} "
            "(dry-run, messages not deleted)"
        )
    elif outcome.error is None:
        print(f"\nSuccessfully downloaded {outcome.retrieved} message(s) to {mbox_path}")


def main(argv: Optional[list[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    try:
        hostname, port, use_ssl = pop3_common.parse_pop3_host(args.host, args.port)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    if args.retries < 1:
        print(f"Error: --retries must be >= 1, got {args.retries}")
        sys.exit(1)

    conf = pop3_session.build_pop3_conf(
        args.host, args.user, args.password, port=args.port, client_id=args.client_id, client_secret=args.client_secret
    )
    mbox_path = os.path.expanduser(args.mbox_path)

    print("\n--- Configuration Summary ---")
    print(f"Host            : {hostname}")
    print(f"Port            : {port}{'' if use_ssl else ' (no TLS)'}")
    print(f"User            : {args.user}")
    print(f"Auth Method     : {pop3_oauth2.auth_description(conf['oauth2_provider'])}")
    print(f"Mbox Path       : {mbox_path}")
    if args.dry_run:
        print("Mode            : Dry run (messages stay on the server)")
    print("-----------------------------\n")

    def open_session():
        return pop3_session.Pop3Session.from_conf(conf, timeout=args.timeout, max_retries=args.retries)

    print(f"Connecting to {hostname}:{port}...")
    try:
        outcome = pop3_archive.run_pipeline(open_session, mbox_path, dry_run=args.dry_run)
    except pop3_common.Pop3ArchiveError as e:
        print(f"Error: {e.stage} failed: {e}" if e.stage else f"Error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nArchive interrupted by user.")
        sys.exit(130)

    print_outcome(outcome, mbox_path)

    if outcome.error is not None:
        print(f"Error: deletion failed: {outcome.error}")
        sys.exit(1)


if __name__ == "__main__":
    main()
