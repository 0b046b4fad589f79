"""Command-line entry point for the Unified Inbox engine."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from unified_inbox.core import AppSettings, configure_logging, load_app_settings
from unified_inbox.core.config import IMAP_PRESETS
from unified_inbox.core.interfaces import MailEngineError
from unified_inbox.core.models import FetchRequest, NormalizedEmail
from unified_inbox.engine import ImapEngine, default_hint


def build_parser() -> argparse.ArgumentParser:
    """Create and configure the CLI argument parser."""
    parser = argparse.ArgumentParser(description="Unified Inbox IMAP engine")
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to a .env file containing configuration overrides.",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="info",
        choices=["info", "providers", "check", "fetch"],
        help="Operation to execute.",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Number of emails to fetch (default: engine default_limit).",
    )
    parser.add_argument(
        "--skip",
        type=int,
        default=0,
        help="Number of most recent emails to skip (default: 0).",
    )
    parser.add_argument(
        "--unread",
        action="store_true",
        help="Only fetch unread emails.",
    )
    parser.add_argument(
        "--mailbox",
        default=None,
        help="Mailbox to read (default: engine mailbox setting).",
    )
    parser.add_argument(
        "--json",
        dest="as_json",
        action="store_true",
        help="Print fetched emails as JSON.",
    )
    return parser


def execute(args: argparse.Namespace, settings: AppSettings) -> int:
    """Execute the requested CLI command and return an exit code."""
    command = args.command
    if command == "info":
        account = settings.account
        print("Unified Inbox engine is ready. Configure an account to get started.")
        print(f"Account: {account.email or '(not configured)'}")
        print(f"Provider: {account.provider.value}")
        print(f"IMAP host: {account.host or '(provider preset)'}:{account.port}")
        print(f"Mailbox: {settings.engine.mailbox}")
        return 0
    if command == "providers":
        for kind, endpoint in IMAP_PRESETS.items():
            print(f"{kind.value:<8} {endpoint.host}:{endpoint.port}")
        return 0
    if command == "check":
        return asyncio.run(_run_check(settings))
    request = FetchRequest(
        limit=settings.engine.default_limit if args.limit is None else args.limit,
        skip=args.skip,
        unread_only=args.unread,
        mailbox=args.mailbox or settings.engine.mailbox,
    )
    return asyncio.run(_run_fetch(settings, request, as_json=args.as_json))


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    settings = load_app_settings(env_file=args.env_file)
    configure_logging(settings.logging)
    try:
        sys.exit(execute(args, settings))
    except ValueError as exc:
        print(f"Configuration error: {exc}")
        sys.exit(2)


async def _run_check(settings: AppSettings) -> int:
    """Authenticate once and report the classified outcome."""
    engine = ImapEngine(settings.account.to_credential(), settings.engine)
    try:
        if await engine.authenticate():
            print(f"Authenticated as {settings.account.email}.")
            return 0
        _print_error(engine)
        return 1
    finally:
        await engine.disconnect()


async def _run_fetch(
    settings: AppSettings, request: FetchRequest, *, as_json: bool
) -> int:
    """Fetch a window of emails and print them."""
    engine = ImapEngine(settings.account.to_credential(), settings.engine)
    try:
        if not await engine.authenticate():
            _print_error(engine)
            return 1
        try:
            emails = await engine.fetch_emails(request)
        except MailEngineError as exc:
            print(f"Fetch failed: {exc}")
            return 1
    finally:
        await engine.disconnect()

    if as_json:
        print(json.dumps([email.to_dict() for email in emails], indent=2))
        return 0
    _print_table(emails)
    report = engine.last_report
    if report is not None and report.partial:
        print(f"{report.failed} message(s) could not be parsed and were skipped.")
    return 0


def _print_error(engine: ImapEngine) -> None:
    error = engine.last_error
    if error is None:
        print("Authentication failed.")
        return
    print(f"Authentication failed [{error.category.value}]: {error.original_message}")
    print(f"Hint: {error.remediation_hint or default_hint(error.category)}")


def _print_table(emails: list[NormalizedEmail]) -> None:
    if not emails:
        print("No emails found.")
        return
    print(f"Showing {len(emails)} email(s):")
    header = f"{'Date':<16}  {'Read':<4}  {'From':<28}  Subject"
    print(header)
    print("-" * len(header))
    for email in emails:
        received = email.received_at.strftime("%Y-%m-%d %H:%M")
        read_marker = "yes" if email.is_read else "no"
        print(
            f"{received:<16}  {read_marker:<4}  {email.sender.name[:28]:<28}  "
            f"{email.subject}"
        )


if __name__ == "__main__":
    main()
