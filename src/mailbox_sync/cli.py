"""Command-line interface for Mailbox Sync.

This module provides the main entry point for the CLI application.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime, timedelta

import structlog

from mailbox_sync import __version__
from mailbox_sync.config import Settings, get_settings
from mailbox_sync.exceptions import MailboxSyncError
from mailbox_sync.models import MessageFilter, SyncSummary
from mailbox_sync.service import MailboxSyncService, build_service
from mailbox_sync.utils import configure_logging, utc_now

logger = structlog.get_logger()


def _add_filter_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--from", dest="from_email", default=None, help="Sender contains")
    parser.add_argument("--to", dest="to_email", default=None, help="Recipient contains")
    parser.add_argument("--subject", default=None, help="Subject contains")
    parser.add_argument("--since", type=datetime.fromisoformat, default=None, help="ISO date")
    parser.add_argument("--until", type=datetime.fromisoformat, default=None, help="ISO date")
    parser.add_argument("--unread", action="store_true", help="Only unread messages")
    parser.add_argument("--starred", action="store_true", help="Only starred messages")
    parser.add_argument("--label", action="append", default=[], help="Label id (repeatable)")


def _filter_from_args(args: argparse.Namespace, max_results: int | None = None) -> MessageFilter:
    return MessageFilter(
        from_email=args.from_email,
        to_email=args.to_email,
        subject=args.subject,
        start_date=args.since,
        end_date=args.until,
        is_read=False if args.unread else None,
        is_starred=True if args.starred else None,
        labels=args.label,
        max_results=max_results,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mailbox-sync", description="Mailbox Sync")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser("sync", help="Run one sync cycle now")
    sync_parser.add_argument("--owner", default=None, help="Sync only this owner (default: all)")
    limit_group = sync_parser.add_mutually_exclusive_group()
    limit_group.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Per-owner message cap (default: settings sync_max_messages)",
    )
    limit_group.add_argument(
        "--full",
        action="store_true",
        help="Follow every page (full resync, no cap)",
    )
    sync_parser.add_argument(
        "--query",
        default=None,
        help="Optional Gmail search query (same syntax as Gmail search box)",
    )
    _add_filter_arguments(sync_parser)

    sweep_parser = subparsers.add_parser("sweep", help="Delete messages older than the retention window")
    sweep_parser.add_argument(
        "--days",
        type=int,
        default=None,
        help="Retention window in days (default: settings retention_days)",
    )

    stats_parser = subparsers.add_parser("stats", help="Show stored-message counts for an owner")
    stats_parser.add_argument("owner", help="Owner identifier")

    search_parser = subparsers.add_parser("search", help="Search an owner's stored messages")
    search_parser.add_argument("owner", help="Owner identifier")
    _add_filter_arguments(search_parser)
    search_parser.add_argument("--limit", type=int, default=25, help="Max results")

    subparsers.add_parser("accounts", help="List connected owners")

    fetch_parser = subparsers.add_parser("fetch", help="Fetch and store one message by id")
    fetch_parser.add_argument("owner", help="Owner identifier")
    fetch_parser.add_argument("message_id", help="Gmail message id")

    connect_parser = subparsers.add_parser(
        "connect", help="Authorize a mailbox in the browser and store it for an owner"
    )
    connect_parser.add_argument("owner", help="Owner identifier")

    disconnect_parser = subparsers.add_parser(
        "disconnect", help="Remove an owner's credential and stored messages"
    )
    disconnect_parser.add_argument("owner", help="Owner identifier")

    subparsers.add_parser("schedule", help="Run sync, poll and retention on the configured cadence")

    return parser


def _print_summary(summary: SyncSummary) -> None:
    print(
        f"Synced {summary.total_owners} owner(s): {summary.succeeded} succeeded, "
        f"{summary.failed} failed, {summary.messages_fetched} messages fetched "
        f"({summary.inserted} new, {summary.updated} updated, {summary.skipped} skipped)"
    )
    for result in summary.results:
        if not result.succeeded:
            print(f"- {result.owner}: {result.status.value} ({result.error})")
    for owner in summary.reauth_required:
        print(f"Owner {owner} must reconnect: run `mailbox-sync connect {owner}`")


async def _cmd_sync(args: argparse.Namespace, service: MailboxSyncService) -> int:
    message_filter = _filter_from_args(args)
    message_filter.check()
    query = " ".join(q for q in (args.query, message_filter.to_gmail_query()) if q) or None

    summary = await service.run_sync_cycle(args.owner, args.limit, full=args.full, query=query)
    _print_summary(summary)
    return 0 if summary.failed == 0 else 1


def _cmd_sweep(args: argparse.Namespace, settings: Settings, service: MailboxSyncService) -> int:
    days = args.days or settings.retention_days
    deleted = service.run_retention_sweep(utc_now() - timedelta(days=days))
    for owner, count in sorted(deleted.items()):
        print(f"- {owner}: {count} deleted")
    print(f"Deleted {sum(deleted.values())} message(s) older than {days} days")
    return 0


def _cmd_stats(args: argparse.Namespace, service: MailboxSyncService) -> int:
    stats = service.get_stats_for_owner(args.owner)
    print(f"Total messages: {stats.total}")
    print(f"Unread messages: {stats.unread}")
    print(f"Read messages: {stats.read}")
    print(f"Starred messages: {stats.starred}")
    print(f"Last synced: {stats.last_synced_at.isoformat() if stats.last_synced_at else 'never'}")
    return 0


def _cmd_search(args: argparse.Namespace, service: MailboxSyncService) -> int:
    message_filter = _filter_from_args(args, max_results=args.limit)
    for record in service.search_messages(args.owner, message_filter):
        unread = "READ" if record.is_read else "UNREAD"
        date_part = record.received_at.isoformat() if record.received_at else "(no date)"
        from_part = record.from_email or "(unknown sender)"
        print(f"{unread}\t{date_part}\t{from_part}\t{record.subject}")
    return 0


def _cmd_accounts(service: MailboxSyncService) -> int:
    for credential in service.list_accounts():
        synced = credential.last_synced_at.isoformat() if credential.last_synced_at else "never"
        status = "\treauth required" if service.needs_reauth(credential) else ""
        print(f"{credential.owner}\t{credential.account_email}\tlast synced: {synced}{status}")
    return 0


async def _cmd_fetch(args: argparse.Namespace, service: MailboxSyncService) -> int:
    record = await service.fetch_message(args.owner, args.message_id)
    print(f"Stored {record.message_id} for owner {args.owner}: {record.subject}")
    return 0


async def _cmd_connect(
    args: argparse.Namespace, settings: Settings, service: MailboxSyncService
) -> int:
    from mailbox_sync.gmail.oauth import fetch_account_email, run_installed_app_flow

    access_token, refresh_token, expires_at = run_installed_app_flow(
        settings.oauth_credentials_path, settings.gmail_scope
    )
    account_email = fetch_account_email(access_token, settings.http_timeout_seconds)
    await service.connect_owner(
        args.owner,
        account_email=account_email,
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=expires_at,
    )
    print(f"Connected {account_email or 'mailbox'} for owner {args.owner}")
    return 0


async def _cmd_schedule(settings: Settings, service: MailboxSyncService) -> int:
    from mailbox_sync.sync.scheduler import SyncScheduler

    await SyncScheduler(service, settings).run()
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point for the Mailbox Sync CLI.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    if args is None:
        args = sys.argv[1:]

    settings = get_settings()
    configure_logging(settings.log_level)

    logger.info("mailbox_sync_started", version=__version__, debug=settings.debug)

    parser = _build_parser()
    parsed = parser.parse_args(args)

    try:
        service = build_service(settings)

        if parsed.command == "sync":
            return asyncio.run(_cmd_sync(parsed, service))
        if parsed.command == "sweep":
            return _cmd_sweep(parsed, settings, service)
        if parsed.command == "stats":
            return _cmd_stats(parsed, service)
        if parsed.command == "search":
            return _cmd_search(parsed, service)
        if parsed.command == "accounts":
            return _cmd_accounts(service)
        if parsed.command == "fetch":
            return asyncio.run(_cmd_fetch(parsed, service))
        if parsed.command == "connect":
            return asyncio.run(_cmd_connect(parsed, settings, service))
        if parsed.command == "disconnect":
            deleted = asyncio.run(service.disconnect_owner(parsed.owner))
            print(f"Disconnected {parsed.owner}; deleted {deleted} message(s)")
            return 0
        if parsed.command == "schedule":
            return asyncio.run(_cmd_schedule(settings, service))
    except MailboxSyncError as exc:
        logger.error("command_failed", command=parsed.command, error=str(exc))
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130

    logger.error("unknown_command", command=parsed.command)
    return 2


if __name__ == "__main__":
    sys.exit(main())
