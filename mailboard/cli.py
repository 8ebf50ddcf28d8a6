#!/usr/bin/env python3
"""
Mailboard command line

Connects every configured account and runs one aggregate command.

Usage:
    mailboard accounts
    mailboard unread
    mailboard search "invoice" --limit 10
    mailboard recent --days 3
    mailboard show yahoo 1042 --body
    mailboard mark-read yahoo 1042 1043
    mailboard stats --days 7
    mailboard insights --days 30
    mailboard trash yahoo 1042 1043
    mailboard restore yahoo 1042
    mailboard audit --account yahoo
"""
import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv

from mailboard.core.accounts.multi_account import MultiAccountManager
from mailboard.core.accounts.registry import AccountRegistry
from mailboard.core.config import get_settings
from mailboard.core.deletion.audit import AuditLog, dump_entry
from mailboard.core.deletion.coordinator import BatchState, DeletionCoordinator
from mailboard.core.errors import MailboardError
from mailboard.core.models import SearchResults

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Unified view over Gmail, Yahoo and AOL accounts'
    )
    parser.add_argument('--config', type=str, default=None,
                        help='Path to accounts.yaml (default: resolved via CONFIG_DIR)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable debug logging')

    commands = parser.add_subparsers(dest='command', required=True)
    commands.add_parser('accounts', help='Connect all accounts and show their status')
    commands.add_parser('unread', help='Unread counts per account')

    search = commands.add_parser('search', help='Search all accounts')
    search.add_argument('query', type=str)
    search.add_argument('--limit', type=int, default=None, help='Results per account')

    recent = commands.add_parser('recent', help='Newest inbox messages across accounts')
    recent.add_argument('--limit', type=int, default=None, help='Messages per account')
    recent.add_argument('--days', type=int, default=None, help='Only the last N days')

    show = commands.add_parser('show', help='Show one message')
    show.add_argument('account', type=str, help='Account id from accounts.yaml')
    show.add_argument('message_id', type=str)
    show.add_argument('--body', action='store_true', help='Include the plain-text body')

    mark_read = commands.add_parser('mark-read', help='Mark messages as read')
    mark_read.add_argument('account', type=str, help='Account id from accounts.yaml')
    mark_read.add_argument('message_ids', nargs='+', help='Message ids (Gmail ids or IMAP UIDs)')

    stats = commands.add_parser('stats', help='Total, unread and recent message counts per account')
    stats.add_argument('--days', type=int, default=None, help='Window counted as recent')

    insights = commands.add_parser('insights', help='Activity and top senders per account')
    insights.add_argument('--days', type=int, default=30)
    insights.add_argument('--sample', type=int, default=None, help='Recent messages sampled per account')

    for name, help_text in (('trash', 'Move messages to trash'), ('restore', 'Restore messages from trash')):
        cmd = commands.add_parser(name, help=help_text)
        cmd.add_argument('account', type=str, help='Account id from accounts.yaml')
        cmd.add_argument('message_ids', nargs='+', help='Message ids (Gmail ids or IMAP UIDs)')

    audit = commands.add_parser('audit', help='Show the deletion audit log')
    audit.add_argument('--account', type=str, default=None)
    return parser


def _print_messages(results: SearchResults):
    for message in results.messages:
        unread = '●' if message.is_unread else ' '
        date = message.date.strftime('%Y-%m-%d %H:%M') if message.date else '?'
        print(f"{unread} [{message.account_id}:{message.id}] {date}  {message.sender[:30]:30}  {message.subject[:60]}")
    for account_id, error in results.errors.items():
        print(f"❌ {account_id}: {error}")
    print(f"\n{len(results.messages)} message(s)")


async def run_command(args: argparse.Namespace) -> int:
    settings = get_settings()
    audit_log = AuditLog(settings.audit_log_path)

    if args.command == 'audit':
        for entry in audit_log.entries(args.account):
            print(dump_entry(entry))
        return 0

    registry = AccountRegistry(config_path=args.config)
    manager = MultiAccountManager(registry, settings=settings)
    coordinator = DeletionCoordinator(manager, audit_log)

    results = await manager.initialize_all_accounts()
    try:
        if args.command == 'accounts':
            for summary in manager.get_account_summary():
                error = f"  ({summary.last_error})" if summary.last_error else ""
                print(f"{summary.account_id:20} {summary.provider.value:11} {summary.status.value:10}{error}")
            return 0 if all(r.ok for r in results.values()) else 1

        if args.command == 'unread':
            counts = await manager.get_unread_counts()
            for account_id, entry in counts.per_account.items():
                value = entry.count if entry.count is not None else f"error: {entry.error}"
                print(f"{account_id:20} {value}")
            print(f"{'total':20} {counts.total}")
            return 0

        if args.command == 'search':
            _print_messages(await manager.search_across_accounts(args.query, limit=args.limit))
            return 0

        if args.command == 'recent':
            _print_messages(await manager.list_recent_across_accounts(limit=args.limit, days=args.days))
            return 0

        if args.command == 'show':
            message = await manager.get_message(args.account, args.message_id, include_body=args.body)
            print(f"From:    {message.sender}")
            print(f"Subject: {message.subject}")
            print(f"Date:    {message.date or '?'}")
            print(f"Unread:  {'yes' if message.is_unread else 'no'}")
            print()
            print(message.body if args.body else message.snippet)
            return 0

        if args.command == 'mark-read':
            marked = await manager.mark_read(args.account, args.message_ids)
            print(f"✅ Marked {marked} message(s) read in {args.account}")
            return 0

        if args.command == 'stats':
            mailbox = await manager.get_mailbox_stats(args.days)
            print(f"{'account':20} {'total':>8} {'unread':>8} {'last ' + str(mailbox.days) + 'd':>8}")
            for account_id, entry in mailbox.per_account.items():
                if entry.stats is None:
                    print(f"{account_id:20} error: {entry.error}")
                    continue
                print(f"{account_id:20} {entry.stats.total_messages:>8} {entry.stats.unread_messages:>8} "
                      f"{entry.stats.recent_messages:>8}")
            print(f"{'total':20} {mailbox.total_messages:>8} {mailbox.unread_messages:>8} {mailbox.recent_messages:>8}")
            return 0

        if args.command == 'insights':
            result = await manager.get_insights(days=args.days, sample_size=args.sample)
            for account_id, entry in result.per_account.items():
                if entry.error:
                    print(f"❌ {account_id}: {entry.error}")
                    continue
                average = entry.activity.average_per_day if entry.activity else 0
                print(f"{account_id}: {entry.total_emails} message(s), {entry.unread_emails} unread, ~{average}/day")
                for sender in entry.top_senders:
                    print(f"   {sender.count:4}  {sender.sender}")
            print(f"\n{result.total_emails} message(s) in the last {result.days} day(s), "
                  f"{result.active_accounts} active account(s)")
            return 0

        operation = coordinator.trash if args.command == 'trash' else coordinator.restore
        batch = await operation(args.account, args.message_ids)
        print(f"{args.command}: {batch.result.succeeded_count} succeeded, {batch.result.failed_count} failed")
        for failure in batch.result.failed:
            print(f"   [{failure.id}] {failure.error_reason}")
        return 0 if batch.state == BatchState.COMPLETED else 1
    finally:
        await manager.close()


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else settings.log_level,
        format=settings.log_format,
    )
    try:
        return asyncio.run(run_command(args))
    except (MailboardError, FileNotFoundError) as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2


if __name__ == '__main__':
    sys.exit(main())
