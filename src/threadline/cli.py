"""Command-line entry point for Threadline."""

from __future__ import annotations

import argparse
import asyncio
import getpass
from pathlib import Path

from threadline.commands import ThreadlineCommands
from threadline.core import AppSettings, ThreadlineError, configure_logging, load_app_settings
from threadline.core.errors import ErrorResponse
from threadline.core.models import SyncProgress
from threadline.projects.timeline import MessageEvent, MilestoneEvent, TimelineEvent

COMMANDS: tuple[str, ...] = (
    "info",
    "providers",
    "add-account",
    "accounts",
    "sync",
    "reset",
    "projects",
    "timeline",
    "classify",
    "watch",
)


def build_parser() -> argparse.ArgumentParser:
    """Create and configure the CLI argument parser."""
    parser = argparse.ArgumentParser(description="Threadline mail ingestion")
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
        choices=COMMANDS,
        help="Operation to execute.",
    )
    parser.add_argument(
        "--email",
        default=None,
        help="Account address for add-account, sync, and reset.",
    )
    parser.add_argument(
        "--password",
        default=None,
        help="Password or app password; prompted for when omitted.",
    )
    parser.add_argument(
        "--all",
        dest="sync_all",
        action="store_true",
        help="Sync every registered account concurrently.",
    )
    parser.add_argument(
        "--project",
        dest="project_id",
        type=int,
        default=None,
        help="Project id for the timeline command.",
    )
    parser.add_argument(
        "--rounds",
        type=int,
        default=None,
        help="Stop watch mode after this many sync rounds.",
    )
    return parser


def execute(
    args: argparse.Namespace,
    settings: AppSettings,
    commands: ThreadlineCommands | None = None,
) -> int:
    """Execute the requested CLI command and return an exit code."""
    if args.command == "info":
        print("Threadline is ready. Add an account to get started.")
        print(f"Database path: {settings.storage.db_path}")
        print(f"Attachments directory: {settings.storage.attachments_dir}")
        cap = "all" if settings.sync.sync_all else settings.sync.max_sync_count
        print(f"Messages per sync: {cap}")
        return 0
    if args.command == "providers":
        for provider in ThreadlineCommands.list_providers():
            oauth = "oauth" if provider.oauth_supported else "password"
            print(f"{provider.name:<8} {provider.imap.host}:{provider.imap.port} ({oauth})")
        return 0

    service = commands or ThreadlineCommands(settings)
    try:
        asyncio.run(_dispatch(args, service, settings))
    except ThreadlineError as exc:
        print(f"Error [{exc.code}]: {exc}")
        return 1
    finally:
        service.close()
    return 0


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    settings = load_app_settings(env_file=args.env_file)
    configure_logging(settings.logging)
    raise SystemExit(execute(args, settings))


async def _dispatch(
    args: argparse.Namespace, service: ThreadlineCommands, settings: AppSettings
) -> None:
    command = args.command
    if command == "add-account":
        email = _require_email(args)
        password = args.password or getpass.getpass(f"Password for {email}: ")
        account_id = await service.add_account(email, password)
        print(f"Added account {email} (id {account_id}).")
    elif command == "accounts":
        await _print_accounts(service)
    elif command == "sync":
        if args.sync_all:
            _print_outcomes(await service.sync_all_accounts())
        else:
            progress = await service.sync_account(_require_email(args), args.password)
            print(f"Processed {progress.current} message(s) for account {progress.account_id}.")
    elif command == "reset":
        email = _require_email(args)
        await service.reset_account_sync(email)
        print(f"Reset sync state for {email}.")
    elif command == "projects":
        await _print_projects(service)
    elif command == "timeline":
        if args.project_id is None:
            raise ThreadlineError("--project is required for the timeline command")
        _print_timeline(await service.get_project_timeline(args.project_id))
    elif command == "classify":
        classified = await service.classify_unassigned()
        print(f"Classified {classified} message(s).")
    elif command == "watch":
        if not settings.sync.auto_sync_enabled:
            print("Automatic sync is disabled; set THREADLINE_SYNC__AUTO_SYNC_ENABLED=true.")
            return
        print(f"Syncing every {settings.sync.sync_interval_minutes} minute(s). Press Ctrl+C to stop.")
        rounds = await service.auto_sync(rounds=args.rounds)
        print(f"Completed {rounds} sync round(s).")


def _require_email(args: argparse.Namespace) -> str:
    if not args.email:
        raise ThreadlineError(f"--email is required for the {args.command} command")
    return str(args.email)


async def _print_accounts(service: ThreadlineCommands) -> None:
    accounts = await service.list_accounts()
    if not accounts:
        print("No accounts registered.")
        return
    header = f"{'ID':>4}  {'Provider':<8}  {'Auth':<8}  {'Last UID':>8}  Email"
    print(header)
    print("-" * len(header))
    for account in accounts:
        print(
            f"{account.id:>4}  {account.provider:<8}  {account.auth_type:<8}  "
            f"{account.last_synced_uid:>8}  {account.email}"
        )


def _print_outcomes(outcomes: dict[str, SyncProgress | ErrorResponse]) -> None:
    if not outcomes:
        print("No accounts registered.")
        return
    for email, outcome in outcomes.items():
        if isinstance(outcome, ErrorResponse):
            print(f"{email}: failed [{outcome.code}] {outcome.message}")
        else:
            print(f"{email}: {outcome.current} message(s) synced")


async def _print_projects(service: ThreadlineCommands) -> None:
    overviews = await service.list_projects()
    if not overviews:
        print("No projects found.")
        return
    header = f"{'ID':>4}  {'Pin':<3}  {'Status':<8}  {'Msgs':>5}  {'Files':>5}  Name"
    print(header)
    print("-" * len(header))
    for overview in overviews:
        project = overview.project
        pin = "*" if project.pinned else ""
        print(
            f"{project.id:>4}  {pin:<3}  {project.status:<8}  {project.message_count:>5}  "
            f"{project.attachment_count:>5}  {project.name}"
        )


def _print_timeline(events: list[TimelineEvent]) -> None:
    if not events:
        print("Timeline is empty.")
        return
    for event in events:
        when = event.date.isoformat(timespec="minutes") if event.date else "-"
        if isinstance(event, MilestoneEvent):
            print(f"{when}  [{event.status}] {event.title}")
        elif isinstance(event, MessageEvent):
            print(f"{when}  {event.sender}: {event.subject}")
        else:
            print(f"{when}  thread {event.id} ({len(event.children)} message(s))")
            for child in event.children:
                child_when = child.date.isoformat(timespec="minutes") if child.date else "-"
                print(f"    {child_when}  {child.sender}: {child.subject}")


if __name__ == "__main__":
    main()
