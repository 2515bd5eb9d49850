"""Command-line shell for WeBeep Sync."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError

from webeep_sync.app import create_app
from webeep_sync.config import Settings
from webeep_sync.events import (
    CourseSynced,
    Disconnected,
    NewFiles,
    Reconnected,
    SyncStarted,
    UsernameResolved,
)
from webeep_sync.exceptions import AuthError, NetworkError
from webeep_sync.services.datetime_service import format_iso_for_humans, format_timestamp

if TYPE_CHECKING:
    from webeep_sync.app import Application


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(level=level, format=fmt, stream=sys.stderr, force=True)
    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.INFO if debug else logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


async def prompt_credentials() -> tuple[str, str] | None:
    """Ask for username and password on the terminal; None when the user aborts."""

    def ask() -> tuple[str, str] | None:
        try:
            username = input("Username (person code): ").strip()
            if not username:
                return None
            password = getpass.getpass("Password: ")
        except (EOFError, KeyboardInterrupt):
            print()
            return None
        return username, password

    return await asyncio.to_thread(ask)


def _subscribe_printers(app: Application) -> None:
    """Render engine and connectivity events on stdout."""
    events = app.events
    events.subscribe(Disconnected, lambda _: print("! Disconnected, retrying..."))
    events.subscribe(Reconnected, lambda _: print("Reconnected."))
    events.subscribe(UsernameResolved, lambda e: print(f"Logged in as {e.username}"))
    events.subscribe(SyncStarted, lambda _: print("Sync started."))
    events.subscribe(
        CourseSynced,
        lambda e: print(
            f"  {e.course_name}: {e.downloaded} downloaded, {e.deleted} deleted, {e.failed} failed"
        ),
    )
    events.subscribe(NewFiles, lambda e: print(f"{len(e.files)} new file(s)."))


def _parse_on_off(value: str) -> bool:
    lowered = value.lower()
    if lowered in {"on", "true", "yes", "1"}:
        return True
    if lowered in {"off", "false", "no", "0"}:
        return False
    msg = f"expected on/off, got {value!r}"
    raise argparse.ArgumentTypeError(msg)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="webeep-sync",
        description="Mirror Moodle course materials to a local folder",
    )
    parser.add_argument("--debug", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command")
    login = subparsers.add_parser("login", help="Log in and store the access token")
    login.add_argument("--token", help="Use an existing web service token instead of a password")
    subparsers.add_parser("logout", help="Forget the stored token")
    subparsers.add_parser("status", help="Show login, settings, and last sync")
    subparsers.add_parser("courses", help="List enrolled courses and their sync flag")
    files = subparsers.add_parser("files", help="List the materials of a course")
    files.add_argument("course_id", type=int)
    subparsers.add_parser("sync", help="Run one sync pass")
    subparsers.add_parser("watch", help="Sync periodically according to the autosync settings")

    select = subparsers.add_parser("select", help="Include or exclude a course from syncing")
    select.add_argument("course_id", type=int)
    toggle = select.add_mutually_exclusive_group(required=True)
    toggle.add_argument("--on", dest="should_sync", action="store_true")
    toggle.add_argument("--off", dest="should_sync", action="store_false")

    config = subparsers.add_parser("config", help="Show or change sync settings")
    config.add_argument("--download-path", type=Path, help="Folder the courses are mirrored to")
    config.add_argument("--autosync", type=_parse_on_off, help="Enable periodic sync (on/off)")
    config.add_argument("--interval", type=int, help="Autosync interval in seconds")
    return parser


async def _cmd_login(app: Application, args: argparse.Namespace) -> int:
    try:
        if args.token:
            app.login.set_token(args.token)
        else:
            await app.client.authenticate()
    except (AuthError, NetworkError) as exc:
        print(f"Error: {exc}")
        return 1
    await app.client.get_user_id()
    return 0


async def _cmd_logout(app: Application, args: argparse.Namespace) -> int:
    await app.login.logout()
    print("Logged out.")
    return 0


def _require_login(app: Application) -> bool:
    if app.login.is_logged:
        return True
    print("Error: not logged in. Run 'webeep-sync login' first.")
    return False


async def _cmd_status(app: Application, args: argparse.Namespace) -> int:
    s = app.store.settings
    print(f"Logged in:      {'yes' if app.login.is_logged else 'no'}")
    print(f"Download path:  {s.download_path}")
    autosync = "on" if s.autosync_enabled else "off"
    print(f"Autosync:       {autosync} (every {s.autosync_interval}s)")
    print(f"Last synced:    {format_iso_for_humans(app.store.data.persistence.last_synced)}")
    return 0


async def _cmd_courses(app: Application, args: argparse.Namespace) -> int:
    if not _require_login(app):
        return 1
    courses = await app.client.list_courses()
    app.store.register_courses(courses)
    app.store.write()
    for course in courses:
        mark = "x" if app.store.should_sync(course.id) else " "
        print(f"  [{mark}] {course.id:>8}  {course.name}")
    return 0


async def _cmd_files(app: Application, args: argparse.Namespace) -> int:
    if not _require_login(app):
        return 1
    files = await app.client.list_files(args.course_id)
    if not files:
        print("No materials found.")
    for info in files:
        modified = format_timestamp(info.modified_at)
        print(f"  {modified}  {info.filesize:>10}  {info.filepath}/{info.filename}")
    return 0


async def _cmd_sync(app: Application, args: argparse.Namespace) -> int:
    if not _require_login(app):
        return 1
    result = await app.engine.sync()
    if result is None:
        return 0
    for failure in result.failures:
        where = "/".join(p for p in (failure.course_name, failure.filepath, failure.filename) if p)
        print(f"  FAILED: {where or 'sync'}: {failure.error}")
    print(f"Sync complete. {result.summary()}.")
    return 0 if result.success else 1


async def _cmd_watch(app: Application, args: argparse.Namespace) -> int:
    if not _require_login(app):
        return 1
    if not app.store.settings.autosync_enabled:
        print("Autosync is off. Enable it with 'webeep-sync config --autosync on'.")
        return 1
    await app.autosync.run()
    return 0


async def _cmd_select(app: Application, args: argparse.Namespace) -> int:
    try:
        app.store.set_should_sync(args.course_id, args.should_sync)
    except KeyError:
        print(f"Error: unknown course {args.course_id}. Run 'webeep-sync courses' first.")
        return 1
    app.store.write()
    return 0


async def _cmd_config(app: Application, args: argparse.Namespace) -> int:
    try:
        if args.download_path is not None:
            app.store.set_download_path(args.download_path.expanduser().resolve())
        if args.autosync is not None:
            app.store.set_autosync(args.autosync)
        if args.interval is not None:
            app.store.set_autosync_interval(args.interval)
    except ValidationError as exc:
        print(f"Error: {exc.errors()[0]['msg']}")
        return 1
    app.store.write()
    return await _cmd_status(app, args)


_COMMANDS = {
    "login": _cmd_login,
    "logout": _cmd_logout,
    "status": _cmd_status,
    "courses": _cmd_courses,
    "files": _cmd_files,
    "sync": _cmd_sync,
    "watch": _cmd_watch,
    "select": _cmd_select,
    "config": _cmd_config,
}


async def run(args: argparse.Namespace, settings: Settings) -> int:
    async with create_app(settings, prompt=prompt_credentials) as app:
        _subscribe_printers(app)
        return await _COMMANDS[args.command](app, args)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        sys.exit(1)

    settings = Settings()
    _configure_logging(args.debug or settings.debug)
    try:
        code = asyncio.run(run(args, settings))
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
