"""Command-line interface for ghmonitor authentication and configuration."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from typing import TYPE_CHECKING

from .config import _REDACTED, _SENSITIVE_FIELDS, get_settings
from .exceptions import GHMonitorException
from .log import configure, enable_debug


if TYPE_CHECKING:
    from collections.abc import Sequence

    from .config import GHMonitorSettings


def main(argv: Sequence[str] | None = None) -> int:
    """Run the main CLI entry point.

    Returns
    -------
    int
        Exit code.
    """
    parser = argparse.ArgumentParser(
        prog="ghmonitor",
        description="GitHub sign-in and configuration tools",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("login", help="Sign in to GitHub through the browser")
    subparsers.add_parser("logout", help="Delete all stored credentials")
    subparsers.add_parser("status", help="Show whether you are signed in")
    subparsers.add_parser("whoami", help="Print the cached GitHub profile as JSON")

    config_parser = subparsers.add_parser(
        "config",
        help="Show or export configuration",
    )
    config_group = config_parser.add_mutually_exclusive_group()
    config_group.add_argument(
        "--show",
        action="store_true",
        help="Show current configuration",
    )
    config_group.add_argument(
        "--toml",
        action="store_true",
        help="Export configuration as TOML",
    )

    args = parser.parse_args(argv)

    settings = get_settings()
    configure(settings.log.level, settings.log.format)
    if args.verbose:
        enable_debug()

    handlers = {
        "login": handle_login,
        "logout": handle_logout,
        "status": handle_status,
        "whoami": handle_whoami,
        "config": handle_config,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 0

    try:
        return handler(args, settings)
    except GHMonitorException as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nCancelled.", file=sys.stderr)
        return 130


def handle_login(_args: argparse.Namespace, settings: GHMonitorSettings) -> int:
    """Handle the login command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.
    settings : GHMonitorSettings
        Active configuration.

    Returns
    -------
    int
        Exit code.
    """
    from .auth import AuthService

    async def _login() -> int:
        async with AuthService.from_settings(settings) as auth:
            print("Opening your browser to sign in to GitHub...")
            result = await auth.authenticate()
        if result.success and result.profile is not None:
            print(f"Signed in as {result.profile.login}")
            return 0
        print(f"Sign-in failed: {result.error}", file=sys.stderr)
        return 1

    return asyncio.run(_login())


def handle_logout(_args: argparse.Namespace, settings: GHMonitorSettings) -> int:
    """Handle the logout command."""
    from .auth import AuthService

    async def _logout() -> None:
        async with AuthService.from_settings(settings) as auth:
            await auth.logout()

    asyncio.run(_logout())
    print("Signed out.")
    return 0


def handle_status(_args: argparse.Namespace, settings: GHMonitorSettings) -> int:
    """Handle the status command.

    Exits 0 when signed in, 1 otherwise.
    """
    from .auth import AuthService

    async def _status() -> tuple[bool, str | None]:
        async with AuthService.from_settings(settings) as auth:
            authenticated = await auth.is_authenticated()
            profile = auth.get_current_user()
        return authenticated, profile.login if profile else None

    authenticated, login = asyncio.run(_status())
    if authenticated:
        print(f"Signed in as {login}" if login else "Signed in")
        return 0
    print("Not signed in.")
    return 1


def handle_whoami(_args: argparse.Namespace, settings: GHMonitorSettings) -> int:
    """Handle the whoami command."""
    from .auth import create_token_store

    profile = create_token_store(settings.storage, settings.auth).get_user_profile()
    if profile is None:
        print("Not signed in.", file=sys.stderr)
        return 1
    data = profile.to_dict()
    data.pop("raw", None)
    print(json.dumps(data, indent=2))
    return 0


def handle_config(args: argparse.Namespace, settings: GHMonitorSettings) -> int:
    """Handle the config command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.
    settings : GHMonitorSettings
        Active configuration.

    Returns
    -------
    int
        Exit code.
    """
    if args.toml:
        print(settings.to_toml())
    else:
        print(format_config_show(settings))
    return 0


def format_config_show(settings: GHMonitorSettings) -> str:
    """Format configuration for display.

    Parameters
    ----------
    settings : GHMonitorSettings
        The settings object to format.

    Returns
    -------
    str
        Formatted configuration string.
    """
    lines = ["ghmonitor Configuration\n" + "=" * 40 + "\n"]

    sections = [
        ("auth", settings.auth),
        ("storage", settings.storage),
        ("log", settings.log),
    ]

    for section_name, section in sections:
        if lines[-1] != "":
            lines.append("")
        lines.append(f"[{section_name}]")
        for field, value in section.model_dump(exclude=_SENSITIVE_FIELDS).items():
            lines.append(f"  {field} = {value!r}")
        lines.extend(
            f"  {rn} = '{_REDACTED}'"
            for rn in sorted(_SENSITIVE_FIELDS & type(section).model_fields.keys())
        )

    return "\n".join(lines)


if __name__ == "__main__":
    sys.exit(main())
