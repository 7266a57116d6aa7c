"""Command-line interface for Fleet Master configuration and sign-in."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import sys

from pathlib import Path
from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from collections.abc import Callable

    from .auth.orchestrator import AuthOrchestrator


def main(argv: list[str] | None = None) -> int:
    """Run the main CLI entry point.

    Returns
    -------
    int
        Exit code.
    """
    parser = argparse.ArgumentParser(
        prog="fleetmaster",
        description="Fleet Master authentication tools",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    config_parser = subparsers.add_parser("config", help="Show or export configuration")
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
    config_group.add_argument(
        "--env",
        action="store_true",
        help="Export configuration as environment variables",
    )
    config_group.add_argument(
        "--sources",
        action="store_true",
        help="Show configuration file sources",
    )
    config_parser.add_argument(
        "--output",
        "-o",
        type=str,
        help="Output file path (default: stdout)",
    )

    init_parser = subparsers.add_parser(
        "init",
        help="Initialize a fleetmaster.toml configuration file",
    )
    init_parser.add_argument(
        "--force",
        "-f",
        action="store_true",
        help="Overwrite existing configuration file",
    )
    init_parser.add_argument(
        "--path",
        "-p",
        type=str,
        default="fleetmaster.toml",
        help="Path for the configuration file (default: fleetmaster.toml)",
    )

    subparsers.add_parser("status", help="Restore the saved session and print its stage")
    subparsers.add_parser("login", help="Sign in interactively")
    subparsers.add_parser("logout", help="Sign out and clear local auth state")

    args = parser.parse_args(argv)

    if args.debug:
        from .log import enable_debug

        enable_debug()

    if args.command == "config":
        return handle_config(args)
    if args.command == "init":
        return handle_init(args)
    if args.command in ("status", "login", "logout"):
        return handle_session_command(args.command)

    parser.print_help()
    return 0


def handle_config(args: argparse.Namespace) -> int:
    """Handle the config command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code.
    """
    from .config import FleetMasterSettings

    if args.sources:
        return show_config_sources()

    settings = FleetMasterSettings()

    if args.toml:
        output = settings.to_toml()
    elif args.env:
        output = settings.to_env()
    else:
        output = settings.show()

    if args.output:
        Path(args.output).write_text(output, encoding="utf-8")
        print(f"Configuration written to {args.output}")
    else:
        print(output)

    return 0


def handle_init(args: argparse.Namespace) -> int:
    """Handle the init command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code.
    """
    from .config import FleetMasterSettings

    path = Path(args.path)

    if path.exists() and not args.force:
        print(f"Error: {path} already exists. Use --force to overwrite.", file=sys.stderr)
        return 1

    toml_content = FleetMasterSettings().to_toml()

    header = """# Fleet Master Configuration File
#
# Environment variables can override any setting:
#   FLEETMASTER_PROVIDER__URL="https://<project>.supabase.co"
#   FLEETMASTER_PROVIDER__ANON_KEY="<anon key>"
#   FLEETMASTER_STORE__BACKEND="file"
#   FLEETMASTER_AUTH__APP_VERSION="1.0.0"
#
# Use nested keys with __ (double underscore) delimiter.

"""
    path.write_text(header + toml_content, encoding="utf-8")
    print(f"Created {path}")

    return 0


def show_config_sources() -> int:
    """Show configuration file sources and their status.

    Returns
    -------
    int
        Exit code.
    """
    import os

    from .config import _user_config_dir

    sources = [
        ("Built-in defaults", None),
        ("pyproject.toml [tool.fleetmaster]", Path("pyproject.toml")),
        ("./fleetmaster.toml", Path("fleetmaster.toml")),
        ("User config", _user_config_dir() / "config.toml"),
    ]

    print("Configuration Sources (in order of precedence):\n")
    print(f"{'Source':<40} {'Status':<15} {'Path'}")
    print("-" * 80)

    for name, path in sources:
        if path is None:
            status, path_display = "✓ Active", ""
        elif path.exists():
            status, path_display = "✓ Found", str(path)
        else:
            status, path_display = "✗ Not found", str(path)
        print(f"{name:<40} {status:<15} {path_display}")

    env_vars = [k for k in os.environ if k.startswith("FLEETMASTER_")]
    if env_vars:
        status = f"✓ {len(env_vars)} vars"
        path_display = ", ".join(env_vars[:3]) + ("..." if len(env_vars) > 3 else "")
    else:
        status, path_display = "✗ No vars", ""
    print(f"{'Environment variables':<40} {status:<15} {path_display}")

    print("\nNote: Later sources override earlier ones.")
    return 0


def handle_session_command(command: str) -> int:
    """Run ``status``, ``login`` or ``logout`` against the configured provider."""
    from .auth.orchestrator import AuthOrchestrator
    from .config import get_settings
    from .exceptions import FleetMasterException
    from .log import configure_from_settings

    settings = get_settings()
    configure_from_settings(settings.log)
    try:
        orchestrator = AuthOrchestrator.from_settings(settings)
    except FleetMasterException as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    runners = {
        "status": run_status,
        "login": run_login,
        "logout": run_logout,
    }
    return asyncio.run(_run_and_close(orchestrator, runners[command]))


async def _run_and_close(orchestrator: AuthOrchestrator, runner: Callable[..., object]) -> int:
    try:
        return await runner(orchestrator)  # type: ignore[misc]
    finally:
        orchestrator.close()
        await orchestrator.provider.close()


async def run_status(orchestrator: AuthOrchestrator) -> int:
    """Restore the saved session and print where the flow stands."""
    stage = await orchestrator.initialize_auth_state()
    print(f"Stage: {stage.value}")
    print(f"Signed in: {'yes' if orchestrator.app_session.is_logged_in else 'no'}")
    if orchestrator.show_two_factor_auth:
        print(f"Verification pending for {orchestrator.email}")
    return 0


async def run_logout(orchestrator: AuthOrchestrator) -> int:
    """Sign out and clear local state."""
    await orchestrator.sign_out()
    print("Signed out.")
    return 0


def _print_alert(orchestrator: AuthOrchestrator) -> None:
    alert = orchestrator.consume_alert()
    if alert is not None:
        print(alert.message, file=sys.stderr if alert.is_error else sys.stdout)


async def run_login(
    orchestrator: AuthOrchestrator,
    prompt: Callable[[str], str] = input,
    secret_prompt: Callable[[str], str] = getpass.getpass,
    max_attempts: int = 3,
) -> int:
    """Drive the sign-in flow from the terminal.

    Parameters
    ----------
    orchestrator : AuthOrchestrator
        The orchestrator to drive.
    prompt : callable
        Reads a visible answer.
    secret_prompt : callable
        Reads a hidden answer (passwords).
    max_attempts : int
        Attempts allowed per step before giving up.

    Returns
    -------
    int
        0 when signed in or when a password reset completed, 1 otherwise.
    """
    from .auth.types import AuthStage

    await orchestrator.initialize_auth_state()
    _print_alert(orchestrator)
    if orchestrator.app_session.is_logged_in:
        print("Already signed in.")
        return 0

    if orchestrator.stage is not AuthStage.AWAITING_OTP:
        for _ in range(max_attempts):
            email = prompt("Email: ")
            password = secret_prompt("Password: ")
            ok = await orchestrator.login(email, password)
            _print_alert(orchestrator)
            if ok:
                break
        else:
            return 1

    for _ in range(max_attempts):
        code = prompt("Code (blank to resend): ").strip()
        if not code:
            await orchestrator.resend_otp()
            _print_alert(orchestrator)
            continue
        ok = await orchestrator.verify_otp(code)
        _print_alert(orchestrator)
        if ok:
            break
    else:
        return 1

    if orchestrator.show_password_change:
        print("Choose a new password.")
        for _ in range(max_attempts):
            new_password = secret_prompt("New password: ")
            confirm = secret_prompt("Confirm password: ")
            ok = await orchestrator.change_password(new_password, confirm)
            _print_alert(orchestrator)
            if ok:
                break
        else:
            return 1

    if orchestrator.app_session.is_logged_in:
        print("Signed in.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
