#!/usr/bin/env python3
"""
Shellvisor CLI - Main entry point.

Usage:
    shellvisor                       # Interactive prompt (default)
    shellvisor shell                 # Interactive prompt
    shellvisor run "make test"       # Run one command, follow its output
    shellvisor run --background CMD  # Start in the background, then follow
    shellvisor config                # Show current configuration
    shellvisor config set KEY VALUE  # Set a config value (secrets go to .env)
    shellvisor config path           # Print config file path
    shellvisor --version             # Show version
"""

import argparse
import logging
import sys

from shellvisor_cli import __version__
from shellvisor_cli.config import (
    bash_tool_config_from,
    config_command,
    load_config,
    load_env,
)
from shellvisor_cli.logs import setup_logging

logger = logging.getLogger(__name__)


def _bootstrap(args) -> dict:
    """Load .env and config.yaml, then configure logging."""
    load_env()
    config = load_config()
    log_path = setup_logging(
        verbose=getattr(args, "verbose", False),
        level=config.get("logging", {}).get("level", "INFO"),
    )
    logger.debug("Logging to %s", log_path)
    return config


def _bash_config(config: dict, scope=None):
    """Build the bash tool config, exiting with a message on invalid values."""
    try:
        return bash_tool_config_from(config, scope_key=scope)
    except ValueError as e:
        logger.error("Invalid bash configuration: %s", e)
        print(f"Invalid bash configuration: {e}", file=sys.stderr)
        sys.exit(2)


def cmd_shell(args):
    """Run the interactive prompt."""
    from shellvisor_cli.repl import ShellvisorREPL

    config = _bootstrap(args)
    bash_config = _bash_config(config, getattr(args, "scope", None))
    ShellvisorREPL(bash_config, display=config.get("display", {})).run()


def cmd_run(args):
    """Run one command and follow it to completion."""
    from rich.console import Console

    from shellvisor_cli.repl import follow
    from tools.bash_tool import create_bash_tool
    from tools.errors import ShellvisorError
    from tools.process_tool import create_process_tool

    config = _bootstrap(args)
    bash = create_bash_tool(_bash_config(config, args.scope))
    process = create_process_tool(registry=bash.registry, scope_key=bash.scope_key)
    command = " ".join(args.cmd)
    console = Console()
    try:
        code = follow(
            bash, process, command,
            background=args.background,
            yield_ms=args.yield_ms,
            timeout=args.timeout,
            console=console,
        )
    except ShellvisorError as e:
        console.print(f"Error: {e}", markup=False, style="red")
        code = 1
    except KeyboardInterrupt:
        bash.registry.kill_all(bash.scope_key)
        code = 130
    sys.exit(code)


def cmd_config(args):
    """Configuration management."""
    config_command(args)


def cmd_version(args):
    """Show version."""
    print(f"Shellvisor v{__version__}")
    print(f"Python: {sys.version.split()[0]}")


def main():
    """Main entry point for shellvisor CLI."""
    parser = argparse.ArgumentParser(
        prog="shellvisor",
        description="Shellvisor - run shell commands with background handoff and follow-up",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    shellvisor                          Start the interactive prompt
    shellvisor run "sleep 30; echo hi"  Run a command and follow it
    shellvisor config set bash.timeout_sec 600
    shellvisor config set SUDO_PASSWORD ...

For more help on a command:
    shellvisor <command> --help
"""
    )

    parser.add_argument(
        "--version", "-V",
        action="store_true",
        help="Show version and exit"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Also log to the console"
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # =========================================================================
    # shell command
    # =========================================================================
    shell_parser = subparsers.add_parser(
        "shell",
        help="Interactive prompt (default)",
        description="Run commands interactively; slow ones continue in the background"
    )
    shell_parser.add_argument(
        "--scope",
        help="Scope key for sessions started from this prompt"
    )
    shell_parser.set_defaults(func=cmd_shell)

    # =========================================================================
    # run command
    # =========================================================================
    run_parser = subparsers.add_parser(
        "run",
        help="Run one command and follow it to completion",
        description="Run a command through the bash tool and stream its log until it exits"
    )
    run_parser.add_argument(
        "--background", "-b",
        action="store_true",
        help="Hand off to the background immediately"
    )
    run_parser.add_argument(
        "--yield-ms",
        type=int,
        default=None,
        help="Milliseconds to wait before backgrounding"
    )
    run_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Hard timeout in seconds"
    )
    run_parser.add_argument(
        "--scope",
        help="Scope key for the session"
    )
    run_parser.add_argument("cmd", nargs=argparse.REMAINDER, help="Command to run")
    run_parser.set_defaults(func=cmd_run)

    # =========================================================================
    # config command
    # =========================================================================
    config_parser = subparsers.add_parser(
        "config",
        help="View and edit configuration",
        description="Manage Shellvisor configuration"
    )
    config_subparsers = config_parser.add_subparsers(dest="config_command")
    config_subparsers.add_parser("show", help="Show current configuration")
    config_set = config_subparsers.add_parser("set", help="Set a configuration value")
    config_set.add_argument("key", help="Dotted key (e.g. bash.timeout_sec) or SUDO_PASSWORD")
    config_set.add_argument("value", help="Value to set")
    config_subparsers.add_parser("path", help="Print config file path")
    config_subparsers.add_parser("env-path", help="Print .env file path")
    config_parser.set_defaults(func=cmd_config)

    # =========================================================================
    # Parse and execute
    # =========================================================================
    args = parser.parse_args()

    if args.version:
        cmd_version(args)
        return

    if args.command is None:
        args.scope = None
        cmd_shell(args)
        return

    if args.command == "run" and not args.cmd:
        run_parser.error("a command is required")

    args.func(args)


if __name__ == "__main__":
    main()
