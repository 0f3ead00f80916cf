#!/usr/bin/env python3
"""
Recipes CLI - Main entry point.

Usage:
    recipes cron sync <recipe> --team-id T     # Sync a team recipe's cron jobs
    recipes cron sync <recipe> --agent-id A    # Sync an agent recipe's cron jobs
    recipes cron status --team-id T            # Show stored job mapping
    recipes cron list [--all]                  # List scheduler jobs
    recipes cron validate <recipe>             # Check a recipe's cronJobs block
    recipes cron remove-plan --team-id T       # Jobs that belong to a team
    recipes config                             # View configuration
    recipes config set KEY VALUE               # Set a config value
    recipes version                            # Show version
"""

import argparse
import logging
import sys

from dotenv import load_dotenv

from recipes_cli import __version__
from recipes_cli.config import get_env_path, get_log_dir
from recipes_cli.logs import setup_logging

logger = logging.getLogger(__name__)


def cmd_cron(args):
    from recipes_cli.cron import cron_command
    cron_command(args)


def cmd_config(args):
    from recipes_cli.config import config_command
    config_command(args)


def cmd_version(args):
    print(f"recipes v{__version__}")


def _add_owner_args(parser: argparse.ArgumentParser):
    owner = parser.add_mutually_exclusive_group(required=True)
    owner.add_argument("-t", "--team-id", help="Team id (workspace folder under teams/)")
    owner.add_argument("--agent-id", help="Agent id (workspace folder under agents/)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="recipes",
        description="Recipe tooling - keep recipe-declared cron jobs in sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    recipes cron sync marketing-team -t marketing-team    Sync by recipe id
    recipes cron sync ./recipes/ops.md --agent-id ops     Sync from a file
    recipes cron sync ops --agent-id ops --mode on        Install and enable
    recipes config set cron.installation on              Always opt in

For more help on a command:
    recipes <command> --help
"""
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging on stderr")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # =========================================================================
    # cron command
    # =========================================================================
    cron_parser = subparsers.add_parser(
        "cron",
        help="Recipe cron job management",
        description="Sync and inspect cron jobs declared by recipes",
    )
    cron_subparsers = cron_parser.add_subparsers(dest="cron_command")

    cron_sync = cron_subparsers.add_parser("sync", help="Sync a recipe's cron jobs with the scheduler")
    cron_sync.add_argument("recipe", help="Recipe id or path to a recipe .md file")
    _add_owner_args(cron_sync)
    cron_sync.add_argument("--mode", choices=["off", "prompt", "on"],
                           help="Override cron.installation for this run")
    cron_sync.add_argument("--yes", action="store_true", help="Answer yes to the install prompt")

    cron_status = cron_subparsers.add_parser("status", help="Show the stored cron job mapping")
    _add_owner_args(cron_status)

    cron_list = cron_subparsers.add_parser("list", help="List scheduler jobs")
    cron_list.add_argument("--all", action="store_true", help="Include disabled jobs")

    cron_validate = cron_subparsers.add_parser("validate", help="Validate a recipe's cronJobs block")
    cron_validate.add_argument("recipe", help="Recipe id or path to a recipe .md file")

    cron_remove = cron_subparsers.add_parser("remove-plan", help="Show cron jobs that belong to a team")
    cron_remove.add_argument("-t", "--team-id", required=True, help="Team id")

    cron_parser.set_defaults(func=cmd_cron)

    # =========================================================================
    # config command
    # =========================================================================
    config_parser = subparsers.add_parser("config", help="View or change configuration")
    config_subparsers = config_parser.add_subparsers(dest="config_command")
    config_subparsers.add_parser("show", help="Show current configuration")
    config_subparsers.add_parser("path", help="Print config file path")
    config_set = config_subparsers.add_parser("set", help="Set a config value")
    config_set.add_argument("key", nargs="?", help="Dotted key, e.g. cron.installation")
    config_set.add_argument("value", nargs="?", help="Value")
    config_parser.set_defaults(func=cmd_config)

    # =========================================================================
    # version command
    # =========================================================================
    version_parser = subparsers.add_parser("version", help="Show version")
    version_parser.set_defaults(func=cmd_version)

    return parser


def main(argv=None):
    """Main entry point for the recipes CLI."""
    env_path = get_env_path()
    if env_path.exists():
        load_dotenv(dotenv_path=env_path)

    parser = build_parser()
    args = parser.parse_args(argv)

    if not getattr(args, "func", None):
        parser.print_help()
        sys.exit(1)

    setup_logging(get_log_dir(), verbose=args.verbose)
    logger.debug("recipes %s: %s", __version__, args.command)
    args.func(args)


if __name__ == "__main__":
    main()
