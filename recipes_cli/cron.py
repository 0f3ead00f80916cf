"""
Cron subcommand for the recipes CLI.

Handles: recipes cron [sync|status|list|validate|remove-plan]

`sync` installs a recipe's declared cron jobs into the scheduler and keeps
them in step with the recipe on every re-run. Whether jobs may be enabled is
controlled by cron.installation (off / prompt / on) or --mode.
"""

import json
import sys
from contextlib import nullcontext
from datetime import datetime
from pathlib import Path
from typing import Any, Dict

from rich.console import Console
from rich.table import Table

from cronsync import (
    CommandTransport,
    CronSyncError,
    LocalJobStore,
    Owner,
    SchedulerClient,
    load_mapping,
    mapping_lock,
    mapping_path,
    normalize_cron_jobs,
    reconcile_cron_jobs,
)
from cronsync.mapping import parse_mapping_key
from cronsync.removal import is_protected_team_id, plan_cron_job_removals
from recipes_cli.colors import Colors, color
from recipes_cli.config import get_nested, get_recipes_home, load_config, workspace_root
from recipes_cli.recipe import RecipeError, load_recipe

_console = Console()


def prompt_yes_no(question: str, default: bool = False) -> bool:
    """Prompt for yes/no."""
    default_str = "Y/n" if default else "y/N"

    while True:
        try:
            value = input(color(f"{question} [{default_str}]: ", Colors.YELLOW)).strip().lower()
        except EOFError:
            return default

        if not value:
            return default
        if value in ('y', 'yes'):
            return True
        if value in ('n', 'no'):
            return False
        print(color("Please enter 'y' or 'n'", Colors.RED))


def build_transport(config: Dict[str, Any]):
    """Scheduler transport for the configured backend."""
    backend = get_nested(config, "scheduler.backend", "local")
    if backend == "openclaw":
        return CommandTransport(
            command=get_nested(config, "scheduler.command") or ["openclaw", "gateway", "call"],
            timeout=float(get_nested(config, "scheduler.timeout", 30)),
        )
    if backend == "local":
        jobs_file = get_nested(config, "scheduler.jobs_file") or get_recipes_home() / "cron" / "jobs.json"
        return LocalJobStore(Path(jobs_file).expanduser())
    raise ValueError(f"Unknown scheduler backend: {backend}")


def _owner_from_args(args) -> Owner:
    if getattr(args, "team_id", None):
        return Owner.team(args.team_id)
    return Owner.agent(args.agent_id)


def _mapping_file(config: Dict[str, Any], owner: Owner) -> Path:
    return mapping_path(
        workspace_root(config),
        owner,
        teams_dir=get_nested(config, "workspace.teams_dir", "teams"),
        agents_dir=get_nested(config, "workspace.agents_dir", "agents"),
    )


def _fail(message: str):
    print(color(f"✗ {message}", Colors.RED), file=sys.stderr)
    sys.exit(1)


def cron_sync(args):
    """Reconcile a recipe's cron jobs for a team or agent."""
    config = load_config()
    recipes_dir = workspace_root(config) / get_nested(config, "workspace.recipes_dir", "recipes")

    try:
        frontmatter, recipe_path = load_recipe(args.recipe, recipes_dir)
        jobs = normalize_cron_jobs(frontmatter)
    except (RecipeError, CronSyncError) as e:
        _fail(str(e))

    recipe_id = str(frontmatter["id"])
    owner = _owner_from_args(args)
    mode = str(args.mode or get_nested(config, "cron.installation", "prompt")).strip().lower()
    mapping_file = _mapping_file(config, owner)

    if args.yes:
        interactive, confirm = True, (lambda question: True)
    else:
        interactive, confirm = sys.stdin.isatty(), prompt_yes_no

    # "off" (and an invalid mode) must not touch the owner's notes folder
    needs_lock = get_nested(config, "cron.lock", True) and jobs and mode in ("prompt", "on")
    lock = mapping_lock(mapping_file) if needs_lock else nullcontext()
    try:
        client = SchedulerClient(build_transport(config))
        with lock:
            result = reconcile_cron_jobs(
                jobs, owner, recipe_id, mapping_file, client,
                mode=mode, interactive=interactive, confirm=confirm,
            )
    except CronSyncError as e:
        _fail(str(e))
    except ValueError as e:
        _fail(str(e))

    if mode == "prompt" and not result.reason and not result.opted_in:
        print(color("Non-interactive: cron jobs synced but left disabled. "
                    "Re-run with --yes or --mode on to enable them.", Colors.YELLOW), file=sys.stderr)

    output = {
        "recipeId": recipe_id,
        "recipe": str(recipe_path),
        "owner": {"kind": owner.kind.value, "id": owner.id},
        "mappingFile": str(mapping_file),
        **result.to_dict(),
    }
    print(json.dumps(output, indent=2))


def cron_validate(args):
    """Parse a recipe and print its normalized cron jobs."""
    config = load_config()
    recipes_dir = workspace_root(config) / get_nested(config, "workspace.recipes_dir", "recipes")
    try:
        frontmatter, _ = load_recipe(args.recipe, recipes_dir)
        jobs = normalize_cron_jobs(frontmatter)
    except (RecipeError, CronSyncError) as e:
        _fail(str(e))

    print(json.dumps({"recipeId": frontmatter["id"], "cronJobs": [j.to_dict() for j in jobs]}, indent=2))


def cron_status(args):
    """Show the stored mapping for an owner."""
    config = load_config()
    owner = _owner_from_args(args)
    mapping_file = _mapping_file(config, owner)
    state = load_mapping(mapping_file)

    if not state.entries:
        print(color(f"No cron mapping for {owner.kind.value} {owner.id}.", Colors.DIM))
        print(color(f"  ({mapping_file})", Colors.DIM))
        return

    table = Table(title=f"Cron jobs — {owner.kind.value} {owner.id}")
    table.add_column("Recipe", style="dim")
    table.add_column("Job", style="bold cyan")
    table.add_column("Installed as", style="dim")
    table.add_column("State")
    table.add_column("Updated", style="dim")

    for key in sorted(state.entries):
        entry = state.entries[key]
        _, recipe_id, job_id = parse_mapping_key(key)
        state_str = "[yellow]orphaned[/]" if entry.orphaned else "[green]tracked[/]"
        updated = datetime.fromtimestamp(entry.updated_at_ms / 1000).strftime("%Y-%m-%d %H:%M") if entry.updated_at_ms else "-"
        table.add_row(recipe_id, job_id, entry.installed_job_id, state_str, updated)

    _console.print(table)
    _console.print(f"[dim]{mapping_file}[/]")


def cron_list(args):
    """List jobs known to the scheduler."""
    config = load_config()
    try:
        jobs = SchedulerClient(build_transport(config)).list_jobs(include_disabled=args.all)
    except CronSyncError as e:
        _fail(str(e))

    if not args.all:
        jobs = [j for j in jobs if j.enabled]

    if not jobs:
        print(color("No scheduled jobs.", Colors.DIM))
        return

    table = Table(title=f"Scheduled jobs — {len(jobs)}")
    table.add_column("Id", style="yellow")
    table.add_column("Name", style="bold cyan")
    table.add_column("Schedule")
    table.add_column("Status")

    for job in jobs:
        schedule = job.schedule
        if isinstance(schedule, dict):
            schedule = " ".join(str(v) for k, v in schedule.items() if k in ("expr", "tz"))
        status = "[green]active[/]" if job.enabled else "[red]disabled[/]"
        table.add_row(job.id, job.name or "(unnamed)", str(schedule or "?"), status)

    _console.print(table)


def cron_remove_plan(args):
    """Show which scheduler jobs would be removed with a team."""
    config = load_config()
    team_id = args.team_id.strip()
    try:
        jobs = SchedulerClient(build_transport(config)).list_jobs(include_disabled=True)
    except CronSyncError as e:
        _fail(str(e))

    plan = plan_cron_job_removals([j.raw or {"id": j.id, "name": j.name} for j in jobs], team_id)
    notes = [f"protected-team:{team_id}"] if is_protected_team_id(team_id) else []
    print(json.dumps({
        "teamId": team_id,
        "cronJobsExact": plan["exact"],
        "cronJobsAmbiguous": plan["ambiguous"],
        "notes": notes,
    }, indent=2))


def cron_command(args):
    """Handle cron subcommands."""
    subcmd = getattr(args, 'cron_command', None)

    if subcmd == "sync":
        cron_sync(args)

    elif subcmd == "validate":
        cron_validate(args)

    elif subcmd == "status":
        cron_status(args)

    elif subcmd is None or subcmd == "list":
        if not hasattr(args, "all"):
            args.all = False
        cron_list(args)

    elif subcmd == "remove-plan":
        cron_remove_plan(args)

    else:
        print(f"Unknown cron command: {subcmd}")
        print("Usage: recipes cron [sync|status|list|validate|remove-plan]")
        sys.exit(1)
