"""
Installation policy for recipe cron jobs.

Modes:
- "off":    never touch the scheduler; reconciliation is skipped entirely.
- "on":     install and keep jobs enabled per their enabledByDefault flag.
- "prompt": ask the operator. Without a terminal, jobs are still synced but
            left disabled; an interactive "no" skips reconciliation.

The terminal check and the question are parameters so callers decide how
to talk to the operator.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from cronsync.errors import InvalidPolicyMode

MODES = ("off", "prompt", "on")

Confirm = Callable[[str], bool]


@dataclass(frozen=True)
class PolicyDecision:
    proceed: bool
    opted_in: bool
    reason: Optional[str] = None


def resolve_policy(
    mode: str,
    job_count: int,
    interactive: bool = False,
    confirm: Optional[Confirm] = None,
    recipe_id: Optional[str] = None,
) -> PolicyDecision:
    """Resolve an installation mode into a proceed / opt-in decision."""
    mode = (mode or "").strip().lower()
    if mode not in MODES:
        raise InvalidPolicyMode(f"Invalid cron installation mode: {mode!r} (expected off, prompt or on)")

    if mode == "off":
        return PolicyDecision(proceed=False, opted_in=False, reason="mode-off")

    if mode == "on":
        return PolicyDecision(proceed=True, opted_in=True)

    # prompt
    if not interactive or confirm is None:
        return PolicyDecision(proceed=True, opted_in=False, reason="non-interactive")

    source = f" from recipe {recipe_id}" if recipe_id else ""
    question = f"Install/enable {job_count} cron job(s){source}?"
    if confirm(question):
        return PolicyDecision(proceed=True, opted_in=True)
    return PolicyDecision(proceed=False, opted_in=False, reason="declined")
