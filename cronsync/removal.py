"""
Finding the scheduler jobs that belong to a team.

Jobs installed for a team carry a stamp line in their message:

    [recipes] recipes.teamId=<teamId>

which lets team removal find them exactly. Jobs that merely mention the
team id in their name or message are reported as ambiguous for manual
review.
"""

from typing import Any, Dict, List

PROTECTED_TEAM_IDS = ("development-team", "main")


def stamp_team_id(team_id: str) -> str:
    return f"recipes.teamId={team_id}"


def stamp_line(team_id: str) -> str:
    """The line appended to a team job's message."""
    return f"[recipes] {stamp_team_id(team_id)}"


def is_protected_team_id(team_id: str) -> bool:
    return team_id.strip().lower() in PROTECTED_TEAM_IDS


def plan_cron_job_removals(jobs: List[Dict[str, Any]], team_id: str) -> Dict[str, List[Dict[str, Any]]]:
    """Split scheduler jobs into exact (stamped) and ambiguous matches for a team."""
    stamp = stamp_team_id(team_id)
    exact = []
    ambiguous = []

    for job in jobs:
        payload = job.get("payload") or {}
        msg = str(payload.get("message") or "") if isinstance(payload, dict) else ""
        name = str(job.get("name") or "")

        if stamp in msg:
            exact.append({"id": job.get("id"), "name": job.get("name")})
            continue

        if team_id in name or team_id in msg:
            ambiguous.append({"id": job.get("id"), "name": job.get("name"), "reason": "mentions-teamId"})

    return {"exact": exact, "ambiguous": ambiguous}
