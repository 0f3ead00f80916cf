"""
Declared cron job normalization.

Recipes declare scheduled jobs in their frontmatter under ``cronJobs``:

    cronJobs:
      - id: daily-report
        schedule: "0 9 * * *"
        message: "Write the daily status report"
        timezone: America/New_York
        channel: telegram
        to: "@ops"
        enabledByDefault: true

The raw YAML is loosely shaped. normalize_declared_jobs() validates it and
converts each entry into a DeclaredJob; nothing downstream touches the raw
dicts.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from cronsync.errors import DuplicateId, InvalidSpec


@dataclass(frozen=True)
class DeclaredJob:
    """A scheduled job as written in a recipe, keyed by a recipe-local id."""
    id: str
    schedule: str
    message: str
    name: Optional[str] = None
    description: Optional[str] = None
    timezone: Optional[str] = None
    channel: Optional[str] = None
    to: Optional[str] = None
    agent_id: Optional[str] = None
    enabled_by_default: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "schedule": self.schedule,
            "message": self.message,
            "name": self.name,
            "description": self.description,
            "timezone": self.timezone,
            "channel": self.channel,
            "to": self.to,
            "agentId": self.agent_id,
            "enabledByDefault": self.enabled_by_default,
        }


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _optional_text(value: Any) -> Optional[str]:
    text = _text(value)
    return text or None


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "y", "1", "on")
    return bool(value)


def normalize_declared_jobs(raw: Any) -> List[DeclaredJob]:
    """
    Validate a raw cronJobs value and return DeclaredJob records in order.

    None means "no jobs". Anything that is not a list, any entry that is not
    a mapping, a missing id/schedule/message, or a repeated id raises.
    ``message`` falls back to ``task`` and then ``prompt`` for older recipes.
    """
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise InvalidSpec("frontmatter.cronJobs must be an array")

    seen = set()
    out: List[DeclaredJob] = []

    for entry in raw:
        if not isinstance(entry, dict):
            raise InvalidSpec("cronJobs entries must be objects")

        job_id = _text(entry.get("id"))
        if not job_id:
            raise InvalidSpec("cronJobs[].id is required")
        if job_id in seen:
            raise DuplicateId(job_id)
        seen.add(job_id)

        schedule = _text(entry.get("schedule"))
        if not schedule:
            raise InvalidSpec(f"cronJobs[{job_id}].schedule is required")

        message = _text(entry.get("message"))
        if not message:
            message = _text(entry.get("task")) or _text(entry.get("prompt"))
        if not message:
            raise InvalidSpec(f"cronJobs[{job_id}].message is required")

        enabled = entry.get("enabledByDefault", entry.get("enabled_by_default", False))

        out.append(DeclaredJob(
            id=job_id,
            schedule=schedule,
            message=message,
            name=_optional_text(entry.get("name")),
            description=_optional_text(entry.get("description")),
            timezone=_optional_text(entry.get("timezone")),
            channel=_optional_text(entry.get("channel")),
            to=_optional_text(entry.get("to")),
            agent_id=_optional_text(entry.get("agentId", entry.get("agent_id"))),
            enabled_by_default=_as_bool(enabled),
        ))

    return out


def normalize_cron_jobs(frontmatter: Optional[Dict[str, Any]]) -> List[DeclaredJob]:
    """Normalize the ``cronJobs`` block of a parsed recipe frontmatter."""
    if not frontmatter:
        return []
    return normalize_declared_jobs(frontmatter.get("cronJobs"))
