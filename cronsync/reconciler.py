"""
Reconcile a recipe's declared cron jobs with the scheduler.

One pass, for a single (owner, recipe) pair:

1. Nothing declared -> return "no-jobs" without touching anything.
2. Resolve the installation policy; "off" or an interactive "no" stops here.
3. Load the owner's mapping file.
4. Only list scheduler jobs if at least one declared job was installed before.
5-6. For each declared job, in recipe order: create it if its installed job
   is missing, push content changes when its spec hash drifted, and disable
   it when the operator has not opted in.
7. Disable jobs that disappeared from the recipe and mark them orphaned.
8. Save the mapping once, after every scheduler call succeeded.

Any error aborts the pass before the mapping is written, so a stored hash
always describes a spec that was fully applied.
"""

import hashlib
import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from cronsync.client import ExternalJob, SchedulerClient
from cronsync.errors import CronSyncError
from cronsync.mapping import (
    MappingEntry,
    Owner,
    OwnerKind,
    load_mapping,
    mapping_key,
    parse_mapping_key,
    save_mapping,
    scope_prefix,
)
from cronsync.policy import Confirm, resolve_policy
from cronsync.removal import stamp_line
from cronsync.specs import DeclaredJob

logger = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"
UNCHANGED = "unchanged"
DISABLED = "disabled"
DISABLED_REMOVED = "disabled-removed"
ORPHANED = "orphaned"


@dataclass
class ReconcileResult:
    changed: bool
    reason: Optional[str] = None
    opted_in: bool = False
    jobs: List[Dict[str, Any]] = field(default_factory=list)
    orphans: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"changed": self.changed}
        if self.reason:
            result["reason"] = self.reason
        else:
            result["optedIn"] = self.opted_in
            result["jobs"] = self.jobs
            result["orphans"] = self.orphans
            counts: Dict[str, int] = {}
            for item in self.jobs + self.orphans:
                counts[item["action"]] = counts.get(item["action"], 0) + 1
            result["counts"] = counts
        return result


def _now_ms() -> int:
    return int(time.time() * 1000)


# =============================================================================
# Desired spec
# =============================================================================

def desired_spec(job: DeclaredJob, owner: Owner) -> Dict[str, Any]:
    """
    Canonical record of everything the scheduler sees for a declared job.

    Missing optional fields are always None so logically equal jobs hash
    equally. Team jobs get the team stamp appended to their message.
    """
    message = job.message
    if owner.kind is OwnerKind.TEAM:
        message = f"{message}\n\n{stamp_line(owner.id)}"

    return {
        "schedule": job.schedule,
        "message": message,
        "timezone": job.timezone,
        "channel": job.channel,
        "to": job.to,
        "agentId": job.agent_id,
        "name": job.name or f"{owner.id} • {job.id}",
        "description": job.description,
    }


def spec_hash(spec: Dict[str, Any]) -> str:
    canonical = json.dumps(spec, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def scheduler_fields(spec: Dict[str, Any]) -> Dict[str, Any]:
    """Translate a desired spec into scheduler job fields (without ``enabled``)."""
    schedule: Dict[str, Any] = {"kind": "cron", "expr": spec["schedule"]}
    if spec.get("timezone"):
        schedule["tz"] = spec["timezone"]

    if spec.get("channel") or spec.get("to"):
        delivery: Dict[str, Any] = {"mode": "announce"}
        if spec.get("channel"):
            delivery["channel"] = spec["channel"]
        if spec.get("to"):
            delivery["to"] = spec["to"]
    else:
        delivery = {"mode": "none"}

    fields = {
        "name": spec["name"],
        "description": spec.get("description"),
        "schedule": schedule,
        "sessionTarget": "isolated",
        "wakeMode": "now",
        "payload": {"kind": "agentTurn", "message": spec["message"]},
        "delivery": delivery,
    }
    if spec.get("agentId"):
        fields["agentId"] = spec["agentId"]
    return fields


# =============================================================================
# Reconciliation
# =============================================================================

def reconcile_cron_jobs(
    jobs: Sequence[DeclaredJob],
    owner: Owner,
    recipe_id: str,
    mapping_file: Path,
    client: SchedulerClient,
    mode: str = "prompt",
    interactive: bool = False,
    confirm: Optional[Confirm] = None,
    now_ms: Optional[int] = None,
) -> ReconcileResult:
    """Run one reconciliation pass. See the module docstring for the steps."""
    if not jobs:
        return ReconcileResult(changed=False, reason="no-jobs")

    decision = resolve_policy(mode, len(jobs), interactive=interactive,
                              confirm=confirm, recipe_id=recipe_id)
    if not decision.proceed:
        logger.info("Skipping cron sync for %s/%s: %s", owner.id, recipe_id, decision.reason)
        return ReconcileResult(changed=False, reason=decision.reason)

    now = now_ms if now_ms is not None else _now_ms()
    state = load_mapping(mapping_file)
    keys = [mapping_key(owner, recipe_id, j.id) for j in jobs]

    previously_installed = any(
        state.entries.get(k) is not None and state.entries[k].installed_job_id
        for k in keys
    )
    external: Dict[str, ExternalJob] = {}
    if previously_installed:
        external = {j.id: j for j in client.list_jobs(include_disabled=True)}
    else:
        logger.debug("No prior installs for %s/%s; skipping cron.list", owner.id, recipe_id)

    result = ReconcileResult(changed=False, opted_in=decision.opted_in)
    current: Optional[str] = None

    try:
        for job, key in zip(jobs, keys):
            current = job.id
            outcome = _reconcile_one(job, key, owner, state.entries, external,
                                     client, decision.opted_in, now)
            if outcome["action"] != UNCHANGED:
                result.changed = True
            result.jobs.append(outcome)

        declared = {j.id for j in jobs}
        prefix = scope_prefix(owner, recipe_id)
        for key in sorted(state.entries):
            if not key.startswith(prefix):
                continue
            _, _, job_id = parse_mapping_key(key)
            if job_id in declared:
                continue
            current = job_id
            outcome = _sweep_orphan(job_id, state.entries[key], external, client, now)
            if outcome["action"] == DISABLED_REMOVED:
                result.changed = True
            result.orphans.append(outcome)
    except CronSyncError as e:
        if e.job_id is None:
            e.job_id = current
        logger.error("Cron sync for %s/%s aborted: %s", owner.id, recipe_id, e)
        raise

    save_mapping(mapping_file, state)
    return result


def _reconcile_one(
    job: DeclaredJob,
    key: str,
    owner: Owner,
    entries: Dict[str, MappingEntry],
    external: Dict[str, ExternalJob],
    client: SchedulerClient,
    opted_in: bool,
    now: int,
) -> Dict[str, Any]:
    spec = desired_spec(job, owner)
    digest = spec_hash(spec)
    want_enabled = opted_in and job.enabled_by_default

    entry = entries.get(key)
    existing = external.get(entry.installed_job_id) if entry else None

    if existing is None:
        job_id = client.create({**scheduler_fields(spec), "enabled": want_enabled})
        entries[key] = MappingEntry(installed_job_id=job_id, spec_hash=digest,
                                    orphaned=False, updated_at_ms=now)
        logger.info("Created cron job %s -> %s (enabled=%s)", job.id, job_id, want_enabled)
        return {"id": job.id, "action": CREATED, "installedJobId": job_id}

    action = UNCHANGED
    if entry.spec_hash != digest:
        client.update(existing.id, scheduler_fields(spec))
        entry.spec_hash = digest
        action = UPDATED
        logger.info("Updated cron job %s (%s)", job.id, existing.id)

    if not opted_in and existing.enabled:
        client.update(existing.id, {"enabled": False})
        action = DISABLED
        logger.info("Disabled cron job %s (%s): not opted in", job.id, existing.id)

    if action != UNCHANGED or entry.orphaned:
        entry.orphaned = False
        entry.updated_at_ms = now

    return {"id": job.id, "action": action, "installedJobId": existing.id}


def _sweep_orphan(
    job_id: str,
    entry: MappingEntry,
    external: Dict[str, ExternalJob],
    client: SchedulerClient,
    now: int,
) -> Dict[str, Any]:
    existing = external.get(entry.installed_job_id)
    action = ORPHANED

    if existing is not None and existing.enabled:
        client.update(existing.id, {"enabled": False})
        action = DISABLED_REMOVED
        logger.info("Disabled cron job %s (%s): removed from recipe", job_id, existing.id)

    if action == DISABLED_REMOVED or not entry.orphaned:
        entry.orphaned = True
        entry.updated_at_ms = now

    return {"id": job_id, "action": action, "installedJobId": entry.installed_job_id}
