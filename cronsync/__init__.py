"""
Recipe cron job synchronization.

Keeps the scheduled jobs a recipe declares in sync with an external
scheduler. Re-running a sync converges: jobs are created once, updated only
when their spec changes, disabled when the operator has not opted in, and
disabled (never deleted) when they disappear from the recipe.

    from cronsync import Owner, SchedulerClient, LocalJobStore
    from cronsync import normalize_cron_jobs, reconcile_cron_jobs

    jobs = normalize_cron_jobs(frontmatter)
    client = SchedulerClient(LocalJobStore())
    result = reconcile_cron_jobs(jobs, Owner.team("qa-team"), "marketing",
                                 mapping_file, client, mode="on")

The mapping of declared job ids to scheduler job ids lives in the owner's
notes folder (notes/cron-jobs.json).
"""

from cronsync.client import CommandTransport, ExternalJob, SchedulerClient
from cronsync.errors import (
    CronSyncError,
    DuplicateId,
    InvalidPolicyMode,
    InvalidSpec,
    MalformedResponse,
    MappingLocked,
    MissingIdInResponse,
    SchedulerUnavailable,
)
from cronsync.local_store import LocalJobStore
from cronsync.mapping import (
    MappingEntry,
    MappingState,
    Owner,
    OwnerKind,
    load_mapping,
    mapping_key,
    mapping_lock,
    mapping_path,
    save_mapping,
)
from cronsync.policy import PolicyDecision, resolve_policy
from cronsync.reconciler import ReconcileResult, reconcile_cron_jobs
from cronsync.specs import DeclaredJob, normalize_cron_jobs, normalize_declared_jobs

__all__ = [
    "CommandTransport",
    "CronSyncError",
    "DeclaredJob",
    "DuplicateId",
    "ExternalJob",
    "InvalidPolicyMode",
    "InvalidSpec",
    "LocalJobStore",
    "MalformedResponse",
    "MappingEntry",
    "MappingLocked",
    "MappingState",
    "MissingIdInResponse",
    "Owner",
    "OwnerKind",
    "PolicyDecision",
    "ReconcileResult",
    "SchedulerClient",
    "SchedulerUnavailable",
    "load_mapping",
    "mapping_key",
    "mapping_lock",
    "mapping_path",
    "normalize_cron_jobs",
    "normalize_declared_jobs",
    "reconcile_cron_jobs",
    "resolve_policy",
    "save_mapping",
]
