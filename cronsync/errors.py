"""
Error types for recipe cron synchronization.

Every failure raised by the engine derives from CronSyncError so callers
can catch one type. The reconciler tags errors with the declared job id
that was being processed when they occurred (``job_id``).
"""

from typing import Optional


class CronSyncError(Exception):
    """Base class for all cron sync failures."""

    def __init__(self, message: str, job_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.job_id = job_id

    def __str__(self) -> str:
        if self.job_id:
            return f"{self.message} (job: {self.job_id})"
        return self.message


class InvalidSpec(CronSyncError):
    """The recipe's cronJobs block is malformed."""


class DuplicateId(InvalidSpec):
    """Two declared jobs in one recipe share an id."""

    def __init__(self, job_id: str):
        super().__init__(f"Duplicate cronJobs[].id: {job_id}")
        self.duplicate_id = job_id


class InvalidPolicyMode(CronSyncError):
    """Installation mode is not one of off/prompt/on."""


class SchedulerUnavailable(CronSyncError):
    """The scheduler tool call failed or timed out."""


class MalformedResponse(CronSyncError):
    """The scheduler answered, but not with the expected JSON."""

    def __init__(self, message: str, raw: Optional[str] = None, job_id: Optional[str] = None):
        super().__init__(message, job_id=job_id)
        self.raw = raw


class MissingIdInResponse(MalformedResponse):
    """A create call succeeded but returned no job id."""


class MappingLocked(CronSyncError):
    """Another reconciliation holds the mapping lock."""
