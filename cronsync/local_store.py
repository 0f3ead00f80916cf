"""
File-backed scheduler store.

A minimal stand-in for a scheduler's job list that answers the same tool
calls the real scheduler does (list / add / update / remove), returning JSON
text. Used by the ``local`` scheduler backend and by tests.

Jobs are stored in ~/.recipes/cron/jobs.json:

    {"version": 1, "jobs": [...], "updated_at": "..."}
"""

import json
import logging
import os
import tempfile
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_JOBS_FILE = Path(os.getenv("RECIPES_HOME", Path.home() / ".recipes")) / "cron" / "jobs.json"

# Fields a patch may not overwrite
_READONLY_FIELDS = {"id", "createdAtMs"}


def _now_ms() -> int:
    return int(datetime.now().timestamp() * 1000)


class LocalJobStore:
    """Job list persisted to a JSON file, callable as a scheduler transport."""

    def __init__(self, jobs_file: Optional[Path] = None):
        self.jobs_file = Path(jobs_file) if jobs_file else DEFAULT_JOBS_FILE

    # -------------------------------------------------------------------------
    # Storage
    # -------------------------------------------------------------------------

    def load_jobs(self) -> List[Dict[str, Any]]:
        """Load all jobs from storage."""
        if not self.jobs_file.exists():
            return []

        try:
            with open(self.jobs_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
                jobs = data.get("jobs", [])
                return jobs if isinstance(jobs, list) else []
        except (json.JSONDecodeError, IOError, AttributeError):
            return []

    def save_jobs(self, jobs: List[Dict[str, Any]]):
        """Save all jobs to storage."""
        self.jobs_file.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.jobs_file.parent), suffix='.tmp', prefix='.jobs_')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump({"version": 1, "jobs": jobs, "updated_at": datetime.now().isoformat()}, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.jobs_file)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------

    def list_jobs(self, include_disabled: bool = True) -> List[Dict[str, Any]]:
        """List all jobs, optionally including disabled ones."""
        jobs = self.load_jobs()
        if not include_disabled:
            jobs = [j for j in jobs if j.get("enabled", True)]
        return jobs

    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        for job in self.load_jobs():
            if job.get("id") == job_id:
                return job
        return None

    def add_job(self, spec: Dict[str, Any]) -> Dict[str, Any]:
        """Create a job from a scheduler job spec and return it with its new id."""
        now = _now_ms()
        job = {
            **spec,
            "id": uuid.uuid4().hex[:12],
            "enabled": bool(spec.get("enabled", True)),
            "createdAtMs": now,
            "updatedAtMs": now,
        }
        jobs = self.load_jobs()
        jobs.append(job)
        self.save_jobs(jobs)
        logger.info("Added cron job %s (%s)", job["id"], job.get("name"))
        return job

    def update_job(self, job_id: str, patch: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Apply a partial update; fields not in the patch are kept."""
        jobs = self.load_jobs()
        for i, job in enumerate(jobs):
            if job.get("id") == job_id:
                updates = {k: v for k, v in patch.items() if k not in _READONLY_FIELDS}
                jobs[i] = {**job, **updates, "updatedAtMs": _now_ms()}
                self.save_jobs(jobs)
                return jobs[i]
        return None

    def remove_job(self, job_id: str) -> bool:
        jobs = self.load_jobs()
        original_len = len(jobs)
        jobs = [j for j in jobs if j.get("id") != job_id]
        if len(jobs) < original_len:
            self.save_jobs(jobs)
            return True
        return False

    # -------------------------------------------------------------------------
    # Tool-call handler
    # -------------------------------------------------------------------------

    def handle_tool_call(self, request: Dict[str, Any]) -> str:
        """Dispatch a cron tool call and return the JSON response text."""
        action = request.get("action")

        if action == "list":
            include_disabled = bool(request.get("includeDisabled", False))
            return json.dumps({"jobs": self.list_jobs(include_disabled=include_disabled)})

        if action == "add":
            spec = request.get("job")
            if not isinstance(spec, dict):
                return json.dumps({"error": "job is required"})
            return json.dumps(self.add_job(spec))

        if action == "update":
            job_id = request.get("jobId")
            patch = request.get("patch") or {}
            updated = self.update_job(job_id, patch)
            if updated is None:
                return json.dumps({"error": f"Job not found: {job_id}"})
            return json.dumps({"ok": True, "job": updated})

        if action == "remove":
            job_id = request.get("jobId")
            return json.dumps({"ok": True, "removed": self.remove_job(job_id)})

        return json.dumps({"error": f"Unknown cron action: {action}"})

    __call__ = handle_tool_call
