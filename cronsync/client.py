"""
Scheduler client over an opaque tool-call boundary.

The scheduler is reached through a single callable taking a request dict
such as ``{"action": "list", "includeDisabled": True}`` and returning the
tool's response. Responses come in a few shapes:

    '{"jobs": [...]}'                                  plain JSON text
    {"content": [{"type": "text", "text": "{...}"}]}   tool-result envelope
    {"details": {...}}                                 structured details

SchedulerClient turns these into ExternalJob records and ids and maps every
failure onto the cronsync error types.
"""

import json
import logging
import subprocess
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from cronsync.errors import MalformedResponse, MissingIdInResponse, SchedulerUnavailable

logger = logging.getLogger(__name__)

Transport = Callable[[Dict[str, Any]], Any]

_NO_JSON = object()


@dataclass
class ExternalJob:
    """The scheduler's view of a job. Read-only to the sync engine."""
    id: str
    name: Optional[str] = None
    enabled: bool = True
    schedule: Any = None
    payload: Any = None
    delivery: Any = None
    agent_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExternalJob":
        return cls(
            id=str(data["id"]),
            name=data.get("name"),
            enabled=bool(data.get("enabled", True)),
            schedule=data.get("schedule"),
            payload=data.get("payload"),
            delivery=data.get("delivery"),
            agent_id=data.get("agentId"),
            raw=data,
        )


def _response_text(response: Any) -> str:
    """Pull the textual content out of a tool response."""
    if response is None:
        return ""
    if isinstance(response, (bytes, bytearray)):
        return response.decode("utf-8", errors="replace")
    if isinstance(response, str):
        return response
    if isinstance(response, dict):
        content = response.get("content")
        if isinstance(content, list):
            parts = [
                str(part.get("text", ""))
                for part in content
                if isinstance(part, dict) and part.get("type", "text") == "text"
            ]
            text = "\n".join(p for p in parts if p)
            if text:
                return text
        details = response.get("details")
        if details is not None:
            return json.dumps(details)
        if "content" not in response:
            return json.dumps(response)
        return ""
    return json.dumps(response)


def _parse_json(text: str) -> Any:
    """Parse response text; returns _NO_JSON for empty or non-JSON text."""
    stripped = text.strip()
    if not stripped:
        return _NO_JSON
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        return _NO_JSON


class SchedulerClient:
    """list / create / update against an external scheduler."""

    def __init__(self, transport: Transport):
        self._transport = transport

    def _call(self, request: Dict[str, Any]) -> str:
        action = request.get("action")
        logger.debug("cron tool call: %s", action)
        try:
            response = self._transport(request)
        except Exception as e:
            raise SchedulerUnavailable(f"cron.{action} failed: {e}") from e

        text = _response_text(response)
        data = _parse_json(text)
        if isinstance(data, dict) and data.get("error"):
            raise SchedulerUnavailable(f"cron.{action} failed: {data['error']}")
        return text

    def list_jobs(self, include_disabled: bool = True) -> List[ExternalJob]:
        text = self._call({"action": "list", "includeDisabled": include_disabled})
        data = _parse_json(text)
        if data is _NO_JSON:
            if text.strip():
                logger.debug("cron.list returned non-JSON text; treating as empty")
            return []

        jobs = data.get("jobs") if isinstance(data, dict) else data
        if not isinstance(jobs, list):
            raise MalformedResponse("cron.list returned an unexpected shape", raw=text)

        out = []
        for item in jobs:
            if not isinstance(item, dict) or item.get("id") in (None, ""):
                raise MalformedResponse("cron.list returned a job without an id", raw=text)
            out.append(ExternalJob.from_dict(item))
        return out

    def create(self, job_spec: Dict[str, Any]) -> str:
        text = self._call({"action": "add", "job": job_spec})
        data = _parse_json(text)
        if data is _NO_JSON:
            if text.strip():
                raise MalformedResponse("cron.add returned non-JSON text", raw=text)
            raise MissingIdInResponse("cron.add returned no job id", raw=text)
        if not isinstance(data, dict):
            raise MalformedResponse("cron.add returned an unexpected shape", raw=text)

        job_id = data.get("id") or data.get("jobId")
        if not job_id and isinstance(data.get("job"), dict):
            job_id = data["job"].get("id")
        if not job_id:
            raise MissingIdInResponse("cron.add returned no job id", raw=text)
        return str(job_id)

    def update(self, job_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        text = self._call({"action": "update", "jobId": job_id, "patch": patch})
        data = _parse_json(text)
        if data is _NO_JSON:
            if text.strip():
                raise MalformedResponse("cron.update returned non-JSON text", raw=text)
            return {}
        if not isinstance(data, dict):
            raise MalformedResponse("cron.update returned an unexpected shape", raw=text)
        return data


class CommandTransport:
    """
    Run scheduler tool calls through a CLI, one process per call.

    With the default command this runs:
        openclaw gateway call cron.<action> --params '<json>' --json
    and returns stdout.
    """

    def __init__(self, command: Sequence[str] = ("openclaw", "gateway", "call"),
                 timeout: float = 30, method_prefix: str = "cron."):
        self.command = list(command)
        self.timeout = timeout
        self.method_prefix = method_prefix

    def __call__(self, request: Dict[str, Any]) -> str:
        params = dict(request)
        action = params.pop("action")
        argv = self.command + [
            f"{self.method_prefix}{action}",
            "--params", json.dumps(params),
            "--json",
        ]
        result = subprocess.run(
            argv,
            capture_output=True,
            text=True,
            timeout=self.timeout,
        )
        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip()
            raise RuntimeError(f"{argv[0]} exited with {result.returncode}: {detail}")
        return result.stdout
