"""
Persistent mapping between declared recipe jobs and installed scheduler jobs.

One file per owner, kept in the owner's notes area:

    <workspace>/teams/<teamId>/notes/cron-jobs.json
    <workspace>/agents/<agentId>/notes/cron-jobs.json

Format:

    {
      "version": 1,
      "entries": {
        "team:qa-team:marketing:daily-report": {
          "installedJobId": "3f2a...",
          "specHash": "9c1e...",
          "orphaned": false,
          "updatedAtMs": 1760000000000
        }
      }
    }

Anything unreadable or of a different version loads as an empty state.
Writes are atomic (temp file + rename) and happen once per reconciliation.
"""

import json
import logging
import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Tuple
from urllib.parse import quote, unquote

try:
    import fcntl
except ImportError:
    fcntl = None
    try:
        import msvcrt
    except ImportError:
        msvcrt = None

from cronsync.errors import MappingLocked

logger = logging.getLogger(__name__)

MAPPING_VERSION = 1
MAPPING_FILENAME = "cron-jobs.json"
LOCK_FILENAME = ".cron-jobs.lock"


class OwnerKind(Enum):
    """Who a recipe's jobs belong to."""
    TEAM = "team"
    AGENT = "agent"


@dataclass(frozen=True)
class Owner:
    kind: OwnerKind
    id: str

    @classmethod
    def team(cls, team_id: str) -> "Owner":
        return cls(OwnerKind.TEAM, team_id)

    @classmethod
    def agent(cls, agent_id: str) -> "Owner":
        return cls(OwnerKind.AGENT, agent_id)


@dataclass
class MappingEntry:
    installed_job_id: str
    spec_hash: str
    orphaned: bool = False
    updated_at_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "installedJobId": self.installed_job_id,
            "specHash": self.spec_hash,
            "orphaned": self.orphaned,
            "updatedAtMs": self.updated_at_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MappingEntry":
        installed = data.get("installedJobId")
        spec_hash = data.get("specHash")
        if not isinstance(installed, str) or not isinstance(spec_hash, str):
            raise ValueError("mapping entry requires installedJobId and specHash strings")
        return cls(
            installed_job_id=installed,
            spec_hash=spec_hash,
            orphaned=bool(data.get("orphaned", False)),
            updated_at_ms=int(data.get("updatedAtMs") or 0),
        )


@dataclass
class MappingState:
    version: int = MAPPING_VERSION
    entries: Dict[str, MappingEntry] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "entries": {k: v.to_dict() for k, v in self.entries.items()},
        }


# =============================================================================
# Keys
# =============================================================================

def mapping_key(owner: Owner, recipe_id: str, job_id: str) -> str:
    """
    Build the storage key for a declared job.

    Each part is percent-encoded before joining with ':' so ids that
    themselves contain ':' cannot produce the same key for different owners.
    """
    parts = (owner.kind.value, owner.id, recipe_id, job_id)
    return ":".join(quote(p, safe="") for p in parts)


def scope_prefix(owner: Owner, recipe_id: str) -> str:
    """Key prefix shared by every job of one (owner, recipe) pair."""
    parts = (owner.kind.value, owner.id, recipe_id)
    return ":".join(quote(p, safe="") for p in parts) + ":"


def parse_mapping_key(key: str) -> Tuple[Owner, str, str]:
    """Inverse of mapping_key(): returns (owner, recipe_id, job_id)."""
    parts = key.split(":")
    if len(parts) != 4:
        raise ValueError(f"Invalid mapping key: {key!r}")
    kind, owner_id, recipe_id, job_id = (unquote(p) for p in parts)
    return Owner(OwnerKind(kind), owner_id), recipe_id, job_id


def mapping_path(workspace_root: Path, owner: Owner,
                 teams_dir: str = "teams", agents_dir: str = "agents") -> Path:
    """Location of an owner's mapping file inside its notes folder."""
    base = teams_dir if owner.kind is OwnerKind.TEAM else agents_dir
    return Path(workspace_root) / base / owner.id / "notes" / MAPPING_FILENAME


# =============================================================================
# Load / save
# =============================================================================

def load_mapping(path: Path) -> MappingState:
    """Load mapping state, treating anything unusable as a cold start."""
    path = Path(path)
    if not path.exists():
        return MappingState()

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, IOError, UnicodeDecodeError) as e:
        logger.warning("Ignoring unreadable cron mapping %s: %s", path, e)
        return MappingState()

    if not isinstance(data, dict) or data.get("version") != MAPPING_VERSION:
        logger.warning("Ignoring cron mapping %s with unsupported version", path)
        return MappingState()

    raw_entries = data.get("entries")
    if not isinstance(raw_entries, dict):
        logger.warning("Ignoring cron mapping %s: entries is not an object", path)
        return MappingState()

    entries: Dict[str, MappingEntry] = {}
    for key, raw in raw_entries.items():
        if not isinstance(raw, dict):
            logger.debug("Dropping malformed mapping entry %s", key)
            continue
        try:
            parse_mapping_key(key)
            entries[key] = MappingEntry.from_dict(raw)
        except (TypeError, ValueError):
            logger.debug("Dropping malformed mapping entry %s", key)

    return MappingState(version=MAPPING_VERSION, entries=entries)


def dump_mapping(state: MappingState) -> str:
    """Deterministic serialization used for the mapping file."""
    return json.dumps(state.to_dict(), indent=2, sort_keys=True) + "\n"


def save_mapping(path: Path, state: MappingState) -> None:
    """Write the full mapping state atomically."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp", prefix=".cron-jobs_")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(dump_mapping(state))
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


# =============================================================================
# Advisory lock
# =============================================================================

@contextmanager
def mapping_lock(path: Path) -> Iterator[Optional[Path]]:
    """
    Hold a non-blocking advisory lock beside the mapping file.

    Only guards against two reconciliations for the same owner running at
    once; raises MappingLocked instead of waiting.
    """
    lock_path = Path(path).parent / LOCK_FILENAME
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    lock_fd = open(lock_path, "w")
    try:
        if fcntl:
            fcntl.flock(lock_fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        elif msvcrt:
            msvcrt.locking(lock_fd.fileno(), msvcrt.LK_NBLCK, 1)
    except (OSError, IOError):
        lock_fd.close()
        raise MappingLocked(f"Another cron sync is running for {Path(path).parent}")

    try:
        yield lock_path
    finally:
        if fcntl:
            fcntl.flock(lock_fd, fcntl.LOCK_UN)
        elif msvcrt:
            try:
                msvcrt.locking(lock_fd.fileno(), msvcrt.LK_UNLCK, 1)
            except (OSError, IOError):
                pass
        lock_fd.close()
