"""
Job and token persistence.

Jobs are saved as whole records (no partial updates). The JSON store writes
to a temp file and renames it over the old record, so a reader never sees a
half-written job.
"""

import json
import os
from dataclasses import asdict
from pathlib import Path
from typing import Dict, List, Optional, Protocol, runtime_checkable

from commentsync.core.frameio_client import Session
from commentsync.models.schemas import ProcessingJob


@runtime_checkable
class JobStore(Protocol):
    def load(self, job_id: str) -> Optional[ProcessingJob]:
        ...

    def save(self, job: ProcessingJob) -> None:
        ...


@runtime_checkable
class TokenStore(Protocol):
    def load(self, account_id: str) -> Optional[Session]:
        ...

    def save(self, account_id: str, session: Session) -> None:
        ...


def _atomic_write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(text, encoding="utf-8")
    os.replace(tmp_path, path)


class MemoryJobStore:
    def __init__(self):
        self._jobs: Dict[str, ProcessingJob] = {}

    def load(self, job_id: str) -> Optional[ProcessingJob]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    def save(self, job: ProcessingJob) -> None:
        self._jobs[job.id] = job.model_copy(deep=True)

    def list_jobs(self) -> List[ProcessingJob]:
        return [job.model_copy(deep=True) for job in self._jobs.values()]


class JsonJobStore:
    """One JSON file per job under <directory>/<job_id>.json"""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, job_id: str) -> Path:
        if not job_id or "/" in job_id or "\\" in job_id or job_id.startswith("."):
            raise ValueError(f"Invalid job id: {job_id!r}")
        return self.directory / f"{job_id}.json"

    def load(self, job_id: str) -> Optional[ProcessingJob]:
        path = self._path(job_id)
        if not path.exists():
            return None
        return ProcessingJob.model_validate_json(path.read_text(encoding="utf-8"))

    def save(self, job: ProcessingJob) -> None:
        _atomic_write(self._path(job.id), job.model_dump_json(indent=2))

    def list_jobs(self) -> List[ProcessingJob]:
        if not self.directory.exists():
            return []
        return [
            ProcessingJob.model_validate_json(p.read_text(encoding="utf-8"))
            for p in sorted(self.directory.glob("*.json"))
        ]


class MemoryTokenStore:
    """Per-account sessions; `default` answers for accounts never saved."""

    def __init__(self, default: Optional[Session] = None):
        self.default = default
        self._sessions: Dict[str, Session] = {}

    def load(self, account_id: str) -> Optional[Session]:
        return self._sessions.get(account_id, self.default)

    def save(self, account_id: str, session: Session) -> None:
        self._sessions[account_id] = session


class JsonTokenStore(MemoryTokenStore):
    """MemoryTokenStore that also keeps refreshed sessions in a JSON file."""

    def __init__(self, path: Path, default: Optional[Session] = None):
        super().__init__(default)
        self.path = Path(path)
        if self.path.exists():
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            self._sessions = {account: Session(**data) for account, data in raw.items()}

    def save(self, account_id: str, session: Session) -> None:
        super().save(account_id, session)
        payload = {account: asdict(s) for account, s in self._sessions.items()}
        _atomic_write(self.path, json.dumps(payload, indent=2))
