from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from poom_bridge.core.models import PipelineJob, RunCard

DEFAULT_HUB_MESSAGE = "POOM hub ready."


@dataclass(slots=True)
class HubState:
    """What a hub view shows: library, recent jobs, a status line and the opened player."""

    runs: list[RunCard] = field(default_factory=list)
    recent_jobs: list[PipelineJob] = field(default_factory=list)
    message: str = DEFAULT_HUB_MESSAGE
    working: bool = False
    player: Optional[dict[str, Any]] = None
    recent_jobs_limit: int = 8

    def remember_job(self, job: PipelineJob) -> None:
        self.recent_jobs = merge_recent_jobs(self.recent_jobs, job, limit=self.recent_jobs_limit)


def merge_recent_jobs(jobs: list[PipelineJob], job: PipelineJob, *, limit: int) -> list[PipelineJob]:
    """Most recent first, one entry per job id, at most `limit` entries."""
    merged = [job, *(row for row in jobs if row.job_id != job.job_id)]
    return merged[:limit]


def describe_job(job: PipelineJob) -> str:
    return f"{job.status.upper()} · {job.stage} · {job.progress_pct:g}%"


def failure_detail(job: PipelineJob) -> str:
    if job.error is not None and job.error.message:
        return job.error.message
    return job.message or "Unknown failure"
