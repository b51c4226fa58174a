from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

JobStatus = Literal["queued", "running", "completed", "failed"]
ACTIVE_JOB_STATUSES: frozenset[str] = frozenset({"queued", "running"})


class _WireModel(BaseModel):
    """Backend payloads: unknown fields are tolerated, known ones are validated."""

    model_config = ConfigDict(extra="ignore")


class RunInfo(_WireModel):
    run_id: str
    manifest_path: str
    created_at: str
    segment_count: int
    duration_sec: float = 0.0
    run_title: Optional[str] = None


class RunsResponse(_WireModel):
    runs: list[RunInfo]


class RunCard(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    run_id: str
    title: str
    created_at: str
    segment_count: int
    duration_sec: float
    manifest_path: str
    reference_url: str


class JobError(_WireModel):
    code: str
    message: str
    retryable: bool = False


class PipelineJob(_WireModel):
    job_id: str = Field(min_length=1)
    status: JobStatus
    stage: str = "queued"
    progress_pct: float = 0.0
    message: str = ""
    source_url: str = ""
    run_name: str = ""
    run_id: Optional[str] = None
    started_at: str = ""
    updated_at: str = ""
    completed_at: Optional[str] = None
    failed_at: Optional[str] = None
    error: Optional[JobError] = None


class PipelineJobEnvelope(_WireModel):
    job: PipelineJob


class PipelineJobsResponse(_WireModel):
    jobs: list[PipelineJob]


class Chapter(_WireModel):
    segment_id: str
    name: str
    start_s: float
    end_s: float


class SttIndices(_WireModel):
    start: int
    end: int


class Segment(_WireModel):
    segment_id: str
    name: str
    dub_script: str = ""
    original_transcript_summary: str = ""
    visual_description: str = ""
    stt_indices: Optional[SttIndices] = None
    video_stream_url: str = ""


class MasterVideo(_WireModel):
    available: bool
    video_stream_url: Optional[str] = None
    chapters_track_url: Optional[str] = None
    duration_s: float = 0.0
    chapters: list[Chapter] = Field(default_factory=list)
    skipped_segments: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def is_playable(self) -> bool:
        return self.available and bool(self.video_stream_url)


class Manifest(_WireModel):
    run_id: str
    manifest_path: str
    updated_at: float
    segments: list[Segment]
    master: MasterVideo
    errors: list[JobError] = Field(default_factory=list)

    def segment(self, segment_id: str) -> Optional[Segment]:
        for row in self.segments:
            if row.segment_id == segment_id:
                return row
        return None


class QuizQuestion(_WireModel):
    id: str
    prompt: str
    options: list[str]
    correct_index: int
    explanation: str


class Quiz(_WireModel):
    run_id: str
    segment_id: str
    questions: list[QuizQuestion]


class QuizAnswer(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    selected_index: int


class QuizScoreDetail(_WireModel):
    id: Optional[str] = None
    is_correct: bool
    expected_index: Optional[int] = None
    selected_index: Optional[int] = None
    explanation: str


class QuizScore(_WireModel):
    run_id: str
    segment_id: str
    score: float
    correct: int
    total: int
    details: list[QuizScoreDetail]
