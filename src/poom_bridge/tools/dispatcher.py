from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Annotated, Any, Awaitable, Callable, Mapping, Optional, Type, TypeVar
from urllib.parse import quote

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field, HttpUrl, TypeAdapter, ValidationError

from poom_bridge.core.errors import ErrorCode, ToolError, invalid_response, run_not_found
from poom_bridge.core.models import (
    ACTIVE_JOB_STATUSES,
    PipelineJob,
    PipelineJobEnvelope,
    PipelineJobsResponse,
    Quiz,
    QuizAnswer,
    QuizScore,
    RunInfo,
    RunsResponse,
)
from poom_bridge.tools.envelope import ToolResponse
from poom_bridge.tools.player import build_player_payload
from poom_bridge.tools.refs import parse_reference, to_run_card
from poom_bridge.upstream.client import UpstreamClient
from poom_bridge.upstream.manifest import ManifestCache

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_HTTP_URL = TypeAdapter(HttpUrl)


def _check_http_url(value: str) -> str:
    # Validated as a URL but forwarded exactly as the caller wrote it.
    try:
        _HTTP_URL.validate_python(value)
    except ValidationError as e:
        raise ValueError("must be an http(s) URL") from e
    return value


SourceUrl = Annotated[str, AfterValidator(_check_http_url)]


class _ToolInput(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)


class NoInput(_ToolInput):
    pass


class CreatePoomInput(_ToolInput):
    source_url: SourceUrl = Field(
        validation_alias=AliasChoices("source_url", "youtube_url"),
        description="Public video URL (YouTube/Loom/Zoom) to generate a POOM from.",
    )
    run_id: Optional[str] = Field(default=None, description="Optional custom run id slug.")


class PoomStatusInput(_ToolInput):
    job_id: str = Field(min_length=1)


class OpenRunPlayerInput(_ToolInput):
    run_id: Optional[str] = Field(
        default=None,
        description="Optional run identifier; defaults to the configured default run or the latest run.",
    )
    reference: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("reference", "poom_ref"),
        description="Optional POOM reference (e.g. poom://run/<run_id> or a URL containing run_id).",
    )


class SegmentQuizInput(_ToolInput):
    run_id: str = Field(min_length=1)
    segment_id: str = Field(min_length=1)


class SubmitSegmentQuizInput(SegmentQuizInput):
    answers: list[QuizAnswer]


@dataclass(frozen=True, slots=True)
class ToolSpec:
    name: str
    description: str
    input_model: Type[_ToolInput]
    handler: Callable[[Any], Awaitable[ToolResponse]]


def _parse_upstream(model: Type[M], raw: Any, what: str) -> M:
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        logger.warning("Upstream payload failed validation. payload=%s errors=%d", what, e.error_count())
        raise invalid_response(f"upstream returned a malformed {what} payload") from e


def _segment_path(run_id: str, segment_id: str) -> str:
    return f"/quiz/{quote(run_id, safe='')}/{quote(segment_id, safe='')}"


def _hub_response(runs: list[RunInfo], active_jobs: list[PipelineJob]) -> ToolResponse:
    cards = [to_run_card(run).model_dump() for run in runs]
    return ToolResponse.success(
        {
            "mode": "hub",
            "runs": cards,
            "active_jobs": [job.model_dump() for job in active_jobs],
            "hub_message": f"Loaded {len(cards)} POOM run(s).",
        },
        f"POOM hub ready with {len(cards)} run(s) and {len(active_jobs)} active job(s).",
    )


class ToolDispatcher:
    """
    The tool surface exposed to chat hosts.

    `call` validates arguments, runs the tool against the upstream client and manifest cache,
    and always returns a `ToolResponse`. Failed calls are never retried here.
    """

    def __init__(
        self,
        *,
        upstream: UpstreamClient,
        manifests: ManifestCache,
        default_run_id: Optional[str] = None,
    ) -> None:
        self._upstream = upstream
        self._manifests = manifests
        self._default_run_id = default_run_id
        self._tools: dict[str, ToolSpec] = {
            spec.name: spec
            for spec in (
                ToolSpec("list_runs", "List available tutorial runs.", NoInput, self.list_runs),
                ToolSpec(
                    "list_pooms",
                    "List available POOM walkthroughs and active creation jobs.",
                    NoInput,
                    self.list_pooms,
                ),
                ToolSpec(
                    "create_poom",
                    "Create a new POOM from a public video URL and return a job id for progress polling.",
                    CreatePoomInput,
                    self.create_poom,
                ),
                ToolSpec(
                    "get_poom_status",
                    "Get POOM creation progress and the current POOM library snapshot.",
                    PoomStatusInput,
                    self.get_poom_status,
                ),
                ToolSpec(
                    "open_run_player",
                    "Open the chaptered tutorial player for a run.",
                    OpenRunPlayerInput,
                    self.open_run_player,
                ),
                ToolSpec(
                    "get_segment_quiz",
                    "Fetch lightweight quiz questions for one run segment.",
                    SegmentQuizInput,
                    self.get_segment_quiz,
                ),
                ToolSpec(
                    "submit_segment_quiz",
                    "Submit quiz answers for a segment and get an immediate score.",
                    SubmitSegmentQuizInput,
                    self.submit_segment_quiz,
                ),
            )
        }

    def list_tools(self) -> list[dict[str, Any]]:
        return [
            {
                "name": spec.name,
                "description": spec.description,
                "input_schema": spec.input_model.model_json_schema(),
            }
            for spec in self._tools.values()
        ]

    async def call(self, name: str, arguments: Optional[Mapping[str, Any]] = None) -> ToolResponse:
        spec = self._tools.get(name)
        if spec is None:
            return ToolResponse.failure(ToolError(ErrorCode.UNKNOWN_TOOL, f"Unknown tool: {name}"))

        if arguments is not None and not isinstance(arguments, Mapping):
            logger.info("Tool arguments rejected. tool=%s type=%s", name, type(arguments).__name__)
            return ToolResponse.failure(
                ToolError(ErrorCode.INVALID_ARGUMENTS, "arguments must be an object")
            )

        try:
            args = spec.input_model.model_validate(dict(arguments or {}))
        except ValidationError as e:
            logger.info("Tool arguments rejected. tool=%s errors=%d", name, e.error_count())
            return ToolResponse.failure(ToolError(ErrorCode.INVALID_ARGUMENTS, _describe_validation_error(e)))

        try:
            response = await spec.handler(args)
        except ToolError as e:
            logger.info("Tool call failed. tool=%s code=%s retryable=%s", name, e.code, e.retryable)
            return ToolResponse.failure(e)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Unexpected error while running tool. tool=%s", name)
            return ToolResponse.failure(ToolError(ErrorCode.INTERNAL_ERROR, f"{name} failed unexpectedly"))

        logger.debug("Tool call succeeded. tool=%s", name)
        return response

    async def _fetch_runs(self) -> list[RunInfo]:
        raw = await self._upstream.get_json("/runs")
        return _parse_upstream(RunsResponse, raw, "runs").runs

    async def _fetch_jobs(self) -> list[PipelineJob]:
        raw = await self._upstream.get_json("/pipeline/jobs")
        return _parse_upstream(PipelineJobsResponse, raw, "jobs").jobs

    async def _fetch_job(self, job_id: str) -> PipelineJob:
        raw = await self._upstream.get_json(f"/pipeline/jobs/{quote(job_id, safe='')}")
        return _parse_upstream(PipelineJobEnvelope, raw, "job").job

    async def list_runs(self, args: NoInput) -> ToolResponse:
        return _hub_response(await self._fetch_runs(), [])

    async def list_pooms(self, args: NoInput) -> ToolResponse:
        runs, jobs = await asyncio.gather(self._fetch_runs(), self._fetch_jobs())
        active = [job for job in jobs if job.status in ACTIVE_JOB_STATUSES]
        return _hub_response(runs, active)

    async def create_poom(self, args: CreatePoomInput) -> ToolResponse:
        body: dict[str, Any] = {"source_url": args.source_url}
        if args.run_id:
            body["run_id"] = args.run_id

        raw = await self._upstream.post_json("/pipeline/jobs", body)
        created = _parse_upstream(PipelineJobEnvelope, raw, "job creation")
        logger.info("Pipeline job created. job_id=%s status=%s", created.job.job_id, created.job.status)
        return ToolResponse.success(
            {"job": created.job.model_dump()},
            f"POOM queued: {created.job.job_id}",
        )

    async def get_poom_status(self, args: PoomStatusInput) -> ToolResponse:
        job, runs = await asyncio.gather(self._fetch_job(args.job_id), self._fetch_runs())
        return ToolResponse.success(
            {
                "job": job.model_dump(),
                "runs": [to_run_card(run).model_dump() for run in runs],
            },
            f"{job.status.upper()} · {job.stage} · {job.progress_pct:g}%",
        )

    async def resolve_run_id(self, run_id: Optional[str] = None, reference: Optional[str] = None) -> str:
        explicit = (run_id or "").strip() or parse_reference(reference)
        if explicit:
            return explicit
        if self._default_run_id:
            return self._default_run_id

        runs = await self._fetch_runs()
        if not runs:
            raise run_not_found("No tutorial runs are currently available")
        return runs[0].run_id

    async def open_run_player(self, args: OpenRunPlayerInput) -> ToolResponse:
        run_id = await self.resolve_run_id(args.run_id, args.reference)
        manifest = await self._manifests.get(run_id)
        structured, text = build_player_payload(run_id, manifest)
        return ToolResponse.success(structured, text)

    async def get_segment_quiz(self, args: SegmentQuizInput) -> ToolResponse:
        raw = await self._upstream.get_json(_segment_path(args.run_id, args.segment_id))
        quiz = _parse_upstream(Quiz, raw, "quiz")
        return ToolResponse.success(
            quiz.model_dump(),
            f"Quiz for {quiz.run_id}/{quiz.segment_id}: {len(quiz.questions)} question(s).",
        )

    async def submit_segment_quiz(self, args: SubmitSegmentQuizInput) -> ToolResponse:
        raw = await self._upstream.post_json(
            f"{_segment_path(args.run_id, args.segment_id)}/score",
            {"answers": [answer.model_dump() for answer in args.answers]},
        )
        score = _parse_upstream(QuizScore, raw, "quiz score")
        return ToolResponse.success(
            score.model_dump(),
            f"Score {score.correct}/{score.total} ({score.score:g}).",
        )


def _describe_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(segment) for segment in item.get("loc", ())) or "arguments"
        parts.append(f"{location}: {item.get('msg', 'invalid value')}")
    return "; ".join(parts)
