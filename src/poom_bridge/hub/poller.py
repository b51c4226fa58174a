from __future__ import annotations

import enum
import inspect
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from pydantic import ValidationError

from poom_bridge.core.models import PipelineJob, RunCard
from poom_bridge.hub.scheduler import ScheduledHandle, Scheduler
from poom_bridge.hub.state import HubState, describe_job, failure_detail
from poom_bridge.tools.envelope import ToolResponse

logger = logging.getLogger(__name__)

CallTool = Callable[[str, Mapping[str, Any]], Awaitable[ToolResponse]]
OpenRun = Callable[[str], Awaitable[None]]
OnChange = Callable[[HubState], Union[None, Awaitable[None]]]

MISSING_RUN_ID_MESSAGE = "POOM completed but run_id is missing. Refresh and open manually."


class PollPhase(str, enum.Enum):
    IDLE = "idle"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    POLLING_ERROR = "polling_error"


class JobPoller:
    """
    Drives one pipeline job to a terminal state by polling `get_poom_status` at a fixed interval.

    idle -> polling -> completed | failed | polling_error. A new `start` supersedes the current
    job; ticks that belong to a superseded job are ignored. A failed poll stops the loop.
    """

    def __init__(
        self,
        call_tool: CallTool,
        scheduler: Scheduler,
        state: HubState,
        open_run: OpenRun,
        *,
        first_delay: float = 1.2,
        interval: float = 3.5,
        on_change: Optional[OnChange] = None,
    ) -> None:
        self._call_tool = call_tool
        self._scheduler = scheduler
        self._state = state
        self._open_run = open_run
        self._first_delay = first_delay
        self._interval = interval
        self._on_change = on_change

        self._phase = PollPhase.IDLE
        self._job_id: Optional[str] = None
        self._generation = 0
        self._handle: Optional[ScheduledHandle] = None
        self._settled = True

    @property
    def phase(self) -> PollPhase:
        return self._phase

    @property
    def settled(self) -> bool:
        """True once polling ended and any follow-on action (opening the run) has finished."""
        return self._settled

    @property
    def job_id(self) -> Optional[str]:
        return self._job_id

    @property
    def has_pending_tick(self) -> bool:
        return self._handle is not None

    def start(self, job_id: str) -> None:
        self._cancel_pending()
        self._generation += 1
        self._job_id = job_id
        self._phase = PollPhase.POLLING
        self._settled = False
        logger.info("Job polling started. job_id=%s first_delay=%s", job_id, self._first_delay)
        self._schedule(self._first_delay)

    def cancel(self) -> None:
        self._cancel_pending()
        self._generation += 1
        if self._phase is PollPhase.POLLING:
            logger.info("Job polling cancelled. job_id=%s", self._job_id)
            self._phase = PollPhase.IDLE
        self._settled = True

    def _cancel_pending(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _schedule(self, delay: float) -> None:
        generation = self._generation

        async def _tick() -> None:
            await self._tick(generation)

        self._handle = self._scheduler.schedule(delay, _tick)

    async def _tick(self, generation: int) -> None:
        if generation != self._generation or self._phase is not PollPhase.POLLING:
            return
        self._handle = None
        job_id = self._job_id
        assert job_id is not None

        try:
            response = await self._call_tool("get_poom_status", {"job_id": job_id})
        except Exception as e:
            if generation != self._generation:
                return
            logger.warning("Job status call raised. job_id=%s error=%s", job_id, e)
            self._stop(PollPhase.POLLING_ERROR, f"Polling failed: {str(e) or 'unknown error'}")
            await self._notify()
            return
        if generation != self._generation:
            logger.debug("Discarding status for a superseded job. job_id=%s", job_id)
            return

        if not response.ok:
            self._stop(PollPhase.POLLING_ERROR, f"Polling failed: {_error_message(response)}")
            await self._notify()
            return

        data = response.data()
        try:
            job = PipelineJob.model_validate(data.get("job"))
            runs = [RunCard.model_validate(row) for row in data.get("runs") or []]
        except ValidationError:
            self._stop(PollPhase.POLLING_ERROR, "Polling failed: status response did not contain a job")
            await self._notify()
            return

        self._state.runs = runs
        self._state.remember_job(job)
        self._state.message = describe_job(job)

        if job.status == "completed":
            self._stop(PollPhase.COMPLETED, settled=False)
            await self._notify()
            try:
                if job.run_id:
                    await self._open_run(job.run_id)
                else:
                    logger.warning("Job completed without a run id. job_id=%s", job.job_id)
                    self._state.message = MISSING_RUN_ID_MESSAGE
            finally:
                if generation == self._generation:
                    self._settled = True
            await self._notify()
            return

        if job.status == "failed":
            self._stop(PollPhase.FAILED, f"POOM failed: {failure_detail(job)}")
            await self._notify()
            return

        logger.debug("Job still running. job_id=%s stage=%s progress_pct=%s", job.job_id, job.stage, job.progress_pct)
        self._schedule(self._interval)
        await self._notify()

    def _stop(self, phase: PollPhase, message: Optional[str] = None, *, settled: bool = True) -> None:
        self._cancel_pending()
        self._phase = phase
        self._settled = settled
        if message is not None:
            self._state.message = message
        logger.info("Job polling stopped. job_id=%s phase=%s", self._job_id, phase.value)

    async def _notify(self) -> None:
        if self._on_change is None:
            return
        result = self._on_change(self._state)
        if inspect.isawaitable(result):
            await result


def _error_message(response: ToolResponse) -> str:
    if response.error is not None:
        return response.error.message
    return response.text or "unknown error"
