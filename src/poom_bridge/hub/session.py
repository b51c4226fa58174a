from __future__ import annotations

import inspect
import logging
from typing import Optional

from pydantic import ValidationError

from poom_bridge.config.models import PollingSettings
from poom_bridge.core.models import PipelineJob, RunCard
from poom_bridge.hub.poller import CallTool, JobPoller, OnChange
from poom_bridge.hub.scheduler import Scheduler
from poom_bridge.hub.state import HubState
from poom_bridge.tools.envelope import ToolResponse

logger = logging.getLogger(__name__)


def _failure_text(response: ToolResponse) -> str:
    if response.error is not None:
        return response.error.message
    return response.text or "unknown error"


class HubSession:
    """
    One hub view: library refresh, opening runs, and creating a POOM that is tracked to completion.

    All calls go through `call_tool`, so the session sees exactly what a chat host would.
    """

    def __init__(
        self,
        call_tool: CallTool,
        *,
        scheduler: Scheduler,
        polling: PollingSettings = PollingSettings(),
        on_change: Optional[OnChange] = None,
    ) -> None:
        self._call_tool = call_tool
        self._on_change = on_change
        self.state = HubState(recent_jobs_limit=polling.recent_jobs_limit)
        self.poller = JobPoller(
            call_tool,
            scheduler,
            self.state,
            self.open_run,
            first_delay=polling.first_poll_delay_seconds,
            interval=polling.poll_interval_seconds,
            on_change=on_change,
        )

    async def refresh(self) -> None:
        self.state.working = True
        try:
            response = await self._call_tool("list_pooms", {})
            if not response.ok:
                self.state.message = f"Failed to load runs: {_failure_text(response)}"
                return
            data = response.data()
            try:
                self.state.runs = [RunCard.model_validate(row) for row in data.get("runs") or []]
                self.state.recent_jobs = [
                    PipelineJob.model_validate(row) for row in data.get("active_jobs") or []
                ][: self.state.recent_jobs_limit]
            except ValidationError:
                self.state.message = "Failed to load runs: hub response was malformed"
                return
            self.state.message = f"Loaded {len(self.state.runs)} POOM runs."
        finally:
            self.state.working = False
            await self._notify()

    async def open_run(self, run_id: str) -> None:
        if not run_id:
            return
        self.state.working = True
        try:
            response = await self._call_tool("open_run_player", {"run_id": run_id})
            if not response.ok:
                self.state.message = f"Failed to open run: {_failure_text(response)}"
                return
            payload = response.data()
            if not payload.get("master_video_url"):
                self.state.message = "No playable master video was returned for this run."
                return
            self.state.player = payload
            self.state.message = f"Opened run: {run_id}"
            logger.info("Run opened in hub. run_id=%s", run_id)
        finally:
            self.state.working = False
            await self._notify()

    async def create(self, source_url: str, run_id: Optional[str] = None) -> Optional[str]:
        """Submit a creation job and start tracking it. Returns the job id when one was issued."""
        url = source_url.strip()
        if not url:
            self.state.message = "Paste a video URL first."
            await self._notify()
            return None

        arguments = {"source_url": url}
        if run_id:
            arguments["run_id"] = run_id

        self.state.working = True
        try:
            response = await self._call_tool("create_poom", arguments)
            if not response.ok:
                self.state.message = f"Create failed: {_failure_text(response)}"
                return None

            try:
                job = PipelineJob.model_validate(response.data().get("job"))
            except ValidationError:
                self.state.message = "POOM creation response was missing a job id."
                return None

            self.state.remember_job(job)
            self.state.message = f"POOM queued: {job.job_id}"
            self.poller.start(job.job_id)
            return job.job_id
        finally:
            self.state.working = False
            await self._notify()

    def close(self) -> None:
        self.poller.cancel()

    async def _notify(self) -> None:
        if self._on_change is None:
            return
        result = self._on_change(self.state)
        if inspect.isawaitable(result):
            await result
