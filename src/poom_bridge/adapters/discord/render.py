from __future__ import annotations

from typing import Any

from poom_bridge.hub.poller import PollPhase
from poom_bridge.hub.state import HubState
from poom_bridge.tools.envelope import ToolResponse

DISCORD_MESSAGE_LIMIT = 2000
MAX_LISTED_RUNS = 15


def truncate(text: str, limit: int = DISCORD_MESSAGE_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"


def _format_seconds(value: float) -> str:
    total = max(0, int(value or 0))
    return f"{total // 60}:{total % 60:02d}"


def _run_lines(runs: list[dict[str, Any]]) -> list[str]:
    lines = []
    for run in runs[:MAX_LISTED_RUNS]:
        lines.append(
            f"- **{run.get('title') or run.get('run_id')}** `{run.get('run_id')}` "
            f"({run.get('segment_count', 0)} segments, {_format_seconds(run.get('duration_sec', 0))})"
        )
    if len(runs) > MAX_LISTED_RUNS:
        lines.append(f"… and {len(runs) - MAX_LISTED_RUNS} more")
    return lines


def render_response(tool: str, response: ToolResponse) -> str:
    """Chat text for a tool result."""
    if not response.ok:
        return truncate(f"⚠️ {response.text}")

    data = response.data()
    if tool in ("list_runs", "list_pooms"):
        lines = [response.text, *_run_lines(data.get("runs") or [])]
        for job in data.get("active_jobs") or []:
            lines.append(f"- job `{job.get('job_id')}` {job.get('status')} · {job.get('stage')} · {job.get('progress_pct', 0):g}%")
        return truncate("\n".join(lines))

    if tool == "open_run_player":
        lines = [response.text, "", f"Video: {data.get('master_video_url')}"]
        return truncate("\n".join(lines))

    if tool == "get_segment_quiz":
        lines = [response.text]
        for number, question in enumerate(data.get("questions") or [], start=1):
            lines.append(f"{number}. {question.get('prompt')} (`{question.get('id')}`)")
            for index, option in enumerate(question.get("options") or []):
                lines.append(f"   {index}) {option}")
        return truncate("\n".join(lines))

    if tool == "submit_segment_quiz":
        lines = [response.text]
        for detail in data.get("details") or []:
            mark = "✅" if detail.get("is_correct") else "❌"
            lines.append(f"{mark} `{detail.get('id')}` {detail.get('explanation', '')}".rstrip())
        return truncate("\n".join(lines))

    return truncate(response.text)


def render_hub_state(state: HubState, phase: PollPhase) -> str:
    """Status message kept up to date while a creation job is polled."""
    lines = [state.message]
    if state.recent_jobs:
        job = state.recent_jobs[0]
        lines.append(f"Job `{job.job_id}` · {phase.value}")
    if state.player is not None and phase is PollPhase.COMPLETED:
        lines.append(f"Player: {state.player.get('reference_url')}")
    return truncate("\n".join(lines))
