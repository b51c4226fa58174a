"""Presentation-side hub: state, job polling and the session that ties them to the tools."""

from poom_bridge.hub.poller import JobPoller, PollPhase
from poom_bridge.hub.scheduler import AsyncioScheduler, Scheduler
from poom_bridge.hub.session import HubSession
from poom_bridge.hub.state import HubState

__all__ = [
    "AsyncioScheduler",
    "HubSession",
    "HubState",
    "JobPoller",
    "PollPhase",
    "Scheduler",
]
