from __future__ import annotations

import asyncio
import json
import socket
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Union

from aiohttp import web
from aiohttp.test_utils import TestServer

from poom_bridge.core.errors import ToolError


@dataclass
class Hang:
    """Scripted response that blocks until `release` is set."""

    release: asyncio.Event


@dataclass
class Reply:
    status: int = 200
    body: Union[dict, list, str, bytes, None] = field(default_factory=dict)


@dataclass
class RecordedRequest:
    method: str
    path: str
    # Case-insensitive, as received by the server.
    headers: Mapping[str, str]
    body: Any


class StubBackend:
    """A real local HTTP server whose responses are scripted per (method, path)."""

    def __init__(self) -> None:
        self.requests: list[RecordedRequest] = []
        self._scripts: dict[tuple[str, str], list[Union[Reply, Hang]]] = {}
        app = web.Application()
        app.router.add_route("*", "/{tail:.*}", self._handle)
        self._server = TestServer(app)

    async def start(self) -> str:
        await self._server.start_server()
        return f"http://{self._server.host}:{self._server.port}"

    async def close(self) -> None:
        await self._server.close()

    def script(self, method: str, path: str, *responses: Union[Reply, Hang]) -> None:
        """Responses are served in order; the last one repeats."""
        self._scripts[(method.upper(), path)] = list(responses)

    def requests_to(self, path: str) -> list[RecordedRequest]:
        return [r for r in self.requests if r.path == path]

    async def _handle(self, request: web.Request) -> web.StreamResponse:
        raw = await request.read()
        try:
            body = json.loads(raw) if raw else None
        except ValueError:
            body = raw
        self.requests.append(
            RecordedRequest(method=request.method, path=request.path, headers=request.headers.copy(), body=body)
        )

        script = self._scripts.get((request.method, request.path))
        if not script:
            return web.json_response({"detail": "not scripted"}, status=404)
        reply = script.pop(0) if len(script) > 1 else script[0]

        if isinstance(reply, Hang):
            await reply.release.wait()
            return web.json_response({})

        if isinstance(reply.body, bytes):
            return web.Response(status=reply.status, body=reply.body)
        if isinstance(reply.body, str):
            return web.Response(status=reply.status, text=reply.body)
        return web.json_response(reply.body, status=reply.status)


def unused_base_url() -> str:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    return f"http://127.0.0.1:{port}"


Responder = Union[Any, ToolError, Callable[[Any], Awaitable[Any]]]


class FakeUpstream:
    """In-memory stand-in for UpstreamClient keyed by (method, path)."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Responder] = {}
        self.calls: list[tuple[str, str, Any]] = []

    def on(self, method: str, path: str, responder: Responder) -> None:
        self.routes[(method.upper(), path)] = responder

    def count(self, method: str, path: str) -> int:
        return sum(1 for m, p, _ in self.calls if m == method.upper() and p == path)

    async def get_json(self, path: str) -> Any:
        return await self._respond("GET", path, None)

    async def post_json(self, path: str, body: Any) -> Any:
        return await self._respond("POST", path, body)

    async def _respond(self, method: str, path: str, body: Any) -> Any:
        self.calls.append((method, path, body))
        await asyncio.sleep(0)
        responder = self.routes.get((method, path))
        if responder is None:
            raise ToolError("RUN_NOT_FOUND", "upstream request failed (404)", retryable=False)
        if isinstance(responder, ToolError):
            raise responder
        if callable(responder):
            return await responder(body)
        return responder


class ManualEntry:
    def __init__(self, delay: float, callback: Callable[[], Awaitable[None]]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler that only fires when a test says so."""

    def __init__(self) -> None:
        self.entries: list[ManualEntry] = []

    def schedule(self, delay: float, callback: Callable[[], Awaitable[None]]) -> ManualEntry:
        entry = ManualEntry(delay, callback)
        self.entries.append(entry)
        return entry

    @property
    def pending(self) -> list[ManualEntry]:
        return [entry for entry in self.entries if not entry.cancelled]

    async def run_next(self) -> ManualEntry:
        pending = self.pending
        if not pending:
            raise AssertionError("no scheduled tick")
        entry = pending[0]
        self.entries.remove(entry)
        await entry.callback()
        return entry


def run_info(run_id: str, **overrides: Any) -> dict[str, Any]:
    payload = {
        "run_id": run_id,
        "manifest_path": f"runs/{run_id}/manifest.json",
        "created_at": "2026-01-05T10:00:00Z",
        "segment_count": 3,
        "duration_sec": 95.0,
    }
    payload.update(overrides)
    return payload


def job_payload(job_id: str, status: str, **overrides: Any) -> dict[str, Any]:
    payload = {"job_id": job_id, "status": status, "stage": "queued", "progress_pct": 0}
    payload.update(overrides)
    return payload


def manifest_payload(run_id: str, *, available: bool = True, **master_overrides: Any) -> dict[str, Any]:
    master = {
        "available": available,
        "video_stream_url": f"https://media.example.com/{run_id}/master.m3u8" if available else None,
        "chapters_track_url": f"https://media.example.com/{run_id}/chapters.vtt",
        "duration_s": 90.0,
        "chapters": [
            {"segment_id": "s1", "name": "Intro", "start_s": 0.0, "end_s": 30.0},
            {"segment_id": "s2", "name": "Setup", "start_s": 30.0, "end_s": 60.0},
            {"segment_id": "s3", "name": "Deploy", "start_s": 60.0, "end_s": 90.0},
        ],
    }
    master.update(master_overrides)
    return {
        "run_id": run_id,
        "manifest_path": f"runs/{run_id}/manifest.json",
        "updated_at": 1767607200,
        "segments": [
            {"segment_id": "s1", "name": "Intro", "original_transcript_summary": "What we build"},
            {"segment_id": "s2", "name": "Setup", "dub_script": "Install the CLI"},
            {"segment_id": "s3", "name": "Deploy"},
        ],
        "master": master,
    }

