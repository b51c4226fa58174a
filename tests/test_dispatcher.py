import asyncio
import unittest

from support import FakeUpstream, job_payload, manifest_payload, run_info

from poom_bridge.core.errors import ErrorCode, ToolError
from poom_bridge.tools.dispatcher import ToolDispatcher
from poom_bridge.upstream.manifest import ManifestCache, manifest_path


def _dispatcher(upstream: FakeUpstream, *, default_run_id=None) -> ToolDispatcher:
    return ToolDispatcher(
        upstream=upstream,
        manifests=ManifestCache(upstream, ttl_seconds=30),
        default_run_id=default_run_id,
    )


class ListToolsTests(unittest.IsolatedAsyncioTestCase):
    async def test_list_runs_projects_run_cards(self) -> None:
        upstream = FakeUpstream()
        upstream.on(
            "GET",
            "/runs",
            {"runs": [run_info("runs-yc-acme-onboarding-20260105-0a1b2c3d"), run_info("r2", run_title="Custom")]},
        )

        response = await _dispatcher(upstream).call("list_runs")

        self.assertTrue(response.ok)
        runs = response.structured["runs"]
        self.assertEqual(runs[0]["title"], "Acme Onboarding")
        self.assertEqual(runs[0]["reference_url"], "poom://run/runs-yc-acme-onboarding-20260105-0a1b2c3d")
        self.assertEqual(runs[1]["title"], "Custom")
        self.assertEqual(response.structured["active_jobs"], [])
        self.assertEqual(response.text, "POOM hub ready with 2 run(s) and 0 active job(s).")

    async def test_list_runs_is_idempotent(self) -> None:
        upstream = FakeUpstream()
        upstream.on("GET", "/runs", {"runs": [run_info("r1"), run_info("r2")]})
        dispatcher = _dispatcher(upstream)

        first = await dispatcher.call("list_runs")
        second = await dispatcher.call("list_runs")

        self.assertEqual(first, second)

    async def test_list_pooms_keeps_only_active_jobs(self) -> None:
        upstream = FakeUpstream()
        upstream.on("GET", "/runs", {"runs": [run_info("r1")]})
        upstream.on(
            "GET",
            "/pipeline/jobs",
            {
                "jobs": [
                    job_payload("j1", "queued"),
                    job_payload("j2", "running", progress_pct=50),
                    job_payload("j3", "completed", run_id="r1"),
                    job_payload("j4", "failed"),
                ]
            },
        )

        response = await _dispatcher(upstream).call("list_pooms")

        self.assertTrue(response.ok)
        self.assertEqual([job["job_id"] for job in response.structured["active_jobs"]], ["j1", "j2"])
        self.assertEqual(response.text, "POOM hub ready with 1 run(s) and 2 active job(s).")

    async def test_malformed_run_list_is_a_typed_error(self) -> None:
        upstream = FakeUpstream()
        upstream.on("GET", "/runs", {"runs": [{"run_id": "r1"}]})

        response = await _dispatcher(upstream).call("list_runs")

        self.assertFalse(response.ok)
        self.assertEqual(response.error.code, ErrorCode.UPSTREAM_INVALID_RESPONSE)
        self.assertFalse(response.error.retryable)


class CreateAndStatusTests(unittest.IsolatedAsyncioTestCase):
    async def test_create_poom_posts_source_url_and_returns_job(self) -> None:
        upstream = FakeUpstream()
        upstream.on("POST", "/pipeline/jobs", {"job": job_payload("J1", "queued")})

        response = await _dispatcher(upstream).call(
            "create_poom",
            {"source_url": "https://www.youtube.com/watch?v=abc", "run_id": "demo"},
        )

        self.assertTrue(response.ok)
        self.assertEqual(response.structured["job"]["job_id"], "J1")
        self.assertEqual(
            upstream.calls,
            [("POST", "/pipeline/jobs", {"source_url": "https://www.youtube.com/watch?v=abc", "run_id": "demo"})],
        )

    async def test_create_poom_accepts_youtube_url_alias(self) -> None:
        upstream = FakeUpstream()
        upstream.on("POST", "/pipeline/jobs", {"job": job_payload("J1", "queued")})

        response = await _dispatcher(upstream).call("create_poom", {"youtube_url": "https://youtu.be/abc"})

        self.assertTrue(response.ok)
        self.assertEqual(upstream.calls[0][2], {"source_url": "https://youtu.be/abc"})

    async def test_create_poom_forwards_the_url_as_given(self) -> None:
        upstream = FakeUpstream()
        upstream.on("POST", "/pipeline/jobs", {"job": job_payload("J1", "queued")})

        response = await _dispatcher(upstream).call("create_poom", {"source_url": "https://example.com"})

        self.assertTrue(response.ok)
        self.assertEqual(upstream.calls[0][2], {"source_url": "https://example.com"})

    async def test_create_poom_without_job_id_is_a_format_error(self) -> None:
        upstream = FakeUpstream()
        upstream.on("POST", "/pipeline/jobs", {"job": {"status": "queued"}})

        response = await _dispatcher(upstream).call("create_poom", {"source_url": "https://youtu.be/abc"})

        self.assertFalse(response.ok)
        self.assertEqual(response.error.code, ErrorCode.UPSTREAM_INVALID_RESPONSE)
        self.assertEqual(upstream.count("POST", "/pipeline/jobs"), 1)

    async def test_create_poom_rejects_invalid_url_without_calling_upstream(self) -> None:
        upstream = FakeUpstream()

        response = await _dispatcher(upstream).call("create_poom", {"source_url": "not a url"})

        self.assertFalse(response.ok)
        self.assertEqual(response.error.code, ErrorCode.INVALID_ARGUMENTS)
        self.assertEqual(upstream.calls, [])

    async def test_create_poom_upstream_failure_is_not_retried(self) -> None:
        upstream = FakeUpstream()
        upstream.on("POST", "/pipeline/jobs", ToolError(ErrorCode.UPSTREAM_TIMEOUT, "gateway", retryable=True))

        response = await _dispatcher(upstream).call("create_poom", {"source_url": "https://youtu.be/abc"})

        self.assertFalse(response.ok)
        self.assertEqual(response.text, "UPSTREAM_TIMEOUT: gateway")
        self.assertTrue(response.error.retryable)
        self.assertEqual(upstream.count("POST", "/pipeline/jobs"), 1)

    async def test_get_poom_status_fetches_job_and_runs_concurrently(self) -> None:
        upstream = FakeUpstream()
        both_started = asyncio.Event()
        started: list[str] = []

        async def _job(_body):
            started.append("job")
            if len(started) == 2:
                both_started.set()
            await asyncio.wait_for(both_started.wait(), timeout=1)
            return {"job": job_payload("J1", "running", stage="transcribe", progress_pct=40)}

        async def _runs(_body):
            started.append("runs")
            if len(started) == 2:
                both_started.set()
            await asyncio.wait_for(both_started.wait(), timeout=1)
            return {"runs": [run_info("r1")]}

        upstream.on("GET", "/pipeline/jobs/J1", _job)
        upstream.on("GET", "/runs", _runs)

        response = await _dispatcher(upstream).call("get_poom_status", {"job_id": "J1"})

        self.assertTrue(response.ok)
        self.assertEqual(response.structured["job"]["progress_pct"], 40)
        self.assertEqual(response.structured["runs"][0]["reference_url"], "poom://run/r1")
        self.assertEqual(response.text, "RUNNING · transcribe · 40%")


class OpenRunPlayerTests(unittest.IsolatedAsyncioTestCase):
    async def test_empty_run_list_fails_with_run_not_found(self) -> None:
        upstream = FakeUpstream()
        upstream.on("GET", "/runs", {"runs": []})

        response = await _dispatcher(upstream).call("open_run_player", {})

        self.assertFalse(response.ok)
        self.assertEqual(response.error.code, ErrorCode.RUN_NOT_FOUND)
        self.assertFalse(response.error.retryable)

    async def test_unplayable_master_fails_with_manifest_invalid(self) -> None:
        upstream = FakeUpstream()
        upstream.on("GET", manifest_path("r1"), manifest_payload("r1", available=False))

        response = await _dispatcher(upstream).call("open_run_player", {"run_id": "r1"})

        self.assertFalse(response.ok)
        self.assertIsNone(response.structured)
        self.assertEqual(response.error.code, ErrorCode.MANIFEST_INVALID)
        self.assertFalse(response.error.retryable)

    async def test_available_master_without_stream_url_is_invalid(self) -> None:
        upstream = FakeUpstream()
        upstream.on("GET", manifest_path("r1"), manifest_payload("r1", video_stream_url=None))

        response = await _dispatcher(upstream).call("open_run_player", {"run_id": "r1"})

        self.assertEqual(response.error.code, ErrorCode.MANIFEST_INVALID)

    async def test_player_payload_joins_chapters_with_segments(self) -> None:
        upstream = FakeUpstream()
        upstream.on("GET", manifest_path("r1"), manifest_payload("r1"))

        response = await _dispatcher(upstream).call("open_run_player", {"run_id": "r1"})

        self.assertTrue(response.ok)
        payload = response.structured
        self.assertEqual(payload["master_video_url"], "https://media.example.com/r1/master.m3u8")
        self.assertEqual(payload["default_chapter"], 0)
        self.assertEqual(payload["quiz_mode"], "lite")
        self.assertEqual([c["segment_id"] for c in payload["chapters"]], ["s1", "s2", "s3"])
        self.assertEqual(payload["chapter_metadata"][1]["dub_script"], "Install the CLI")
        self.assertIn("- 1. Intro (0.0s-30.0s): What we build", response.text)
        self.assertIn("- 3. Deploy (60.0s-90.0s): No summary", response.text)
        self.assertIn("Manifest updated: 2026-01-05T10:00:00.000Z", response.text)

    async def test_run_resolution_priority(self) -> None:
        upstream = FakeUpstream()
        upstream.on("GET", "/runs", {"runs": [run_info("latest")]})
        for run_id in ("explicit", "referenced", "default", "latest"):
            upstream.on("GET", manifest_path(run_id), manifest_payload(run_id))

        cases = [
            ({"run_id": "explicit", "reference": "poom://run/referenced"}, "default", "explicit"),
            ({"reference": "poom://run/referenced"}, "default", "referenced"),
            ({"poom_ref": "https://app.example.com/player?run_id=referenced&t=3"}, "default", "referenced"),
            ({"reference": "   "}, "default", "default"),
            ({}, None, "latest"),
        ]
        for arguments, default_run_id, expected in cases:
            with self.subTest(arguments=arguments, default=default_run_id):
                response = await _dispatcher(upstream, default_run_id=default_run_id).call(
                    "open_run_player", arguments
                )
                self.assertTrue(response.ok, response.text)
                self.assertEqual(response.structured["run_id"], expected)

    async def test_manifest_is_served_from_cache_on_reopen(self) -> None:
        upstream = FakeUpstream()
        upstream.on("GET", manifest_path("r1"), manifest_payload("r1"))
        dispatcher = _dispatcher(upstream)

        await asyncio.gather(*(dispatcher.call("open_run_player", {"run_id": "r1"}) for _ in range(4)))
        await dispatcher.call("open_run_player", {"run_id": "r1"})

        self.assertEqual(upstream.count("GET", manifest_path("r1")), 1)


class QuizToolTests(unittest.IsolatedAsyncioTestCase):
    async def test_get_segment_quiz(self) -> None:
        upstream = FakeUpstream()
        upstream.on(
            "GET",
            "/quiz/r1/s2",
            {
                "run_id": "r1",
                "segment_id": "s2",
                "questions": [
                    {"id": "q1", "prompt": "Which command?", "options": ["init", "deploy"], "correct_index": 0, "explanation": "init first"}
                ],
            },
        )

        response = await _dispatcher(upstream).call("get_segment_quiz", {"run_id": "r1", "segment_id": "s2"})

        self.assertTrue(response.ok)
        self.assertEqual(response.structured["questions"][0]["options"], ["init", "deploy"])

    async def test_submit_segment_quiz_posts_answers(self) -> None:
        upstream = FakeUpstream()
        upstream.on(
            "POST",
            "/quiz/r1/s2/score",
            {
                "run_id": "r1",
                "segment_id": "s2",
                "score": 0.5,
                "correct": 1,
                "total": 2,
                "details": [
                    {"id": "q1", "is_correct": True, "expected_index": 0, "selected_index": 0, "explanation": "ok"},
                    {"id": "q2", "is_correct": False, "expected_index": 1, "selected_index": 0, "explanation": "no"},
                ],
            },
        )

        response = await _dispatcher(upstream).call(
            "submit_segment_quiz",
            {"run_id": "r1", "segment_id": "s2", "answers": [{"id": "q1", "selected_index": 0}, {"id": "q2", "selected_index": 0}]},
        )

        self.assertTrue(response.ok)
        self.assertEqual(response.text, "Score 1/2 (0.5).")
        self.assertEqual(
            upstream.calls[0][2],
            {"answers": [{"id": "q1", "selected_index": 0}, {"id": "q2", "selected_index": 0}]},
        )

    async def test_missing_answers_is_invalid(self) -> None:
        response = await _dispatcher(FakeUpstream()).call("submit_segment_quiz", {"run_id": "r1", "segment_id": "s2"})

        self.assertEqual(response.error.code, ErrorCode.INVALID_ARGUMENTS)


class DispatchBoundaryTests(unittest.IsolatedAsyncioTestCase):
    async def test_unknown_tool(self) -> None:
        response = await _dispatcher(FakeUpstream()).call("delete_everything")

        self.assertFalse(response.ok)
        self.assertEqual(response.error.code, ErrorCode.UNKNOWN_TOOL)

    async def test_non_mapping_arguments_are_invalid(self) -> None:
        upstream = FakeUpstream()

        for arguments in ("abc", ["run_id", "r1"], 42):
            with self.subTest(arguments=arguments):
                response = await _dispatcher(upstream).call("list_runs", arguments)
                self.assertFalse(response.ok)
                self.assertEqual(response.error.code, ErrorCode.INVALID_ARGUMENTS)

        self.assertEqual(upstream.calls, [])

    async def test_unexpected_exception_never_escapes(self) -> None:
        upstream = FakeUpstream()

        async def _explode(_body):
            raise RuntimeError("socket exploded")

        upstream.on("GET", "/runs", _explode)

        with self.assertLogs("poom_bridge.tools.dispatcher", level="ERROR"):
            response = await _dispatcher(upstream).call("list_runs")

        self.assertFalse(response.ok)
        self.assertEqual(response.error.code, ErrorCode.INTERNAL_ERROR)

    def test_list_tools_describes_every_operation(self) -> None:
        tools = _dispatcher(FakeUpstream()).list_tools()

        self.assertEqual(
            [tool["name"] for tool in tools],
            [
                "list_runs",
                "list_pooms",
                "create_poom",
                "get_poom_status",
                "open_run_player",
                "get_segment_quiz",
                "submit_segment_quiz",
            ],
        )
        self.assertIn("source_url", tools[2]["input_schema"]["properties"])


if __name__ == "__main__":
    unittest.main()
