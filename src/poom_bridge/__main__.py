from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from poom_bridge.config import YamlConfigLoader
from poom_bridge.config.models import AppConfig, ConfigLoadRequest
from poom_bridge.hub.poller import PollPhase
from poom_bridge.hub.scheduler import AsyncioScheduler
from poom_bridge.hub.session import HubSession
from poom_bridge.hub.state import HubState
from poom_bridge.logging import init_logging
from poom_bridge.service import BridgeService

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="poom-bridge", description="POOM tool bridge")
    parser.add_argument(
        "--config",
        default="data/config/config.yaml",
        help="Path to config.yaml (default: data/config/config.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True, help="Command to run")

    # Command: run
    run_parser = subparsers.add_parser("run", help="Start the Discord bot")
    run_parser.add_argument(
        "--run-seconds",
        type=float,
        default=None,
        help="Run the bot for N seconds then exit (useful for smoke testing).",
    )

    # Command: tools
    subparsers.add_parser("tools", help="Print the tool list with input schemas")

    # Command: call
    call_parser = subparsers.add_parser("call", help="Invoke one tool and print its result envelope")
    call_parser.add_argument("tool", help="Tool name, e.g. list_runs")
    call_parser.add_argument("--args", default="{}", help="Tool arguments as a JSON object")

    # Command: create
    create_parser = subparsers.add_parser("create", help="Create a POOM and follow it to completion")
    create_parser.add_argument("source_url", help="Public video URL")
    create_parser.add_argument("--run-id", default=None, help="Optional custom run id slug")

    return parser


async def _load_config(args: argparse.Namespace) -> AppConfig:
    loader = YamlConfigLoader()
    request = ConfigLoadRequest(
        yaml_path=args.config,
    )
    return await loader.load(request)


async def _run_bot(args: argparse.Namespace, config: AppConfig) -> None:
    from poom_bridge.adapters.discord import DiscordBotAdapter

    async with BridgeService(config) as service:
        adapter = DiscordBotAdapter(config=config, dispatcher=service.dispatcher)
        try:
            if args.run_seconds is not None:
                await adapter.run_for(seconds=args.run_seconds)
            else:
                await adapter.start()
        finally:
            await adapter.stop()


async def _print_tools(config: AppConfig) -> int:
    async with BridgeService(config) as service:
        print(json.dumps(service.dispatcher.list_tools(), indent=2))
    return 0


async def _call_tool(args: argparse.Namespace, config: AppConfig) -> int:
    try:
        arguments = json.loads(args.args)
    except json.JSONDecodeError as e:
        print(f"--args is not valid JSON: {e}", file=sys.stderr)
        return 2
    if not isinstance(arguments, dict):
        print("--args must be a JSON object", file=sys.stderr)
        return 2

    async with BridgeService(config) as service:
        response = await service.dispatcher.call(args.tool, arguments)
    print(response.model_dump_json(indent=2))
    return 0 if response.ok else 1


async def _create_and_track(args: argparse.Namespace, config: AppConfig) -> int:
    finished = asyncio.Event()
    last_message = ""

    async with BridgeService(config) as service:

        def _on_change(state: HubState) -> None:
            nonlocal last_message
            if state.message != last_message:
                last_message = state.message
                print(state.message, flush=True)
            if session.poller.settled and not state.working:
                finished.set()

        session = HubSession(
            service.dispatcher.call,
            scheduler=AsyncioScheduler(),
            polling=config.polling,
            on_change=_on_change,
        )
        try:
            job_id = await session.create(args.source_url, run_id=args.run_id)
            if job_id is None:
                return 1
            await finished.wait()
        finally:
            session.close()

        if session.poller.phase is PollPhase.COMPLETED and session.state.player is not None:
            print(json.dumps(session.state.player, indent=2))
            return 0
        return 1


async def _main_async() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    config = await _load_config(args)
    init_logging(config.logging)

    if args.command == "run":
        logger.info("Starting application in bot mode.")
        await _run_bot(args, config)
        return 0
    if args.command == "tools":
        return await _print_tools(config)
    if args.command == "call":
        return await _call_tool(args, config)
    if args.command == "create":
        return await _create_and_track(args, config)
    return 2


def main() -> None:
    try:
        exit_code = asyncio.run(_main_async())
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")
        exit_code = 130
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
