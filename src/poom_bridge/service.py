from __future__ import annotations

import logging
from typing import Optional

import aiohttp

from poom_bridge.config.models import AppConfig
from poom_bridge.tools.dispatcher import ToolDispatcher
from poom_bridge.upstream.client import UpstreamClient
from poom_bridge.upstream.manifest import ManifestCache

logger = logging.getLogger(__name__)


class BridgeService:
    """
    Owns the process-wide upstream client and manifest cache and hands them to the dispatcher.

    Use as an async context manager so the HTTP session is closed on exit.
    """

    def __init__(self, config: AppConfig, *, session: Optional[aiohttp.ClientSession] = None) -> None:
        self.config = config
        self.upstream = UpstreamClient(config.upstream, session=session)
        self.manifests = ManifestCache(self.upstream, ttl_seconds=config.cache.manifest_ttl_seconds)
        self.dispatcher = ToolDispatcher(
            upstream=self.upstream,
            manifests=self.manifests,
            default_run_id=config.upstream.default_run_id,
        )

    async def __aenter__(self) -> BridgeService:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self) -> None:
        await self.upstream.start()
        logger.info(
            "Bridge service started. bases=%s timeout_seconds=%s manifest_ttl_seconds=%s",
            ",".join(self.upstream.bases),
            self.config.upstream.timeout_seconds,
            self.config.cache.manifest_ttl_seconds,
        )

    async def close(self) -> None:
        await self.upstream.close()
