from __future__ import annotations

import logging
import time
from typing import Callable
from urllib.parse import quote

from pydantic import ValidationError

from poom_bridge.core.errors import invalid_response
from poom_bridge.core.models import Manifest
from poom_bridge.upstream.cache import SingleFlightCache
from poom_bridge.upstream.client import UpstreamClient

logger = logging.getLogger(__name__)


def manifest_path(run_id: str) -> str:
    return f"/runs/{quote(run_id, safe='')}/manifest"


class ManifestCache:
    """Per-run manifest lookups, cached for a short TTL and fetched at most once concurrently."""

    def __init__(
        self,
        upstream: UpstreamClient,
        *,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._upstream = upstream
        self._cache: SingleFlightCache[str, Manifest] = SingleFlightCache(ttl_seconds=ttl_seconds, clock=clock)

    async def get(self, run_id: str) -> Manifest:
        return await self._cache.get(run_id, self._fetch)

    async def _fetch(self, run_id: str) -> Manifest:
        raw = await self._upstream.get_json(manifest_path(run_id))
        try:
            manifest = Manifest.model_validate(raw)
        except ValidationError as e:
            logger.warning("Upstream manifest failed validation. run_id=%s errors=%d", run_id, e.error_count())
            raise invalid_response(f"manifest for run {run_id} is malformed") from e
        logger.info(
            "Manifest fetched. run_id=%s segments=%d chapters=%d",
            run_id,
            len(manifest.segments),
            len(manifest.master.chapters),
        )
        return manifest
