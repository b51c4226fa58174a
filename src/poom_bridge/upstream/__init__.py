"""Resilient access to the pipeline backend."""

from poom_bridge.upstream.cache import CacheEntry, SingleFlightCache
from poom_bridge.upstream.client import UpstreamClient, resolve_upstream_bases
from poom_bridge.upstream.manifest import ManifestCache

__all__ = [
    "CacheEntry",
    "ManifestCache",
    "SingleFlightCache",
    "UpstreamClient",
    "resolve_upstream_bases",
]
