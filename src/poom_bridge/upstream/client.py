from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any, Callable, Iterable, Optional

import aiohttp

from poom_bridge.config.models import UpstreamSettings
from poom_bridge.core.errors import ErrorCode, ToolError, run_not_found, upstream_timeout

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "x-correlation-id"
MIN_TIMEOUT_SECONDS = 1.0
SAME_BASE_RETRY_STATUSES = frozenset({502, 503})
SAME_BASE_MAX_RETRIES = 1


def normalize_base_url(raw: str) -> str:
    value = raw.strip()
    if not value:
        return ""
    if not value.startswith(("http://", "https://")):
        value = f"https://{value}"
    return value.rstrip("/")


def resolve_upstream_bases(primary: str, fallbacks: Iterable[str] = ()) -> tuple[str, ...]:
    """Ordered, de-duplicated candidate bases; order is the failover priority."""
    bases: list[str] = []
    for raw in [primary, *fallbacks]:
        value = normalize_base_url(raw)
        if value and value not in bases:
            bases.append(value)
    if not bases:
        raise ValueError("At least one upstream base URL is required.")
    return tuple(bases)


def _new_correlation_id() -> str:
    return uuid.uuid4().hex


def _parse_body(raw: bytes) -> Any:
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        return {}


def classify_error_response(status: int, body: Any) -> ToolError:
    embedded = ToolError.from_upstream_body(body)
    if embedded is not None:
        return embedded
    message = f"upstream request failed ({status})"
    if status == 404:
        return run_not_found(message)
    return ToolError(ErrorCode.UPSTREAM_TIMEOUT, message, retryable=status >= 500)


class UpstreamClient:
    """
    JSON client for the pipeline backend.

    Each call walks the configured bases in order. A 502/503 is retried once on the same base;
    any other failure on a base moves on to the next one. Only `ToolError` leaves this class.
    """

    def __init__(
        self,
        settings: UpstreamSettings,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        correlation_id_factory: Callable[[], str] = _new_correlation_id,
    ) -> None:
        self._settings = settings
        self._bases = resolve_upstream_bases(settings.base_url, settings.fallback_base_urls)
        self._timeout = aiohttp.ClientTimeout(total=max(MIN_TIMEOUT_SECONDS, settings.timeout_seconds))
        self._session = session
        self._owns_session = session is None
        self._correlation_id_factory = correlation_id_factory

    async def __aenter__(self) -> UpstreamClient:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def bases(self) -> tuple[str, ...]:
        return self._bases

    async def start(self) -> None:
        """Open the HTTP session if none was injected."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

    async def close(self) -> None:
        """Close the HTTP session if this client opened it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        if self._owns_session:
            self._session = None

    async def get_json(self, path: str) -> Any:
        return await self.request_json("GET", path)

    async def post_json(self, path: str, body: Any) -> Any:
        return await self.request_json("POST", path, json_body=body)

    async def request_json(self, method: str, path: str, *, json_body: Any = None) -> Any:
        await self.start()

        last_error: Optional[ToolError] = None
        for index, base in enumerate(self._bases):
            try:
                return await self._call_base(base, method, path, json_body)
            except ToolError as e:
                last_error = e
                if index + 1 < len(self._bases):
                    logger.warning(
                        "Upstream call failed, failing over to the next base. method=%s path=%s base=%s next=%s code=%s",
                        method,
                        path,
                        base,
                        self._bases[index + 1],
                        e.code,
                    )

        assert last_error is not None
        logger.warning(
            "Upstream call failed on every base. method=%s path=%s bases=%d code=%s",
            method,
            path,
            len(self._bases),
            last_error.code,
        )
        raise last_error

    async def _call_base(self, base: str, method: str, path: str, json_body: Any) -> Any:
        url = f"{base}{path}"
        for attempt in range(SAME_BASE_MAX_RETRIES + 1):
            correlation_id = self._correlation_id_factory()
            status, body = await self._send(method, url, json_body, correlation_id)

            if status in SAME_BASE_RETRY_STATUSES and attempt < SAME_BASE_MAX_RETRIES:
                logger.info(
                    "Upstream gateway error, retrying the same base. url=%s status=%s correlation_id=%s",
                    url,
                    status,
                    correlation_id,
                )
                continue

            if 200 <= status < 300:
                logger.debug("Upstream call succeeded. url=%s status=%s correlation_id=%s", url, status, correlation_id)
                return body

            error = classify_error_response(status, body)
            logger.warning(
                "Upstream returned an error response. url=%s status=%s code=%s correlation_id=%s",
                url,
                status,
                error.code,
                correlation_id,
            )
            raise error

        raise AssertionError("unreachable")  # pragma: no cover

    async def _send(self, method: str, url: str, json_body: Any, correlation_id: str) -> tuple[int, Any]:
        assert self._session is not None
        headers = {CORRELATION_HEADER: correlation_id, "Accept": "application/json"}
        try:
            async with self._session.request(
                method,
                url,
                json=json_body,
                headers=headers,
                timeout=self._timeout,
            ) as response:
                raw = await response.read()
                return response.status, _parse_body(raw)
        except asyncio.TimeoutError:
            logger.warning("Upstream call timed out. url=%s correlation_id=%s", url, correlation_id)
            raise upstream_timeout(
                f"upstream timeout after {int(self._timeout.total * 1000)}ms ({url})"
            ) from None
        except aiohttp.ClientError as e:
            logger.warning("Upstream call failed at transport level. url=%s correlation_id=%s error=%s", url, correlation_id, e)
            raise upstream_timeout(f"{str(e) or type(e).__name__} ({url})") from e
