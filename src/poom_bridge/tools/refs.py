from __future__ import annotations

import re
from typing import Optional
from urllib.parse import quote, unquote

from poom_bridge.core.models import RunCard, RunInfo

REFERENCE_SCHEME = "poom"

_REFERENCE_RE = re.compile(r"^poom://run/(.+)$", re.IGNORECASE)
_QUERY_RUN_ID_RE = re.compile(r"[?&]run_id=([^&#]+)", re.IGNORECASE)
_TITLE_PREFIX_RE = re.compile(r"^runs-yc-", re.IGNORECASE)
_TITLE_SUFFIX_RE = re.compile(r"-\d{8}-[a-f0-9]{8}$", re.IGNORECASE)


def to_reference_url(run_id: str) -> str:
    return f"{REFERENCE_SCHEME}://run/{quote(run_id, safe='')}"


def parse_reference(value: Optional[str]) -> Optional[str]:
    """
    Extract a run id from a user supplied reference.

    Accepts `poom://run/<id>`, any URL carrying a `run_id=` query parameter, or a bare id.
    Blank input yields None.
    """
    if not value:
        return None
    trimmed = value.strip()
    if not trimmed:
        return None

    match = _REFERENCE_RE.match(trimmed)
    if match:
        return unquote(match.group(1))

    match = _QUERY_RUN_ID_RE.search(trimmed)
    if match:
        return unquote(match.group(1))

    return trimmed


def format_run_title(run_id: str, run_title: Optional[str] = None) -> str:
    if run_title and run_title.strip():
        return run_title.strip()
    normalized = _TITLE_SUFFIX_RE.sub("", _TITLE_PREFIX_RE.sub("", run_id))
    tokens = [token for token in re.split(r"[-_]+", normalized) if token]
    return " ".join(token[0].upper() + token[1:] for token in tokens)


def to_run_card(run: RunInfo) -> RunCard:
    return RunCard(
        run_id=run.run_id,
        title=format_run_title(run.run_id, run.run_title),
        created_at=run.created_at,
        segment_count=run.segment_count,
        duration_sec=run.duration_sec,
        manifest_path=run.manifest_path,
        reference_url=to_reference_url(run.run_id),
    )
