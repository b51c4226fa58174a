from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from poom_bridge.core.errors import manifest_invalid
from poom_bridge.core.models import Chapter, Manifest
from poom_bridge.tools.refs import to_reference_url

logger = logging.getLogger(__name__)

DEFAULT_QUIZ_MODE = "lite"


def normalize_chapters(run_id: str, chapters: list[Chapter], duration_s: float) -> list[Chapter]:
    """
    Return chapters ordered by start time and non-overlapping.

    Overlapping ends are clipped to the next start, ends past a known duration are clipped to it,
    and chapters left empty are dropped.
    """
    ordered = sorted(chapters, key=lambda chapter: (chapter.start_s, chapter.end_s))
    if [c.segment_id for c in ordered] != [c.segment_id for c in chapters]:
        logger.warning("Manifest chapters were out of order and have been sorted. run_id=%s", run_id)

    result: list[Chapter] = []
    for index, chapter in enumerate(ordered):
        end_s = chapter.end_s
        if index + 1 < len(ordered) and end_s > ordered[index + 1].start_s:
            end_s = ordered[index + 1].start_s
        if duration_s > 0 and end_s > duration_s:
            end_s = duration_s

        if end_s <= chapter.start_s:
            logger.warning(
                "Dropping empty manifest chapter. run_id=%s segment_id=%s start_s=%s end_s=%s",
                run_id,
                chapter.segment_id,
                chapter.start_s,
                chapter.end_s,
            )
            continue
        if end_s != chapter.end_s:
            logger.warning(
                "Clipped manifest chapter end. run_id=%s segment_id=%s end_s=%s clipped_to=%s",
                run_id,
                chapter.segment_id,
                chapter.end_s,
                end_s,
            )
            chapter = chapter.model_copy(update={"end_s": end_s})
        result.append(chapter)
    return result


def _format_updated_at(epoch_seconds: float) -> str:
    moment = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_player_payload(run_id: str, manifest: Manifest) -> tuple[dict[str, Any], str]:
    """Assemble the player props and the chapter summary text for a run."""
    master = manifest.master
    if not master.is_playable:
        raise manifest_invalid(f"Run {run_id} does not have a playable master video")

    chapters = normalize_chapters(run_id, master.chapters, master.duration_s)

    chapter_metadata: list[dict[str, Any]] = []
    for index, chapter in enumerate(chapters, start=1):
        segment = manifest.segment(chapter.segment_id)
        chapter_metadata.append(
            {
                "index": index,
                "segment_id": chapter.segment_id,
                "name": chapter.name,
                "start_s": chapter.start_s,
                "end_s": chapter.end_s,
                "dub_script": segment.dub_script if segment else "",
                "original_transcript_summary": segment.original_transcript_summary if segment else "",
                "visual_description": segment.visual_description if segment else "",
            }
        )

    reference_url = to_reference_url(run_id)
    structured = {
        "run_id": run_id,
        "reference_url": reference_url,
        "master_video_url": master.video_stream_url,
        "chapters_track_url": master.chapters_track_url,
        "chapters": [chapter.model_dump() for chapter in chapters],
        "default_chapter": 0,
        "quiz_mode": DEFAULT_QUIZ_MODE,
        "duration_s": master.duration_s,
        "chapter_metadata": chapter_metadata,
    }

    lines = [
        f"POOM ready: {run_id}",
        f"POOM URL: {reference_url}",
        f"Duration: {master.duration_s:.2f}s",
        f"Chapters: {len(chapters)}",
        f"Manifest updated: {_format_updated_at(manifest.updated_at)}",
        "",
        "Chapter metadata:",
    ]
    for row in chapter_metadata:
        summary = row["original_transcript_summary"] or "No summary"
        lines.append(f"- {row['index']}. {row['name']} ({row['start_s']:.1f}s-{row['end_s']:.1f}s): {summary}")

    return structured, "\n".join(lines)
