"""
YouTube metadata fetching via yt-dlp.
"""

import re
import json
import subprocess
import logging

from epistles.core.security_utils import run_subprocess_capture
from epistles.core.error_codes import (
    JobError, TransientIoError, VideoUnavailable, GeoBlocked, RestrictedContent,
)
from epistles.core.constants import YOUTUBE_WATCH_URL
from epistles.core.models_sqlite import VideoMetadata

logger = logging.getLogger(__name__)

_GEO_RE = re.compile(r'\bgeo[- ]?(?:restrict|block)|in your country', re.IGNORECASE)
_UNAVAILABLE_RE = re.compile(r'video unavailable|is not available|private video|been removed',
                             re.IGNORECASE)
_RESTRICTED_RE = re.compile(r'sign in|\bage\b|age[- ]restricted|consent|members[- ]only',
                            re.IGNORECASE)


def video_url(video_id: str) -> str:
    return YOUTUBE_WATCH_URL.format(video_id=video_id)


def classify_ytdlp_failure(returncode: int, stderr: str) -> JobError:
    """Map a failed yt-dlp run to a fatal content error or a transient one."""
    stderr = stderr or ""
    if _GEO_RE.search(stderr):
        return GeoBlocked(f"Geo-blocked: {stderr[:200]}")
    if _UNAVAILABLE_RE.search(stderr):
        return VideoUnavailable(f"Video unavailable: {stderr[:200]}")
    if _RESTRICTED_RE.search(stderr):
        return RestrictedContent(f"Restricted content (login/age required): {stderr[:200]}")
    return TransientIoError(f"yt-dlp failed (rc={returncode}): {stderr[:300]}")


def fetch_metadata(video_id: str, timeout: float = 60) -> VideoMetadata:
    """
    Fetch title, description and duration using yt-dlp --dump-json.
    """
    args = [
        "yt-dlp",
        "--dump-json",
        "--skip-download",
        "--no-playlist",
        video_url(video_id),
    ]

    try:
        result = run_subprocess_capture(args, timeout=timeout)
    except subprocess.TimeoutExpired:
        raise TransientIoError(f"yt-dlp metadata fetch timed out after {timeout:.0f}s")
    except OSError as e:
        raise JobError(f"yt-dlp could not be started: {e}")

    if result.returncode != 0:
        raise classify_ytdlp_failure(result.returncode, result.stderr)

    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise TransientIoError(f"Failed to parse yt-dlp JSON: {e}")

    metadata = VideoMetadata(
        video_id=data.get('id') or video_id,
        title=data.get('title') or "",
        description=data.get('description') or "",
        duration=int(float(data.get('duration') or 0)),
    )
    logger.info("Metadata for %s: %r (%ds)", video_id, metadata.title, metadata.duration)
    return metadata
