"""
Latest-video lookup: scrape the playlist page and take the newest video id.
"""

import re
import logging

import requests

from epistles.core.constants import YOUTUBE_PLAYLIST_URL, VIDEO_ID_PATTERN, DEFAULT_USER_AGENT
from epistles.core.error_codes import (
    FetchError, VideoNotFound, RateLimited, TransientIoError,
)

logger = logging.getLogger(__name__)

_VIDEO_ID_RE = re.compile(VIDEO_ID_PATTERN)


def extract_latest_video_id(html: str) -> str | None:
    """The last `"videoId":"..."` occurrence in the page is the newest upload."""
    matches = _VIDEO_ID_RE.findall(html or "")
    return matches[-1] if matches else None


def fetch_latest_video_id(playlist_id: str, timeout: float = 30,
                          user_agent: str = DEFAULT_USER_AGENT,
                          session: requests.Session | None = None) -> str:
    """
    Fetch the playlist page and return the newest video id.
    404 and pages without ids raise VideoNotFound; 429, 5xx and network
    failures raise retryable errors.
    """
    url = YOUTUBE_PLAYLIST_URL.format(playlist_id=playlist_id)
    http = session or requests
    try:
        resp = http.get(url, headers={"User-Agent": user_agent}, timeout=timeout)
    except requests.exceptions.Timeout:
        raise TransientIoError("Playlist request timed out")
    except requests.exceptions.ConnectionError:
        raise TransientIoError("Network error fetching playlist")
    except requests.exceptions.RequestException as e:
        raise FetchError(f"Playlist request failed: {e}")

    if resp.status_code == 404:
        raise VideoNotFound(f"Playlist {playlist_id} not found (404)")
    if resp.status_code == 429:
        raise RateLimited("Playlist fetch rate limited (429)")
    if resp.status_code >= 500:
        raise TransientIoError(f"Playlist fetch returned {resp.status_code}")
    if resp.status_code != 200:
        raise FetchError(f"Playlist fetch returned {resp.status_code}")

    video_id = extract_latest_video_id(resp.text)
    if not video_id:
        raise VideoNotFound(f"No video id found in playlist {playlist_id}")

    logger.info("Latest video in playlist %s: %s", playlist_id, video_id)
    return video_id
