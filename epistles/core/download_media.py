"""
Media download via yt-dlp.
"""

import subprocess
import logging
from pathlib import Path

from epistles.core.security_utils import run_subprocess_capture
from epistles.core.error_codes import DownloadError, TransientIoError
from epistles.core.models_sqlite import DownloadedMedia
from epistles.core.yt_metadata import video_url, classify_ytdlp_failure

logger = logging.getLogger(__name__)

_THUMBNAIL_SUFFIXES = {".jpg", ".jpeg", ".png", ".webp"}


def download_media(video_id: str, output_dir: Path, duration: int,
                   with_thumbnail: bool = True, timeout: float = 1800) -> DownloadedMedia:
    """
    Download the best audio stream (falling back to best) into
    `output_dir/source.<ext>`, plus the thumbnail as jpg when requested.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    output_template = str(output_dir / "source.%(ext)s")

    args = [
        "yt-dlp",
        "--no-playlist",
        "-f", "bestaudio/best",
        "-o", output_template,
    ]
    if with_thumbnail:
        args.extend(["--write-thumbnail", "--convert-thumbnails", "jpg"])
    args.append(video_url(video_id))

    try:
        result = run_subprocess_capture(args, timeout=timeout)
    except subprocess.TimeoutExpired:
        raise TransientIoError(f"yt-dlp download timed out after {timeout:.0f}s")
    except OSError as e:
        raise DownloadError(f"Media download failed: {e}")

    if result.returncode != 0:
        raise classify_ytdlp_failure(result.returncode, result.stderr)

    media_files = []
    thumbnail = None
    for path in sorted(output_dir.glob("source.*")):
        if path.suffix.lower() in _THUMBNAIL_SUFFIXES:
            thumbnail = path
        elif not path.name.endswith(".part"):
            media_files.append(path)

    if not media_files:
        raise DownloadError("No media file found after download")

    downloaded = media_files[0]
    logger.info("Downloaded media: %s", downloaded)
    if with_thumbnail and thumbnail is None:
        logger.warning("Thumbnail requested but not produced for %s", video_id)
    return DownloadedMedia(path=downloaded, duration=duration, thumbnail_path=thumbnail)
