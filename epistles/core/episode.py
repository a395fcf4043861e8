"""
Episode draft assembly from video metadata and the trimmed audio.
"""

import logging
from datetime import datetime, timedelta
from pathlib import Path

from epistles.core.models_sqlite import VideoMetadata, EpisodeDraft
from epistles.core.security_utils import sanitize_title
from epistles.core.yt_metadata import video_url

logger = logging.getLogger(__name__)


def build_description(template: str, video_id: str, include_url: bool) -> str:
    description = (template or "").strip()
    if include_url:
        url = video_url(video_id)
        description = f"{description}\n\n{url}" if description else url
    return description


def build_episode_draft(metadata: VideoMetadata, audio_path: Path, config,
                        thumbnail_path: Path | None = None,
                        publish_at: datetime | None = None) -> EpisodeDraft:
    """Everything the upload session needs, resolved once per run."""
    attach = config.get('attach_thumbnail')
    delay_hours = config.get('publish_delay_hours')
    if publish_at is None and delay_hours and not config.get('save_as_draft'):
        publish_at = (datetime.now() + timedelta(hours=delay_hours)).replace(second=0,
                                                                              microsecond=0)
    if attach and thumbnail_path is None:
        logger.warning("No thumbnail available for %s, uploading without one", metadata.video_id)

    draft = EpisodeDraft(
        audio_path=Path(audio_path),
        title=sanitize_title(metadata.title, config.get('title_max_segments')),
        description=build_description(config.get('episode_description'),
                                      metadata.video_id,
                                      config.get('url_in_description')),
        thumbnail_path=thumbnail_path if attach else None,
        explicit=config.get('is_explicit'),
        sponsored=config.get('is_sponsored'),
        publish_at=publish_at,
    )
    logger.info("Episode draft: %r", draft.title)
    return draft
