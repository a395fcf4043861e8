"""
Publish pipeline.
Takes the newest playlist video through ledger check, download, chapter
extraction, trimming and upload, and maps the result to a process exit code.
"""

import time
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from epistles.core.constants import Stage, ExitCode, ChapterPolicy, RecordStatus
from epistles.core.db_sqlite import Ledger
from epistles.core.models_sqlite import ChapterWindow, Outcome, AttemptToken
from epistles.core.error_codes import (
    JobError, LedgerLocked, LedgerConflict, AlreadyPublished, AmbiguousAttempt,
    NoChapterFound, DownloadError,
)
from epistles.core.retry import Deadline, call_with_retries
from epistles.core.chapters import extract_chapter_window
from epistles.core.trim import SegmentIsolator, FfmpegTranscoder
from epistles.core.episode import build_episode_draft
from epistles.core.cleanup import cleanup_job_artifacts, SOURCE_DIR, TRIMMED_DIR
from epistles.core.security_utils import safe_job_dir
from epistles.core.playlist_fetch import fetch_latest_video_id
from epistles.core.yt_metadata import fetch_metadata
from epistles.core.download_media import download_media
from epistles.browser.driver import BrowserSession
from epistles.browser.podcasters_ui import PodcastersSteps
from epistles.browser.session_guard import SessionGuard

logger = logging.getLogger(__name__)

# Exit code for a failure raised while the pipeline is in a given stage
_FAILURE_EXIT = {
    Stage.LOCKING_LEDGER: ExitCode.LOCK_CONTENTION,
    Stage.FETCHING_LATEST: ExitCode.FETCH_FAILED,
    Stage.CHECKING_LEDGER: ExitCode.UNEXPECTED_ERROR,
    Stage.DOWNLOADING_MEDIA: ExitCode.DOWNLOAD_FAILED,
    Stage.EXTRACTING_CHAPTER: ExitCode.EXTRACTION_FAILED,
    Stage.TRIMMING_AUDIO: ExitCode.EXTRACTION_FAILED,
    Stage.UPLOADING_EPISODE: ExitCode.UPLOAD_FAILED,
    Stage.CLEANUP: ExitCode.UNEXPECTED_ERROR,
}


@dataclass(frozen=True)
class RunResult:
    exit_code: int
    video_id: Optional[str] = None
    message: str = ""


@dataclass
class Collaborators:
    """External side of the pipeline; tests swap these for fakes."""
    fetch_latest: Callable
    fetch_metadata: Callable
    download: Callable
    isolator: SegmentIsolator
    session_guard_factory: Callable     # (deadline) -> SessionGuard


def default_collaborators(config, sleep=time.sleep) -> Collaborators:
    credentials = config.credentials

    def session_guard_factory(deadline):
        return SessionGuard(
            session_factory=lambda: BrowserSession.open(config),
            steps_factory=lambda session, pause: PodcastersSteps(
                session, credentials, config, pause=pause, deadline=deadline),
            delay_bounds_ms=(config.get('ui_delay_min_ms'), config.get('ui_delay_max_ms')),
            retry_backoff_sec=config.get('session_retry_backoff_sec'),
            deadline=deadline,
            sleep=sleep,
        )

    return Collaborators(
        fetch_latest=fetch_latest_video_id,
        fetch_metadata=fetch_metadata,
        download=download_media,
        isolator=SegmentIsolator(FfmpegTranscoder(), config.get('trim_tolerance_sec')),
        session_guard_factory=session_guard_factory,
    )


class PublishPipeline:
    """One invocation: at most one video, at most one upload session."""

    def __init__(self, config, ledger: Ledger | None = None,
                 collaborators: Collaborators | None = None,
                 clock=time.monotonic, sleep=time.sleep, chapter_policy=None):
        self.config = config
        self.ledger = ledger or Ledger(config.db_path)
        self.collaborators = collaborators or default_collaborators(config, sleep)
        self.clock = clock
        self.sleep = sleep
        self.chapter_policy = chapter_policy or config.chapter_policy
        self.stage: str | None = None
        self.deadline: Deadline | None = None

    # ── Helpers ───────────────────────────────────────────────────────

    def _enter_stage(self, stage: str):
        self.stage = stage
        logger.info("Stage: %s", stage)

    def _retrying(self, func, timeout_key: str):
        """Run func(timeout) with transient retries; each try gets a deadline-capped timeout."""
        stage = self.stage
        return call_with_retries(
            lambda: func(self.deadline.cap(self.config.get(timeout_key), stage)),
            max_attempts=self.config.get('fetch_max_attempts'),
            backoff_sec=self.config.get('fetch_backoff_sec'),
            deadline=self.deadline,
            stage=stage,
            sleep=self.sleep,
        )

    def _finish(self, token: AttemptToken, outcome: Outcome, result: RunResult) -> RunResult:
        try:
            self.ledger.record_outcome(token, outcome)
        except LedgerConflict as e:
            logger.critical("Ledger conflict recording %s for %s: %s",
                            outcome.status, token.video_id, e)
            return RunResult(ExitCode.UNEXPECTED_ERROR, token.video_id, str(e))
        return result

    # ── Run ───────────────────────────────────────────────────────────

    def run(self) -> RunResult:
        self.deadline = Deadline(self.config.get('run_deadline_sec'), self.clock)
        self._enter_stage(Stage.LOCKING_LEDGER)
        try:
            self.ledger.open()
        except LedgerLocked as e:
            logger.warning("Another run holds the ledger: %s", e)
            return RunResult(ExitCode.LOCK_CONTENTION, None, str(e))

        try:
            return self._run_locked()
        finally:
            self.ledger.close()

    def _run_locked(self) -> RunResult:
        for record in self.ledger.ambiguous_records():
            logger.warning("Video %s was left %s by an earlier run (since %s); "
                           "check the Spotify drafts and resolve it with --resolve",
                           record.video_id, record.status, record.updated_at)

        self._enter_stage(Stage.FETCHING_LATEST)
        playlist_id = self.config.playlist_id
        user_agent = self.config.get('user_agent')
        try:
            video_id = self._retrying(
                lambda timeout: self.collaborators.fetch_latest(
                    playlist_id, timeout=timeout, user_agent=user_agent),
                'fetch_timeout_sec',
            )
            workspace = safe_job_dir(self.config.workspace_dir, video_id)
        except (JobError, ValueError) as e:
            logger.error("Could not determine the latest video: %s", e)
            return RunResult(ExitCode.FETCH_FAILED, None, str(e))

        self._enter_stage(Stage.CHECKING_LEDGER)
        if self.ledger.has_published(video_id):
            logger.info("Video %s already published, nothing to do", video_id)
            return RunResult(ExitCode.SKIPPED_ALREADY_PUBLISHED, video_id, "already published")

        record = self.ledger.get_record(video_id)
        if record is not None and record.status == RecordStatus.ATTEMPTING:
            logger.warning("Video %s has an unfinished attempt; needs manual review", video_id)
            return RunResult(ExitCode.NEEDS_MANUAL_REVIEW, video_id, "unfinished prior attempt")

        self.ledger.observe(video_id)
        try:
            token = self.ledger.begin_attempt(video_id)
        except AlreadyPublished as e:
            return RunResult(ExitCode.SKIPPED_ALREADY_PUBLISHED, video_id, str(e))
        except AmbiguousAttempt as e:
            return RunResult(ExitCode.NEEDS_MANUAL_REVIEW, video_id, str(e))

        try:
            result = self._publish(video_id, workspace)
        except JobError as e:
            exit_code = _FAILURE_EXIT.get(self.stage, ExitCode.UNEXPECTED_ERROR)
            logger.error("Run failed during %s: %s", self.stage, e)
            result = self._finish(token, Outcome.failed(f"{self.stage}: {e}"),
                                  RunResult(exit_code, video_id, str(e)))
        except Exception as e:
            logger.error("Unexpected error during %s: %s", self.stage, e, exc_info=True)
            result = self._finish(token, Outcome.failed(f"{self.stage}: unexpected {e!r}"),
                                  RunResult(ExitCode.UNEXPECTED_ERROR, video_id, str(e)))
        else:
            result = self._finish(token, Outcome.published(), result)
        finally:
            self._enter_stage(Stage.CLEANUP)
            cleanup_job_artifacts(workspace, self.config.retain_intermediate_files)

        return result

    def _publish(self, video_id: str, workspace: Path) -> RunResult:
        collab = self.collaborators

        self._enter_stage(Stage.DOWNLOADING_MEDIA)
        metadata = self._retrying(
            lambda timeout: collab.fetch_metadata(video_id, timeout=timeout),
            'fetch_timeout_sec',
        )
        media = self._retrying(
            lambda timeout: collab.download(
                video_id, workspace / SOURCE_DIR, metadata.duration,
                with_thumbnail=self.config.get('attach_thumbnail'), timeout=timeout),
            'download_timeout_sec',
        )
        duration = media.duration
        if duration <= 0:
            duration = int(collab.isolator.transcoder.probe_duration(media.path))
            logger.info("Duration missing from metadata, probed %ds", duration)
        if duration <= 0:
            raise DownloadError(f"Downloaded media {media.path.name} has no usable duration")

        self._enter_stage(Stage.EXTRACTING_CHAPTER)
        try:
            window = extract_chapter_window(metadata.description, duration, self.chapter_policy)
        except NoChapterFound:
            if self.config.get('chapter_not_found_policy') != ChapterPolicy.FULL_DURATION:
                raise
            logger.warning("No sermon chapter in description, using the full %ds", duration)
            window = ChapterWindow(0, duration, "Full recording")

        self._enter_stage(Stage.TRIMMING_AUDIO)
        audio_format = self.config.get('audio_format')
        audio_path = collab.isolator.isolate(
            media.path, window, workspace / TRIMMED_DIR / f"episode.{audio_format}",
            audio_format=audio_format,
            bitrate=self.config.get('audio_bitrate'),
            timeout=self.deadline.cap(self.config.get('transcode_timeout_sec'), self.stage),
        )

        draft = build_episode_draft(metadata, audio_path, self.config, media.thumbnail_path)

        self._enter_stage(Stage.UPLOADING_EPISODE)
        guard = collab.session_guard_factory(self.deadline)
        report = guard.run(draft)
        logger.info("Upload session finished (%d retr%s)", report.retries_used,
                    "y" if report.retries_used == 1 else "ies")

        return RunResult(ExitCode.PUBLISHED, video_id, f"published {draft.title!r}")
