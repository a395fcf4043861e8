#!/usr/bin/env python3
"""
Integration tests for the publish pipeline with fake collaborators and a
real on-disk ledger.
"""

import sys
import json
import tempfile
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

from epistles.core.constants import ExitCode, RecordStatus, ChapterPolicy
from epistles.core.config import AppConfig
from epistles.core.db_sqlite import Ledger
from epistles.core.models_sqlite import VideoMetadata, DownloadedMedia, Outcome
from epistles.core.pipeline import PublishPipeline, Collaborators, default_collaborators
from epistles.core.retry import Deadline
from epistles.core.error_codes import (
    TransientIoError, VideoNotFound, VideoUnavailable, UnexpectedUiState,
)
from epistles.browser.session_guard import SessionReport, SessionState

VIDEO_ID = "abc123XYZ_-"
DESCRIPTION = "0:00 Welcome\n1:05:30 Sermon Start\n1:52:10 Sermon End\n1:55:00 Benediction"


class FakeTranscoder:
    def __init__(self, duration=8000):
        self.duration = duration

    def probe_duration(self, path, timeout=30):
        return self.duration


class FakeIsolator:
    def __init__(self):
        self.transcoder = FakeTranscoder()
        self.windows = []

    def isolate(self, source, window, destination, **kwargs):
        self.windows.append(window)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(b"ID3")
        return destination


class FakeGuard:
    def __init__(self, owner):
        self.owner = owner

    def run(self, draft):
        self.owner.drafts.append(draft)
        if self.owner.upload_error is not None:
            raise self.owner.upload_error
        return SessionReport(states=[SessionState.SAVED, SessionState.CLOSED])


class FakeWorld:
    """Collaborators that record how they were called."""

    def __init__(self, description=DESCRIPTION, duration=8000):
        self.description = description
        self.duration = duration
        self.fetch_errors = []
        self.download_error = None
        self.upload_error = None
        self.downloads = []
        self.drafts = []
        self.isolator = FakeIsolator()

    def fetch_latest(self, playlist_id, timeout, user_agent):
        if self.fetch_errors:
            raise self.fetch_errors.pop(0)
        return VIDEO_ID

    def fetch_metadata(self, video_id, timeout):
        return VideoMetadata(video_id, "Walking in Faith | Pastor John | Sunday", self.description,
                             self.duration)

    def download(self, video_id, output_dir, duration, with_thumbnail, timeout):
        if self.download_error is not None:
            raise self.download_error
        self.downloads.append(video_id)
        output_dir.mkdir(parents=True, exist_ok=True)
        path = output_dir / "source.webm"
        path.write_bytes(b"raw")
        return DownloadedMedia(path, duration)

    def collaborators(self) -> Collaborators:
        return Collaborators(
            fetch_latest=self.fetch_latest,
            fetch_metadata=self.fetch_metadata,
            download=self.download,
            isolator=self.isolator,
            session_guard_factory=lambda deadline: FakeGuard(self),
        )


class TestPublishPipeline(unittest.TestCase):

    def setUp(self):
        self.tmpdir = Path(tempfile.mkdtemp())
        self.db_path = self.tmpdir / "ledger.db"
        self.workspace = self.tmpdir / "workspace"
        config_path = self.tmpdir / "config.json"
        config_path.write_text(json.dumps({'fetch_backoff_sec': 0.5}))
        self.config = AppConfig(config_path, environ={
            'SERMON_PLAYLIST_ID': "PLsermons",
            'EPISTLES_DB_PATH': str(self.db_path),
            'EPISTLES_WORKSPACE': str(self.workspace),
        })
        self.world = FakeWorld()
        self.sleeps = []

    def run_pipeline(self):
        pipeline = PublishPipeline(self.config, Ledger(self.db_path),
                                   self.world.collaborators(), sleep=self.sleeps.append)
        return pipeline.run()

    def record(self):
        with Ledger(self.db_path) as ledger:
            return ledger.get_record(VIDEO_ID)

    def test_publishes_new_video(self):
        result = self.run_pipeline()

        self.assertEqual(result.exit_code, ExitCode.PUBLISHED)
        self.assertEqual(result.video_id, VIDEO_ID)
        window = self.world.isolator.windows[0]
        self.assertEqual((window.start_offset_seconds, window.end_offset_seconds), (3930, 6730))
        self.assertEqual(self.world.drafts[0].title, "Walking in Faith | Pastor John")
        self.assertEqual(self.record().status, RecordStatus.PUBLISHED)
        self.assertFalse((self.workspace / f"video_{VIDEO_ID}").exists())

    def test_second_run_skips(self):
        self.run_pipeline()
        self.world.downloads.clear()
        self.world.drafts.clear()

        result = self.run_pipeline()
        self.assertEqual(result.exit_code, ExitCode.SKIPPED_ALREADY_PUBLISHED)
        self.assertEqual(self.world.downloads, [])
        self.assertEqual(self.world.drafts, [])

    def test_unfinished_attempt_needs_review(self):
        with Ledger(self.db_path) as ledger:
            ledger.begin_attempt(VIDEO_ID)

        result = self.run_pipeline()
        self.assertEqual(result.exit_code, ExitCode.NEEDS_MANUAL_REVIEW)
        self.assertEqual(self.world.downloads, [])
        self.assertEqual(self.record().status, RecordStatus.ATTEMPTING)

        with Ledger(self.db_path) as ledger:
            ledger.resolve_ambiguous(VIDEO_ID, Outcome.failed("not in drafts"))
        self.assertEqual(self.run_pipeline().exit_code, ExitCode.PUBLISHED)

    def test_lock_contention(self):
        holder = Ledger(self.db_path).open()
        try:
            result = self.run_pipeline()
        finally:
            holder.close()
        self.assertEqual(result.exit_code, ExitCode.LOCK_CONTENTION)
        self.assertEqual(self.world.downloads, [])

    def test_fetch_failure(self):
        self.world.fetch_errors = [VideoNotFound("empty playlist")]
        result = self.run_pipeline()
        self.assertEqual(result.exit_code, ExitCode.FETCH_FAILED)
        self.assertIsNone(self.record())

    def test_transient_fetch_is_retried(self):
        self.world.fetch_errors = [TransientIoError("blip"), TransientIoError("blip")]
        result = self.run_pipeline()
        self.assertEqual(result.exit_code, ExitCode.PUBLISHED)
        self.assertEqual(len(self.sleeps), 2)

    def test_download_failure_recorded(self):
        self.world.download_error = VideoUnavailable("private video")
        result = self.run_pipeline()
        self.assertEqual(result.exit_code, ExitCode.DOWNLOAD_FAILED)
        self.assertEqual(self.record().status, RecordStatus.FAILED)

    def test_missing_chapter_fails(self):
        self.world.description = "Join us every Sunday."
        result = self.run_pipeline()

        self.assertEqual(result.exit_code, ExitCode.EXTRACTION_FAILED)
        record = self.record()
        self.assertEqual(record.status, RecordStatus.FAILED)
        self.assertIn("ERR_NO_CHAPTER_FOUND", record.last_error)
        self.assertEqual(self.world.drafts, [])
        self.assertFalse((self.workspace / f"video_{VIDEO_ID}").exists())

    def test_missing_chapter_full_duration_policy(self):
        self.config.set('chapter_not_found_policy', ChapterPolicy.FULL_DURATION)
        self.world.description = "Join us every Sunday."
        result = self.run_pipeline()

        self.assertEqual(result.exit_code, ExitCode.PUBLISHED)
        window = self.world.isolator.windows[0]
        self.assertEqual((window.start_offset_seconds, window.end_offset_seconds), (0, 8000))

    def test_upload_failure_recorded(self):
        self.world.upload_error = UnexpectedUiState("wizard changed")
        result = self.run_pipeline()

        self.assertEqual(result.exit_code, ExitCode.UPLOAD_FAILED)
        self.assertEqual(self.record().status, RecordStatus.FAILED)
        # a failed video is picked up again on the next run
        self.world.upload_error = None
        self.assertEqual(self.run_pipeline().exit_code, ExitCode.PUBLISHED)

    def test_unexpected_error_is_recorded(self):
        self.world.upload_error = KeyError("selector table")
        result = self.run_pipeline()
        self.assertEqual(result.exit_code, ExitCode.UNEXPECTED_ERROR)
        self.assertEqual(self.record().status, RecordStatus.FAILED)

    def test_configured_chapter_selection_policy(self):
        self.config.set('chapter_selection_policy', "first_span")
        self.world.description = "0:00 Message\n5:00 Worship\n10:00 Sermon\n50:00 Closing"
        result = self.run_pipeline()

        self.assertEqual(result.exit_code, ExitCode.PUBLISHED)
        window = self.world.isolator.windows[0]
        self.assertEqual((window.start_offset_seconds, window.end_offset_seconds), (0, 300))

    def test_sub_second_media_is_download_failure(self):
        self.world.duration = 0
        self.world.isolator.transcoder.duration = 0.4
        result = self.run_pipeline()

        self.assertEqual(result.exit_code, ExitCode.DOWNLOAD_FAILED)
        self.assertEqual(self.record().status, RecordStatus.FAILED)
        self.assertIn("no usable duration", self.record().last_error)
        self.assertEqual(self.world.isolator.windows, [])

    def test_session_retry_backoff_from_config(self):
        self.config.set('session_retry_backoff_sec', 7.5)
        guard = default_collaborators(self.config).session_guard_factory(Deadline(600))
        self.assertEqual(guard.retry_backoff_sec, 7.5)
        self.assertEqual(self.config.get('fetch_backoff_sec'), 0.5)

    def test_retained_files(self):
        self.config.retain_intermediate_files = True
        self.run_pipeline()
        job_dir = self.workspace / f"video_{VIDEO_ID}"
        self.assertTrue((job_dir / "source" / "source.webm").exists())
        self.assertTrue((job_dir / "trimmed" / "episode.mp3").exists())


if __name__ == "__main__":
    unittest.main()
