"""
Data models (plain dataclasses) for Audio Epistles.
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from epistles.core.constants import RecordStatus


@dataclass
class VideoRecord:
    video_id: str
    first_seen_at: str
    status: str = RecordStatus.PENDING
    attempt_count: int = 0
    last_error: Optional[str] = None
    updated_at: Optional[str] = None
    published_at: Optional[str] = None


@dataclass
class AttemptRecord:
    id: int
    video_id: str
    attempt_no: int
    started_at: str
    finished_at: Optional[str] = None
    outcome: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class AttemptToken:
    video_id: str
    attempt_id: int
    attempt_no: int


@dataclass(frozen=True)
class Outcome:
    status: str                      # RecordStatus.PUBLISHED | RecordStatus.FAILED
    reason: Optional[str] = None

    @classmethod
    def published(cls) -> "Outcome":
        return cls(RecordStatus.PUBLISHED)

    @classmethod
    def failed(cls, reason: str) -> "Outcome":
        return cls(RecordStatus.FAILED, reason)


@dataclass(frozen=True)
class ChapterWindow:
    start_offset_seconds: int
    end_offset_seconds: int
    label: Optional[str] = None

    def __post_init__(self):
        if self.start_offset_seconds < 0:
            raise ValueError("start_offset_seconds must be >= 0")
        if self.end_offset_seconds <= self.start_offset_seconds:
            raise ValueError("end_offset_seconds must be greater than start_offset_seconds")

    @property
    def duration(self) -> int:
        return self.end_offset_seconds - self.start_offset_seconds


@dataclass(frozen=True)
class VideoMetadata:
    video_id: str
    title: str
    description: str
    duration: int


@dataclass(frozen=True)
class DownloadedMedia:
    path: Path
    duration: int
    thumbnail_path: Optional[Path] = None


@dataclass(frozen=True)
class EpisodeDraft:
    audio_path: Path
    title: str
    description: str
    thumbnail_path: Optional[Path] = None
    explicit: bool = False
    sponsored: bool = False
    publish_at: Optional[datetime] = None
