"""
Shared constants for Audio Epistles.
"""

import os
import pathlib

# ── Application identity ──────────────────────────────────────────────
APP_NAME = "audio-epistles"
APP_VERSION = "1.0.0"

# ── Filesystem paths ─────────────────────────────────────────────────
HOME = pathlib.Path.home()

APP_HOME = pathlib.Path(os.environ.get("EPISTLES_HOME", str(HOME / ".audio-epistles")))
DB_PATH = APP_HOME / "ledger.db"
CONFIG_PATH = APP_HOME / "config.json"
WORKSPACE_DIR = APP_HOME / "workspace"
LOG_DIR = APP_HOME / "logs"

# ── Ledger record status values ──────────────────────────────────────
class RecordStatus:
    PENDING = "PENDING"
    ATTEMPTING = "ATTEMPTING"
    PUBLISHED = "PUBLISHED"
    FAILED = "FAILED"

TERMINAL_STATUSES = {RecordStatus.PUBLISHED, RecordStatus.FAILED}

# ── Pipeline stages (ordered) ─────────────────────────────────────────
class Stage:
    LOCKING_LEDGER = "LOCKING_LEDGER"
    FETCHING_LATEST = "FETCHING_LATEST"
    CHECKING_LEDGER = "CHECKING_LEDGER"
    DOWNLOADING_MEDIA = "DOWNLOADING_MEDIA"
    EXTRACTING_CHAPTER = "EXTRACTING_CHAPTER"
    TRIMMING_AUDIO = "TRIMMING_AUDIO"
    UPLOADING_EPISODE = "UPLOADING_EPISODE"
    CLEANUP = "CLEANUP"

# ── Error codes ───────────────────────────────────────────────────────
class ErrorCode:
    # Non-retryable
    CONFIG_INVALID = "ERR_CONFIG_INVALID"
    VIDEO_NOT_FOUND = "ERR_VIDEO_NOT_FOUND"
    VIDEO_UNAVAILABLE = "ERR_VIDEO_UNAVAILABLE"
    GEO_BLOCKED = "ERR_GEO_BLOCKED"
    RESTRICTED_CONTENT = "ERR_RESTRICTED_CONTENT"
    DOWNLOAD_FAILED = "ERR_DOWNLOAD_FAILED"
    LEDGER_LOCKED = "ERR_LEDGER_LOCKED"
    ALREADY_PUBLISHED = "ERR_ALREADY_PUBLISHED"
    AMBIGUOUS_ATTEMPT = "ERR_AMBIGUOUS_ATTEMPT"
    LEDGER_CONFLICT = "ERR_LEDGER_CONFLICT"
    CONFLICTING_OUTCOME = "ERR_CONFLICTING_OUTCOME"
    NO_CHAPTER_FOUND = "ERR_NO_CHAPTER_FOUND"
    INVALID_WINDOW = "ERR_INVALID_WINDOW"
    FFMPEG_CODEC = "ERR_FFMPEG_CODEC"
    TRIM_VALIDATION = "ERR_TRIM_VALIDATION"
    LOGIN_FAILED = "ERR_LOGIN_FAILED"
    CAPTCHA_DETECTED = "ERR_CAPTCHA_DETECTED"
    UPLOAD_TIMEOUT = "ERR_UPLOAD_TIMEOUT"
    UNEXPECTED_UI_STATE = "ERR_UNEXPECTED_UI_STATE"
    DRIVER_UNAVAILABLE = "ERR_DRIVER_UNAVAILABLE"
    RUN_DEADLINE = "ERR_RUN_DEADLINE"

    # Retryable
    NETWORK_TRANSIENT = "ERR_NETWORK_TRANSIENT"
    RATE_LIMITED = "ERR_RATE_LIMITED"

RETRYABLE_ERRORS = {
    ErrorCode.NETWORK_TRANSIENT,
    ErrorCode.RATE_LIMITED,
}

# ── Process exit codes ────────────────────────────────────────────────
class ExitCode:
    PUBLISHED = 0
    UNEXPECTED_ERROR = 1
    CONFIG_ERROR = 2
    SKIPPED_ALREADY_PUBLISHED = 10
    NEEDS_MANUAL_REVIEW = 20
    LOCK_CONTENTION = 21
    FETCH_FAILED = 30
    DOWNLOAD_FAILED = 31
    EXTRACTION_FAILED = 32
    UPLOAD_FAILED = 33

# ── Chapter-not-found policy ──────────────────────────────────────────
class ChapterPolicy:
    ABORT = "abort"
    FULL_DURATION = "full_duration"

# ── YouTube ───────────────────────────────────────────────────────────
YOUTUBE_PLAYLIST_URL = "https://www.youtube.com/playlist?list={playlist_id}"
YOUTUBE_WATCH_URL = "https://www.youtube.com/watch?v={video_id}"
VIDEO_ID_PATTERN = r'"videoId":"([^"]+)"'

# ── Audio defaults ────────────────────────────────────────────────────
AUDIO_FORMAT = "mp3"
AUDIO_BITRATE = "128k"
TRIM_TOLERANCE_SEC = 1.0

# ── Spotify for Podcasters ────────────────────────────────────────────
PODCASTERS_HOME_URL = "https://podcasters.spotify.com/"
PODCASTERS_WIZARD_URL = "https://podcasters.spotify.com/pod/dashboard/episode/wizard"
DEFAULT_EPISODE_DESCRIPTION = "Join us online for our Sunday services @ 9AM & 11AM."
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/137.0.0.0 Safari/537.36"
)
CHROMEDRIVER_PORT = 64175

# ── Misc ──────────────────────────────────────────────────────────────
MAX_SESSION_RETRIES = 1
TITLE_MAX_SEGMENTS = 2
