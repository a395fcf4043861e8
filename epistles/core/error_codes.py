"""
Standardised error handling for Audio Epistles.

Every error carries a stable code and a retryable flag; the pipeline
decides retry/abort/skip from those two alone.
"""

from epistles.core.constants import ErrorCode, RETRYABLE_ERRORS


class JobError(Exception):
    """Raised when a run encounters a known error condition."""

    default_code = ErrorCode.DOWNLOAD_FAILED

    def __init__(self, message: str, code: str | None = None, retryable: bool | None = None):
        self.code = code or self.default_code
        self.message = message
        # auto-detect retryable from code if not explicitly set
        self.retryable = retryable if retryable is not None else (self.code in RETRYABLE_ERRORS)
        super().__init__(f"[{self.code}] {message}")


def is_retryable(code: str) -> bool:
    return code in RETRYABLE_ERRORS


class ConfigError(JobError):
    default_code = ErrorCode.CONFIG_INVALID


# ── Network / collaborators ───────────────────────────────────────────

class TransientIoError(JobError):
    """Network hiccup worth retrying within the same run."""
    default_code = ErrorCode.NETWORK_TRANSIENT


class RateLimited(TransientIoError):
    default_code = ErrorCode.RATE_LIMITED


class FetchError(JobError):
    default_code = ErrorCode.VIDEO_NOT_FOUND


class VideoNotFound(FetchError):
    default_code = ErrorCode.VIDEO_NOT_FOUND


class DownloadError(JobError):
    default_code = ErrorCode.DOWNLOAD_FAILED


class VideoUnavailable(DownloadError):
    default_code = ErrorCode.VIDEO_UNAVAILABLE


class GeoBlocked(DownloadError):
    default_code = ErrorCode.GEO_BLOCKED


class RestrictedContent(DownloadError):
    default_code = ErrorCode.RESTRICTED_CONTENT


# ── Ledger ────────────────────────────────────────────────────────────

class LedgerError(JobError):
    default_code = ErrorCode.LEDGER_CONFLICT


class LedgerLocked(LedgerError):
    default_code = ErrorCode.LEDGER_LOCKED


class AlreadyPublished(LedgerError):
    default_code = ErrorCode.ALREADY_PUBLISHED


class AmbiguousAttempt(LedgerError):
    """A prior run left the record ATTEMPTING; needs an operator."""
    default_code = ErrorCode.AMBIGUOUS_ATTEMPT


class LedgerConflict(LedgerError):
    """Data-integrity violation. Never expected under single-writer discipline."""
    default_code = ErrorCode.LEDGER_CONFLICT


class ConflictingOutcome(LedgerConflict):
    default_code = ErrorCode.CONFLICTING_OUTCOME


# ── Extraction / trimming ─────────────────────────────────────────────

class NoChapterFound(JobError):
    default_code = ErrorCode.NO_CHAPTER_FOUND


class TranscodeError(JobError):
    default_code = ErrorCode.FFMPEG_CODEC


class TrimValidationError(JobError):
    default_code = ErrorCode.TRIM_VALIDATION


# ── Upload session ────────────────────────────────────────────────────

class UploadSessionError(JobError):
    default_code = ErrorCode.UNEXPECTED_UI_STATE


class LoginFailed(UploadSessionError):
    default_code = ErrorCode.LOGIN_FAILED


class CaptchaDetected(UploadSessionError):
    default_code = ErrorCode.CAPTCHA_DETECTED


class UploadTimeout(UploadSessionError):
    default_code = ErrorCode.UPLOAD_TIMEOUT


class UnexpectedUiState(UploadSessionError):
    default_code = ErrorCode.UNEXPECTED_UI_STATE


class DriverError(UploadSessionError):
    """Driver unreachable, protocol mismatch, or a transient webdriver fault."""
    default_code = ErrorCode.DRIVER_UNAVAILABLE


# ── Run level ─────────────────────────────────────────────────────────

class RunDeadlineExceeded(JobError):
    default_code = ErrorCode.RUN_DEADLINE

    def __init__(self, stage: str):
        self.stage = stage
        super().__init__(f"Run deadline exceeded during {stage}")
