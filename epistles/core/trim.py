"""
Segment isolation using ffmpeg.
Cuts the chapter window out of the raw download into a standalone MP3 and
checks the result's duration with ffprobe.
"""

import subprocess
import logging
from pathlib import Path

from epistles.core.security_utils import run_subprocess_capture
from epistles.core.error_codes import TranscodeError, TrimValidationError, TransientIoError
from epistles.core.constants import (
    ErrorCode, AUDIO_FORMAT, AUDIO_BITRATE, TRIM_TOLERANCE_SEC,
)
from epistles.core.models_sqlite import ChapterWindow

logger = logging.getLogger(__name__)

_CODECS = {
    "mp3": "libmp3lame",
    "m4a": "aac",
    "ogg": "libvorbis",
}


class FfmpegTranscoder:
    """Thin wrapper over the ffmpeg/ffprobe binaries."""

    def __init__(self, ffmpeg: str = "ffmpeg", ffprobe: str = "ffprobe"):
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe

    def cut(self, source: Path, start: int, length: int, destination: Path,
            audio_format: str = AUDIO_FORMAT, bitrate: str = AUDIO_BITRATE,
            timeout: float = 900):
        codec = _CODECS.get(audio_format)
        if codec is None:
            raise TranscodeError(f"Unsupported audio format: {audio_format}")

        args = [
            self.ffmpeg,
            "-y",
            "-hide_banner",
            "-loglevel", "error",
            "-ss", str(start),
            "-i", str(source),
            "-t", str(length),
            "-vn",
            "-c:a", codec,
            "-b:a", bitrate,
            str(destination),
        ]

        try:
            result = run_subprocess_capture(args, timeout=timeout)
        except subprocess.TimeoutExpired:
            raise TranscodeError(f"ffmpeg timed out after {timeout:.0f}s")
        except OSError as e:
            raise TranscodeError(f"ffmpeg could not be started: {e}")

        if result.returncode != 0:
            stderr = result.stderr or ""
            raise TranscodeError(f"ffmpeg failed (rc={result.returncode}): {stderr[:300]}")

        if not destination.exists():
            raise TranscodeError("Trimmed file not created")

    def probe_duration(self, path: Path, timeout: float = 30) -> float:
        """Duration in seconds using ffprobe."""
        args = [
            self.ffprobe,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            str(path),
        ]

        try:
            result = run_subprocess_capture(args, timeout=timeout)
        except subprocess.TimeoutExpired:
            raise TransientIoError(f"ffprobe timed out on {path.name}")
        except OSError as e:
            raise TranscodeError(f"ffprobe could not be started: {e}")

        if result.returncode != 0:
            raise TranscodeError(f"ffprobe failed on {path.name}: {(result.stderr or '')[:200]}")
        try:
            return float(result.stdout.strip())
        except ValueError:
            raise TranscodeError(f"ffprobe returned no duration for {path.name}")


class SegmentIsolator:
    """Produces the trimmed episode audio and validates its length."""

    def __init__(self, transcoder: FfmpegTranscoder | None = None,
                 tolerance_sec: float = TRIM_TOLERANCE_SEC):
        self.transcoder = transcoder or FfmpegTranscoder()
        self.tolerance_sec = tolerance_sec

    def isolate(self, source: Path, window: ChapterWindow, destination: Path,
                audio_format: str = AUDIO_FORMAT, bitrate: str = AUDIO_BITRATE,
                timeout: float = 900) -> Path:
        source, destination = Path(source), Path(destination)
        if source.resolve() == destination.resolve():
            raise TranscodeError("Refusing to overwrite the source media")
        start, end = window.start_offset_seconds, window.end_offset_seconds
        if start < 0 or end <= start:
            raise TranscodeError(f"Invalid window {start}s..{end}s", code=ErrorCode.INVALID_WINDOW)

        destination.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Trimming %s: %ds..%ds -> %s", source.name, start, end, destination.name)
        self.transcoder.cut(source, start, end - start, destination,
                            audio_format=audio_format, bitrate=bitrate, timeout=timeout)

        actual = self.transcoder.probe_duration(destination)
        expected = window.duration
        if abs(actual - expected) > self.tolerance_sec:
            destination.unlink(missing_ok=True)
            raise TrimValidationError(
                f"Trimmed audio is {actual:.1f}s, expected {expected}s "
                f"(tolerance {self.tolerance_sec:.1f}s)"
            )

        logger.info("Trimmed audio: %s (%.1fs)", destination, actual)
        return destination
