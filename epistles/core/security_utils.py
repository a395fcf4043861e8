"""
Security utilities for Audio Epistles.
- Path traversal protection for per-video workspaces
- Episode title sanitisation
- Safe subprocess execution (argument arrays only)
"""

import re
import subprocess
import pathlib
import logging

from epistles.core.constants import TITLE_MAX_SEGMENTS

logger = logging.getLogger(__name__)

_UNSAFE_ID_CHARS = r'[^A-Za-z0-9_-]'
_CONTROL_CHARS = r'[\x00-\x1f\x7f]'


# ── Titles / paths ────────────────────────────────────────────────────

def sanitize_title(title: str, max_segments: int = TITLE_MAX_SEGMENTS) -> str:
    """
    Episode title from a video title: keep the first `max_segments`
    '|'-separated parts, joined by ' | '. Falls back to 'Untitled'.
    """
    if not title:
        return "Untitled"
    cleaned = re.sub(_CONTROL_CHARS, ' ', title)
    parts = [p.strip() for p in cleaned.split('|')]
    parts = [re.sub(r'\s+', ' ', p) for p in parts if p]
    if not parts:
        return "Untitled"
    return " | ".join(parts[:max(1, max_segments)])


def safe_job_dir(workspace: pathlib.Path, video_id: str) -> pathlib.Path:
    """
    Per-video workspace folder. Enforces that the result stays inside
    `workspace`; raises ValueError otherwise.
    """
    name = re.sub(_UNSAFE_ID_CHARS, '_', video_id or "").strip('_')
    if not name:
        raise ValueError(f"Unusable video id for a workspace path: {video_id!r}")

    candidate = workspace / f"video_{name}"
    real_root = workspace.resolve(strict=False)
    real_candidate = candidate.resolve(strict=False)
    if real_root not in real_candidate.parents:
        raise ValueError("Path traversal detected")
    return candidate


# ── Subprocess safety ─────────────────────────────────────────────────

def run_subprocess(args: list[str], **kwargs) -> subprocess.CompletedProcess:
    """
    Execute a subprocess using argument arrays only.
    shell=True is explicitly forbidden.
    """
    if not isinstance(args, (list, tuple)):
        raise TypeError("Subprocess args must be a list/tuple, not a string")

    kwargs.pop('shell', None)

    logger.debug("Running subprocess: %s", ' '.join(str(a) for a in args))
    return subprocess.run(args, shell=False, **kwargs)


def run_subprocess_capture(args: list[str], timeout: float = 300, **kwargs) -> subprocess.CompletedProcess:
    """Run subprocess and capture stdout/stderr."""
    return run_subprocess(
        args,
        capture_output=True,
        text=True,
        timeout=timeout,
        **kwargs,
    )
