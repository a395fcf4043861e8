"""
Diagnostics: tool version detection and prerequisite checks.
"""

import shutil
import logging

from epistles.core.security_utils import run_subprocess_capture

logger = logging.getLogger(__name__)

REQUIRED_TOOLS = ("yt-dlp", "ffmpeg", "ffprobe", "chromedriver")

_VERSION_ARGS = {
    "yt-dlp": ["--version"],
    "ffmpeg": ["-version"],
    "ffprobe": ["-version"],
    "chromedriver": ["--version"],
}


def get_tool_version(tool: str, executable: str | None = None) -> str:
    """Return the first line of a tool's version output, or an error message."""
    try:
        result = run_subprocess_capture([executable or tool, *_VERSION_ARGS[tool]], timeout=10)
        if result.returncode == 0:
            lines = result.stdout.strip().splitlines()
            return lines[0] if lines else "Unknown"
        return f"Error (rc={result.returncode})"
    except FileNotFoundError:
        return "Not installed"
    except Exception as e:
        return f"Error: {e}"


def missing_prerequisites(overrides: dict | None = None) -> list[str]:
    """Tools from REQUIRED_TOOLS that are not on PATH."""
    overrides = overrides or {}
    return [t for t in REQUIRED_TOOLS if shutil.which(overrides.get(t, t)) is None]


def get_diagnostics(overrides: dict | None = None) -> dict:
    """Gather all diagnostic information."""
    overrides = overrides or {}
    return {
        f"{tool.replace('-', '')}_version": get_tool_version(tool, overrides.get(tool))
        for tool in REQUIRED_TOOLS
    }
