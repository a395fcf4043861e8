"""
Cleanup: delete media artifacts after a run (success or failure).
"""

import shutil
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

# Subfolders of a per-video workspace
SOURCE_DIR = "source"
TRIMMED_DIR = "trimmed"


def cleanup_job_artifacts(job_workspace: Path, retain_intermediate: bool = False):
    """
    Delete the raw download and the trimmed episode audio.

    If retain_intermediate is True nothing is deleted, so a failed trim or
    upload can be inspected by hand.
    """
    if not job_workspace.exists():
        return
    if retain_intermediate:
        logger.info("Keeping intermediate files in %s", job_workspace)
        return

    for dirname in (SOURCE_DIR, TRIMMED_DIR):
        dir_path = job_workspace / dirname
        if dir_path.exists():
            try:
                shutil.rmtree(dir_path)
                logger.debug("Deleted: %s", dir_path)
            except OSError as e:
                logger.warning("Failed to delete %s: %s", dir_path, e)

    try:
        if not any(job_workspace.iterdir()):
            job_workspace.rmdir()
            logger.debug("Removed empty workspace: %s", job_workspace)
    except OSError as e:
        logger.warning("Failed to remove workspace %s: %s", job_workspace, e)
