#!/usr/bin/env python3
"""
audio-epistles v1.0.0: main entry point.
Runs one publish pass and exits with a status a scheduler can act on.
"""

import sys
import os
import json
import time
import signal
import logging
import argparse
import traceback
from pathlib import Path
from datetime import datetime

# ── Determine project root ────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from epistles.core.constants import APP_NAME, APP_VERSION, LOG_DIR, ExitCode
from epistles.core.config import AppConfig
from epistles.core.db_sqlite import Ledger
from epistles.core.models_sqlite import Outcome
from epistles.core.error_codes import ConfigError, LedgerError, LedgerLocked
from epistles.core.diagnostics import get_diagnostics, missing_prerequisites
from epistles.core.pipeline import PublishPipeline

logger = logging.getLogger(APP_NAME)


def setup_logging():
    """File log under the app home plus stderr for the scheduler's capture."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(LOG_DIR / "app.log", encoding="utf-8"),
            logging.StreamHandler(sys.stderr),
        ],
    )


def install_signal_handlers():
    """SIGTERM unwinds like Ctrl-C so every finally block (browser teardown, ledger close) runs."""
    def _terminate(signum, frame):
        logger.warning("Received signal %d, shutting down", signum)
        raise SystemExit(128 + signum)

    signal.signal(signal.SIGTERM, _terminate)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Publish the newest sermon from a YouTube playlist to Spotify for Podcasters.",
    )
    parser.add_argument("--config", type=Path, default=None,
                        help="Path to config.json (default: ~/.audio-epistles/config.json)")
    parser.add_argument("--history", type=int, metavar="N", default=None,
                        help="Print the N most recent ledger records and exit")
    parser.add_argument("--resolve", metavar="VIDEO_ID", default=None,
                        help="Close an unfinished attempt after checking the Spotify drafts by hand")
    parser.add_argument("--as", dest="resolve_as", choices=("published", "failed"),
                        help="Outcome to record with --resolve")
    parser.add_argument("--diagnostics", action="store_true",
                        help="Print external tool versions as JSON and exit")
    args = parser.parse_args(argv)
    if args.resolve and not args.resolve_as:
        parser.error("--resolve requires --as {published,failed}")
    return args


def show_history(config: AppConfig, limit: int) -> int:
    with Ledger(config.db_path) as ledger:
        for record in ledger.get_upload_history(limit):
            print(f"{record.video_id}\t{record.status}\tattempts={record.attempt_count}\t"
                  f"first_seen={record.first_seen_at}\tpublished={record.published_at or '-'}")
    return ExitCode.PUBLISHED


def resolve_attempt(config: AppConfig, video_id: str, resolve_as: str) -> int:
    outcome = (Outcome.published() if resolve_as == "published"
               else Outcome.failed("resolved manually"))
    with Ledger(config.db_path) as ledger:
        try:
            ledger.resolve_ambiguous(video_id, outcome)
        except LedgerError as e:
            logger.error("Could not resolve %s: %s", video_id, e)
            return ExitCode.CONFIG_ERROR
    logger.info("Video %s resolved as %s", video_id, outcome.status)
    return ExitCode.PUBLISHED


def run_once(config: AppConfig) -> int:
    config.validate()
    missing = missing_prerequisites({"chromedriver": config.get('chromedriver_path')})
    if missing:
        logger.error("Missing required tools: %s. PATH = %s",
                     ", ".join(missing), os.environ.get("PATH", ""))
        return ExitCode.CONFIG_ERROR

    result = PublishPipeline(config).run()
    logger.info("Run finished: exit=%d video=%s %s",
                result.exit_code, result.video_id or "-", result.message)
    return result.exit_code


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging()
    install_signal_handlers()

    started = time.monotonic()
    logger.info("=" * 60)
    logger.info("%s v%s starting at %s", APP_NAME, APP_VERSION, datetime.now().isoformat())
    logger.info("Python: %s", sys.executable)
    logger.info("=" * 60)

    try:
        config = AppConfig(args.config)
        if args.diagnostics:
            print(json.dumps(get_diagnostics({"chromedriver": config.get('chromedriver_path')}),
                             indent=2))
            return ExitCode.PUBLISHED
        if args.history is not None:
            return show_history(config, args.history)
        if args.resolve:
            return resolve_attempt(config, args.resolve, args.resolve_as)
        return run_once(config)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return ExitCode.CONFIG_ERROR
    except LedgerLocked as e:
        logger.warning("%s", e)
        return ExitCode.LOCK_CONTENTION
    except Exception as e:
        logger.critical("Fatal error: %s: %s\n%s", type(e).__name__, e, traceback.format_exc())
        return ExitCode.UNEXPECTED_ERROR
    finally:
        minutes, seconds = divmod(int(time.monotonic() - started), 60)
        logger.info("Finished in %dmin %dsec", minutes, seconds)


if __name__ == "__main__":
    sys.exit(main())
