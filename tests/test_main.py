#!/usr/bin/env python3
"""
Tests for the command-line entry point: ledger maintenance flags and exit codes.
"""

import io
import sys
import tempfile
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest
from unittest import mock

import main
from epistles.core.config import AppConfig
from epistles.core.constants import ExitCode, RecordStatus
from epistles.core.db_sqlite import Ledger

VIDEO_ID = "abc123XYZ_-"


class TestMain(unittest.TestCase):

    def setUp(self):
        self.tmpdir = Path(tempfile.mkdtemp())
        self.db_path = self.tmpdir / "ledger.db"
        self.environ = {
            'EPISTLES_DB_PATH': str(self.db_path),
            'EPISTLES_WORKSPACE': str(self.tmpdir / "workspace"),
        }
        for target in ("main.setup_logging", "main.install_signal_handlers"):
            patcher = mock.patch(target)
            patcher.start()
            self.addCleanup(patcher.stop)
        patcher = mock.patch("main.AppConfig",
                             side_effect=lambda path: AppConfig(self.tmpdir / "config.json",
                                                                environ=self.environ))
        patcher.start()
        self.addCleanup(patcher.stop)

    def run_main(self, *argv):
        with mock.patch("sys.stdout", new_callable=io.StringIO) as out:
            code = main.main(list(argv))
        return code, out.getvalue()

    def test_history(self):
        with Ledger(self.db_path) as ledger:
            ledger.observe(VIDEO_ID)
            ledger.observe("older_video")

        code, output = self.run_main("--history", "5")
        self.assertEqual(code, ExitCode.PUBLISHED)
        lines = output.splitlines()
        self.assertEqual(len(lines), 2)
        self.assertTrue(any(line.startswith(f"{VIDEO_ID}\t{RecordStatus.PENDING}") for line in lines))

    def test_resolve_unfinished_attempt(self):
        ledger = Ledger(self.db_path).open()
        ledger.begin_attempt(VIDEO_ID)
        ledger.close()

        code, _ = self.run_main("--resolve", VIDEO_ID, "--as", "published")
        self.assertEqual(code, ExitCode.PUBLISHED)
        with Ledger(self.db_path) as ledger:
            self.assertTrue(ledger.has_published(VIDEO_ID))

    def test_resolve_without_attempt_is_config_error(self):
        code, _ = self.run_main("--resolve", VIDEO_ID, "--as", "failed")
        self.assertEqual(code, ExitCode.CONFIG_ERROR)

    def test_resolve_requires_outcome(self):
        with mock.patch("sys.stderr", new_callable=io.StringIO):
            with self.assertRaises(SystemExit) as ctx:
                main.parse_args(["--resolve", VIDEO_ID])
        self.assertEqual(ctx.exception.code, 2)

    def test_missing_playlist_is_config_error(self):
        with mock.patch("main.PublishPipeline") as pipeline:
            code, _ = self.run_main()
        self.assertEqual(code, ExitCode.CONFIG_ERROR)
        pipeline.assert_not_called()


if __name__ == "__main__":
    unittest.main()
