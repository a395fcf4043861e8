"""
SQLite ledger for Audio Epistles.

Records which video ids have been attempted and published. One process
holds the ledger for write at a time (advisory flock on a sidecar file);
a contending process fails fast instead of queueing behind it.
"""

import fcntl
import os
import sqlite3
import logging
from datetime import datetime, timezone
from pathlib import Path

from epistles.core.constants import DB_PATH, RecordStatus, TERMINAL_STATUSES
from epistles.core.error_codes import (
    LedgerError, LedgerLocked, AlreadyPublished, AmbiguousAttempt,
    LedgerConflict, ConflictingOutcome,
)
from epistles.core.models_sqlite import (
    VideoRecord, AttemptRecord, AttemptToken, Outcome,
)

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 2

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS videos (
    video_id TEXT PRIMARY KEY,
    first_seen_at TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'PENDING',
    attempt_count INTEGER NOT NULL DEFAULT 0,
    last_error TEXT,
    updated_at TEXT,
    published_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_videos_status ON videos(status);

CREATE TABLE IF NOT EXISTS attempts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    video_id TEXT NOT NULL,
    attempt_no INTEGER NOT NULL,
    started_at TEXT NOT NULL,
    finished_at TEXT,
    outcome TEXT,
    error TEXT,
    FOREIGN KEY (video_id) REFERENCES videos(video_id)
);

CREATE INDEX IF NOT EXISTS idx_attempts_video_id ON attempts(video_id, id);
"""


class Ledger:
    """Persisted record of publish attempts and outcomes, keyed by video id."""

    def __init__(self, db_path: Path | None = None):
        self.db_path = Path(db_path or DB_PATH)
        self.lock_path = self.db_path.with_name(self.db_path.name + ".lock")
        self.conn: sqlite3.Connection | None = None
        self._lock_fd: int | None = None

    # ── Lifecycle ─────────────────────────────────────────────────────

    def open(self) -> "Ledger":
        self._ensure_dirs()
        self._acquire_lock()
        try:
            self.conn = sqlite3.connect(str(self.db_path), timeout=10)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA journal_mode=WAL")
            self.conn.execute("PRAGMA foreign_keys=ON")
            self._migrate()
        except Exception:
            self.close()
            raise
        logger.info("Ledger opened: %s", self.db_path)
        return self

    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None
        self._release_lock()

    @property
    def is_open(self) -> bool:
        return self.conn is not None

    def __enter__(self) -> "Ledger":
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def _ensure_dirs(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _acquire_lock(self):
        fd = os.open(str(self.lock_path), os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            raise LedgerLocked(f"Ledger {self.db_path} is held by another process")
        os.ftruncate(fd, 0)
        os.write(fd, str(os.getpid()).encode())
        self._lock_fd = fd

    def _release_lock(self):
        if self._lock_fd is None:
            return
        try:
            fcntl.flock(self._lock_fd, fcntl.LOCK_UN)
        finally:
            os.close(self._lock_fd)
            self._lock_fd = None

    def _require_open(self) -> sqlite3.Connection:
        if self.conn is None:
            raise LedgerError("Ledger is not open")
        return self.conn

    # ── Schema ────────────────────────────────────────────────────────

    def _table_exists(self, name: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
        ).fetchone()
        return row is not None

    def _get_schema_version(self) -> int:
        if not self._table_exists("schema_version"):
            return 0
        row = self.conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return row[0] or 0

    def _migrate(self):
        version = self._get_schema_version()
        with self.conn:
            self.conn.executescript(_CREATE_TABLES)
        if version >= _SCHEMA_VERSION:
            return

        with self.conn:
            imported = 0
            # v1: append-only uploads table
            if self._table_exists("uploads"):
                rows = self.conn.execute(
                    "SELECT video_id, MIN(uploaded_at) AS uploaded_at FROM uploads GROUP BY video_id"
                ).fetchall()
                for row in rows:
                    imported += self._import_published(row["video_id"], row["uploaded_at"])
            # v0: single-row uploaded table holding the last id
            if self._table_exists("uploaded"):
                for row in self.conn.execute("SELECT id FROM uploaded").fetchall():
                    imported += self._import_published(row["id"], None)

            self.conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
                (_SCHEMA_VERSION,),
            )
        if imported:
            logger.info("Migrated %d legacy upload(s) into the ledger", imported)
        logger.info("Ledger schema at version %d (was %d)", _SCHEMA_VERSION, version)

    def _import_published(self, video_id: str, uploaded_at: str | None) -> int:
        if not video_id:
            return 0
        when = uploaded_at or self._now()
        cur = self.conn.execute(
            """INSERT OR IGNORE INTO videos
               (video_id, first_seen_at, status, attempt_count, updated_at, published_at)
               VALUES (?, ?, ?, 1, ?, ?)""",
            (video_id, when, RecordStatus.PUBLISHED, when, when),
        )
        return cur.rowcount

    # ── Helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> VideoRecord:
        return VideoRecord(**dict(row))

    @staticmethod
    def _row_to_attempt(row: sqlite3.Row) -> AttemptRecord:
        return AttemptRecord(**dict(row))

    def _latest_attempt(self, video_id: str) -> AttemptRecord | None:
        row = self.conn.execute(
            "SELECT * FROM attempts WHERE video_id = ? ORDER BY id DESC LIMIT 1",
            (video_id,),
        ).fetchone()
        return self._row_to_attempt(row) if row else None

    # ── Reads ─────────────────────────────────────────────────────────

    def get_record(self, video_id: str) -> VideoRecord | None:
        row = self._require_open().execute(
            "SELECT * FROM videos WHERE video_id = ?", (video_id,)
        ).fetchone()
        return self._row_to_record(row) if row else None

    def has_published(self, video_id: str) -> bool:
        row = self._require_open().execute(
            "SELECT 1 FROM videos WHERE video_id = ? AND status = ? LIMIT 1",
            (video_id, RecordStatus.PUBLISHED),
        ).fetchone()
        return row is not None

    def ambiguous_records(self) -> list[VideoRecord]:
        rows = self._require_open().execute(
            "SELECT * FROM videos WHERE status = ? ORDER BY updated_at",
            (RecordStatus.ATTEMPTING,),
        ).fetchall()
        return [self._row_to_record(r) for r in rows]

    def get_upload_history(self, limit: int = 10) -> list[VideoRecord]:
        rows = self._require_open().execute(
            "SELECT * FROM videos ORDER BY first_seen_at DESC, video_id LIMIT ?",
            (limit,),
        ).fetchall()
        return [self._row_to_record(r) for r in rows]

    def get_attempts(self, video_id: str) -> list[AttemptRecord]:
        rows = self._require_open().execute(
            "SELECT * FROM attempts WHERE video_id = ? ORDER BY id", (video_id,)
        ).fetchall()
        return [self._row_to_attempt(r) for r in rows]

    # ── Writes ────────────────────────────────────────────────────────

    def observe(self, video_id: str) -> VideoRecord:
        """Create a PENDING record for an identifier seen for the first time."""
        conn = self._require_open()
        now = self._now()
        with conn:
            conn.execute(
                """INSERT OR IGNORE INTO videos
                   (video_id, first_seen_at, status, attempt_count, updated_at)
                   VALUES (?, ?, ?, 0, ?)""",
                (video_id, now, RecordStatus.PENDING, now),
            )
        return self.get_record(video_id)

    def begin_attempt(self, video_id: str) -> AttemptToken:
        """
        Mark the record ATTEMPTING and append an attempt row.
        Must be committed before any download or upload starts.
        """
        conn = self._require_open()
        now = self._now()
        with conn:
            record = self.get_record(video_id)
            if record and record.status == RecordStatus.PUBLISHED:
                raise AlreadyPublished(f"Video {video_id} is already published")
            if record and record.status == RecordStatus.ATTEMPTING:
                raise AmbiguousAttempt(
                    f"Video {video_id} has an unfinished attempt from a prior run"
                )

            if record is None:
                conn.execute(
                    """INSERT INTO videos
                       (video_id, first_seen_at, status, attempt_count, updated_at)
                       VALUES (?, ?, ?, 1, ?)""",
                    (video_id, now, RecordStatus.ATTEMPTING, now),
                )
                attempt_no = 1
            else:
                conn.execute(
                    """UPDATE videos
                       SET status = ?, attempt_count = attempt_count + 1, updated_at = ?
                       WHERE video_id = ?""",
                    (RecordStatus.ATTEMPTING, now, video_id),
                )
                attempt_no = record.attempt_count + 1

            cur = conn.execute(
                "INSERT INTO attempts (video_id, attempt_no, started_at) VALUES (?, ?, ?)",
                (video_id, attempt_no, now),
            )
            token = AttemptToken(video_id=video_id, attempt_id=cur.lastrowid,
                                 attempt_no=attempt_no)

        logger.info("Attempt %d started for video %s", attempt_no, video_id)
        return token

    def record_outcome(self, token: AttemptToken, outcome: Outcome):
        """
        Terminal write for an attempt. Repeating the stored outcome is a
        no-op; a different terminal outcome raises ConflictingOutcome.
        """
        if outcome.status not in TERMINAL_STATUSES:
            raise ValueError(f"Not a terminal outcome: {outcome.status}")

        conn = self._require_open()
        row = conn.execute(
            "SELECT * FROM attempts WHERE id = ?", (token.attempt_id,)
        ).fetchone()
        if row is None or row["video_id"] != token.video_id:
            raise LedgerConflict(f"Unknown attempt token {token}")

        attempt = self._row_to_attempt(row)
        if attempt.outcome is not None:
            if attempt.outcome == outcome.status:
                logger.debug("Outcome %s already recorded for %s", outcome.status, token)
                return
            raise ConflictingOutcome(
                f"Attempt {token.attempt_id} for {token.video_id} already recorded "
                f"{attempt.outcome}, refusing {outcome.status}"
            )

        latest = self._latest_attempt(token.video_id)
        record = self.get_record(token.video_id)
        if latest is None or latest.id != token.attempt_id:
            raise LedgerConflict(f"Stale attempt token {token}")
        if record is None or record.status != RecordStatus.ATTEMPTING:
            raise LedgerConflict(
                f"Video {token.video_id} is {record.status if record else 'missing'}, "
                f"expected {RecordStatus.ATTEMPTING}"
            )

        now = self._now()
        error = outcome.reason[:2000] if outcome.reason else None
        with conn:
            conn.execute(
                "UPDATE attempts SET finished_at = ?, outcome = ?, error = ? WHERE id = ?",
                (now, outcome.status, error, token.attempt_id),
            )
            if outcome.status == RecordStatus.PUBLISHED:
                conn.execute(
                    """UPDATE videos
                       SET status = ?, last_error = NULL, updated_at = ?, published_at = ?
                       WHERE video_id = ?""",
                    (outcome.status, now, now, token.video_id),
                )
            else:
                conn.execute(
                    "UPDATE videos SET status = ?, last_error = ?, updated_at = ? WHERE video_id = ?",
                    (outcome.status, error, now, token.video_id),
                )
        logger.info("Video %s attempt %d recorded as %s",
                    token.video_id, token.attempt_no, outcome.status)

    def resolve_ambiguous(self, video_id: str, outcome: Outcome):
        """Operator reconciliation of a record a prior run left ATTEMPTING."""
        self._require_open()
        record = self.get_record(video_id)
        if record is None or record.status != RecordStatus.ATTEMPTING:
            raise LedgerError(f"Video {video_id} has no unfinished attempt to resolve")
        latest = self._latest_attempt(video_id)
        if latest is None:
            raise LedgerConflict(f"Video {video_id} is ATTEMPTING without an attempt row")
        token = AttemptToken(video_id=video_id, attempt_id=latest.id,
                             attempt_no=latest.attempt_no)
        self.record_outcome(token, outcome)
