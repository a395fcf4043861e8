"""
Session guard: owns one browser-automation session from open to teardown.

The upload walks an explicit state table. Every exit path, including
errors, deadline expiry and interpreter shutdown, passes through teardown,
and CLOSED is entered exactly once.
"""

import enum
import random
import time
import logging
from dataclasses import dataclass, field

from epistles.core.constants import MAX_SESSION_RETRIES, Stage
from epistles.core.error_codes import (
    CaptchaDetected, DriverError, LoginFailed, UnexpectedUiState, UploadTimeout,
)
from epistles.core.models_sqlite import EpisodeDraft

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    INIT = "INIT"
    LOGGED_IN = "LOGGED_IN"
    DRAFT_CREATED = "DRAFT_CREATED"
    METADATA_FILLED = "METADATA_FILLED"
    AUDIO_UPLOADED = "AUDIO_UPLOADED"
    THUMBNAIL_UPLOADED = "THUMBNAIL_UPLOADED"
    SAVED = "SAVED"
    CLOSED = "CLOSED"


# state -> (step method, state entered when the step succeeds)
TRANSITIONS = {
    SessionState.INIT: ("login", SessionState.LOGGED_IN),
    SessionState.LOGGED_IN: ("create_draft", SessionState.DRAFT_CREATED),
    SessionState.DRAFT_CREATED: ("fill_metadata", SessionState.METADATA_FILLED),
    SessionState.METADATA_FILLED: ("upload_audio", SessionState.AUDIO_UPLOADED),
    SessionState.AUDIO_UPLOADED: ("upload_thumbnail", SessionState.THUMBNAIL_UPLOADED),
    SessionState.THUMBNAIL_UPLOADED: ("save", SessionState.SAVED),
}
# used instead of the AUDIO_UPLOADED row when the draft has no thumbnail
NO_THUMBNAIL_TRANSITION = ("save", SessionState.SAVED)

# step -> error types that earn a retry; save is never repeated
RETRYABLE_FAILURES = {
    "login": (LoginFailed, DriverError),
    "create_draft": (DriverError,),
    "fill_metadata": (DriverError,),
    "upload_audio": (UploadTimeout, DriverError),
    "upload_thumbnail": (UploadTimeout, DriverError),
    "save": (),
}
NEVER_RETRIED = (CaptchaDetected, UnexpectedUiState)

_LEGAL_NEXT = {state: {nxt} for state, (_, nxt) in TRANSITIONS.items()}
_LEGAL_NEXT[SessionState.AUDIO_UPLOADED].add(NO_THUMBNAIL_TRANSITION[1])


@dataclass
class SessionReport:
    states: list = field(default_factory=list)
    retries_used: int = 0

    @property
    def saved(self) -> bool:
        return SessionState.SAVED in self.states


class SessionGuard:
    """
    Usage:
        guard = SessionGuard(session_factory, steps_factory, ...)
        report = guard.run(draft)

    session_factory() returns an object with close(); steps_factory(session,
    pause) returns an object with one method per step name in TRANSITIONS.
    """

    def __init__(self, session_factory, steps_factory,
                 delay_bounds_ms: tuple[int, int] = (400, 1500),
                 max_retries: int = MAX_SESSION_RETRIES,
                 retry_backoff_sec: float = 5.0,
                 deadline=None, sleep=time.sleep, rng=None):
        self.session_factory = session_factory
        self.steps_factory = steps_factory
        self.delay_min_ms, self.delay_max_ms = delay_bounds_ms
        self.max_retries = max_retries
        self.retry_backoff_sec = retry_backoff_sec
        self.deadline = deadline
        self._sleep = sleep
        self._rng = rng or random.Random()

        self.session = None
        self.state = SessionState.INIT
        self.history = [SessionState.INIT]
        self.retries_remaining = max_retries

    # ── Lifecycle ─────────────────────────────────────────────────────

    def __enter__(self) -> "SessionGuard":
        if self.state != SessionState.INIT or self.session is not None:
            raise RuntimeError("SessionGuard is single-use")
        try:
            self.session = self.session_factory()
        except BaseException:
            self._enter(SessionState.CLOSED)
            raise
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc is not None:
            logger.warning("Upload session aborted in state %s: %s", self.state.value, exc)
        self.teardown()
        return False

    def teardown(self):
        """Release the browser session. Errors are logged, never raised."""
        if self.state == SessionState.CLOSED:
            return
        try:
            if self.session is not None:
                self.session.close()
        except Exception as e:
            logger.warning("Session teardown failed: %s", e)
        finally:
            self._enter(SessionState.CLOSED)

    # ── State machine ─────────────────────────────────────────────────

    def _enter(self, new_state: SessionState):
        if new_state != SessionState.CLOSED and new_state not in _LEGAL_NEXT.get(self.state, ()):
            raise RuntimeError(f"Illegal session transition {self.state.value} -> {new_state.value}")
        logger.debug("Session state %s -> %s", self.state.value, new_state.value)
        self.state = new_state
        self.history.append(new_state)

    def next_transition(self, draft: EpisodeDraft) -> tuple[str, SessionState]:
        if self.state == SessionState.AUDIO_UPLOADED and draft.thumbnail_path is None:
            return NO_THUMBNAIL_TRANSITION
        return TRANSITIONS[self.state]

    def human_delay(self):
        """Sleep a random interval within the configured bounds."""
        seconds = self._rng.uniform(self.delay_min_ms, self.delay_max_ms) / 1000.0
        if self.deadline is not None:
            seconds = min(seconds, self.deadline.remaining())
        if seconds > 0:
            self._sleep(seconds)

    def _check_deadline(self):
        if self.deadline is not None:
            self.deadline.check(Stage.UPLOADING_EPISODE)

    def _run_step(self, steps, step_name: str, draft: EpisodeDraft):
        retryable = RETRYABLE_FAILURES[step_name]
        while True:
            try:
                getattr(steps, step_name)(draft)
                return
            except NEVER_RETRIED:
                raise
            except retryable as e:
                if self.retries_remaining <= 0:
                    raise
                self.retries_remaining -= 1
                logger.warning("Step %s failed (%s), retrying once", step_name, e.code)
                backoff = self.retry_backoff_sec
                if self.deadline is not None:
                    backoff = min(backoff, self.deadline.remaining())
                self._sleep(backoff)
                self._check_deadline()

    def run(self, draft: EpisodeDraft) -> SessionReport:
        with self:
            steps = self.steps_factory(self.session, self.human_delay)
            while self.state != SessionState.SAVED:
                self._check_deadline()
                step_name, next_state = self.next_transition(draft)
                logger.info("Upload step: %s", step_name)
                self._run_step(steps, step_name, draft)
                self._enter(next_state)
                if self.state != SessionState.SAVED:
                    self.human_delay()

        return SessionReport(states=list(self.history),
                             retries_used=self.max_retries - self.retries_remaining)
