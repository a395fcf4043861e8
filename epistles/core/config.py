"""
Application configuration manager.
Stores settings in a JSON file under the application home; a few keys can be
overridden from the environment for scheduled/containerised runs.
"""

import json
import os
import logging
from pathlib import Path

from epistles.core.constants import (
    CONFIG_PATH, DB_PATH, WORKSPACE_DIR, ChapterPolicy,
    AUDIO_FORMAT, AUDIO_BITRATE, TRIM_TOLERANCE_SEC,
    DEFAULT_EPISODE_DESCRIPTION, DEFAULT_USER_AGENT, CHROMEDRIVER_PORT,
    TITLE_MAX_SEGMENTS,
)
from epistles.core.error_codes import ConfigError
from epistles.core.chapters import POLICIES

logger = logging.getLogger(__name__)

_DEFAULTS = {
    'playlist_id': "",
    'db_path': str(DB_PATH),
    'workspace_dir': str(WORKSPACE_DIR),
    'chapter_not_found_policy': ChapterPolicy.ABORT,
    'chapter_selection_policy': "longest_span",
    'retain_intermediate_files': False,
    'fetch_timeout_sec': 30,
    'download_timeout_sec': 1800,
    'transcode_timeout_sec': 900,
    'ui_action_timeout_sec': 30,
    'upload_timeout_sec': 600,
    'run_deadline_sec': 3600,
    'ui_delay_min_ms': 400,
    'ui_delay_max_ms': 1500,
    'save_as_draft': True,
    'publish_delay_hours': 0,
    'attach_thumbnail': True,
    'is_explicit': False,
    'is_sponsored': False,
    'episode_description': DEFAULT_EPISODE_DESCRIPTION,
    'url_in_description': True,
    'fetch_max_attempts': 3,
    'fetch_backoff_sec': 5.0,
    'session_retry_backoff_sec': 5.0,
    'trim_tolerance_sec': TRIM_TOLERANCE_SEC,
    'audio_format': AUDIO_FORMAT,
    'audio_bitrate': AUDIO_BITRATE,
    'chromedriver_path': "chromedriver",
    'chromedriver_port': CHROMEDRIVER_PORT,
    'headless': True,
    'user_agent': DEFAULT_USER_AGENT,
    'title_max_segments': TITLE_MAX_SEGMENTS,
}

# key -> (min, max) for numeric settings
_INT_BOUNDS = {
    'fetch_timeout_sec': (1, 600),
    'download_timeout_sec': (30, 4 * 3600),
    'transcode_timeout_sec': (30, 4 * 3600),
    'ui_action_timeout_sec': (1, 600),
    'upload_timeout_sec': (30, 3 * 3600),
    'run_deadline_sec': (60, 12 * 3600),
    'ui_delay_min_ms': (0, 60000),
    'ui_delay_max_ms': (0, 60000),
    'fetch_max_attempts': (1, 10),
    'chromedriver_port': (1024, 65535),
    'title_max_segments': (1, 10),
    'publish_delay_hours': (0, 24 * 30),
}
_FLOAT_BOUNDS = {
    'fetch_backoff_sec': (0.0, 300.0),
    'session_retry_backoff_sec': (0.0, 300.0),
    'trim_tolerance_sec': (0.1, 30.0),
}
_BOOL_KEYS = {
    'retain_intermediate_files', 'save_as_draft', 'attach_thumbnail',
    'is_explicit', 'is_sponsored', 'url_in_description', 'headless',
}

# environment variable -> config key
_ENV_OVERRIDES = {
    'SERMON_PLAYLIST_ID': 'playlist_id',
    'EPISTLES_DB_PATH': 'db_path',
    'EPISTLES_WORKSPACE': 'workspace_dir',
    'EPISTLES_HEADLESS': 'headless',
}

_TRUTHY = {"1", "true", "yes", "on"}


class AppConfig:
    """Manages application configuration stored as JSON."""

    def __init__(self, config_path: Path | None = None, environ: dict | None = None):
        self.path = Path(config_path or CONFIG_PATH)
        self._environ = os.environ if environ is None else environ
        self._data: dict = {}
        self._overrides: dict = {}
        self.load()

    def load(self):
        """Load config from disk, merging with defaults, then apply env overrides."""
        self._data = dict(_DEFAULTS)
        if self.path.exists():
            try:
                with open(self.path, 'r') as f:
                    saved = json.load(f)
                if not isinstance(saved, dict):
                    raise ValueError("top-level JSON value must be an object")
                for key, value in saved.items():
                    if key not in _DEFAULTS:
                        logger.warning("Ignoring unknown config key %r", key)
                        continue
                    self._data[key] = self._validate(key, value)
            except (OSError, ValueError) as e:
                logger.warning("Failed to load config: %s", e)

        self._overrides = {}
        for env_name, key in _ENV_OVERRIDES.items():
            raw = self._environ.get(env_name)
            if raw:
                self._overrides[key] = self._validate(key, raw)
                logger.debug("Config %s overridden from %s", key, env_name)

    def save(self):
        """Persist config to disk (environment overrides are not written)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(self._data, f, indent=2)

    def get(self, key: str, default=None):
        if key in self._overrides:
            return self._overrides[key]
        return self._data.get(key, default)

    def set(self, key: str, value):
        value = self._validate(key, value)
        self._data[key] = value
        self.save()

    def _validate(self, key: str, value):
        """Validate and coerce config values to safe ranges."""
        if key in _INT_BOUNDS:
            lo, hi = _INT_BOUNDS[key]
            try:
                value = int(value)
            except (TypeError, ValueError):
                logger.warning("Invalid %s %r, using default", key, value)
                return _DEFAULTS[key]
            return max(lo, min(hi, value))

        if key in _FLOAT_BOUNDS:
            lo, hi = _FLOAT_BOUNDS[key]
            try:
                value = float(value)
            except (TypeError, ValueError):
                logger.warning("Invalid %s %r, using default", key, value)
                return _DEFAULTS[key]
            return max(lo, min(hi, value))

        if key in _BOOL_KEYS:
            if isinstance(value, str):
                return value.strip().lower() in _TRUTHY
            return bool(value)

        if key == 'chapter_not_found_policy':
            if value not in (ChapterPolicy.ABORT, ChapterPolicy.FULL_DURATION):
                logger.warning("Invalid chapter_not_found_policy %r, using abort", value)
                return ChapterPolicy.ABORT

        if key == 'chapter_selection_policy':
            if not isinstance(value, str) or value not in POLICIES:
                logger.warning("Invalid chapter_selection_policy %r, using longest_span", value)
                return "longest_span"

        if key in ('playlist_id', 'episode_description', 'audio_bitrate', 'user_agent'):
            return "" if value is None else str(value).strip()

        return value

    def validate(self, require_credentials: bool = True):
        """Raise ConfigError if the run cannot start with this configuration."""
        if not self.playlist_id:
            raise ConfigError("No playlist configured (set playlist_id or SERMON_PLAYLIST_ID)")
        if self.get('ui_delay_min_ms') > self.get('ui_delay_max_ms'):
            raise ConfigError("ui_delay_min_ms must not exceed ui_delay_max_ms")
        if require_credentials and not all(self.credentials):
            raise ConfigError("SPOTIFY_EMAIL and SPOTIFY_PASSWORD must be set")

    @property
    def playlist_id(self) -> str:
        return self.get('playlist_id', "")

    @property
    def db_path(self) -> Path:
        return Path(self.get('db_path')).expanduser()

    @property
    def workspace_dir(self) -> Path:
        return Path(self.get('workspace_dir')).expanduser()

    @property
    def chapter_policy(self):
        """Selection function for chapter candidates."""
        return POLICIES[self.get('chapter_selection_policy')]

    @property
    def retain_intermediate_files(self) -> bool:
        return self.get('retain_intermediate_files', False)

    @retain_intermediate_files.setter
    def retain_intermediate_files(self, value: bool):
        self.set('retain_intermediate_files', value)

    @property
    def credentials(self) -> tuple[str, str]:
        """(email, password) from the environment. Never persisted or logged."""
        return (
            self._environ.get('SPOTIFY_EMAIL', ""),
            self._environ.get('SPOTIFY_PASSWORD', ""),
        )
