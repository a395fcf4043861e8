#!/usr/bin/env python3
"""
Unit tests for the Spotify for Podcasters wizard steps.
A fake webdriver stands in for the browser; waits resolve immediately.
"""

import sys
from datetime import datetime
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest
from unittest import mock

from selenium.common.exceptions import (
    NoSuchElementException, TimeoutException, WebDriverException,
)

from epistles.browser.podcasters_ui import PodcastersSteps, SELECTORS
from epistles.core.constants import PODCASTERS_WIZARD_URL
from epistles.core.models_sqlite import EpisodeDraft
from epistles.core.error_codes import (
    CaptchaDetected, DriverError, LoginFailed, UnexpectedUiState, UploadTimeout,
)

_NAMES = {locator: name for name, locator in SELECTORS.items()}
DASHBOARD_URL = "https://creators.spotify.com/pod/dashboard/home"


class InstantWait:
    """WebDriverWait that evaluates its condition once."""

    def __init__(self, driver, timeout, poll_frequency=0.5):
        self.driver = driver

    def until(self, condition):
        try:
            value = condition(self.driver)
        except NoSuchElementException:
            value = None
        if not value:
            raise TimeoutException("condition not met")
        return value


class FakeDriver:
    """Elements exist unless listed in `absent`; actions are recorded by selector name."""

    def __init__(self, absent=(), url=DASHBOARD_URL, frames=(), on_click=None):
        self.absent = set(absent)
        self.current_url = url
        self.frames = list(frames)
        self.on_click = on_click or {}
        self.actions = []
        self.scripts = []
        self.elements = {}

    def _element(self, name):
        if name not in self.elements:
            element = mock.Mock()
            element.is_displayed.return_value = True
            element.is_enabled.return_value = True

            def click(name=name):
                self.actions.append(("click", name))
                if name in self.on_click:
                    self.on_click[name](self)

            element.click.side_effect = click
            element.send_keys.side_effect = lambda *keys, name=name: self.actions.append(
                ("keys", name, keys))
            self.elements[name] = element
        return self.elements[name]

    def find_element(self, by, value):
        name = _NAMES.get((by, value))
        if name is None or name in self.absent:
            raise NoSuchElementException(value)
        return self._element(name)

    def find_elements(self, by, value):
        name = _NAMES.get((by, value))
        if name is None:
            return self.frames
        return [] if name in self.absent else [self._element(name)]

    def get(self, url):
        self.actions.append(("get", url))
        self.current_url = url

    def execute_script(self, script, *args):
        self.scripts.append((script, args))

    def clicked(self):
        return [a[1] for a in self.actions if a[0] == "click"]


def make_config(**overrides):
    values = {
        'ui_action_timeout_sec': 30,
        'upload_timeout_sec': 600,
        'save_as_draft': True,
    }
    values.update(overrides)
    return mock.Mock(get=mock.Mock(side_effect=lambda key, default=None: values.get(key, default)))


def make_draft(**kwargs):
    fields = dict(
        audio_path=Path("/tmp/episode.mp3"),
        title="Walking in Faith | Pastor John",
        description="Sunday sermon",
    )
    fields.update(kwargs)
    return EpisodeDraft(**fields)


class StepsTestCase(unittest.TestCase):

    def setUp(self):
        patcher = mock.patch("epistles.browser.podcasters_ui.WebDriverWait", InstantWait)
        patcher.start()
        self.addCleanup(patcher.stop)

    def make_steps(self, driver, **config):
        session = mock.Mock(driver=driver)
        return PodcastersSteps(session, ("pastor@example.org", "secret"), make_config(**config))


class TestLogin(StepsTestCase):

    def reach_dashboard(self, driver):
        driver.current_url = DASHBOARD_URL

    def test_login_reaches_dashboard(self):
        driver = FakeDriver(absent={'login_error', 'password_option'},
                            on_click={'login_submit': self.reach_dashboard})
        self.make_steps(driver).login(make_draft())

        self.assertEqual(driver.clicked(), [
            'login_link', 'continue_with_spotify', 'login_continue', 'login_submit',
        ])
        self.assertIn(("keys", "username", ("pastor@example.org",)), driver.actions)
        self.assertIn(("keys", "password", ("secret",)), driver.actions)

    def test_rejected_credentials(self):
        driver = FakeDriver(absent={'password_option'})
        with self.assertRaises(LoginFailed):
            self.make_steps(driver).login(make_draft())

    def test_captcha_frame_on_missing_control(self):
        driver = FakeDriver(absent={'login_link'}, frames=[mock.Mock()])
        with self.assertRaises(CaptchaDetected):
            self.make_steps(driver).login(make_draft())

    def test_navigation_fault_is_driver_error(self):
        driver = FakeDriver()
        driver.get = mock.Mock(side_effect=WebDriverException("disconnected"))
        with self.assertRaises(DriverError):
            self.make_steps(driver).login(make_draft())


class TestWizardSteps(StepsTestCase):

    def test_create_draft_sends_audio_path(self):
        driver = FakeDriver(absent={'select_file'})
        self.make_steps(driver).create_draft(make_draft())
        self.assertEqual(driver.actions[0], ("get", PODCASTERS_WIZARD_URL))
        self.assertIn(("keys", "audio_input", (str(Path("/tmp/episode.mp3").resolve()),)),
                      driver.actions)

    def test_missing_control_is_unexpected_ui_state(self):
        driver = FakeDriver(absent={'select_file', 'audio_input'})
        with self.assertRaises(UnexpectedUiState):
            self.make_steps(driver).create_draft(make_draft())

    def test_challenge_url_is_captcha(self):
        driver = FakeDriver(absent={'title'}, url="https://accounts.spotify.com/challenge/x")
        with self.assertRaises(CaptchaDetected):
            self.make_steps(driver).fill_metadata(make_draft())

    def test_fill_metadata_flags(self):
        driver = FakeDriver()
        self.make_steps(driver).fill_metadata(make_draft(explicit=True))
        self.assertIn(("keys", "title", ("Walking in Faith | Pastor John",)), driver.actions)
        self.assertIn(("keys", "description", ("Sunday sermon",)), driver.actions)
        self.assertEqual(len(driver.scripts), 1)
        self.assertIs(driver.scripts[0][1][0], driver.elements['explicit_yes'])

    def test_click_fault_is_driver_error(self):
        driver = FakeDriver()
        driver._element('title').send_keys.side_effect = WebDriverException("stale element")
        with self.assertRaises(DriverError):
            self.make_steps(driver).fill_metadata(make_draft())

    def test_upload_timeout(self):
        driver = FakeDriver(absent={'upload_done'})
        with self.assertRaises(UploadTimeout):
            self.make_steps(driver).upload_audio(make_draft())

    def test_thumbnail_skipped_without_file(self):
        driver = FakeDriver()
        self.make_steps(driver).upload_thumbnail(make_draft())
        self.assertEqual(driver.actions, [])


class TestSave(StepsTestCase):

    def test_save_as_draft(self):
        driver = FakeDriver()
        self.make_steps(driver, save_as_draft=True).save(make_draft())
        self.assertEqual(driver.clicked(), ['close_wizard', 'save_draft'])

    def test_publish_now(self):
        driver = FakeDriver()
        self.make_steps(driver, save_as_draft=False).save(make_draft())
        self.assertEqual(driver.clicked(), ['details_next', 'publish_now', 'review_submit'])

    def test_schedule(self):
        driver = FakeDriver()
        draft = make_draft(publish_at=datetime(2026, 1, 11, 9, 30))
        self.make_steps(driver, save_as_draft=False).save(draft)

        self.assertEqual(driver.clicked(), ['details_next', 'publish_schedule', 'review_submit'])
        self.assertIn(("keys", "schedule_date", ("01/11/2026",)), driver.actions)
        self.assertIn(("keys", "schedule_time", ("09:30 AM",)), driver.actions)

    def test_wizard_still_open(self):
        driver = FakeDriver(url=PODCASTERS_WIZARD_URL)
        with self.assertRaises(UnexpectedUiState):
            self.make_steps(driver).save(make_draft())


if __name__ == "__main__":
    unittest.main()
