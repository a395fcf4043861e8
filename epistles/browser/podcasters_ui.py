"""
Spotify for Podcasters UI steps.

Each public method is one step of the episode wizard and takes the
EpisodeDraft. Steps raise UploadSessionError subclasses only; the session
guard decides whether a step is retried.
"""

import logging

from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.common.by import By
from selenium.webdriver.common.keys import Keys
from selenium.webdriver.support import expected_conditions as EC
from selenium.webdriver.support.ui import WebDriverWait

from epistles.core.constants import PODCASTERS_HOME_URL, PODCASTERS_WIZARD_URL, Stage
from epistles.core.error_codes import (
    CaptchaDetected, DriverError, LoginFailed, UnexpectedUiState, UploadTimeout,
)
from epistles.core.models_sqlite import EpisodeDraft

logger = logging.getLogger(__name__)

SELECTORS = {
    'login_link': (By.CSS_SELECTOR, "a[href='/pod/login']"),
    'continue_with_spotify': (By.XPATH, "//span[text()='Continue with Spotify']/ancestor::button"),
    'username': (By.CSS_SELECTOR, "input#login-username"),
    'login_continue': (By.CSS_SELECTOR, "button#login-button"),
    'password_option': (By.CSS_SELECTOR, "button[data-encore-id='buttonTertiary']"),
    'password': (By.CSS_SELECTOR, "input[data-testid='login-password']"),
    'login_submit': (By.XPATH, "//button[@id='login-button' or @data-testid='login-button']"),
    'login_error': (By.CSS_SELECTOR, "[data-encore-id='banner'], [data-testid='login-error']"),
    'select_file': (By.XPATH, "//span[text()='Select a file']/ancestor::button"),
    'audio_input': (By.CSS_SELECTOR, "input[type='file']"),
    'upload_done': (By.XPATH, "//*[contains(text(),'Preview ready') or contains(text(),'Upload complete')]"),
    'title': (By.CSS_SELECTOR, "input#title-input"),
    'description': (By.CSS_SELECTOR, "div[role='textbox'][data-slate-editor='true']"),
    'explicit_yes': (By.CSS_SELECTOR, "input[name='podcastEpisodeIsExplicit'][value='true']"),
    'sponsored_yes': (By.CSS_SELECTOR, "input[name='podcastEpisodeContainsSponsoredContent'][value='true']"),
    'thumbnail_input': (By.CSS_SELECTOR, "input[type='file'][accept*='image']"),
    'close_wizard': (By.CSS_SELECTOR, "button[aria-label='Close'][data-encore-id='buttonTertiary']"),
    'save_draft': (By.XPATH, "//span[text()='Save draft']/ancestor::button"),
    'details_next': (By.CSS_SELECTOR, "button[form='details-form'][type='submit']"),
    'publish_now': (By.CSS_SELECTOR, "input#publish-date-now"),
    'publish_schedule': (By.CSS_SELECTOR, "input#publish-date-schedule"),
    'schedule_date': (By.CSS_SELECTOR, "input#date-input"),
    'schedule_time': (By.CSS_SELECTOR, "input#time-input"),
    'review_submit': (By.CSS_SELECTOR, "button[form='review-form'][type='submit']"),
}

_CAPTCHA_FRAMES = "iframe[src*='recaptcha'], iframe[src*='hcaptcha'], iframe[title*='challenge']"
_CAPTCHA_URL_MARKERS = ("captcha", "challenge")


class PodcastersSteps:
    """Wizard steps against a live BrowserSession."""

    def __init__(self, session, credentials: tuple[str, str], config,
                 pause=None, deadline=None):
        self.session = session
        self.driver = session.driver
        self.email, self.password = credentials
        self.config = config
        self.pause = pause or (lambda: None)
        self.deadline = deadline

    # ── Helpers ───────────────────────────────────────────────────────

    def _timeout(self, seconds: float | None = None) -> float:
        seconds = seconds or self.config.get('ui_action_timeout_sec')
        if self.deadline is not None:
            return self.deadline.cap(seconds, Stage.UPLOADING_EPISODE)
        return seconds

    def check_captcha(self):
        try:
            url = (self.driver.current_url or "").lower()
            frames = self.driver.find_elements(By.CSS_SELECTOR, _CAPTCHA_FRAMES)
        except WebDriverException as e:
            raise DriverError(f"Webdriver failure during captcha check: {e.msg}")
        if frames or any(marker in url for marker in _CAPTCHA_URL_MARKERS):
            raise CaptchaDetected("Captcha challenge presented; manual login required")

    def _wait_for(self, name: str, clickable: bool = False, timeout: float | None = None):
        locator = SELECTORS[name]
        condition = (EC.element_to_be_clickable(locator) if clickable
                     else EC.presence_of_element_located(locator))
        seconds = self._timeout(timeout)
        try:
            return WebDriverWait(self.driver, seconds).until(condition)
        except TimeoutException:
            self.check_captcha()
            raise UnexpectedUiState(f"'{name}' not found within {seconds:.0f}s")
        except WebDriverException as e:
            raise DriverError(f"Webdriver failure waiting for '{name}': {e.msg}")

    def _find_optional(self, name: str):
        try:
            found = self.driver.find_elements(*SELECTORS[name])
        except WebDriverException as e:
            raise DriverError(f"Webdriver failure looking up '{name}': {e.msg}")
        return found[0] if found else None

    def _act(self, what: str, action):
        try:
            action()
        except WebDriverException as e:
            raise DriverError(f"Webdriver failure during {what}: {e.msg}")
        self.pause()

    def _click(self, name: str):
        element = self._wait_for(name, clickable=True)
        self._act(f"click '{name}'", element.click)

    def _type(self, name: str, text: str):
        element = self._wait_for(name, clickable=True)
        self._act(f"typing into '{name}'", lambda: element.send_keys(text))

    def _goto(self, url: str):
        self._act(f"navigation to {url}", lambda: self.driver.get(url))

    # ── Steps ─────────────────────────────────────────────────────────

    def login(self, draft: EpisodeDraft):
        self._goto(PODCASTERS_HOME_URL)
        self._click('login_link')
        self._click('continue_with_spotify')
        self._type('username', self.email)
        self._click('login_continue')

        option = self._find_optional('password_option')
        if option is not None:
            self._act("choosing password login", option.click)

        self._type('password', self.password)
        self._click('login_submit')

        seconds = self._timeout()
        try:
            WebDriverWait(self.driver, seconds).until(
                lambda d: "/pod/dashboard" in (d.current_url or "")
                or d.find_elements(*SELECTORS['login_error'])
            )
        except TimeoutException:
            self.check_captcha()
            raise LoginFailed(f"Dashboard not reached within {seconds:.0f}s of login")
        except WebDriverException as e:
            raise DriverError(f"Webdriver failure after login: {e.msg}")

        self.check_captcha()
        if self._find_optional('login_error') is not None:
            raise LoginFailed("Login rejected by Spotify")
        logger.info("Spotify login successful")

    def create_draft(self, draft: EpisodeDraft):
        """Open the episode wizard and hand it the audio file; the upload runs in the background."""
        self._goto(PODCASTERS_WIZARD_URL)
        select = self._find_optional('select_file')
        if select is not None:
            self._act("opening the file picker", select.click)
        file_input = self._wait_for('audio_input')
        self._act("selecting the audio file",
                  lambda: file_input.send_keys(str(draft.audio_path.resolve())))
        logger.info("Draft started with %s", draft.audio_path.name)

    def fill_metadata(self, draft: EpisodeDraft):
        title = self._wait_for('title', clickable=True)
        self._act("clearing the title", lambda: title.send_keys(Keys.CONTROL + "a", Keys.BACKSPACE))
        self._act("typing the title", lambda: title.send_keys(draft.title))

        editor = self._wait_for('description', clickable=True)
        self._act("focusing the description", editor.click)
        self._act("clearing the description",
                  lambda: editor.send_keys(Keys.CONTROL + "a", Keys.BACKSPACE))
        self._act("typing the description", lambda: editor.send_keys(draft.description))

        if draft.explicit:
            self._click_radio('explicit_yes')
        if draft.sponsored:
            self._click_radio('sponsored_yes')
        logger.debug("Metadata entered")

    def _click_radio(self, name: str):
        radio = self._wait_for(name)
        # radio inputs are visually hidden behind their labels
        self._act(f"selecting '{name}'",
                  lambda: self.driver.execute_script("arguments[0].click();", radio))

    def upload_audio(self, draft: EpisodeDraft):
        """Wait for the wizard to report the audio upload as processed."""
        seconds = self._timeout(self.config.get('upload_timeout_sec'))
        try:
            WebDriverWait(self.driver, seconds, poll_frequency=2).until(
                EC.presence_of_element_located(SELECTORS['upload_done'])
            )
        except TimeoutException:
            self.check_captcha()
            raise UploadTimeout(f"Audio upload not finished after {seconds:.0f}s")
        except WebDriverException as e:
            raise DriverError(f"Webdriver failure during audio upload: {e.msg}")
        logger.info("Audio uploaded")

    def upload_thumbnail(self, draft: EpisodeDraft):
        if draft.thumbnail_path is None:
            return
        file_input = self._wait_for('thumbnail_input')
        self._act("selecting the thumbnail",
                  lambda: file_input.send_keys(str(draft.thumbnail_path.resolve())))
        logger.info("Thumbnail attached: %s", draft.thumbnail_path.name)

    def save(self, draft: EpisodeDraft):
        if self.config.get('save_as_draft'):
            self._click('close_wizard')
            self._click('save_draft')
        else:
            self._click('details_next')
            if draft.publish_at is not None:
                self._click('publish_schedule')
                self._type('schedule_date', draft.publish_at.strftime("%m/%d/%Y"))
                self._type('schedule_time', draft.publish_at.strftime("%I:%M %p"))
            else:
                self._click('publish_now')
            self._click('review_submit')

        seconds = self._timeout()
        try:
            WebDriverWait(self.driver, seconds).until(
                lambda d: "/episode/wizard" not in (d.current_url or "")
            )
        except TimeoutException:
            self.check_captcha()
            raise UnexpectedUiState(f"Wizard still open {seconds:.0f}s after saving")
        except WebDriverException as e:
            raise DriverError(f"Webdriver failure after saving: {e.msg}")

        if self.config.get('save_as_draft'):
            logger.info("Episode saved as draft")
        elif draft.publish_at is not None:
            logger.info("Episode scheduled for %s", draft.publish_at.isoformat())
        else:
            logger.info("Episode published")
