"""
Browser driver shim: a chromedriver service plus a selenium session on it.
"""

import logging

from selenium import webdriver
from selenium.webdriver.chrome.service import Service as ChromeService
from selenium.common.exceptions import SessionNotCreatedException, WebDriverException

from epistles.core.constants import DEFAULT_USER_AGENT, LOG_DIR
from epistles.core.error_codes import DriverError

logger = logging.getLogger(__name__)


def chrome_options(headless: bool = True, user_agent: str = DEFAULT_USER_AGENT):
    options = webdriver.ChromeOptions()
    if headless:
        options.add_argument("--headless=new")
    options.add_argument(f"--user-agent={user_agent}")
    options.add_argument("--window-size=1366,900")
    options.add_argument("--disable-blink-features=AutomationControlled")
    options.add_argument("--no-sandbox")
    options.add_argument("--disable-dev-shm-usage")
    return options


def chrome_service(config) -> ChromeService:
    """chromedriver on the configured port, logging next to the app log."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    return ChromeService(
        executable_path=config.get('chromedriver_path'),
        port=config.get('chromedriver_port'),
        log_output=str(LOG_DIR / "chromedriver.log"),
    )


class BrowserSession:
    """A live webdriver plus the chromedriver service it talks to."""

    def __init__(self, driver, service: ChromeService):
        self.driver = driver
        self.service = service
        self._closed = False

    @classmethod
    def open(cls, config) -> "BrowserSession":
        service = chrome_service(config)
        try:
            driver = webdriver.Chrome(
                service=service,
                options=chrome_options(config.get('headless'), config.get('user_agent')),
            )
            driver.set_page_load_timeout(config.get('ui_action_timeout_sec'))
        except SessionNotCreatedException as e:
            cls._stop_service(service)
            raise DriverError(f"Browser/driver version mismatch: {e.msg}")
        except WebDriverException as e:
            cls._stop_service(service)
            raise DriverError(f"Could not open a browser session: {e.msg}")
        except BaseException:
            cls._stop_service(service)
            raise
        logger.info("Browser session opened (chromedriver on port %d)", service.port)
        return cls(driver, service)

    @staticmethod
    def _stop_service(service: ChromeService):
        try:
            service.stop()
        except Exception as e:
            logger.warning("chromedriver shutdown failed: %s", e)

    @property
    def closed(self) -> bool:
        process = getattr(self.service, "process", None)
        return self._closed and (process is None or process.poll() is not None)

    def close(self):
        """Quit the browser and stop chromedriver. Safe to call twice; never raises."""
        if self._closed:
            return
        self._closed = True
        try:
            self.driver.quit()
        except Exception as e:
            logger.warning("Browser quit failed: %s", e)
        self._stop_service(self.service)
        logger.info("Browser session closed")
