"""Presence scraper for the 3CX web client, driven by Playwright."""

import asyncio
import logging
import re
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .cookie_store import CookieStore
from .extraction import detect_status, parse_call_stats, parse_roster
from .inspector import NAVIGATION_KEYWORDS, PageInspector, ThreeCXInspector
from .models import AgentEntry, CallStats, PageProbe, Snapshot, StatsSource, Status, StatusResult, Trigger
from .screenshots import ScreenshotPolicy

logger = logging.getLogger(__name__)

# Routes only reachable after login
LOGGED_IN_URL_PATTERN = re.compile(r"#/(switchboard|dashboard|people|calls|chat|office|contacts)", re.IGNORECASE)

LOGIN_TIMEOUT = 10 * 60
LOGIN_POLL_INTERVAL = 5
LOGIN_CHECK_TIMEOUT = 15
STATUS_VIEW_TIMEOUT = 5.0
PAGE_LOAD_TIMEOUT = 60000


class ScraperState(str, Enum):
    """Lifecycle of one scraper session."""

    UNINITIALIZED = "uninitialized"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    NAVIGATING = "navigating"
    MONITORING = "monitoring"
    CLOSED = "closed"


def is_logged_in(probe: PageProbe) -> bool:
    """Post-login URL, DOM markers or an auth token key, and no login form."""
    if probe.login_form:
        return False
    return bool(LOGGED_IN_URL_PATTERN.search(probe.url) or probe.logged_in_markers or probe.auth_token_key)


class PresenceScraper:
    """
    Drives a browser session against the 3CX web client and extracts the
    user's status, queue statistics and the agent roster.
    """

    def __init__(
        self,
        url: str,
        headless: bool = False,
        cookie_store: Optional[CookieStore] = None,
        screenshots: Optional[ScreenshotPolicy] = None,
        inspector_factory: Callable[[Page], PageInspector] = ThreeCXInspector,
        login_timeout: float = LOGIN_TIMEOUT,
        login_poll_interval: float = LOGIN_POLL_INTERVAL,
        status_view_timeout: float = STATUS_VIEW_TIMEOUT,
    ):
        """
        Initialize presence scraper.

        Args:
            url: 3CX web client URL.
            headless: Preferred browser mode once a stored session exists.
            cookie_store: Where the browser session (cookies, localStorage) is persisted.
            screenshots: Screenshot throttling policy.
            inspector_factory: Builds the PageInspector for a page.
            login_timeout: Ceiling for the manual login wait, in seconds.
            login_poll_interval: Seconds between login checks.
            status_view_timeout: Seconds to wait for the status view to render.
        """
        self.url = url
        self.headless = headless
        self.cookie_store = cookie_store or CookieStore("cookies.json")
        self.screenshots = screenshots or ScreenshotPolicy()
        self.inspector_factory = inspector_factory
        self.login_timeout = login_timeout
        self.login_poll_interval = login_poll_interval
        self.status_view_timeout = status_view_timeout

        self.state = ScraperState.UNINITIALIZED
        self.authenticated = False
        self.last_error: Optional[str] = None
        self.on_change: Optional[Callable[[str], Any]] = None

        self._playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self.inspector: Optional[PageInspector] = None
        self.running_headless = headless

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> bool:
        """
        Launch the browser, authenticate and navigate to the switchboard.

        Returns:
            bool: True when monitoring can start, False on failure or login timeout.
        """
        try:
            logger.info("Initializing 3CX web client...")
            session = self.cookie_store.load()
            # Manual login needs a visible window
            headless = self.headless if session else False

            await self._launch(headless, session)
            await self._open_target()

            if await self._login_required():
                self.state = ScraperState.AUTHENTICATING
                self.authenticated = False

                if self.running_headless:
                    logger.warning("Login required but browser is headless, relaunching in visible mode")
                    await self._close_browser()
                    await self._launch(False, None)
                    await self._open_target()

                logger.warning(
                    "LOGIN REQUIRED: please log in manually in the browser window. "
                    f"Waiting up to {int(self.login_timeout / 60)} minutes."
                )
                if not await self.wait_for_login():
                    self.last_error = "login timeout"
                    await self._close_browser()
                    self.state = ScraperState.UNINITIALIZED
                    return False
                await self._save_session()

            self.state = ScraperState.AUTHENTICATED
            self.authenticated = True
            self.last_error = None

            self.state = ScraperState.NAVIGATING
            if not await self.navigate_to_status_view():
                logger.warning("Failed to navigate to switchboard")

            await self.ensure_observer()
            self.state = ScraperState.MONITORING
            logger.info("3CX web client initialized")
            return True

        except Exception as e:
            self.last_error = str(e)
            logger.error(f"Error initializing 3CX web client: {e}")
            try:
                await self._close_browser()
            except Exception as close_error:
                logger.error(f"Error closing browser after failed initialization: {close_error}")
            self.state = ScraperState.UNINITIALIZED
            self.authenticated = False
            return False

    async def _launch(self, headless: bool, session: Optional[Dict[str, Any]]) -> None:
        if self._playwright is None:
            self._playwright = await async_playwright().start()

        logger.info(f"Launching browser in {'headless' if headless else 'visible'} mode")
        self.browser = await self._playwright.chromium.launch(
            headless=headless,
            args=["--no-sandbox", "--disable-setuid-sandbox"],
        )
        context_kwargs: Dict[str, Any] = {"viewport": {"width": 1280, "height": 800}}
        if session:
            context_kwargs["storage_state"] = session
            logger.info(f"Restoring stored session ({len(session.get('cookies', []))} cookies)")
        self.context = await self.browser.new_context(**context_kwargs)
        self.page = await self.context.new_page()
        self.inspector = self.inspector_factory(self.page)
        self.running_headless = headless

    async def _open_target(self) -> None:
        logger.info(f"Navigating to {self.url}")
        await self.page.goto(self.url, wait_until="domcontentloaded", timeout=PAGE_LOAD_TIMEOUT)
        try:
            await self.page.wait_for_load_state("networkidle", timeout=15000)
        except PlaywrightTimeoutError:
            logger.debug("Network did not go idle, continuing")

    async def _login_required(self) -> bool:
        """
        Check for a login form or for missing post-login markers.

        Gives the SPA a bounded time to render before deciding.
        """
        await self.take_screenshot("login-check", force=True)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + LOGIN_CHECK_TIMEOUT
        while True:
            try:
                probe = await self.inspector.probe()
            except Exception as e:
                logger.error(f"Error checking if login is required: {e}")
                return True

            if probe.login_form:
                logger.info("Login form detected")
                return True
            if is_logged_in(probe):
                logger.info("Existing session is valid")
                return False
            if loop.time() >= deadline:
                logger.info("No logged-in markers found")
                return True
            await asyncio.sleep(1)

    async def wait_for_login(self) -> bool:
        """
        Poll the page until the user has finished logging in.

        Returns:
            bool: True on success, False once the ceiling is reached.
        """
        logger.info("Waiting for login...")
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.login_timeout

        while loop.time() < deadline:
            try:
                probe = await self.inspector.probe()
                if is_logged_in(probe):
                    logger.info("LOGIN SUCCESSFUL")
                    return True
                if probe.login_form:
                    logger.info("Still on login page. Please complete the login form.")
                else:
                    logger.info(f"Waiting for session to initialize (url: {probe.url})")
            except Exception as e:
                # Page may be mid-redirect (SSO provider)
                logger.error(f"Error during login check: {e}")

            await asyncio.sleep(self.login_poll_interval)

        logger.error(f"LOGIN TIMEOUT: no login detected within {int(self.login_timeout)} seconds")
        return False

    async def _save_session(self) -> None:
        try:
            # Cookies plus localStorage, which holds the web client's auth token
            self.cookie_store.save(await self.context.storage_state())
        except Exception as e:
            logger.error(f"Error saving session: {e}")

    async def reauthenticate(self) -> bool:
        """Recover from a lost session by running the manual login flow again."""
        if self.page is None or self.page.is_closed():
            return await self.initialize()

        self.state = ScraperState.AUTHENTICATING
        self.authenticated = False
        try:
            if self.running_headless:
                await self._close_browser()
                await self._launch(False, None)
                await self._open_target()

            if not await self.wait_for_login():
                self.last_error = "login timeout"
                return False

            await self._save_session()
            self.authenticated = True
            self.state = ScraperState.NAVIGATING
            await self.navigate_to_status_view()
            await self.ensure_observer()
            self.state = ScraperState.MONITORING
            return True
        except Exception as e:
            self.last_error = str(e)
            logger.error(f"Error re-authenticating: {e}")
            return False

    async def reset_authentication(self) -> bool:
        """Drop the stored session and start over with a manual login."""
        logger.info("Resetting 3CX authentication...")
        await self.close()
        self.cookie_store.backup("backup")
        self.screenshots.reset()
        return await self.initialize()

    async def _close_browser(self) -> None:
        if self.browser is not None:
            try:
                await self.browser.close()
            finally:
                self.browser = None
                self.context = None
                self.page = None
                self.inspector = None

    async def close(self) -> None:
        """Close the browser session."""
        try:
            if self.inspector is not None and self.page is not None and not self.page.is_closed():
                await self.inspector.remove_change_observer()
        except Exception as e:
            logger.debug(f"Error disconnecting mutation observer: {e}")

        try:
            if self.browser is not None:
                logger.info("Closing browser...")
                await self._close_browser()
                logger.info("Browser closed successfully")
        finally:
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
            self.state = ScraperState.CLOSED
            self.authenticated = False

    def _page_ready(self) -> bool:
        return self.inspector is not None and (self.page is None or not self.page.is_closed())

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    async def navigate_to_status_view(self) -> bool:
        """
        Make sure the switchboard view is showing.

        Best effort: a failure is logged and reported as False, never raised.
        """
        if not self._page_ready():
            logger.warning("Browser or page not available for navigation to switchboard")
            return False

        try:
            if await self.inspector.wait_for_status_view(self.status_view_timeout):
                logger.debug("Already on switchboard page")
                return True

            logger.info("Attempting to navigate to switchboard...")
            strategy = await self.inspector.click_navigation(NAVIGATION_KEYWORDS)
            if not strategy:
                logger.warning("No switchboard navigation element found")
                return False

            logger.info(f"Clicked switchboard navigation ({strategy})")
            await self.take_screenshot("post-click-navigation", force=True)

            if await self.inspector.wait_for_status_view(self.status_view_timeout):
                logger.info("Successfully navigated to switchboard")
                return True

            probe = await self.inspector.probe()
            if any(keyword in probe.url.lower() for keyword in NAVIGATION_KEYWORDS):
                logger.info("Navigated to switchboard (URL match)")
                return True
            return False

        except Exception as e:
            logger.error(f"Error navigating to switchboard: {e}")
            return False

    # ------------------------------------------------------------------
    # Extraction queries
    # ------------------------------------------------------------------

    async def get_status(self) -> StatusResult:
        """
        Read the current user's status.

        Returns:
            StatusResult; "available" with source "default" when nothing matched
            and with source "error" when the page could not be read.
        """
        if not self._page_ready():
            logger.warning("Browser or page not initialized, returning default status")
            return StatusResult(status=Status.AVAILABLE, source="default")

        try:
            await self.take_screenshot("status-detection")
            signals = await self.inspector.read_status_signals()
            return detect_status(signals)
        except Exception as e:
            logger.error(f"Error detecting status: {e}")
            return StatusResult(status=Status.AVAILABLE, source="error")

    async def fetch_call_stats(self) -> Optional[CallStats]:
        """
        Read queue statistics from the switchboard.

        Returns:
            CallStats (zeroed, source "default", when the table is absent), or
            None when extraction failed unexpectedly.
        """
        if not self._page_ready():
            logger.warning("Browser or page not initialized, returning default call stats")
            return CallStats.zeroed()

        try:
            table = await self.inspector.read_queue_stat_table()
            return parse_call_stats(table)
        except Exception as e:
            logger.error(f"Error extracting call statistics: {e}")
            await self.take_screenshot("call-stats-error")
            return None

    async def fetch_all_agent_statuses(self) -> Optional[List[AgentEntry]]:
        """
        Read the all-agents roster.

        Returns:
            None when the roster container is absent (or reading failed),
            otherwise the list of agents, possibly empty.
        """
        if not self._page_ready():
            logger.warning("Browser or page not available for fetching agent statuses")
            return None

        try:
            items = await self.inspector.read_roster_items()
            if items is None:
                logger.warning("Could not find agent container to extract statuses")
                return None
            return parse_roster(items)
        except Exception as e:
            logger.error(f"Error fetching all agent statuses: {e}")
            await self.take_screenshot("all-agents-status-error")
            return None

    async def collect_snapshot(self, trigger: Trigger = Trigger.INTERVAL) -> Snapshot:
        """
        Run navigation and all three extraction queries as one snapshot.

        Session failures never raise; they produce an error-tagged snapshot.
        """
        if not self._page_ready() or self.state == ScraperState.CLOSED:
            return self._error_snapshot(trigger, "browser not initialized")

        try:
            probe = await self.inspector.probe()
            if probe.login_form:
                logger.warning("Login form detected during monitoring, session lost")
                self.state = ScraperState.AUTHENTICATING
                self.authenticated = False
                snapshot = self._error_snapshot(trigger, "session expired")
                snapshot.auth_required = True
                return snapshot

            await self.navigate_to_status_view()

            status = await self.get_status()
            call_stats = await self.fetch_call_stats()
            if call_stats is None:
                call_stats = CallStats.zeroed(StatsSource.ERROR)
            agents = await self.fetch_all_agent_statuses()

            await self.ensure_observer()
            return Snapshot(status=status, call_stats=call_stats, agent_statuses=agents, trigger=trigger)

        except Exception as e:
            logger.error(f"Error collecting status data ({trigger.value}): {e}")
            return self._error_snapshot(trigger, str(e))

    @staticmethod
    def _error_snapshot(trigger: Trigger, error: str) -> Snapshot:
        return Snapshot(
            status=StatusResult(status=Status.AVAILABLE, source="error"),
            call_stats=CallStats.zeroed(StatsSource.ERROR),
            agent_statuses=None,
            trigger=trigger,
            error=error,
        )

    # ------------------------------------------------------------------
    # Change observer & diagnostics
    # ------------------------------------------------------------------

    async def ensure_observer(self) -> None:
        """(Re)install the DOM change observer if a listener is registered."""
        if self.on_change is None or not self._page_ready():
            return
        try:
            await self.inspector.install_change_observer(self._handle_change)
        except Exception as e:
            logger.error(f"Error setting up mutation observer: {e}")

    def _handle_change(self, reason: str = "") -> None:
        logger.debug(f"DOM change detected ({reason})")
        if self.on_change is not None:
            self.on_change(reason)

    async def take_screenshot(self, prefix: str = "3cx", force: bool = False) -> Optional[Path]:
        """
        Save a screenshot of the current page, subject to the screenshot policy.

        Returns:
            Path of the saved file, or None when skipped or failed.
        """
        if not self.screenshots.allow(prefix, force):
            return None
        if self.page is None or self.page.is_closed():
            logger.warning("Cannot take screenshot: page not initialized")
            return None

        try:
            self.screenshots.record()
            path = self.screenshots.next_path(prefix)
            await self.page.screenshot(path=str(path), full_page=False)
            logger.info(
                f"Screenshot saved to {path} ({self.screenshots.count}/{self.screenshots.max_per_session})"
            )
            return path
        except Exception as e:
            logger.error(f"Error taking screenshot: {e}")
            return None

    def get_connection_status(self) -> dict:
        return {
            "state": self.state.value,
            "authenticated": self.authenticated,
            "url": self.url,
            "headless": self.running_headless,
            "last_error": self.last_error,
        }
