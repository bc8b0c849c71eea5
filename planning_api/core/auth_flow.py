# planning_api/core/auth_flow.py
"""
Drives the portal login and menu navigation up to the rendered schedule page.

States: Start -> LoginPageLoaded -> CredentialsSubmitted -> {LoginFailed | LoggedIn}
-> MenuNavigated -> ScheduleReady.

Locating the schedule menu entry is delegated to ScheduleEntryLocator objects so
new matching heuristics can be added without touching the state machine.
"""
import asyncio
import logging
from enum import Enum
from typing import Any, List, Optional, Protocol, Sequence

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .constants import (LOGIN_ERROR_SELECTOR, LOGIN_PAGE_URL_MARKER,
                        MENU_LABEL_SELECTOR, MENU_LINK_SELECTOR,
                        MENU_WAIT_TIMEOUT_MS, MONTH_VIEW_BUTTON_SELECTOR,
                        MONTH_VIEW_SETTLE_SECONDS, NAVIGATION_TIMEOUT_MS,
                        PASSWORD_SELECTOR, PORTAL_LOGIN_URL,
                        SCHEDULE_MENU_TERMS, SCHEDULE_SETTLE_SECONDS,
                        USERNAME_SELECTOR)
from .errors import AuthenticationFailed, MenuNotFound, NavigationTimeout

log = logging.getLogger(__name__)


class AuthState(str, Enum):
    START = "Start"
    LOGIN_PAGE_LOADED = "LoginPageLoaded"
    CREDENTIALS_SUBMITTED = "CredentialsSubmitted"
    LOGIN_FAILED = "LoginFailed"
    LOGGED_IN = "LoggedIn"
    MENU_NAVIGATED = "MenuNavigated"
    SCHEDULE_READY = "ScheduleReady"


class ScheduleEntryLocator(Protocol):
    async def locate(self, page: Any) -> Optional[Any]:
        """Returns the element to click to reach the schedule, or None."""
        ...


class TextMatchLocator:
    """
    Finds the first element matching `selector` whose rendered text contains
    one of `terms` (case-insensitive).
    """

    def __init__(self, selector: str, terms: Sequence[str] = SCHEDULE_MENU_TERMS):
        self.selector = selector
        self.terms = tuple(t.lower() for t in terms)

    async def locate(self, page: Any) -> Optional[Any]:
        for element in await page.query_selector_all(self.selector):
            text = ((await element.text_content()) or "").strip().lower()
            if any(term in text for term in self.terms):
                log.debug(f"Schedule entry matched by '{self.selector}': {text!r}")
                return element
        return None


def default_locators() -> List[ScheduleEntryLocator]:
    # Menu spans first, then any link on the page
    return [TextMatchLocator(MENU_LABEL_SELECTOR), TextMatchLocator(MENU_LINK_SELECTOR)]


async def collect_menu_labels(page: Any, selector: str = MENU_LABEL_SELECTOR) -> List[str]:
    """Trimmed texts of every menu label on the page (diagnostics for MenuNotFound)."""
    labels = []
    for element in await page.query_selector_all(selector):
        text = ((await element.text_content()) or "").strip()
        if text:
            labels.append(text)
    return labels


class AuthenticationFlow:
    """
    One login run against one page. Not reusable: create a new flow per login.
    """

    def __init__(
        self,
        page: Any,
        login_url: str = PORTAL_LOGIN_URL,
        locators: Optional[List[ScheduleEntryLocator]] = None,
        navigation_timeout_ms: int = NAVIGATION_TIMEOUT_MS,
        menu_wait_timeout_ms: int = MENU_WAIT_TIMEOUT_MS,
        settle_seconds: float = SCHEDULE_SETTLE_SECONDS,
        month_view_settle_seconds: float = MONTH_VIEW_SETTLE_SECONDS,
    ):
        self.page = page
        self.login_url = login_url
        self.locators = locators if locators is not None else default_locators()
        self.navigation_timeout_ms = navigation_timeout_ms
        self.menu_wait_timeout_ms = menu_wait_timeout_ms
        self.settle_seconds = settle_seconds
        self.month_view_settle_seconds = month_view_settle_seconds
        self.state = AuthState.START

    async def run(self, username: str, password: str) -> None:
        """
        Logs in and navigates to the schedule page.

        Raises:
            NavigationTimeout: A bounded navigation wait expired.
            AuthenticationFailed: The portal rejected the credentials.
            MenuNotFound: No menu entry leads to the schedule.
        """
        await self.load_login_page()
        await self.submit_credentials(username, password)
        await self.check_login_result()
        await self.navigate_to_schedule()
        await self.wait_for_schedule()

    async def load_login_page(self) -> None:
        log.info(f"Navigating to portal login page {self.login_url}...")
        try:
            await self.page.goto(self.login_url, wait_until="networkidle", timeout=self.navigation_timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationTimeout(f"Login page did not load within {self.navigation_timeout_ms}ms") from e
        self.state = AuthState.LOGIN_PAGE_LOADED

    async def submit_credentials(self, username: str, password: str) -> None:
        await self.page.fill(USERNAME_SELECTOR, username)
        await self.page.fill(PASSWORD_SELECTOR, password)
        try:
            async with self.page.expect_navigation(wait_until="networkidle", timeout=self.navigation_timeout_ms):
                await self.page.keyboard.press("Enter")
        except PlaywrightTimeoutError as e:
            raise NavigationTimeout(f"No navigation after login submit within {self.navigation_timeout_ms}ms") from e
        self.state = AuthState.CREDENTIALS_SUBMITTED

    async def check_login_result(self) -> None:
        """Still on the login page after submit means the credentials were refused."""
        if LOGIN_PAGE_URL_MARKER in self.page.url.lower():
            self.state = AuthState.LOGIN_FAILED
            message = None
            error_element = await self.page.query_selector(LOGIN_ERROR_SELECTOR)
            if error_element is not None:
                message = ((await error_element.text_content()) or "").strip() or None
            log.warning(f"Login refused by portal (url={self.page.url}, message={message!r}).")
            raise AuthenticationFailed(message)
        self.state = AuthState.LOGGED_IN
        log.info("Login successful, navigating to planning...")

    async def navigate_to_schedule(self) -> None:
        try:
            await self.page.wait_for_selector(MENU_LABEL_SELECTOR, timeout=self.menu_wait_timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationTimeout(f"Portal menu did not render within {self.menu_wait_timeout_ms}ms") from e

        entry = None
        for locator in self.locators:
            entry = await locator.locate(self.page)
            if entry is not None:
                break

        if entry is None:
            labels = await collect_menu_labels(self.page)
            log.error(f"Schedule menu entry not found. Available menu items: {labels}")
            raise MenuNotFound(labels)

        try:
            async with self.page.expect_navigation(wait_until="networkidle", timeout=self.navigation_timeout_ms):
                # DOM click: menu entries may be hidden inside collapsed menus
                await entry.evaluate("el => el.click()")
        except PlaywrightTimeoutError:
            # The schedule may render in place without a full navigation
            log.info("No navigation after schedule menu click, continuing.")
        self.state = AuthState.MENU_NAVIGATED

    async def wait_for_schedule(self) -> None:
        # Fixed delay for client-side calendar rendering (heuristic, not a guarantee)
        await asyncio.sleep(self.settle_seconds)

        month_button = await self.page.query_selector(MONTH_VIEW_BUTTON_SELECTOR)
        if month_button is not None:
            await month_button.click()
            await asyncio.sleep(self.month_view_settle_seconds)
        self.state = AuthState.SCHEDULE_READY
        log.info("Planning page loaded.")
