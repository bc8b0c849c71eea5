# planning_api/core/browser.py
import logging
import time
from pathlib import Path
from typing import Any, Optional, Tuple

import aiofiles
from playwright.async_api import Browser, Page, Playwright

from .constants import (BROWSER_EXTRA_HEADERS, BROWSER_LAUNCH_ARGS,
                        BROWSER_VIEWPORT)

log = logging.getLogger(__name__)

# Directory for saving debug HTML
DEBUG_HTML_DIR = Path("debug_html")


class BrowserLauncher:
    """
    Launches one Chromium instance per portal session through a shared
    Playwright driver (started once by the application lifespan).
    """

    def __init__(self, playwright: Playwright, executable_path: Optional[str] = None, headless: bool = True):
        self.playwright = playwright
        self.executable_path = executable_path
        self.headless = headless

    async def launch(self) -> Tuple[Browser, Page]:
        """
        Starts a browser and opens a page configured for the portal.

        Returns:
            (browser, page). The caller owns the browser and must close it.
        """
        browser = await self.playwright.chromium.launch(
            headless=self.headless,
            executable_path=self.executable_path or None,
            args=BROWSER_LAUNCH_ARGS,
        )
        try:
            page = await browser.new_page(viewport=BROWSER_VIEWPORT)
            await page.set_extra_http_headers(BROWSER_EXTRA_HEADERS)
        except Exception:
            await close_browser_quietly(browser)
            raise
        log.debug("Browser launched and page configured.")
        return browser, page


async def close_browser_quietly(browser: Any) -> None:
    """Best-effort browser close. Errors are logged, never raised."""
    if browser is None:
        return
    try:
        await browser.close()
    except Exception as e:
        log.warning(f"Ignoring error while closing browser: {e}")


async def dump_page_html(page: Any, label: str, directory: Path = DEBUG_HTML_DIR) -> Optional[Path]:
    """
    Saves the current page HTML for offline debugging of portal changes.

    Returns the written path, or None if the dump failed.
    """
    timestamp = time.strftime("%Y%m%d_%H%M%S")
    filename = directory / f"{label}_{timestamp}.html"
    try:
        directory.mkdir(parents=True, exist_ok=True)
        content = await page.content()
        async with aiofiles.open(filename, "w", encoding="utf-8") as f:
            await f.write(f"<!-- URL: {page.url} -->\n{content}")
        log.info(f"Saved debug HTML ({label}) to {filename}")
        return filename
    except Exception as save_err:
        log.error(f"Failed to save debug HTML ({label}): {save_err}")
        return None
