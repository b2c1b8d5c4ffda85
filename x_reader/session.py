"""
Session management for x_reader.

One persistent Chromium profile holds the authenticated X session. A
BrowserSession owns it for the life of a process: it reconciles stale profile
locks, launches (or attaches to) the persistent context, hands out the single
working page, and releases the profile on close.
"""

import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from playwright.async_api import async_playwright, Error as PlaywrightError

from .config import ReaderConfig
from .errors import SessionBusy, SessionLaunchError
from .locks import LockReconciler, ProfileLock
from .logger import get_logger

logger = get_logger("session")

HOME_URL = "https://x.com/home"
LOGGED_IN_MARKER = '[data-testid="primaryColumn"]'


class AuthMarker:
    """Record of whether an interactive login has completed, and when."""

    def __init__(self, path: str):
        self.path = Path(path)

    def read(self) -> Optional[dict]:
        """Return the marker contents, or None if missing or unreadable."""
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError):
            logger.warning(f"Ignoring unreadable auth marker: {self.path}")
            return None
        return data if isinstance(data, dict) else None

    def is_logged_in(self) -> bool:
        data = self.read()
        return bool(data and data.get("loggedIn"))

    def record(self, logged_in: bool) -> dict:
        data = {
            "loggedIn": logged_in,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        return data


class BrowserSession:
    """The single authenticated browsing context of this process."""

    def __init__(
        self,
        config: ReaderConfig,
        reconciler: Optional[LockReconciler] = None,
        playwright_factory=None
    ):
        """
        Args:
            config: Process configuration
            reconciler: Lock reconciler (defaults to one using config's grace period)
            playwright_factory: Callable returning an object with an async
                start(); defaults to async_playwright
        """
        self.config = config
        self.reconciler = reconciler or LockReconciler(config.lock_grace_seconds)
        self._playwright_factory = playwright_factory or async_playwright
        self._profile_lock = ProfileLock(config.profile_dir)
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None

    @property
    def is_open(self) -> bool:
        return self._context is not None

    @property
    def attached(self) -> bool:
        return bool(self.config.cdp_url)

    def launch_options(self) -> dict:
        """Keyword arguments for launch_persistent_context."""
        options = {
            "headless": self.config.headless,
            "viewport": self.config.viewport,
            "args": self.config.browser_args(),
            "user_agent": self.config.user_agent,
            "ignore_default_args": ["--enable-automation"],
            "timeout": self.config.navigation_timeout,
        }
        if self.config.executable_path:
            options["executable_path"] = self.config.executable_path
        return options

    async def open(self) -> "BrowserSession":
        """
        Launch or attach to the persistent context.

        Raises:
            SessionBusy: another live process holds the profile
            SessionLaunchError: the browser could not be started
        """
        if self.is_open:
            return self

        try:
            if self.attached:
                await self._attach()
            else:
                await self._launch()
        except (SessionBusy, SessionLaunchError):
            await self._teardown()
            raise
        except (PlaywrightError, OSError) as e:
            await self._teardown()
            reason = str(e).strip().splitlines()[0] if str(e).strip() else type(e).__name__
            raise SessionLaunchError(f"Could not start browser session: {reason}", cause=e)

        if not AuthMarker(self.config.auth_file).is_logged_in():
            logger.warning("No recorded login for this profile; pages may show the logged-out view")

        return self

    async def _launch(self):
        executable = self.config.executable_path
        if executable and not Path(executable).exists():
            raise SessionLaunchError(f"Browser executable not found: {executable}")

        profile_dir = Path(self.config.profile_dir)
        profile_dir.mkdir(parents=True, exist_ok=True)

        self._profile_lock.acquire()
        self.reconciler.reconcile(profile_dir)

        self._playwright = await self._playwright_factory().start()
        self._context = await self._playwright.chromium.launch_persistent_context(
            str(profile_dir), **self.launch_options()
        )
        logger.info(
            f"Browser session opened (profile={profile_dir}, headless={self.config.headless})"
        )

    async def _attach(self):
        self._playwright = await self._playwright_factory().start()
        self._browser = await self._playwright.chromium.connect_over_cdp(
            self.config.cdp_url, timeout=self.config.navigation_timeout
        )
        if self._browser.contexts:
            self._context = self._browser.contexts[0]
        else:
            self._context = await self._browser.new_context(
                viewport=self.config.viewport,
                user_agent=self.config.user_agent
            )
        logger.info(f"Attached to running browser at {self.config.cdp_url}")

    async def page(self):
        """Get or create the single active page."""
        if not self.is_open:
            raise SessionLaunchError("Browser session is not open")

        if self._page is None or self._page.is_closed():
            pages = self._context.pages
            self._page = pages[0] if pages else await self._context.new_page()
            self._page.set_default_timeout(self.config.element_timeout)
            self._page.set_default_navigation_timeout(self.config.navigation_timeout)

        return self._page

    async def close(self):
        """Release the context, Playwright and the profile lock. Safe to repeat."""
        if not self.is_open and self._playwright is None and not self._profile_lock.held:
            return
        await self._teardown()
        logger.debug("Browser session closed")

    async def _teardown(self):
        context, browser, playwright = self._context, self._browser, self._playwright
        self._context = self._browser = self._playwright = self._page = None

        try:
            if browser is not None:
                await browser.close()
            elif context is not None:
                await context.close()
        except PlaywrightError as e:
            logger.warning(f"Error closing browser context: {e}")
        finally:
            if playwright is not None:
                try:
                    await playwright.stop()
                except PlaywrightError as e:
                    logger.warning(f"Error stopping Playwright: {e}")
            self._profile_lock.release()

    async def __aenter__(self) -> "BrowserSession":
        return await self.open()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


@asynccontextmanager
async def open_session(config: ReaderConfig, **kwargs):
    """
    Scoped session: closed exactly once after a successful open, on every exit.

    Usage:
        async with open_session(config) as session:
            page = await session.page()
    """
    session = BrowserSession(config, **kwargs)
    await session.open()
    try:
        yield session
    finally:
        await session.close()


async def verify_login(config: ReaderConfig, **kwargs) -> bool:
    """
    Check that the saved profile is still logged in and record the result.

    Returns:
        True if the home timeline rendered
    """
    async with open_session(config, **kwargs) as session:
        page = await session.page()
        await page.goto(HOME_URL, wait_until="domcontentloaded",
                        timeout=config.navigation_timeout)
        await page.wait_for_timeout(config.settle_delay)
        logged_in = await page.locator(LOGGED_IN_MARKER).count() > 0

    AuthMarker(config.auth_file).record(logged_in)
    if logged_in:
        logger.info("Session is valid and logged in")
    else:
        logger.warning("Session appears to be expired or logged out")
    return logged_in
