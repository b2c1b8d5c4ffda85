"""
Navigation for x_reader.

X is a long-polling single page app: pages never reach network idle and its
layout changes between A/B buckets. A NavigationTarget therefore lists
candidate URLs in priority order, and the Navigator walks them until one
renders the expected DOM marker.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from urllib.parse import quote

from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeout

from .config import ReaderConfig
from .errors import InvalidReference, InvalidTweetReference, NavigationTimeout
from .logger import get_logger, InvocationStats

logger = get_logger("navigator")

X_BASE = "https://x.com"

TWEET_MARKER = 'article[data-testid="tweet"]'
TREND_MARKER = '[data-testid="trend"]'

# Trending tab -> explore page -> home feed "What's happening" panel
TRENDING_URLS = (
    f"{X_BASE}/explore/tabs/trending",
    f"{X_BASE}/explore",
    f"{X_BASE}/home",
)

# Search tab name -> value of the f= query parameter
SEARCH_TABS = {
    "top": None,
    "latest": "live",
    "media": "media",
}

PROFILE_TABS = {
    "posts": "",
    "replies": "/with_replies",
    "media": "/media",
}

# Page text that means there is nothing to read, whatever the markup says
UNAVAILABLE_PAGE_TEXT = (
    ("This account doesn’t exist", "account does not exist"),
    ("This account doesn't exist", "account does not exist"),
    ("Account suspended", "account is suspended"),
    ("These posts are protected", "account's posts are protected"),
    ("Rate limit exceeded", "rate limited by X"),
)

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_]{1,15}$")
TWEET_ID_PATTERN = re.compile(r"^\d{1,20}$")
STATUS_URL_PATTERN = re.compile(
    r"^(?:https?://)?(?:www\.|mobile\.)?(?:x|twitter)\.com/"
    r"(?:(?:i/web|i)|(?P<user>[A-Za-z0-9_]{1,15}))"
    r"/status(?:es)?/(?P<id>\d{1,20})(?:[/?#].*)?$",
    re.IGNORECASE
)


@dataclass(frozen=True)
class NavigationTarget:
    """Where to go and how to tell that the page rendered."""
    urls: Tuple[str, ...]
    marker: str
    min_count: int = 1
    label: str = ""

    def __post_init__(self):
        if not self.urls:
            raise ValueError("NavigationTarget needs at least one candidate URL")
        object.__setattr__(self, "urls", tuple(self.urls))


@dataclass
class NavigationResult:
    page: object
    matched_url: Optional[str]
    element_count: int
    attempted: int = 0
    failures: List[str] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.element_count > 0

    @property
    def reached(self) -> bool:
        """True if at least one candidate loaded without error."""
        return len(self.failures) < self.attempted


@dataclass(frozen=True)
class TweetNavigation:
    target: NavigationTarget
    tweet_id: str
    url: str
    username: Optional[str] = None


def normalize_username(account: str) -> str:
    """
    Normalize account input to just the handle.

    Accepts:
    - username
    - @username
    - https://x.com/username
    - https://twitter.com/username
    """
    account = (account or "").strip()

    for prefix in ["https://x.com/", "https://twitter.com/",
                   "http://x.com/", "http://twitter.com/",
                   "https://www.x.com/", "https://www.twitter.com/",
                   "https://mobile.twitter.com/",
                   "x.com/", "twitter.com/"]:
        if account.lower().startswith(prefix):
            account = account[len(prefix):]
            break

    if account.startswith("@"):
        account = account[1:]

    # Drop any trailing path or query (e.g. /status/123, ?lang=en)
    account = re.split(r"[/?#]", account, maxsplit=1)[0]

    if not USERNAME_PATTERN.match(account):
        raise InvalidReference(f"Not a valid X username: {account or '(empty)'}")
    return account


def trending_target() -> NavigationTarget:
    return NavigationTarget(TRENDING_URLS, TREND_MARKER, label="trending topics")


def search_target(query: str, tab: str = "latest") -> NavigationTarget:
    query = (query or "").strip()
    if not query:
        raise InvalidReference("Search query must not be empty")
    tab = (tab or "latest").lower()
    if tab not in SEARCH_TABS:
        raise InvalidReference(
            f"Unknown search tab {tab!r}; expected one of {', '.join(SEARCH_TABS)}"
        )

    url = f"{X_BASE}/search?q={quote(query, safe='')}&src=typed_query"
    urls = []
    if SEARCH_TABS[tab]:
        urls.append(f"{url}&f={SEARCH_TABS[tab]}")
    # The unfiltered results page is the fallback for every tab
    urls.append(url)
    return NavigationTarget(tuple(urls), TWEET_MARKER, label=f"search {query!r}")


def profile_target(username: str, tab: str = "posts") -> NavigationTarget:
    handle = normalize_username(username)
    tab = (tab or "posts").lower()
    if tab not in PROFILE_TABS:
        raise InvalidReference(
            f"Unknown profile tab {tab!r}; expected one of {', '.join(PROFILE_TABS)}"
        )

    base = f"{X_BASE}/{handle}"
    urls = [base + PROFILE_TABS[tab]]
    if PROFILE_TABS[tab]:
        urls.append(base)
    return NavigationTarget(tuple(urls), TWEET_MARKER, label=f"@{handle}")


def resolve_tweet_navigation(reference: str) -> TweetNavigation:
    """
    Turn a status URL or a bare tweet id into a navigation target.

    Raises:
        InvalidTweetReference: neither form could be recognised
    """
    reference = str(reference or "").strip()
    if not reference:
        raise InvalidTweetReference("Tweet URL or id must not be empty")

    username = None
    if TWEET_ID_PATTERN.match(reference):
        tweet_id = reference
    else:
        match = STATUS_URL_PATTERN.match(reference)
        if not match:
            raise InvalidTweetReference(f"Not a tweet URL or id: {reference}")
        tweet_id = match.group("id")
        username = match.group("user")

    generic_url = f"{X_BASE}/i/status/{tweet_id}"
    url = f"{X_BASE}/{username}/status/{tweet_id}" if username else generic_url
    urls = (url, generic_url) if url != generic_url else (url,)

    return TweetNavigation(
        target=NavigationTarget(urls, TWEET_MARKER, label=f"tweet {tweet_id}"),
        tweet_id=tweet_id,
        url=url,
        username=username,
    )


class Navigator:
    """Drive the session's page to a target, falling back across candidates."""

    def __init__(self, config: ReaderConfig, stats: Optional[InvocationStats] = None):
        self.config = config
        self.stats = stats

    async def goto(self, session, target: NavigationTarget) -> NavigationResult:
        """
        Visit candidates in order until one shows at least min_count markers.

        A timeout or load error on a candidate counts as zero elements; the
        loop moves on. If nothing matches, the last candidate is reported.
        """
        page = await session.page()
        failures: List[str] = []
        matched_url = None
        count = 0
        attempted = 0

        for url in target.urls:
            attempted += 1
            matched_url = url
            count = await self._load_and_count(page, url, target.marker, failures)
            if count >= target.min_count:
                logger.info(f"Found {count} elements for {target.label or target.marker} at {url}")
                break
            logger.info(f"No matching elements at {url}")

        if self.stats is not None:
            self.stats.add_navigation(attempted, len(failures))

        return NavigationResult(page, matched_url, count, attempted, failures)

    async def _load_and_count(self, page, url: str, marker: str, failures: List[str]) -> int:
        try:
            await page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=self.config.navigation_timeout
            )
        except PlaywrightTimeout:
            logger.warning(f"Timed out loading {url}")
            failures.append(f"{url}: timed out")
            return 0
        except PlaywrightError as e:
            logger.warning(f"Error loading {url}: {e}")
            failures.append(f"{url}: {e}")
            return 0

        try:
            # Let client-side rendering populate the page
            await page.wait_for_timeout(self.config.settle_delay)
            return await page.locator(marker).count()
        except PlaywrightError as e:
            logger.warning(f"Could not count {marker} at {url}: {e}")
            failures.append(f"{url}: {e}")
            return 0

    async def wait_for_primary(self, page, selector: str = TWEET_MARKER):
        """
        Wait for the container a detail page cannot do without.

        Raises:
            NavigationTimeout: the container never appeared
        """
        try:
            await page.wait_for_selector(selector, timeout=self.config.element_timeout)
        except PlaywrightTimeout as e:
            raise NavigationTimeout(
                f"Timed out waiting for {selector} on {page.url}",
                url=page.url, selector=selector, cause=e
            )

    async def page_unavailable_reason(self, page) -> Optional[str]:
        """Check the page for account-unavailable and rate-limit notices."""
        try:
            content = await page.content()
        except PlaywrightError as e:
            logger.debug(f"Could not read page content: {e}")
            return None

        for text, reason in UNAVAILABLE_PAGE_TEXT:
            if text in content:
                return reason
        return None
