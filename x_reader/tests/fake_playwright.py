"""
Fake async Playwright objects for testing.

Small stand-ins for Page, Locator, BrowserContext and the Playwright driver
that understand the handful of CSS selector shapes x_reader uses, so the
session, navigator and extractors can be exercised without a browser.

Usage:
    from x_reader.tests.fake_playwright import FakePage, tweet_article

    page = FakePage()
    page.set_content("https://x.com/search?q=x", [tweet_article("1", "hello")])
"""

import re
from typing import Dict, List, Optional, Union

from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeout


_SELECTOR = re.compile(
    r"^(?P<tag>[a-z]+)?(?P<attrs>(?:\[[^\]]+\])*)(?::has\((?P<has>[^)]+)\))?$"
)
_ATTR = re.compile(r'\[([\w-]+)(?:([*$^]?=)"([^"]*)")?\]')


def _split_descendants(selector: str) -> List[str]:
    """'div[data-testid="x"] img' -> ['div[data-testid="x"]', 'img'] (no spaces inside [] assumed)."""
    return selector.split()


class FakeElement:
    """A DOM node with attributes, text and children."""

    def __init__(
        self,
        tag: str = "div",
        attributes: Optional[Dict[str, str]] = None,
        text: str = "",
        children: Optional[List["FakeElement"]] = None,
        data_testid: Optional[str] = None,
        broken: bool = False,
    ):
        self.tag = tag
        self.attributes = dict(attributes or {})
        self.text = text
        self.children = children or []
        # Reads on a broken element fail like a detached node
        self.broken = broken
        if data_testid:
            self.attributes["data-testid"] = data_testid

    def descendants(self) -> List["FakeElement"]:
        found = []
        for child in self.children:
            found.append(child)
            found.extend(child.descendants())
        return found

    def matches(self, selector: str) -> bool:
        match = _SELECTOR.match(selector.strip())
        if not match:
            return False
        if match.group("tag") and match.group("tag") != self.tag:
            return False
        for name, op, value in _ATTR.findall(match.group("attrs") or ""):
            actual = self.attributes.get(name)
            if actual is None:
                return False
            if op == "=" and actual != value:
                return False
            if op == "*=" and value not in actual:
                return False
            if op == "$=" and not actual.endswith(value):
                return False
            if op == "^=" and not actual.startswith(value):
                return False
        if match.group("has"):
            if not any(d.matches(match.group("has")) for d in self.descendants()):
                return False
        return True

    def query_all(self, selector: str, include_self: bool = False) -> List["FakeElement"]:
        parts = _split_descendants(selector)
        pool = ([self] if include_self else []) + self.descendants()
        current = [el for el in pool if el.matches(parts[0])]
        for part in parts[1:]:
            nxt = []
            for el in current:
                for d in el.descendants():
                    if d.matches(part) and d not in nxt:
                        nxt.append(d)
            current = nxt
        return current

    def full_text(self) -> str:
        if self.text:
            return self.text
        return "\n".join(t for t in (c.full_text() for c in self.children) if t)


class FakeLocator:
    """Fake Playwright Locator over a fixed list of elements."""

    def __init__(self, elements: Optional[List[FakeElement]] = None, error: Optional[Exception] = None):
        self.elements = elements or []
        self.error = error

    def _check(self):
        if self.error is not None:
            raise self.error

    async def count(self) -> int:
        self._check()
        return len(self.elements)

    @property
    def first(self) -> "FakeLocator":
        return FakeLocator(self.elements[:1], self.error)

    def nth(self, index: int) -> "FakeLocator":
        if 0 <= index < len(self.elements):
            return FakeLocator([self.elements[index]], self.error)
        return FakeLocator([], self.error)

    def locator(self, selector: str) -> "FakeLocator":
        if self.error is not None:
            return FakeLocator([], self.error)
        found = []
        for el in self.elements:
            if el.broken:
                return FakeLocator([], PlaywrightError("Element is not attached to the DOM"))
            for match in el.query_all(selector):
                if match not in found:
                    found.append(match)
        return FakeLocator(found)

    def _target(self, timeout) -> FakeElement:
        self._check()
        if not self.elements:
            raise PlaywrightTimeout(f"Timeout {timeout}ms exceeded waiting for locator")
        element = self.elements[0]
        if element.broken:
            raise PlaywrightError("Element is not attached to the DOM")
        return element

    async def inner_text(self, timeout: Optional[int] = None) -> str:
        return self._target(timeout).full_text()

    async def text_content(self, timeout: Optional[int] = None) -> str:
        return self._target(timeout).full_text()

    async def get_attribute(self, name: str, timeout: Optional[int] = None) -> Optional[str]:
        return self._target(timeout).attributes.get(name)


class FakePage:
    """
    Fake Playwright Page.

    Content is registered per URL; goto() switches to it. URLs registered
    with an exception raise it from goto() instead.
    """

    def __init__(self):
        self.url = "about:blank"
        self._content: Dict[str, List[FakeElement]] = {}
        self._html: Dict[str, str] = {}
        self._goto_errors: Dict[str, Exception] = {}
        self._settle_errors: Dict[str, Exception] = {}
        self.goto_calls: List[dict] = []
        self.waits: List[int] = []
        self.default_timeout = None
        self.default_navigation_timeout = None
        self.closed = False

    def set_content(self, url: str, elements: List[FakeElement], html: str = ""):
        self._content[url] = elements
        self._html[url] = html

    def fail_goto(self, url: str, error: Union[Exception, None] = None):
        self._goto_errors[url] = error or PlaywrightTimeout(f"Timeout exceeded navigating to {url}")

    def fail_settle(self, url: str, error: Union[Exception, None] = None):
        self._settle_errors[url] = error or PlaywrightError("Target page, context or browser has been closed")

    @property
    def visited(self) -> List[str]:
        return [call["url"] for call in self.goto_calls]

    async def goto(self, url: str, wait_until: str = "load", timeout: Optional[int] = None):
        self.goto_calls.append({"url": url, "wait_until": wait_until, "timeout": timeout})
        if url in self._goto_errors:
            raise self._goto_errors[url]
        self.url = url

    async def wait_for_timeout(self, timeout: int):
        self.waits.append(timeout)
        if self.url in self._settle_errors:
            raise self._settle_errors[self.url]

    def _roots(self) -> List[FakeElement]:
        return self._content.get(self.url, [])

    def locator(self, selector: str) -> FakeLocator:
        found = []
        for root in self._roots():
            for el in root.query_all(selector, include_self=True):
                if el not in found:
                    found.append(el)
        return FakeLocator(found)

    async def wait_for_selector(self, selector: str, timeout: Optional[int] = None):
        found = self.locator(selector).elements
        if not found:
            raise PlaywrightTimeout(f"Timeout {timeout}ms exceeded waiting for {selector}")
        return found[0]

    async def content(self) -> str:
        return self._html.get(self.url, "")

    def is_closed(self) -> bool:
        return self.closed

    def set_default_timeout(self, timeout: int):
        self.default_timeout = timeout

    def set_default_navigation_timeout(self, timeout: int):
        self.default_navigation_timeout = timeout


class FakeSession:
    """Session stand-in for navigator tests."""

    def __init__(self, page: Optional[FakePage] = None):
        self._page = page or FakePage()

    async def page(self) -> FakePage:
        return self._page


class FakeContext:
    def __init__(self, page: Optional[FakePage] = None):
        self.pages: List[FakePage] = [page] if page else []
        self.close_calls = 0

    async def new_page(self) -> FakePage:
        page = FakePage()
        self.pages.append(page)
        return page

    async def close(self):
        self.close_calls += 1


class FakeBrowser:
    def __init__(self, contexts: Optional[List[FakeContext]] = None):
        self.contexts = contexts or []
        self.close_calls = 0

    async def new_context(self, **kwargs) -> FakeContext:
        context = FakeContext()
        self.contexts.append(context)
        return context

    async def close(self):
        self.close_calls += 1


class FakeChromium:
    def __init__(self, driver: "FakePlaywright"):
        self.driver = driver

    async def launch_persistent_context(self, user_data_dir: str, **kwargs) -> FakeContext:
        self.driver.launch_calls.append({"user_data_dir": user_data_dir, **kwargs})
        if self.driver.launch_error is not None:
            raise self.driver.launch_error
        return self.driver.context

    async def connect_over_cdp(self, endpoint_url: str, **kwargs) -> FakeBrowser:
        self.driver.connect_calls.append(endpoint_url)
        return self.driver.browser


class FakePlaywright:
    """
    Fake Playwright driver; call it to get the async_playwright()-style
    manager whose start() returns the driver.
    """

    def __init__(self, page: Optional[FakePage] = None, launch_error: Optional[Exception] = None):
        self.page = page or FakePage()
        self.context = FakeContext(self.page)
        self.browser = FakeBrowser([FakeContext(self.page)])
        self.chromium = FakeChromium(self)
        self.launch_error = launch_error
        self.launch_calls: List[dict] = []
        self.connect_calls: List[str] = []
        self.start_calls = 0
        self.stop_calls = 0

    def __call__(self) -> "FakePlaywright":
        return self

    async def start(self) -> "FakePlaywright":
        self.start_calls += 1
        return self

    async def stop(self):
        self.stop_calls += 1


# Factory functions for common X elements

def tweet_article(
    tweet_id: str,
    text: Optional[str] = "Test tweet content",
    author: str = "Test User",
    handle: str = "testuser",
    timestamp: str = "2025-01-10T12:00:00.000Z",
    replies: Optional[str] = "3 Replies. Reply",
    retweets: Optional[str] = "5 reposts. Repost",
    likes: Optional[str] = "1,234 Likes. Like",
    views: Optional[str] = "12K",
    social_context: Optional[str] = None,
    media: bool = False,
    broken_metric: Optional[str] = None,
) -> FakeElement:
    """Create a fake tweet article element."""
    children = []

    if social_context:
        children.append(FakeElement("span", text=social_context, data_testid="socialContext"))

    children.append(FakeElement("div", text=f"{author}\n@{handle}\n·\n2h", data_testid="User-Name"))

    children.append(FakeElement(
        "a",
        attributes={"href": f"/{handle}/status/{tweet_id}"},
        children=[FakeElement("time", attributes={"datetime": timestamp}, text="2h")],
    ))

    if text is not None:
        children.append(FakeElement("div", attributes={"lang": "en"}, text=text, data_testid="tweetText"))

    if media:
        children.append(FakeElement("div", data_testid="tweetPhoto", children=[
            FakeElement("img", attributes={"src": "https://pbs.twimg.com/media/abc.jpg"})
        ]))

    for testid, label in (("reply", replies), ("retweet", retweets), ("like", likes)):
        if label is None:
            continue
        children.append(FakeElement(
            "button",
            attributes={"aria-label": label},
            data_testid=testid,
            broken=(broken_metric == testid),
        ))

    if views is not None:
        children.append(FakeElement(
            "a", attributes={"href": f"/{handle}/status/{tweet_id}/analytics"}, text=views
        ))

    return FakeElement("article", data_testid="tweet", children=children)


def trend_cell(text: str, broken: bool = False) -> FakeElement:
    """Create a fake trend row with its raw concatenated text."""
    return FakeElement("div", text=text, data_testid="trend", broken=broken)
