"""
Data extraction utilities for x_reader.

Every field routine is independently fault tolerant: a missing, detached or
slow element yields None for that field only. Records are then built by pure
functions that decide inclusion from the primary field alone, so one broken
row never costs the rest of a listing.
"""

import functools
import re
from dataclasses import dataclass, field, asdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from playwright.async_api import Error as PlaywrightError

from .errors import FieldExtractionFailure
from .logger import get_logger, InvocationStats
from .navigator import X_BASE

logger = get_logger("extractors")

# Milliseconds allowed for a single text/attribute read
READ_TIMEOUT = 2000


def _compact(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


@dataclass
class Metrics:
    replies: Optional[int] = None
    retweets: Optional[int] = None
    likes: Optional[int] = None
    views: Optional[int] = None

    def to_dict(self) -> dict:
        return _compact(asdict(self))


@dataclass
class TrendRecord:
    rank: int
    topic: str
    category: Optional[str] = None
    post_count: Optional[str] = None

    def to_dict(self) -> dict:
        return _compact({
            "rank": self.rank,
            "topic": self.topic,
            "category": self.category,
            "postCount": self.post_count,
        })


@dataclass
class TweetRecord:
    """Structured data for a single tweet. None means "not found"."""
    text: str
    author: Optional[str] = None
    handle: Optional[str] = None
    url: Optional[str] = None
    metrics: Metrics = field(default_factory=Metrics)
    time: Optional[str] = None
    is_retweet: Optional[bool] = None
    is_pinned: Optional[bool] = None
    has_media: Optional[bool] = None

    def to_dict(self) -> dict:
        return _compact({
            "author": self.author,
            "handle": self.handle,
            "text": self.text,
            "url": self.url,
            "metrics": self.metrics.to_dict(),
            "time": self.time,
            "isRetweet": self.is_retweet,
            "isPinned": self.is_pinned,
            "hasMedia": self.has_media,
        })


@dataclass
class ReplyRecord:
    text: str
    author: Optional[str] = None
    handle: Optional[str] = None
    metrics: Metrics = field(default_factory=Metrics)
    time: Optional[str] = None

    def to_dict(self) -> dict:
        return _compact({
            "author": self.author,
            "handle": self.handle,
            "text": self.text,
            "metrics": self.metrics.to_dict(),
            "time": self.time,
        })


# Selector strategies - ordered fallbacks for each element type
SELECTORS = {
    "tweet_text": [
        '[data-testid="tweetText"]',
        'div[lang]',
    ],

    "user_name": [
        '[data-testid="User-Name"]',
        '[data-testid="User-Names"]',
    ],

    "timestamp": [
        'time[datetime]',
    ],

    "permalink": [
        'a[href*="/status/"]:has(time)',
        'a[href*="/status/"]',
    ],

    "replies": [
        '[data-testid="reply"]',
    ],

    "retweets": [
        '[data-testid="retweet"]',
        '[data-testid="unretweet"]',
    ],

    "likes": [
        '[data-testid="like"]',
        '[data-testid="unlike"]',
    ],

    "views": [
        'a[href$="/analytics"]',
        '[aria-label*="views"]',
    ],

    "media": [
        '[data-testid="tweetPhoto"]',
        '[data-testid="videoPlayer"]',
        '[data-testid="videoComponent"]',
        'img[src*="pbs.twimg.com/media"]',
    ],

    "social_context": [
        '[data-testid="socialContext"]',
    ],
}

COUNT_PATTERN = re.compile(r"(\d[\d,]*(?:\.\d+)?)(?:\s*([KMB])(?![A-Za-z]))?", re.IGNORECASE)
HANDLE_PATTERN = re.compile(r"@[A-Za-z0-9_]{1,15}")
STATUS_PATH_PATTERN = re.compile(r"/[A-Za-z0-9_]+/status/\d+")

MULTIPLIERS = {
    "K": 1000,
    "M": 1000000,
    "B": 1000000000,
}

# Trend cell lines, classified by shape alone
CATEGORY_LINE = re.compile(
    r"^(?:\d+\s*·\s*)?(?P<category>.+?)\s*·\s*Trending(?:\s+in\s+.+)?$", re.IGNORECASE
)
TRENDING_IN_LINE = re.compile(r"^(?:\d+\s*·\s*)?Trending(?:\s+in\s+.+)?$", re.IGNORECASE)
RANK_PREFIX = re.compile(r"^\d+\s*·\s*")
POST_COUNT_LINE = re.compile(
    r"^\d[\d,]*(?:\.\d+)?\s*[KMB]?\s+(?:posts?|tweets?)$", re.IGNORECASE
)
TOPIC_START = re.compile(r"^[#$@]?[^\W_]")
RANK_LINE = re.compile(r"^\d+$")


def parse_count(text: Optional[str]) -> Optional[int]:
    """
    Parse engagement count strings like '1.5K', '2M', '1,234' to integers.

    Args:
        text: Count string; only the first number in it is used

    Returns:
        Integer count value, or None when no number is present
    """
    if not text:
        return None

    match = COUNT_PATTERN.search(text.strip())
    if not match:
        return None

    number, suffix = match.groups()
    try:
        value = float(number.replace(",", ""))
    except ValueError:
        return None

    if suffix:
        value *= MULTIPLIERS[suffix.upper()]
    return int(round(value))


def split_name_handle(text: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Split "Display Name@handle" at the first @handle token.

    Without a handle token the whole string is the display name; with nothing
    before the handle there is no display name.
    """
    text = (text or "").strip()
    match = HANDLE_PATTERN.search(text)
    if not match:
        return text, None
    author = text[:match.start()].strip()
    return author or None, match.group(0)


def segment_lines(text: Optional[str]) -> List[str]:
    """Split raw element text into stripped, non-empty lines."""
    return [line.strip() for line in (text or "").splitlines() if line.strip()]


@dataclass
class TrendParts:
    topic: Optional[str] = None
    category: Optional[str] = None
    post_count: Optional[str] = None


def classify_trend_lines(lines: List[str]) -> TrendParts:
    """
    Infer category, post count and topic from the lines of a trend cell.

    "<category> · Trending" gives the category, "<n> posts" the post count,
    and the first remaining line that starts like a word is the topic. When
    no line starts like a word, the longest remaining line is used instead;
    that fallback is a best guess, not a guarantee.
    """
    parts = TrendParts()
    candidates = []

    for line in lines:
        if TRENDING_IN_LINE.match(line):
            if parts.category is None:
                parts.category = RANK_PREFIX.sub("", line)
            continue
        category_match = CATEGORY_LINE.match(line)
        if category_match:
            if parts.category is None:
                parts.category = category_match.group("category").strip()
            continue
        if POST_COUNT_LINE.match(line):
            if parts.post_count is None:
                parts.post_count = line
            continue
        if line == "·":
            continue
        candidates.append(line)

    for line in candidates:
        if TOPIC_START.match(line) and not RANK_LINE.match(line):
            parts.topic = line
            break
    else:
        if candidates:
            parts.topic = max(candidates, key=len)

    return parts


def classify_social_context(text: Optional[str]) -> Tuple[Optional[bool], Optional[bool]]:
    """(is_retweet, is_pinned) from the "X reposted" / "Pinned" banner text."""
    if text is None:
        return None, None
    lowered = text.lower()
    is_retweet = "reposted" in lowered or "retweeted" in lowered
    is_pinned = "pinned" in lowered
    return is_retweet, is_pinned


def absolute_url(href: Optional[str]) -> Optional[str]:
    """Canonical https://x.com/<user>/status/<id> URL from a permalink href."""
    if not href:
        return None
    match = STATUS_PATH_PATTERN.search(href)
    if match:
        return f"{X_BASE}{match.group(0)}"
    if href.startswith("/"):
        return f"{X_BASE}{href}"
    return href


def optional_field(func):
    """Turn any read failure inside a field routine into None."""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except FieldExtractionFailure as e:
            logger.debug(f"Field absent: {e}")
        except PlaywrightError as e:
            logger.debug(f"{func.__name__} failed: {e}")
        except ValueError as e:
            logger.debug(f"{func.__name__} could not parse value: {e}")
        return None
    return wrapper


async def first_match(element, selectors: List[str], field_name: str):
    """
    Return the first locator among selectors that matches inside element.

    Raises:
        FieldExtractionFailure: no selector matched
    """
    for selector in selectors:
        try:
            loc = element.locator(selector).first
            if await loc.count() > 0:
                return loc
        except PlaywrightError:
            continue
    raise FieldExtractionFailure(field_name)


@optional_field
async def extract_text(element, timeout: int = READ_TIMEOUT) -> Optional[str]:
    loc = await first_match(element, SELECTORS["tweet_text"], "text")
    text = (await loc.inner_text(timeout=timeout) or "").strip()
    if not text:
        raise FieldExtractionFailure("text", "empty")
    return text


@optional_field
async def extract_author(element, timeout: int = READ_TIMEOUT) -> Optional[Tuple[Optional[str], Optional[str]]]:
    """(display name, @handle) from the User-Name block."""
    loc = await first_match(element, SELECTORS["user_name"], "author")
    raw = await loc.inner_text(timeout=timeout)
    combined = "".join(segment_lines(raw))
    if not combined:
        raise FieldExtractionFailure("author", "empty")
    return split_name_handle(combined)


@optional_field
async def extract_time(element, timeout: int = READ_TIMEOUT) -> Optional[str]:
    loc = await first_match(element, SELECTORS["timestamp"], "time")
    return await loc.get_attribute("datetime", timeout=timeout)


@optional_field
async def extract_url(element, timeout: int = READ_TIMEOUT) -> Optional[str]:
    loc = await first_match(element, SELECTORS["permalink"], "url")
    return absolute_url(await loc.get_attribute("href", timeout=timeout))


@optional_field
async def extract_metric(element, name: str, timeout: int = READ_TIMEOUT) -> Optional[int]:
    """
    Read one engagement count (replies, retweets, likes or views).

    The aria-label carries the exact number ("1,234 Likes. Like"); the visible
    text is abbreviated and empty for zero.
    """
    loc = await first_match(element, SELECTORS[name], name)
    label = await loc.get_attribute("aria-label", timeout=timeout)
    count = parse_count(label)
    if count is not None:
        return count
    count = parse_count(await loc.inner_text(timeout=timeout))
    if count is not None:
        return count
    # A rendered button without a number means nothing has been counted yet
    return 0 if name != "views" else None


@optional_field
async def has_media(element) -> Optional[bool]:
    for selector in SELECTORS["media"]:
        if await element.locator(selector).count() > 0:
            return True
    return False


@optional_field
async def extract_social_context(element, timeout: int = READ_TIMEOUT) -> Optional[str]:
    """Banner text above the tweet, or "" when the tweet has none."""
    try:
        loc = await first_match(element, SELECTORS["social_context"], "social_context")
    except FieldExtractionFailure:
        return ""
    return (await loc.inner_text(timeout=timeout) or "").strip()


async def read_metrics(element, timeout: int = READ_TIMEOUT) -> Metrics:
    return Metrics(
        replies=await extract_metric(element, "replies", timeout),
        retweets=await extract_metric(element, "retweets", timeout),
        likes=await extract_metric(element, "likes", timeout),
        views=await extract_metric(element, "views", timeout),
    )


async def read_tweet_fields(element, timeout: int = READ_TIMEOUT) -> Dict[str, Any]:
    """Run every field routine; each value is None when that field was not found."""
    return {
        "text": await extract_text(element, timeout),
        "name": await extract_author(element, timeout),
        "url": await extract_url(element, timeout),
        "time": await extract_time(element, timeout),
        "metrics": await read_metrics(element, timeout),
        "social_context": await extract_social_context(element, timeout),
        "has_media": await has_media(element),
    }


def build_tweet_record(fields: Dict[str, Any]) -> Optional[TweetRecord]:
    """Package field results; no text means no record."""
    text = fields.get("text")
    if not text:
        return None

    author, handle = fields.get("name") or (None, None)
    is_retweet, is_pinned = classify_social_context(fields.get("social_context"))

    return TweetRecord(
        text=text,
        author=author,
        handle=handle,
        url=fields.get("url"),
        metrics=fields.get("metrics") or Metrics(),
        time=fields.get("time"),
        is_retweet=is_retweet,
        is_pinned=is_pinned,
        has_media=fields.get("has_media"),
    )


def build_reply_record(fields: Dict[str, Any]) -> Optional[ReplyRecord]:
    text = fields.get("text")
    if not text:
        return None

    author, handle = fields.get("name") or (None, None)
    return ReplyRecord(
        text=text,
        author=author,
        handle=handle,
        metrics=fields.get("metrics") or Metrics(),
        time=fields.get("time"),
    )


def build_trend_record(rank: int, raw_text: Optional[str]) -> Optional[TrendRecord]:
    parts = classify_trend_lines(segment_lines(raw_text))
    if not parts.topic:
        return None
    return TrendRecord(
        rank=rank,
        topic=parts.topic,
        category=parts.category,
        post_count=parts.post_count,
    )


async def assemble_tweet_record(element, timeout: int = READ_TIMEOUT) -> Optional[TweetRecord]:
    return build_tweet_record(await read_tweet_fields(element, timeout))


async def assemble_reply_record(element, timeout: int = READ_TIMEOUT) -> Optional[ReplyRecord]:
    return build_reply_record(await read_tweet_fields(element, timeout))


@optional_field
async def extract_trend_text(element, timeout: int = READ_TIMEOUT) -> Optional[str]:
    return await element.inner_text(timeout=timeout)


async def assemble_trend_record(element, rank: int, timeout: int = READ_TIMEOUT) -> Optional[TrendRecord]:
    return build_trend_record(rank, await extract_trend_text(element, timeout))


def cap_count(requested: Optional[int], available: int, hard_cap: int) -> int:
    """min(requested, available, hard_cap), never negative."""
    if requested is None:
        requested = hard_cap
    return max(0, min(requested, available, hard_cap))


async def extract_listing(
    locator,
    requested: Optional[int],
    hard_cap: int,
    assemble: Callable[[Any, int], Awaitable[Optional[Any]]],
    start: int = 0,
    stats: Optional[InvocationStats] = None
) -> List[Any]:
    """
    Assemble records from matching elements in DOM order.

    Args:
        locator: Locator matching one element per row
        requested: Number of records the caller asked for
        hard_cap: Upper bound regardless of the request
        assemble: Coroutine (element, position) -> record or None, where
            position is the number of records emitted so far
        start: Number of leading elements to skip
        stats: Optional counters to update

    Returns:
        At most cap_count(requested, available, hard_cap) records
    """
    total = await locator.count()
    available = max(0, total - start)
    limit = cap_count(requested, available, hard_cap)

    records: List[Any] = []
    dropped = 0

    for i in range(start, total):
        if len(records) >= limit:
            break
        try:
            record = await assemble(locator.nth(i), len(records))
        except Exception as e:
            logger.debug(f"Error extracting row {i}: {e}")
            record = None

        if record is None:
            dropped += 1
            continue
        records.append(record)

    if dropped:
        logger.info(f"Dropped {dropped} rows without a primary field")
    if stats is not None:
        stats.add_records(len(records), dropped)

    return records
