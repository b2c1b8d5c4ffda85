"""
Capabilities built on the session, navigator and extractors.

Each handler takes a typed request, opens the session in a scope that closes
it on every exit path, and maps extracted records into an Envelope. Input is
validated before the session is opened.
"""

from typing import Optional

from .config import ReaderConfig
from .errors import NavigationTimeout
from .extractors import (
    assemble_reply_record,
    assemble_trend_record,
    assemble_tweet_record,
    extract_listing,
    extract_url,
)
from .harness import (
    Envelope,
    ReadRepliesRequest,
    ReadTweetRequest,
    SearchRequest,
    TrendingRequest,
    UserPostsRequest,
)
from .logger import get_logger, InvocationStats
from .navigator import (
    Navigator,
    NavigationResult,
    TREND_MARKER,
    TWEET_MARKER,
    profile_target,
    resolve_tweet_navigation,
    search_target,
    trending_target,
)
from .session import open_session

logger = get_logger("features")

# Upper bounds on rows read per call, whatever the request asks for
TRENDING_CAP = 30
SEARCH_CAP = 20
USER_POSTS_CAP = 20
REPLIES_CAP = 20


def _plural(count: int, word: str, plural: Optional[str] = None) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {plural or word + 's'}"


def _require_reachable(result: NavigationResult, label: str):
    """An empty page is a result; a page that never loaded is a failure."""
    if not result.reached:
        last = result.failures[-1] if result.failures else "no candidates"
        raise NavigationTimeout(
            f"Could not load {label} ({_plural(result.attempted, 'attempt')}; last: {last})",
            url=result.matched_url
        )


async def _focal_index(articles, tweet_id: str, timeout: int) -> int:
    """Position of the requested tweet among the thread's articles (0 if unknown)."""
    total = await articles.count()
    for i in range(total):
        url = await extract_url(articles.nth(i), timeout)
        if url and url.rstrip("/").endswith(f"/status/{tweet_id}"):
            return i
    logger.debug(f"Tweet {tweet_id} not matched among {total} articles; using the first")
    return 0


async def trending(request: TrendingRequest, config: ReaderConfig,
                   stats: Optional[InvocationStats] = None) -> Envelope:
    target = trending_target()

    async with open_session(config) as session:
        result = await Navigator(config, stats).goto(session, target)
        if not result.found:
            _require_reachable(result, "trending topics")
            return Envelope.ok("No trending topics found")

        records = await extract_listing(
            result.page.locator(TREND_MARKER),
            request.count,
            TRENDING_CAP,
            lambda element, position: assemble_trend_record(
                element, position + 1, config.element_timeout
            ),
            stats=stats,
        )

    if not records:
        return Envelope.ok("No trending topics found")
    return Envelope.ok(f"Found {_plural(len(records), 'trending topic')}", data=records)


async def search(request: SearchRequest, config: ReaderConfig,
                 stats: Optional[InvocationStats] = None) -> Envelope:
    target = search_target(request.query, request.tab)
    query = request.query.strip()

    async with open_session(config) as session:
        result = await Navigator(config, stats).goto(session, target)
        if not result.found:
            _require_reachable(result, f"search results for {query!r}")
            return Envelope.ok(f"No tweets found for {query!r}")

        records = await extract_listing(
            result.page.locator(TWEET_MARKER),
            request.count,
            SEARCH_CAP,
            lambda element, position: assemble_tweet_record(element, config.element_timeout),
            stats=stats,
        )

    if not records:
        return Envelope.ok(f"No tweets found for {query!r}")
    return Envelope.ok(f"Found {_plural(len(records), 'tweet')} for {query!r}", data=records)


async def user_posts(request: UserPostsRequest, config: ReaderConfig,
                     stats: Optional[InvocationStats] = None) -> Envelope:
    target = profile_target(request.username, request.tab)
    label = target.label

    async with open_session(config) as session:
        navigator = Navigator(config, stats)
        result = await navigator.goto(session, target)
        if not result.found:
            _require_reachable(result, f"{label}'s profile")
            reason = await navigator.page_unavailable_reason(result.page)
            if reason:
                message = f"Cannot read {label}: {reason}"
                return Envelope.fail(message, error={
                    "type": "PageUnavailable",
                    "message": message,
                    "retryable": reason.startswith("rate limited"),
                })
            return Envelope.ok(f"No posts found for {label}")

        records = await extract_listing(
            result.page.locator(TWEET_MARKER),
            request.count,
            USER_POSTS_CAP,
            lambda element, position: assemble_tweet_record(element, config.element_timeout),
            stats=stats,
        )

    if not records:
        return Envelope.ok(f"No posts found for {label}")
    return Envelope.ok(f"Found {_plural(len(records), 'post')} from {label}", data=records)


async def read_tweet(request: ReadTweetRequest, config: ReaderConfig,
                     stats: Optional[InvocationStats] = None) -> Envelope:
    nav = resolve_tweet_navigation(request.tweet_url)

    async with open_session(config) as session:
        navigator = Navigator(config, stats)
        result = await navigator.goto(session, nav.target)
        await navigator.wait_for_primary(result.page, TWEET_MARKER)

        articles = result.page.locator(TWEET_MARKER)
        focal = await _focal_index(articles, nav.tweet_id, config.element_timeout)
        record = await assemble_tweet_record(articles.nth(focal), config.element_timeout)

    if record is None:
        message = f"Could not read the text of tweet {nav.tweet_id}"
        return Envelope.fail(message, error={
            "type": "FieldExtractionFailure",
            "message": message,
            "retryable": True,
        })

    if stats is not None:
        stats.add_records(1)
    if record.url is None:
        record.url = nav.url
    author = record.handle or record.author or "unknown author"
    return Envelope.ok(f"Read tweet {nav.tweet_id} by {author}", data=record)


async def read_replies(request: ReadRepliesRequest, config: ReaderConfig,
                       stats: Optional[InvocationStats] = None) -> Envelope:
    nav = resolve_tweet_navigation(request.tweet_url)

    async with open_session(config) as session:
        navigator = Navigator(config, stats)
        result = await navigator.goto(session, nav.target)
        await navigator.wait_for_primary(result.page, TWEET_MARKER)

        articles = result.page.locator(TWEET_MARKER)
        focal = await _focal_index(articles, nav.tweet_id, config.element_timeout)
        records = await extract_listing(
            articles,
            request.count,
            REPLIES_CAP,
            lambda element, position: assemble_reply_record(element, config.element_timeout),
            start=focal + 1,
            stats=stats,
        )

    if not records:
        return Envelope.ok(f"No replies found for tweet {nav.tweet_id}")
    return Envelope.ok(
        f"Found {_plural(len(records), 'reply', 'replies')} to tweet {nav.tweet_id}", data=records
    )


# Command name -> (handler, request type)
COMMANDS = {
    "trending": (trending, TrendingRequest),
    "search": (search, SearchRequest),
    "user-posts": (user_posts, UserPostsRequest),
    "read-tweet": (read_tweet, ReadTweetRequest),
    "read-replies": (read_replies, ReadRepliesRequest),
}
