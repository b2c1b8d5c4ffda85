"""
Invocation harness for x_reader.

One process, one request: a JSON object on stdin, a JSON envelope on stdout,
and an exit status that reflects the outcome. Whatever happens inside the
handler, the caller gets parseable JSON.
"""

import asyncio
import json
import sys
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TextIO, Type

from .config import ReaderConfig, load_config
from .errors import (
    EXIT_FAILURE,
    EXIT_INTERRUPTED,
    EXIT_OK,
    InvalidRequest,
    ReaderError,
)
from .logger import get_logger, InvocationStats

logger = get_logger("harness")

DEFAULT_COUNT = 10


@dataclass
class Envelope:
    """Uniform result of every capability."""
    success: bool
    message: str
    data: Optional[Any] = None
    error: Optional[Dict[str, Any]] = None
    exit_code: int = EXIT_OK

    @classmethod
    def ok(cls, message: str, data: Optional[Any] = None) -> "Envelope":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, message: str, error: Optional[Dict[str, Any]] = None,
             exit_code: int = EXIT_FAILURE) -> "Envelope":
        return cls(success=False, message=message, error=error, exit_code=exit_code)

    @classmethod
    def from_error(cls, error: ReaderError) -> "Envelope":
        return cls.fail(error.message, error=error.to_dict(), exit_code=error.exit_code)

    def to_dict(self) -> dict:
        result = {"success": self.success, "message": self.message}
        if self.data is not None:
            result["data"] = _serialize(self.data)
        if self.error is not None:
            result["error"] = self.error
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)


def _serialize(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_serialize(v) for v in value]
    if isinstance(value, dict):
        return {k: _serialize(v) for k, v in value.items()}
    return value


def _count_field(data: dict, key: str = "count", default: int = DEFAULT_COUNT) -> int:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        raise InvalidRequest(f"'{key}' must be a positive integer")
    try:
        count = int(value)
    except (TypeError, ValueError):
        raise InvalidRequest(f"'{key}' must be a positive integer, got {value!r}")
    if count < 1:
        raise InvalidRequest(f"'{key}' must be at least 1, got {count}")
    return count


def _str_field(data: dict, *keys: str, default: Optional[str] = None,
               required: bool = False) -> Optional[str]:
    for key in keys:
        value = data.get(key)
        if value is None:
            continue
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        if not isinstance(value, str):
            raise InvalidRequest(f"'{key}' must be a string")
        return value
    if required:
        raise InvalidRequest(f"Missing required field '{keys[0]}'")
    return default


@dataclass(frozen=True)
class TrendingRequest:
    count: int = DEFAULT_COUNT

    @classmethod
    def from_dict(cls, data: dict) -> "TrendingRequest":
        return cls(count=_count_field(data))


@dataclass(frozen=True)
class SearchRequest:
    query: str
    count: int = DEFAULT_COUNT
    tab: str = "latest"

    @classmethod
    def from_dict(cls, data: dict) -> "SearchRequest":
        return cls(
            query=_str_field(data, "query", required=True),
            count=_count_field(data),
            tab=_str_field(data, "tab", default="latest"),
        )


@dataclass(frozen=True)
class UserPostsRequest:
    username: str
    count: int = DEFAULT_COUNT
    tab: str = "posts"

    @classmethod
    def from_dict(cls, data: dict) -> "UserPostsRequest":
        return cls(
            username=_str_field(data, "username", required=True),
            count=_count_field(data),
            tab=_str_field(data, "tab", default="posts"),
        )


@dataclass(frozen=True)
class ReadTweetRequest:
    tweet_url: str

    @classmethod
    def from_dict(cls, data: dict) -> "ReadTweetRequest":
        return cls(tweet_url=_str_field(data, "tweetUrl", "tweetId", "url", required=True))


@dataclass(frozen=True)
class ReadRepliesRequest:
    tweet_url: str
    count: int = DEFAULT_COUNT

    @classmethod
    def from_dict(cls, data: dict) -> "ReadRepliesRequest":
        return cls(
            tweet_url=_str_field(data, "tweetUrl", "tweetId", "url", required=True),
            count=_count_field(data),
        )


def parse_request(raw: str, request_type: Type):
    """
    Parse the stdin document into a typed request.

    Blank input is an empty object, so capabilities whose fields all have
    defaults can be called without a body.

    Raises:
        InvalidRequest: not JSON, not an object, or fields of the wrong shape
    """
    raw = (raw or "").strip()
    if not raw:
        data = {}
    else:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidRequest(f"Request is not valid JSON: {e.msg} (line {e.lineno}, column {e.colno})")
    if not isinstance(data, dict):
        raise InvalidRequest("Request must be a JSON object")
    return request_type.from_dict(data)


Handler = Callable[[Any, ReaderConfig, InvocationStats], Awaitable[Envelope]]


def invoke(
    handler: Handler,
    request_type: Type,
    raw_request: str,
    config: Optional[ReaderConfig] = None,
    stats: Optional[InvocationStats] = None
) -> Envelope:
    """Parse, configure and run a handler, converting every fault to an envelope."""
    stats = stats or InvocationStats()
    try:
        request = parse_request(raw_request, request_type)
        if config is None:
            config = load_config()
        return asyncio.run(handler(request, config, stats))
    except ReaderError as e:
        logger.error(f"{type(e).__name__}: {e.message}")
        return Envelope.from_error(e)
    except Exception as e:
        logger.exception(f"Unhandled error: {e}")
        return Envelope.fail(
            str(e) or type(e).__name__,
            error={"type": type(e).__name__, "message": str(e), "retryable": False}
        )


def read_request(stream: TextIO) -> str:
    """
    Read the whole request document.

    Raises:
        InvalidRequest: stdin is not valid text or could not be read
    """
    try:
        return stream.read()
    except UnicodeDecodeError as e:
        raise InvalidRequest(f"Request is not valid UTF-8: {e.reason} at byte {e.start}", cause=e)
    except OSError as e:
        raise InvalidRequest(f"Could not read request: {e}", cause=e)


def write_envelope(envelope: Envelope, stream: TextIO):
    stream.write(envelope.to_json() + "\n")
    stream.flush()


def run(
    handler: Handler,
    request_type: Type,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
    config: Optional[ReaderConfig] = None,
    command: str = ""
) -> int:
    """
    Read one request from stdin, run the handler, write the envelope to stdout.

    Returns:
        Process exit status: 0 on success (including "found nothing")
    """
    stdin = stdin if stdin is not None else sys.stdin
    stdout = stdout if stdout is not None else sys.stdout
    stats = InvocationStats(command)
    stats.start()

    try:
        envelope = invoke(handler, request_type, read_request(stdin), config, stats)
    except InvalidRequest as e:
        logger.error(f"{type(e).__name__}: {e.message}")
        envelope = Envelope.from_error(e)
    except KeyboardInterrupt:
        envelope = Envelope.fail(
            "Interrupted",
            error={"type": "KeyboardInterrupt", "message": "Interrupted", "retryable": True},
            exit_code=EXIT_INTERRUPTED
        )

    stats.end()
    stats.log_summary(logger)
    write_envelope(envelope, stdout)
    return envelope.exit_code
