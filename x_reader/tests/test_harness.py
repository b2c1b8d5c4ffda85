"""
Tests for the stdin/stdout invocation harness.
"""

import io
import json

import pytest
from unittest.mock import AsyncMock

from x_reader.errors import (
    EXIT_FAILURE,
    EXIT_INTERRUPTED,
    EXIT_INVALID_INPUT,
    EXIT_OK,
    EXIT_SESSION_BUSY,
    InvalidRequest,
    SessionBusy,
)
from x_reader.extractors import TrendRecord
from x_reader.harness import (
    Envelope,
    ReadTweetRequest,
    SearchRequest,
    TrendingRequest,
    UserPostsRequest,
    invoke,
    parse_request,
    run,
)


def run_handler(handler, request_type, raw, config):
    stdout = io.StringIO()
    code = run(handler, request_type, stdin=io.StringIO(raw), stdout=stdout, config=config)
    return code, json.loads(stdout.getvalue())


class TestParseRequest:

    def test_search(self):
        request = parse_request('{"query": "python", "count": 5, "tab": "top"}', SearchRequest)
        assert request == SearchRequest(query="python", count=5, tab="top")

    def test_blank_input_uses_defaults(self):
        assert parse_request("", TrendingRequest) == TrendingRequest(count=10)
        assert parse_request("  \n", TrendingRequest).count == 10

    def test_tweet_id_alias(self):
        assert parse_request('{"tweetId": 20}', ReadTweetRequest).tweet_url == "20"
        assert parse_request('{"url": "https://x.com/a/status/1"}', ReadTweetRequest).tweet_url \
            == "https://x.com/a/status/1"

    @pytest.mark.parametrize("raw", [
        "{not json",
        "[1, 2]",
        '"text"',
        '{"count": "many"}',
        '{"count": 0}',
        '{"count": true}',
    ])
    def test_malformed(self, raw):
        with pytest.raises(InvalidRequest):
            parse_request(raw, TrendingRequest)

    def test_missing_required_field(self):
        with pytest.raises(InvalidRequest):
            parse_request('{"count": 3}', UserPostsRequest)

    def test_wrong_field_type(self):
        with pytest.raises(InvalidRequest):
            parse_request('{"query": ["a"]}', SearchRequest)


class TestEnvelope:

    def test_success_with_records(self):
        envelope = Envelope.ok("Found 1 trending topic", data=[TrendRecord(rank=1, topic="#AI")])

        assert envelope.to_dict() == {
            "success": True,
            "message": "Found 1 trending topic",
            "data": [{"rank": 1, "topic": "#AI"}],
        }

    def test_empty_success_has_no_data(self):
        assert Envelope.ok("No tweets found").to_dict() == {
            "success": True, "message": "No tweets found"
        }

    def test_from_error(self):
        envelope = Envelope.from_error(SessionBusy("profile in use", artifact="/p/SingletonLock"))

        assert not envelope.success
        assert envelope.exit_code == EXIT_SESSION_BUSY
        assert envelope.to_dict()["error"] == {
            "type": "SessionBusy",
            "message": "profile in use",
            "retryable": True,
            "artifact": "/p/SingletonLock",
        }

    def test_non_ascii_text_is_preserved(self):
        assert "日本語" in Envelope.ok("日本語").to_json()


class TestRun:

    def test_success(self, config):
        handler = AsyncMock(return_value=Envelope.ok("Found 1 tweet", data=[{"text": "hi"}]))

        code, output = run_handler(handler, SearchRequest, '{"query": "hi"}', config)

        assert code == EXIT_OK
        assert output["success"] is True
        assert output["data"] == [{"text": "hi"}]
        request, passed_config, stats = handler.await_args.args
        assert request == SearchRequest(query="hi")
        assert passed_config is config

    def test_invalid_json_never_reaches_handler(self, config):
        handler = AsyncMock()

        code, output = run_handler(handler, SearchRequest, "{oops", config)

        assert code == EXIT_INVALID_INPUT
        assert output["success"] is False
        assert output["error"]["type"] == "InvalidRequest"
        handler.assert_not_awaited()

    def test_undecodable_stdin_becomes_envelope(self, config):
        handler = AsyncMock()
        stdin = io.TextIOWrapper(io.BytesIO(b'{"count": "\xff\xfe"}'), encoding="utf-8")
        stdout = io.StringIO()

        code = run(handler, TrendingRequest, stdin=stdin, stdout=stdout, config=config)

        assert code == EXIT_INVALID_INPUT
        output = json.loads(stdout.getvalue())
        assert output["success"] is False
        assert output["error"]["type"] == "InvalidRequest"
        assert "UTF-8" in output["message"]
        handler.assert_not_awaited()

    def test_unreadable_stdin_becomes_envelope(self, config):
        class BrokenStream(io.StringIO):
            def read(self, *args):
                raise OSError("Bad file descriptor")

        stdout = io.StringIO()
        code = run(AsyncMock(), TrendingRequest, stdin=BrokenStream(), stdout=stdout, config=config)

        output = json.loads(stdout.getvalue())
        assert code == EXIT_INVALID_INPUT
        assert output["error"]["type"] == "InvalidRequest"

    def test_reader_error_becomes_envelope(self, config):
        handler = AsyncMock(side_effect=SessionBusy("profile in use"))

        code, output = run_handler(handler, TrendingRequest, "{}", config)

        assert code == EXIT_SESSION_BUSY
        assert output["error"]["retryable"] is True

    def test_unhandled_exception_becomes_envelope(self, config):
        handler = AsyncMock(side_effect=RuntimeError("boom"))

        code, output = run_handler(handler, TrendingRequest, "{}", config)

        assert code == EXIT_FAILURE
        assert output == {
            "success": False,
            "message": "boom",
            "error": {"type": "RuntimeError", "message": "boom", "retryable": False},
        }

    def test_interrupt(self, config):
        handler = AsyncMock(side_effect=KeyboardInterrupt())

        code, output = run_handler(handler, TrendingRequest, "{}", config)

        assert code == EXIT_INTERRUPTED
        assert output["error"]["type"] == "KeyboardInterrupt"

    def test_stdout_holds_exactly_one_document(self, config):
        handler = AsyncMock(return_value=Envelope.ok("ok"))
        stdout = io.StringIO()

        run(handler, TrendingRequest, stdin=io.StringIO(""), stdout=stdout, config=config)

        lines = stdout.getvalue().splitlines()
        assert len(lines) == 1
        json.loads(lines[0])


def test_invoke_returns_handler_envelope(config):
    envelope = Envelope.ok("done")
    handler = AsyncMock(return_value=envelope)

    assert invoke(handler, TrendingRequest, "{}", config) is envelope
