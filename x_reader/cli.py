"""
Command-line interface for x_reader.
"""

import argparse
import asyncio
import json
import logging
import sys

from .config import load_config
from .errors import EXIT_FAILURE, EXIT_INTERRUPTED, EXIT_OK, ReaderError
from .features import COMMANDS
from .harness import Envelope, run, write_envelope
from .locks import describe_locks
from .logger import setup_logger
from .session import AuthMarker, verify_login


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="x-reader",
        description="Read trends, searches, timelines and tweets from X.com "
                    "through a persistent logged-in browser profile",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  echo '{"count": 5}' | x-reader trending
  echo '{"query": "python", "count": 10, "tab": "latest"}' | x-reader search
  echo '{"username": "OpenAI", "count": 10}' | x-reader user-posts
  echo '{"tweetUrl": "https://x.com/user/status/123"}' | x-reader read-tweet
  echo '{"tweetUrl": "123", "count": 20}' | x-reader read-replies
  x-reader status                    # Auth marker and profile lock state
  x-reader verify                    # Check the saved profile is logged in

Requests are read from stdin; the result envelope is written to stdout.
        """
    )

    parser.add_argument(
        "command",
        choices=list(COMMANDS) + ["status", "verify", "config"],
        help="Capability to run, or a maintenance command"
    )

    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Path to log file (in addition to stderr output)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (debug) logging"
    )

    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Only log warnings and errors"
    )

    return parser.parse_args(argv)


def _print_json(data: dict):
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def show_status(config) -> int:
    """Print auth marker and profile lock state without changing anything."""
    inspection, advisory_free = describe_locks(config.profile_dir, config.lock_grace_seconds)
    _print_json({
        "profile_dir": config.profile_dir,
        "auth": AuthMarker(config.auth_file).read(),
        "locks": inspection.to_dict(),
        "advisory_lock_free": advisory_free,
    })
    return EXIT_OK


def verify(config) -> int:
    logged_in = asyncio.run(verify_login(config))
    _print_json({"loggedIn": logged_in, "auth": AuthMarker(config.auth_file).read()})
    return EXIT_OK if logged_in else EXIT_FAILURE


def main(argv=None):
    """Main entry point for CLI."""
    args = parse_args(argv)

    if args.verbose:
        log_level = logging.DEBUG
    elif args.quiet:
        log_level = logging.WARNING
    else:
        log_level = logging.INFO

    logger = setup_logger(log_file=args.log_file, level=log_level)

    try:
        config = load_config()
    except ReaderError as e:
        logger.error(e.message)
        if args.command in COMMANDS:
            write_envelope(Envelope.from_error(e), sys.stdout)
        sys.exit(e.exit_code)

    # Environment settings apply unless overridden on the command line
    if not (args.verbose or args.quiet):
        log_level = getattr(logging, config.log_level, logging.INFO)
    logger = setup_logger(log_file=args.log_file or config.log_file, level=log_level)

    if args.command in COMMANDS:
        handler, request_type = COMMANDS[args.command]
        sys.exit(run(handler, request_type, config=config, command=args.command))

    try:
        if args.command == "config":
            _print_json(config.to_dict())
            sys.exit(EXIT_OK)
        if args.command == "status":
            sys.exit(show_status(config))
        sys.exit(verify(config))

    except ReaderError as e:
        logger.error(e.message)
        sys.exit(e.exit_code)
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")
        sys.exit(EXIT_INTERRUPTED)
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(EXIT_FAILURE)


if __name__ == "__main__":
    main()
