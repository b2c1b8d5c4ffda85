"""
Configuration handling for x_reader.

The configuration is resolved once at process entry from the environment
(optionally seeded from a .env file) and passed explicitly to every component.
"""

import os
import shutil
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

from .errors import ConfigurationError


DEFAULT_PROFILE_DIR = "./.x_session/profile"
DEFAULT_AUTH_FILE = "./.x_session/auth.json"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

DEFAULT_LAUNCH_ARGS = (
    "--disable-blink-features=AutomationControlled",
    "--no-first-run",
    "--no-default-browser-check",
)

# Looked up in order when X_READER_BROWSER is not set
BROWSER_CANDIDATES = (
    "google-chrome",
    "google-chrome-stable",
    "chromium",
    "chromium-browser",
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
)

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class ReaderConfig:
    """Configuration for the browser runtime."""

    # None = Playwright's bundled Chromium
    executable_path: Optional[str] = None

    # Persistent browser storage and the login marker
    profile_dir: str = DEFAULT_PROFILE_DIR
    auth_file: str = DEFAULT_AUTH_FILE

    # Timeout settings (milliseconds)
    navigation_timeout: int = 30000
    settle_delay: int = 3000
    element_timeout: int = 10000

    # Browser settings
    viewport_width: int = 1280
    viewport_height: int = 900
    launch_args: Tuple[str, ...] = field(default=DEFAULT_LAUNCH_ARGS)
    headless: bool = True
    remote_debugging_port: int = 9222
    user_agent: str = DEFAULT_USER_AGENT

    # Attach to an already running browser instead of launching one
    cdp_url: Optional[str] = None

    # Age after which a lock with an unverifiable owner is treated as stale
    lock_grace_seconds: float = 30.0

    # Logging settings
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @property
    def viewport(self) -> dict:
        return {"width": self.viewport_width, "height": self.viewport_height}

    def browser_args(self) -> list:
        """Launch arguments, exposing remote debugging when running headless."""
        args = list(self.launch_args)
        if self.headless and self.remote_debugging_port:
            args.append(f"--remote-debugging-port={self.remote_debugging_port}")
        return args

    def to_dict(self) -> dict:
        """Convert configuration to dictionary."""
        data = asdict(self)
        data["launch_args"] = list(self.launch_args)
        return data


def _parse_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}")
    if value < 0:
        raise ConfigurationError(f"{key} must not be negative, got {value}")
    return value


def _parse_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw.strip())
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}")


def _parse_bool(env: Mapping[str, str], key: str) -> Optional[bool]:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return None
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigurationError(f"{key} must be a boolean, got {raw!r}")


def _parse_viewport(env: Mapping[str, str]) -> Tuple[int, int]:
    raw = env.get("X_READER_VIEWPORT")
    if not raw:
        return ReaderConfig.viewport_width, ReaderConfig.viewport_height
    try:
        width, height = raw.lower().split("x", 1)
        return int(width), int(height)
    except ValueError:
        raise ConfigurationError(f"X_READER_VIEWPORT must look like 1280x900, got {raw!r}")


def resolve_executable(env: Mapping[str, str]) -> Optional[str]:
    """
    Resolve the browser executable.

    An explicitly configured path must exist. Without one, the first installed
    Chrome/Chromium is used, or None to fall back to Playwright's own build.
    """
    configured = env.get("X_READER_BROWSER")
    if configured:
        path = Path(configured).expanduser()
        if path.exists():
            return str(path)
        found = shutil.which(configured)
        if found:
            return found
        raise ConfigurationError(f"Browser executable not found: {configured}")

    for candidate in BROWSER_CANDIDATES:
        found = shutil.which(candidate)
        if found:
            return found
        if os.path.isabs(candidate) and os.path.exists(candidate):
            return candidate
    return None


def load_config(environ: Optional[Mapping[str, str]] = None) -> ReaderConfig:
    """
    Build the process configuration from environment and defaults.

    Args:
        environ: Mapping to read instead of os.environ (a .env file is only
            consulted when reading the real environment)

    Returns:
        ReaderConfig instance
    """
    if environ is None:
        load_dotenv(override=False)
        environ = os.environ

    headless = _parse_bool(environ, "X_READER_HEADLESS")
    if headless is None:
        headless = not (environ.get("DISPLAY") or environ.get("WAYLAND_DISPLAY"))

    launch_args = DEFAULT_LAUNCH_ARGS
    extra_args = environ.get("X_READER_LAUNCH_ARGS", "").split()
    if extra_args:
        launch_args = DEFAULT_LAUNCH_ARGS + tuple(extra_args)

    width, height = _parse_viewport(environ)

    return ReaderConfig(
        executable_path=resolve_executable(environ),
        profile_dir=environ.get("X_READER_PROFILE_DIR") or DEFAULT_PROFILE_DIR,
        auth_file=environ.get("X_READER_AUTH_FILE") or DEFAULT_AUTH_FILE,
        navigation_timeout=_parse_int(environ, "X_READER_NAV_TIMEOUT", 30000),
        settle_delay=_parse_int(environ, "X_READER_SETTLE_DELAY", 3000),
        element_timeout=_parse_int(environ, "X_READER_ELEMENT_TIMEOUT", 10000),
        viewport_width=width,
        viewport_height=height,
        launch_args=launch_args,
        headless=headless,
        remote_debugging_port=_parse_int(environ, "X_READER_DEBUG_PORT", 9222),
        user_agent=environ.get("X_READER_USER_AGENT") or DEFAULT_USER_AGENT,
        cdp_url=environ.get("X_READER_CDP_URL") or None,
        lock_grace_seconds=_parse_float(environ, "X_READER_LOCK_GRACE", 30.0),
        log_level=(environ.get("X_READER_LOG_LEVEL") or "INFO").upper(),
        log_file=environ.get("X_READER_LOG_FILE") or None,
    )
