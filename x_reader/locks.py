"""
Profile lock reconciliation.

Chromium marks a profile as in use with SingletonLock (a symlink whose target
is "<hostname>-<pid>") plus the SingletonCookie and SingletonSocket companions.
They survive a SIGKILL or container eviction and then block every later launch,
so they are checked before each open: removed when orphaned, respected when a
live process still owns them.
"""

import fcntl
import os
import socket
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

import psutil

from .errors import SessionBusy, SessionLaunchError
from .logger import get_logger

logger = get_logger("locks")

SINGLETON_LOCK = "SingletonLock"
LOCK_ARTIFACTS = (SINGLETON_LOCK, "SingletonCookie", "SingletonSocket")

# Seconds a process may appear to start after its lock was written (clock granularity)
START_TIME_SLACK = 1.0

PathLike = Union[str, Path]


class LockState(str, Enum):
    CLEAN = "clean"
    HELD_LIVE = "held_live"
    HELD_STALE = "held_stale"


@dataclass
class LockOwner:
    """Who SingletonLock claims holds the profile."""
    host: Optional[str] = None
    pid: Optional[int] = None


@dataclass
class LockInspection:
    state: LockState
    artifacts: List[Path] = field(default_factory=list)
    owner: Optional[LockOwner] = None
    age: Optional[float] = None
    reason: str = ""

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "artifacts": [str(p) for p in self.artifacts],
            "owner_host": self.owner.host if self.owner else None,
            "owner_pid": self.owner.pid if self.owner else None,
            "age_seconds": self.age,
            "reason": self.reason,
        }


def pid_alive(pid: int) -> Optional[bool]:
    """
    Liveness of a local process. Zombies count as dead.

    Returns None when the process exists but cannot be inspected.
    """
    if pid <= 0 or not psutil.pid_exists(pid):
        return False
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        return None


def process_start_time(pid: int) -> Optional[float]:
    """Creation time of a local process, or None when it is gone or hidden."""
    try:
        return psutil.Process(pid).create_time()
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return None


def artifact_mtime(path: Path) -> Optional[float]:
    """mtime of a lock artifact itself (not its target), or None once it is gone."""
    try:
        return os.lstat(path).st_mtime
    except (FileNotFoundError, NotADirectoryError):
        return None


def parse_lock_target(target: str) -> LockOwner:
    """Split a SingletonLock target like "myhost-4242" into host and pid."""
    host, sep, pid = target.strip().rpartition("-")
    if not sep or not host or not pid.isdigit():
        return LockOwner()
    return LockOwner(host=host, pid=int(pid))


def read_lock_owner(path: Path) -> LockOwner:
    """Read the owner of a SingletonLock, whether it is a symlink or a file."""
    try:
        if path.is_symlink():
            return parse_lock_target(os.readlink(path))
        return parse_lock_target(path.read_text(encoding="utf-8", errors="ignore"))
    except OSError:
        return LockOwner()


class LockReconciler:
    """
    Classify and clear browser profile locks.

    States: CLEAN (no artifacts), HELD_LIVE (an owner is running, or the owner
    cannot be verified and the lock is younger than the grace period) and
    HELD_STALE (owner dead, or unverifiable and older than the grace period).
    """

    def __init__(
        self,
        grace_seconds: float = 30.0,
        is_alive: Optional[Callable[[int], Optional[bool]]] = None,
        hostname: Optional[str] = None,
        clock: Callable[[], float] = time.time,
        started_at: Optional[Callable[[int], Optional[float]]] = None
    ):
        self.grace_seconds = grace_seconds
        self.is_alive = is_alive or pid_alive
        self.hostname = hostname or socket.gethostname()
        self.clock = clock
        self.started_at = started_at or process_start_time

    def _by_age(self, artifacts, owner, age, reason) -> LockInspection:
        if age > self.grace_seconds:
            return LockInspection(LockState.HELD_STALE, artifacts, owner, age,
                                  f"{reason}; older than {self.grace_seconds:.0f}s")
        return LockInspection(LockState.HELD_LIVE, artifacts, owner, age,
                              f"{reason}; within {self.grace_seconds:.0f}s grace period")

    def inspect(self, profile_dir: PathLike) -> LockInspection:
        """Classify the lock artifacts in a profile directory without touching them."""
        profile = Path(profile_dir)
        mtimes = {}
        for name in LOCK_ARTIFACTS:
            mtime = artifact_mtime(profile / name)
            if mtime is not None:
                mtimes[profile / name] = mtime
        if not mtimes:
            return LockInspection(LockState.CLEAN, reason="no lock artifacts")

        artifacts = list(mtimes)
        age = max(0.0, self.clock() - max(mtimes.values()))
        lock_path = profile / SINGLETON_LOCK
        if lock_path not in mtimes:
            return self._by_age(artifacts, None, age, "companion artifacts without SingletonLock")

        owner = read_lock_owner(lock_path)
        if owner.pid is None:
            return self._by_age(artifacts, owner, age, "unreadable lock owner")

        if owner.host != self.hostname:
            return self._by_age(artifacts, owner, age, f"owned by another host ({owner.host})")

        # The browser is always a child process, never this one
        if owner.pid == os.getpid():
            return LockInspection(LockState.HELD_STALE, artifacts, owner, age,
                                  f"pid {owner.pid} is this process, not a browser")

        alive = self.is_alive(owner.pid)
        if alive is None:
            return self._by_age(artifacts, owner, age, f"cannot inspect pid {owner.pid}")
        if not alive:
            return LockInspection(LockState.HELD_STALE, artifacts, owner, age,
                                  f"pid {owner.pid} is not running")

        started = self.started_at(owner.pid)
        if started is not None and started > mtimes[lock_path] + START_TIME_SLACK:
            return LockInspection(LockState.HELD_STALE, artifacts, owner, age,
                                  f"pid {owner.pid} was reused after the lock was written")
        return LockInspection(LockState.HELD_LIVE, artifacts, owner, age,
                              f"pid {owner.pid} is running")

    def reconcile(self, profile_dir: PathLike) -> LockState:
        """
        Clear orphaned lock artifacts before a launch.

        Returns:
            The state found: CLEAN (nothing to do) or HELD_STALE (removed)

        Raises:
            SessionBusy: a live process holds the profile
            SessionLaunchError: a stale artifact could not be removed
        """
        inspection = self.inspect(profile_dir)

        if inspection.state is LockState.HELD_LIVE:
            raise SessionBusy(
                f"Browser profile {profile_dir} is in use ({inspection.reason})",
                artifact=str(inspection.artifacts[0])
            )

        if inspection.state is LockState.HELD_STALE:
            logger.warning(f"Removing stale profile lock: {inspection.reason}")
            for path in inspection.artifacts:
                try:
                    os.unlink(path)
                except FileNotFoundError:
                    continue
                except OSError as e:
                    raise SessionLaunchError(
                        f"Could not remove stale lock artifact {path}", cause=e
                    )
                logger.debug(f"Removed {path}")

        return inspection.state


class ProfileLock:
    """
    Advisory lock held by one x_reader process for the lifetime of its session.

    Covers the gap between reconciliation and the browser creating its own
    SingletonLock. The kernel drops it if the process dies.
    """

    FILENAME = ".x_reader.lock"

    def __init__(self, profile_dir: PathLike):
        self.lock_file = Path(profile_dir) / self.FILENAME
        self._fd = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self):
        if self._fd is not None:
            return
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        fd = open(self.lock_file, "a+", encoding="utf-8")
        try:
            fcntl.flock(fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            fd.seek(0)
            owner = fd.read().strip() or "unknown"
            fd.close()
            raise SessionBusy(
                f"Browser profile is being opened by another process (pid {owner})",
                artifact=str(self.lock_file)
            )
        fd.seek(0)
        fd.truncate()
        fd.write(str(os.getpid()))
        fd.flush()
        self._fd = fd

    def release(self):
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd.fileno(), fcntl.LOCK_UN)
        finally:
            self._fd.close()
            self._fd = None

    def is_free(self) -> bool:
        """Probe the lock without taking it or writing to the file."""
        if not self.lock_file.exists():
            return True
        with open(self.lock_file, "r", encoding="utf-8") as fd:
            try:
                fcntl.flock(fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                return False
            fcntl.flock(fd.fileno(), fcntl.LOCK_UN)
        return True

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()


def describe_locks(profile_dir: PathLike, grace_seconds: float = 30.0) -> Tuple[LockInspection, bool]:
    """Inspection plus whether the advisory lock is currently free."""
    inspection = LockReconciler(grace_seconds).inspect(profile_dir)
    return inspection, ProfileLock(profile_dir).is_free()
