"""
Session expiry timer with idle reset and a countdown warning.

The timer moves Active -> Warning -> Expired. Any interaction event (or an
explicit extend) pushes the deadline back to a full timeout; reaching zero
fires the expiry callback exactly once and releases every timer and listener
the session registered.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Protocol

import settings

logger = logging.getLogger(__name__)

ACTIVITY_EVENTS = ("pointerdown", "keydown", "scroll", "touchstart")


class SessionPhase(str, Enum):
    ACTIVE = "active"
    WARNING = "warning"
    EXPIRED = "expired"


@dataclass(frozen=True)
class SessionConfig:
    timeout_ms: int = settings.SESSION_TIMEOUT_MS
    warning_ms: int = settings.SESSION_WARNING_MS
    poll_interval_ms: int = settings.SESSION_POLL_INTERVAL_MS

    def __post_init__(self):
        if self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {self.timeout_ms}")
        if not 0 <= self.warning_ms <= self.timeout_ms:
            raise ValueError(f"warning_ms must be within [0, {self.timeout_ms}], got {self.warning_ms}")
        if self.poll_interval_ms <= 0:
            raise ValueError(f"poll_interval_ms must be positive, got {self.poll_interval_ms}")


class SessionSnapshot(NamedTuple):
    phase: SessionPhase
    time_remaining: int
    show_warning: bool


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_every(self, interval_ms: int, callback: Callable[[], Any]) -> Cancellable: ...

    def call_later(self, delay_ms: int, callback: Callable[[], Any]) -> Cancellable: ...


class _Repeater(threading.Thread):
    def __init__(self, interval_s: float, callback: Callable[[], Any]):
        super().__init__(daemon=True)
        self._interval_s = interval_s
        self._callback = callback
        self._stopped = threading.Event()

    def run(self):
        while not self._stopped.wait(self._interval_s):
            self._callback()

    def cancel(self) -> None:
        self._stopped.set()


class ThreadScheduler:
    """Scheduler backed by daemon threads."""

    def call_every(self, interval_ms: int, callback: Callable[[], Any]) -> Cancellable:
        repeater = _Repeater(interval_ms / 1000, callback)
        repeater.start()
        return repeater

    def call_later(self, delay_ms: int, callback: Callable[[], Any]) -> Cancellable:
        timer = threading.Timer(delay_ms / 1000, callback)
        timer.daemon = True
        timer.start()
        return timer


class ActivityEmitter:
    """Fans interaction events (pointerdown, keydown, ...) out to listeners."""

    def __init__(self):
        self._listeners: Dict[str, List[Callable[[str], Any]]] = {}
        self._lock = threading.Lock()

    def add_listener(self, event: str, callback: Callable[[str], Any]) -> None:
        with self._lock:
            self._listeners.setdefault(event, []).append(callback)

    def remove_listener(self, event: str, callback: Callable[[str], Any]) -> None:
        with self._lock:
            listeners = self._listeners.get(event, [])
            if callback in listeners:
                listeners.remove(callback)

    def listener_count(self, event: Optional[str] = None) -> int:
        with self._lock:
            if event is not None:
                return len(self._listeners.get(event, []))
            return sum(len(listeners) for listeners in self._listeners.values())

    def emit(self, event: str) -> None:
        with self._lock:
            listeners = list(self._listeners.get(event, []))
        for callback in listeners:
            callback(event)


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


def format_time(ms: float) -> str:
    """minutes:seconds, seconds zero-padded"""
    ms = max(0, int(ms))
    minutes, remainder = divmod(ms, 60_000)
    return f"{minutes}:{remainder // 1000:02d}"


class SessionTimer:
    """
    Args:
        on_expire: called once when the session runs out
        config: SessionConfig, defaults come from settings
        scheduler: drives the polling interval and the deadline one-shot.
            None means the host calls tick() itself (the Streamlit app polls
            from a fragment).
        activity: ActivityEmitter whose events reset the session
        clock: returns milliseconds, monotonic
    """

    def __init__(
        self,
        on_expire: Callable[[], Any],
        config: Optional[SessionConfig] = None,
        scheduler: Optional[Scheduler] = None,
        activity: Optional[ActivityEmitter] = None,
        clock: Callable[[], float] = _monotonic_ms,
    ):
        self.on_expire = on_expire
        self.config = config or SessionConfig()
        self._scheduler = scheduler
        self._activity = activity
        self._clock = clock
        self._lock = threading.RLock()

        self._phase = SessionPhase.ACTIVE
        self._mounted = False
        self._last_activity = clock()
        self._remaining = self.config.timeout_ms
        self._interval: Optional[Cancellable] = None
        self._deadline: Optional[Cancellable] = None

    # -- lifecycle ----------------------------------------------------------

    def mount(self) -> "SessionTimer":
        """Start a session now: arm the polling interval and deadline, listen for activity."""
        with self._lock:
            if self._mounted:
                return self
            self._mounted = True
            self._phase = SessionPhase.ACTIVE
            self._last_activity = self._clock()
            self._remaining = self.config.timeout_ms

            if self._scheduler is not None:
                self._interval = self._scheduler.call_every(self.config.poll_interval_ms, self.tick)
                self._arm_deadline()
            if self._activity is not None:
                for event in ACTIVITY_EVENTS:
                    self._activity.add_listener(event, self._on_activity)

        logger.info(f"Session started, expires in {format_time(self.config.timeout_ms)}")
        return self

    def unmount(self) -> None:
        with self._lock:
            self._release()

    def __enter__(self) -> "SessionTimer":
        return self.mount()

    def __exit__(self, exc_type, exc, tb):
        self.unmount()
        return False

    def _release(self) -> None:
        if self._interval is not None:
            self._interval.cancel()
            self._interval = None
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None
        if self._activity is not None and self._mounted:
            for event in ACTIVITY_EVENTS:
                self._activity.remove_listener(event, self._on_activity)
        self._mounted = False

    def _arm_deadline(self) -> None:
        if self._scheduler is None:
            return
        if self._deadline is not None:
            self._deadline.cancel()
        self._deadline = self._scheduler.call_later(self.config.timeout_ms, self.tick)

    # -- state --------------------------------------------------------------

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def is_mounted(self) -> bool:
        return self._mounted

    @property
    def is_expired(self) -> bool:
        return self._phase is SessionPhase.EXPIRED

    @property
    def time_remaining(self) -> int:
        """Milliseconds left as of the last poll, never negative."""
        return int(self._remaining)

    @property
    def show_warning(self) -> bool:
        return self._phase is SessionPhase.WARNING

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(self._phase, self.time_remaining, self.show_warning)

    @staticmethod
    def format_time(ms: float) -> str:
        return format_time(ms)

    # -- transitions --------------------------------------------------------

    def tick(self) -> SessionSnapshot:
        """Recompute the remaining time; expires the session once it reaches zero."""
        with self._lock:
            if not self._mounted or self._phase is SessionPhase.EXPIRED:
                return self.snapshot()

            remaining = self.config.timeout_ms - (self._clock() - self._last_activity)
            if remaining > 0:
                self._remaining = remaining
                if remaining <= self.config.warning_ms:
                    self._phase = SessionPhase.WARNING
                else:
                    self._phase = SessionPhase.ACTIVE
                return self.snapshot()

            self._remaining = 0
            self._phase = SessionPhase.EXPIRED
            self._release()
            snapshot = self.snapshot()

        logger.info("Session expired")
        self.on_expire()
        return snapshot

    def reset_session(self) -> bool:
        """
        Extend the session to a full timeout. No effect once expired or unmounted.

        A session whose deadline already passed without being polled expires here
        instead of being extended.
        """
        if self.tick().phase is SessionPhase.EXPIRED:
            return False
        with self._lock:
            if not self._mounted or self._phase is SessionPhase.EXPIRED:
                return False
            self._last_activity = self._clock()
            self._remaining = self.config.timeout_ms
            self._phase = SessionPhase.ACTIVE
            self._arm_deadline()
        logger.debug("Session extended")
        return True

    def _on_activity(self, event: str) -> None:
        self.reset_session()
