"""
Turns raw device signals into recorded LOCK/UNLOCK events.

The deciding factor is the last event in the local store, not the history
of raw signals: a USER_PRESENT while already UNLOCKED and a SCREEN_OFF
while already LOCKED are duplicates and are ignored. On top of that, a
signal identical to one processed within the debounce window is dropped
before the store is consulted, which absorbs the same OS broadcast arriving
through several listener registrations.
"""

import logging
import threading
import time
from enum import Enum
from typing import Callable, Dict, Optional

from .store import EventType, LocalEvent, LocalEventStore, StorageError

logger = logging.getLogger(__name__)


class DeviceSignal(str, Enum):
    SCREEN_OFF = 'screen_off'
    SCREEN_ON = 'screen_on'  # advisory only, e.g. glancing at the lock screen
    USER_PRESENT = 'user_present'


class LockState(str, Enum):
    LOCKED = 'locked'
    UNLOCKED = 'unlocked'
    UNKNOWN = 'unknown'


_SIGNAL_TO_EVENT = {
    DeviceSignal.SCREEN_OFF: (EventType.LOCK, LockState.LOCKED),
    DeviceSignal.USER_PRESENT: (EventType.UNLOCK, LockState.UNLOCKED),
}


def derive_lock_state(last_event: Optional[LocalEvent]) -> LockState:
    if last_event is None:
        return LockState.UNKNOWN
    if last_event.event_type == EventType.LOCK:
        return LockState.LOCKED
    return LockState.UNLOCKED


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


class EventCapture:
    """Signal handler for one user process.

    `on_recorded` is called after every recorded event (typically
    `SyncEngine.request_sync`). It must not block; failures are logged and
    swallowed because the event is already durable.
    """

    def __init__(
        self,
        store: LocalEventStore,
        on_recorded: Optional[Callable[[LocalEvent], None]] = None,
        debounce_ms: int = 500,
        source: str = 'automatic',
        clock: Callable[[], int] = _wall_clock_ms,
    ):
        self.store = store
        self.on_recorded = on_recorded
        self.debounce_ms = debounce_ms
        self.source = source
        self.clock = clock
        self._lock = threading.Lock()
        self._last_seen: Dict[DeviceSignal, int] = {}

    def current_state(self) -> LockState:
        return derive_lock_state(self.store.last_event())

    def handle_signal(self, signal: DeviceSignal, at: Optional[int] = None) -> Optional[LocalEvent]:
        """Record the transition `signal` implies, if any.

        Returns the recorded event, or None when the signal was debounced,
        advisory, or matched the current state. StorageError propagates.
        """
        signal = DeviceSignal(signal)
        at = self.clock() if at is None else at

        with self._lock:
            last = self._last_seen.get(signal)
            if last is not None and 0 <= at - last < self.debounce_ms:
                logger.debug(f"[capture-debounce] signal={signal.value} delta={at - last}ms")
                return None
            self._last_seen[signal] = at

            if signal not in _SIGNAL_TO_EVENT:
                logger.debug(f"[capture-advisory] signal={signal.value}")
                return None

            event_type, target_state = _SIGNAL_TO_EVENT[signal]
            state = self.current_state()
            if state == target_state:
                logger.debug(f"[capture-duplicate] signal={signal.value} state={state.value}")
                return None

            event = LocalEvent.new(event_type, at, self.source)
            try:
                self.store.append(event)
            except StorageError:
                # Not processed; let an immediate redelivery through
                self._restore_last_seen(signal, last)
                raise

        logger.info(f"[capture] event={event.id} type={event.event_type.value} ts={event.timestamp}")
        self._notify(event)
        return event

    def _restore_last_seen(self, signal: DeviceSignal, previous: Optional[int]) -> None:
        if previous is None:
            self._last_seen.pop(signal, None)
        else:
            self._last_seen[signal] = previous

    def _notify(self, event: LocalEvent) -> None:
        if self.on_recorded is None:
            return
        try:
            self.on_recorded(event)
        except Exception:
            logger.exception(f"[capture-notify-failed] event={event.id}")

    def is_in_streak(self) -> bool:
        return self.current_state() == LockState.LOCKED

    def current_streak_seconds(self, now: Optional[int] = None) -> int:
        last = self.store.last_event()
        if last is None or last.event_type != EventType.LOCK:
            return 0
        now = self.clock() if now is None else now
        return max(0, (now - last.timestamp) // 1000)
