import threading

import pytest

from stifle.client.capture import DeviceSignal, EventCapture, LockState
from stifle.client.store import EventType, LocalEvent, LocalEventStore


class FakeClock:
    def __init__(self, start=1_760_000_000_000):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def store():
    return LocalEventStore('sqlite://')


@pytest.fixture()
def recorded():
    return []


@pytest.fixture()
def capture(store, clock, recorded):
    return EventCapture(store, on_recorded=recorded.append, debounce_ms=500, clock=clock)


def types(store):
    return [e.event_type for e in store.events_in_range(0, 2**62)]


def test_first_signal_on_empty_store_is_recorded(capture, store):
    assert capture.current_state() == LockState.UNKNOWN
    event = capture.handle_signal(DeviceSignal.SCREEN_OFF)
    assert event.event_type == EventType.LOCK
    assert capture.current_state() == LockState.LOCKED


@pytest.mark.parametrize('count', [2, 3, 10])
def test_rapid_duplicate_user_present_records_one_unlock(capture, store, clock, count):
    for _ in range(count):
        capture.handle_signal(DeviceSignal.USER_PRESENT)
        clock.advance(50)
    assert types(store) == [EventType.UNLOCK]


@pytest.mark.parametrize('count', [2, 3, 10])
def test_rapid_duplicate_screen_off_records_one_lock(capture, store, clock, count):
    for _ in range(count):
        capture.handle_signal(DeviceSignal.SCREEN_OFF)
        clock.advance(50)
    assert types(store) == [EventType.LOCK]


def test_second_lock_without_unlock_is_ignored(capture, store, clock):
    first = capture.handle_signal(DeviceSignal.SCREEN_OFF)
    clock.advance(60_000)  # well past the debounce window
    assert capture.handle_signal(DeviceSignal.SCREEN_OFF) is None
    assert [e.id for e in store.events_in_range(0, 2**62)] == [first.id]


def test_screen_on_is_advisory(capture, store, clock):
    capture.handle_signal(DeviceSignal.SCREEN_OFF)
    clock.advance(10_000)
    assert capture.handle_signal(DeviceSignal.SCREEN_ON) is None
    assert capture.current_state() == LockState.LOCKED
    assert types(store) == [EventType.LOCK]


def test_glance_at_lock_screen_keeps_streak(capture, store, clock):
    capture.handle_signal(DeviceSignal.SCREEN_OFF)
    clock.advance(5 * 60_000)
    capture.handle_signal(DeviceSignal.SCREEN_ON)
    clock.advance(3_000)
    capture.handle_signal(DeviceSignal.SCREEN_OFF)
    clock.advance(20 * 60_000)
    capture.handle_signal(DeviceSignal.USER_PRESENT)
    assert types(store) == [EventType.LOCK, EventType.UNLOCK]


def test_alternating_signals_are_all_recorded(capture, store, clock):
    for signal in [DeviceSignal.SCREEN_OFF, DeviceSignal.USER_PRESENT] * 3:
        capture.handle_signal(signal)
        clock.advance(1_000)
    assert types(store) == [EventType.LOCK, EventType.UNLOCK] * 3


def test_debounce_applies_per_signal_type(capture, store, clock):
    capture.handle_signal(DeviceSignal.SCREEN_OFF)
    clock.advance(100)
    # Different type inside the window still goes through
    assert capture.handle_signal(DeviceSignal.USER_PRESENT) is not None


def test_state_comes_from_confirmed_server_events(capture, store):
    remote = LocalEvent.new(EventType.LOCK, 1_000, 'automatic').confirmed('srv-1')
    store.insert_confirmed(remote)
    assert capture.current_state() == LockState.LOCKED
    assert capture.handle_signal(DeviceSignal.SCREEN_OFF) is None
    assert capture.handle_signal(DeviceSignal.USER_PRESENT).event_type == EventType.UNLOCK


def test_each_recording_notifies_once(capture, recorded, clock):
    capture.handle_signal(DeviceSignal.SCREEN_OFF)
    clock.advance(10)
    capture.handle_signal(DeviceSignal.SCREEN_OFF)
    clock.advance(1_000)
    capture.handle_signal(DeviceSignal.USER_PRESENT)
    assert [e.event_type for e in recorded] == [EventType.LOCK, EventType.UNLOCK]


def test_notify_failure_does_not_lose_event(store, clock):
    def boom(_event):
        raise RuntimeError('sync scheduler down')

    capture = EventCapture(store, on_recorded=boom, clock=clock)
    event = capture.handle_signal(DeviceSignal.SCREEN_OFF)
    assert store.get(event.id) is not None


def test_concurrent_duplicate_broadcasts_record_one_event(capture, store):
    barrier = threading.Barrier(16)

    def deliver():
        barrier.wait()
        capture.handle_signal(DeviceSignal.USER_PRESENT)

    threads = [threading.Thread(target=deliver) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert types(store) == [EventType.UNLOCK]


def test_state_check_alone_stops_concurrent_duplicates(store):
    capture = EventCapture(store, debounce_ms=0)
    barrier = threading.Barrier(8)

    def deliver(i):
        barrier.wait()
        capture.handle_signal(DeviceSignal.SCREEN_OFF, at=1_000 + i)

    threads = [threading.Thread(target=deliver, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert types(store) == [EventType.LOCK]


def test_streak_helpers(capture, clock):
    assert capture.is_in_streak() is False
    assert capture.current_streak_seconds() == 0
    capture.handle_signal(DeviceSignal.SCREEN_OFF)
    clock.advance(90_000)
    assert capture.is_in_streak() is True
    assert capture.current_streak_seconds() == 90
