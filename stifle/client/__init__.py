"""Device-side tracking: signal capture, the local event log and sync.

`build_client` wires the three together the way the app container does on a
device: every recorded event requests a sync round, and a periodic round
runs as a backstop.
"""

from dataclasses import dataclass
from typing import Optional

from config import ClientConfig
from .capture import DeviceSignal, EventCapture, LockState
from .store import EventType, LocalEvent, LocalEventStore, StorageError, SyncState
from .sync import HttpSyncTransport, SyncEngine, SyncError, SyncResult, SyncTransport


@dataclass
class TrackingClient:
    store: LocalEventStore
    capture: EventCapture
    sync: SyncEngine

    def handle_signal(self, signal, at: Optional[int] = None) -> Optional[LocalEvent]:
        return self.capture.handle_signal(signal, at)

    def on_reconnect(self):
        return self.sync.request_sync()

    def close(self) -> None:
        self.sync.stop()


def build_client(config=ClientConfig, transport: Optional[SyncTransport] = None, start_periodic: bool = True) -> TrackingClient:
    store = LocalEventStore(config.CLIENT_DB_URL)
    if transport is None:
        transport = HttpSyncTransport(config.SERVER_URL, config.API_TOKEN, timeout=config.SYNC_TIMEOUT_SEC)
    engine = SyncEngine(
        store,
        transport,
        batch_size=config.SYNC_BATCH_SIZE,
        retention_days=config.LOCAL_RETENTION_DAYS,
    )
    capture = EventCapture(
        store,
        on_recorded=engine.request_sync,
        debounce_ms=config.SIGNAL_DEBOUNCE_MS,
        source=config.EVENT_SOURCE,
    )
    if start_periodic:
        engine.start_periodic(config.SYNC_INTERVAL_SEC)
    return TrackingClient(store=store, capture=capture, sync=engine)


__all__ = [
    'DeviceSignal',
    'EventCapture',
    'EventType',
    'HttpSyncTransport',
    'LocalEvent',
    'LocalEventStore',
    'LockState',
    'StorageError',
    'SyncEngine',
    'SyncError',
    'SyncResult',
    'SyncState',
    'SyncTransport',
    'TrackingClient',
    'build_client',
]
