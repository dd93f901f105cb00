"""
Device half of the event sync protocol.

A round sends every PENDING event (up to the batch size) together with the
last checkpoint the server handed out, then applies the server's answer in
one local transaction: confirmations, events recorded elsewhere, rejected
ids and the new checkpoint. If anything goes wrong before that transaction
the round is dropped as a whole and the events stay PENDING. Retrying is
always safe because the server deduplicates by event id.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import requests
from pydantic import ValidationError

from stifle.schemas import EventPayload, SyncRequest, SyncResponse
from .store import EventType, LocalEvent, LocalEventStore, SyncState, StorageError, now_ms

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000


class SyncError(Exception):
    """A sync round failed before anything was applied locally."""


class SyncTransport(Protocol):
    def send(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Deliver one sync request and return the decoded JSON response.

        Raises SyncError on any transport or server failure.
        """
        ...


class HttpSyncTransport:
    """POSTs sync rounds to `{server_url}/api/events/sync`."""

    def __init__(self, server_url: str, api_token: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.url = server_url.rstrip('/') + '/api/events/sync'
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({'Authorization': f'Bearer {api_token}'})

    def send(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            resp = self.session.post(self.url, json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout as exc:
            raise SyncError(f'sync timed out after {self.timeout}s') from exc
        except requests.exceptions.RequestException as exc:
            raise SyncError(f'sync request failed: {exc}') from exc
        if resp.status_code != 200:
            raise SyncError(f'sync failed: HTTP {resp.status_code} {resp.text[:200]}')
        try:
            return resp.json()
        except ValueError as exc:
            raise SyncError('sync response is not JSON') from exc


@dataclass(frozen=True)
class SyncResult:
    sent: int
    confirmed: int
    received: int
    rejected: int
    checkpoint: int
    has_more: bool = False


def _to_payload(event: LocalEvent) -> EventPayload:
    return EventPayload(id=event.id, event_type=event.event_type.value, timestamp=event.timestamp, source=event.source)


class SyncEngine:
    def __init__(
        self,
        store: LocalEventStore,
        transport: SyncTransport,
        batch_size: int = 500,
        retention_days: Optional[int] = 90,
    ):
        self.store = store
        self.transport = transport
        self.batch_size = batch_size
        self.retention_days = retention_days
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='stifle-sync')
        self._queued: Optional[Future] = None
        self._queue_lock = threading.Lock()
        self._stop = threading.Event()
        self._periodic: Optional[threading.Thread] = None

    # ---- One round ----

    def sync_once(self) -> SyncResult:
        """Run one round. Raises SyncError or StorageError; applies nothing on failure."""
        pending = self.store.list_pending(limit=self.batch_size)
        request = SyncRequest(
            events=[_to_payload(e) for e in pending],
            last_sync=self.store.get_checkpoint(),
            client_time=now_ms(),
        )
        raw = self.transport.send(request.model_dump(by_alias=True))
        try:
            response = SyncResponse.model_validate(raw)
        except ValidationError as exc:
            raise SyncError(f'malformed sync response: {exc}') from exc

        incoming = [
            LocalEvent(
                id=e.id,
                event_type=EventType(e.event_type),
                timestamp=e.timestamp,
                source=e.source,
                sync_state=SyncState.CONFIRMED,
                server_id=e.server_id,
            )
            for e in response.new_events
        ]
        confirmed, inserted, discarded = self.store.apply_sync_response(
            confirmed=[(c.client_id, c.server_id) for c in response.confirmed],
            new_events=incoming,
            rejected=response.rejected,
            checkpoint=response.server_time,
        )
        if discarded:
            logger.warning(f"[sync-rejected] discarded={discarded} ids={response.rejected}")
        logger.info(
            f"[sync] sent={len(pending)} confirmed={confirmed} received={inserted} "
            f"checkpoint={response.server_time} has_more={response.has_more}"
        )
        self._purge_expired()
        return SyncResult(
            sent=len(pending),
            confirmed=confirmed,
            received=inserted,
            rejected=discarded,
            checkpoint=response.server_time,
            has_more=response.has_more,
        )

    def sync_until_drained(self, max_rounds: int = 20) -> int:
        """Repeat rounds while work remains and each round makes progress.

        Returns the number of rounds run. Errors propagate like `sync_once`.
        """
        rounds = 0
        while rounds < max_rounds:
            checkpoint = self.store.get_checkpoint()
            result = self.sync_once()
            rounds += 1
            # A page of events we already hold still moves the cursor forward
            progressed = (
                result.confirmed or result.received or result.rejected
                or result.checkpoint > checkpoint
            )
            more_pending = result.sent >= self.batch_size and self.store.pending_count() > 0
            if not progressed or not (more_pending or result.has_more):
                break
        return rounds

    def try_sync(self) -> Optional[SyncResult]:
        """Run a round, logging failures instead of raising them."""
        try:
            return self.sync_once()
        except SyncError as exc:
            logger.warning(f"[sync-failed] pending={self._safe_pending_count()} error={exc}")
        except StorageError as exc:
            logger.error(f"[sync-storage-error] error={exc}")
        return None

    # ---- Scheduling ----

    def request_sync(self, _event: Optional[LocalEvent] = None) -> Future:
        """Fire-and-forget trigger, usable as the capture callback.

        Rounds run one at a time on a worker thread; a request made while
        another round is still waiting to start joins that round.
        """
        with self._queue_lock:
            if self._queued is not None and not self._queued.running() and not self._queued.done():
                return self._queued
            self._queued = self._executor.submit(self._run_requested)
            return self._queued

    def _run_requested(self) -> int:
        try:
            return self.sync_until_drained()
        except SyncError as exc:
            logger.warning(f"[sync-failed] pending={self._safe_pending_count()} error={exc}")
        except StorageError as exc:
            logger.error(f"[sync-storage-error] error={exc}")
        return 0

    def start_periodic(self, interval_sec: float) -> None:
        """Backstop: request a round every `interval_sec` until `stop()`."""
        if interval_sec <= 0 or self._periodic is not None:
            return
        self._stop.clear()

        def _loop():
            while not self._stop.wait(interval_sec):
                self.request_sync()

        self._periodic = threading.Thread(target=_loop, name='stifle-sync-periodic', daemon=True)
        self._periodic.start()

    def stop(self, wait: bool = True) -> None:
        self._stop.set()
        if self._periodic is not None:
            self._periodic.join(timeout=5)
            self._periodic = None
        self._executor.shutdown(wait=wait)

    # ---- Helpers ----

    def _purge_expired(self) -> None:
        if not self.retention_days:
            return
        deleted = self.store.purge_older_than(now_ms() - self.retention_days * DAY_MS)
        if deleted:
            logger.info(f"[sync-purge] deleted={deleted} retention_days={self.retention_days}")

    def _safe_pending_count(self) -> Any:
        try:
            return self.store.pending_count()
        except StorageError:
            return 'unknown'
