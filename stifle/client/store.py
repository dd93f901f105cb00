"""
Device-side durable event log.

Every lock/unlock transition recorded on the device lands here first and
stays PENDING until a sync round confirms it. The store also keeps the sync
checkpoint, so a restarted process resumes where it left off.

Storage faults surface as `StorageError`; the store never retries on its
own. It is safe to share one store between threads: calls are serialized
and each call runs in its own short transaction.
"""

import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import BigInteger, Index, String, create_engine, delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool


def now_ms() -> int:
    return int(time.time() * 1000)


class StorageError(RuntimeError):
    """The local storage medium failed; the operation did not take effect."""


class EventType(str, Enum):
    LOCK = 'lock'
    UNLOCK = 'unlock'


class SyncState(str, Enum):
    PENDING = 'pending'
    CONFIRMED = 'confirmed'


@dataclass(frozen=True)
class LocalEvent:
    id: str
    event_type: EventType
    timestamp: int
    source: str
    sync_state: SyncState = SyncState.PENDING
    server_id: Optional[str] = None

    @classmethod
    def new(cls, event_type: EventType, timestamp: int, source: str) -> 'LocalEvent':
        return cls(id=str(uuid.uuid4()), event_type=event_type, timestamp=timestamp, source=source)

    def confirmed(self, server_id: str) -> 'LocalEvent':
        return replace(self, sync_state=SyncState.CONFIRMED, server_id=server_id)


class _Base(DeclarativeBase):
    pass


class _EventRow(_Base):
    __tablename__ = 'events'
    __table_args__ = (
        Index('ix_events_sync_state_timestamp', 'sync_state', 'timestamp'),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(10))
    timestamp: Mapped[int] = mapped_column(BigInteger, index=True)
    source: Mapped[str] = mapped_column(String(20))
    sync_state: Mapped[str] = mapped_column(String(10), default=SyncState.PENDING.value)
    server_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[int] = mapped_column(BigInteger, default=now_ms)

    def to_event(self) -> LocalEvent:
        return LocalEvent(
            id=self.id,
            event_type=EventType(self.event_type),
            timestamp=self.timestamp,
            source=self.source,
            sync_state=SyncState(self.sync_state),
            server_id=self.server_id,
        )


class _SyncMetaRow(_Base):
    __tablename__ = 'sync_meta'

    key: Mapped[str] = mapped_column(String(32), primary_key=True)
    value: Mapped[int] = mapped_column(BigInteger)


CHECKPOINT_KEY = 'last_sync'


class LocalEventStore:
    def __init__(self, url: str = 'sqlite://'):
        engine_kwargs = {}
        if url.startswith('sqlite'):
            engine_kwargs['connect_args'] = {'check_same_thread': False}
            if url in ('sqlite://', 'sqlite:///:memory:'):
                # One shared connection, otherwise each thread sees its own empty DB
                engine_kwargs['poolclass'] = StaticPool
        self.engine = create_engine(url, **engine_kwargs)
        self._sessions = sessionmaker(self.engine, expire_on_commit=False)
        self._lock = threading.RLock()
        try:
            _Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StorageError(f'Cannot open local event store: {exc}') from exc

    @contextmanager
    def _session(self, write: bool = False):
        # Reads take the lock too: the in-memory engine shares one connection
        self._lock.acquire()
        session = self._sessions()
        try:
            yield session
            if write:
                session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise StorageError(str(exc)) from exc
        finally:
            session.close()
            self._lock.release()

    # ---- Core contract ----

    def append(self, event: LocalEvent) -> None:
        with self._session(write=True) as session:
            session.add(_EventRow(
                id=event.id,
                event_type=event.event_type.value,
                timestamp=event.timestamp,
                source=event.source,
                sync_state=event.sync_state.value,
                server_id=event.server_id,
            ))

    def list_pending(self, limit: Optional[int] = None) -> List[LocalEvent]:
        """PENDING events, oldest first."""
        stmt = (
            select(_EventRow)
            .where(_EventRow.sync_state == SyncState.PENDING.value)
            .order_by(_EventRow.timestamp.asc(), _EventRow.created_at.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._session() as session:
            return [row.to_event() for row in session.scalars(stmt)]

    def mark_confirmed(self, client_id: str, server_id: str) -> bool:
        """Flag one PENDING event as CONFIRMED. A second call changes nothing."""
        with self._session(write=True) as session:
            return self._mark_confirmed(session, client_id, server_id)

    def purge_older_than(self, cutoff_ms: int) -> int:
        """Delete events strictly older than `cutoff_ms`, whatever their sync state."""
        with self._session(write=True) as session:
            result = session.execute(delete(_EventRow).where(_EventRow.timestamp < cutoff_ms))
            return result.rowcount or 0

    # ---- Queries ----

    def get(self, client_id: str) -> Optional[LocalEvent]:
        with self._session() as session:
            row = session.get(_EventRow, client_id)
            return row.to_event() if row is not None else None

    def last_event(self) -> Optional[LocalEvent]:
        stmt = select(_EventRow).order_by(_EventRow.timestamp.desc(), _EventRow.created_at.desc()).limit(1)
        with self._session() as session:
            row = session.scalars(stmt).first()
            return row.to_event() if row is not None else None

    def pending_count(self) -> int:
        stmt = select(func.count()).select_from(_EventRow).where(_EventRow.sync_state == SyncState.PENDING.value)
        with self._session() as session:
            return session.scalar(stmt) or 0

    def events_in_range(self, start_ms: int, end_ms: int) -> List[LocalEvent]:
        stmt = (
            select(_EventRow)
            .where(_EventRow.timestamp >= start_ms, _EventRow.timestamp < end_ms)
            .order_by(_EventRow.timestamp.asc(), _EventRow.created_at.asc())
        )
        with self._session() as session:
            return [row.to_event() for row in session.scalars(stmt)]

    # ---- Sync bookkeeping ----

    def insert_confirmed(self, event: LocalEvent) -> bool:
        """Store a server-originated event as CONFIRMED unless its id is known."""
        with self._session(write=True) as session:
            return self._insert_confirmed(session, event)

    def discard(self, client_id: str) -> bool:
        """Drop a PENDING event the server will never accept."""
        with self._session(write=True) as session:
            return self._discard(session, client_id)

    def get_checkpoint(self) -> int:
        with self._session() as session:
            row = session.get(_SyncMetaRow, CHECKPOINT_KEY)
            return row.value if row is not None else 0

    def set_checkpoint(self, value: int) -> None:
        with self._session(write=True) as session:
            self._set_checkpoint(session, value)

    def apply_sync_response(
        self,
        confirmed: Iterable[Tuple[str, str]],
        new_events: Iterable[LocalEvent],
        rejected: Iterable[str],
        checkpoint: int,
    ) -> Tuple[int, int, int]:
        """Apply one validated sync response atomically.

        Returns `(confirmed, inserted, discarded)` counts of rows changed.
        """
        with self._session(write=True) as session:
            n_confirmed = sum(self._mark_confirmed(session, cid, sid) for cid, sid in confirmed)
            n_inserted = sum(self._insert_confirmed(session, ev) for ev in new_events)
            n_discarded = sum(self._discard(session, cid) for cid in rejected)
            self._set_checkpoint(session, checkpoint)
            return n_confirmed, n_inserted, n_discarded

    # ---- Session-scoped helpers ----

    @staticmethod
    def _mark_confirmed(session, client_id: str, server_id: str) -> bool:
        result = session.execute(
            update(_EventRow)
            .where(_EventRow.id == client_id, _EventRow.sync_state == SyncState.PENDING.value)
            .values(sync_state=SyncState.CONFIRMED.value, server_id=server_id)
        )
        return bool(result.rowcount)

    @classmethod
    def _insert_confirmed(cls, session, event: LocalEvent) -> bool:
        row = session.get(_EventRow, event.id)
        if row is not None:
            # Our own event echoed back before we saw its confirmation
            if row.sync_state == SyncState.PENDING.value and event.server_id:
                return cls._mark_confirmed(session, event.id, event.server_id)
            return False
        session.add(_EventRow(
            id=event.id,
            event_type=event.event_type.value,
            timestamp=event.timestamp,
            source=event.source,
            sync_state=SyncState.CONFIRMED.value,
            server_id=event.server_id,
        ))
        session.flush()
        return True

    @staticmethod
    def _discard(session, client_id: str) -> bool:
        result = session.execute(
            delete(_EventRow).where(_EventRow.id == client_id, _EventRow.sync_state == SyncState.PENDING.value)
        )
        return bool(result.rowcount)

    @staticmethod
    def _set_checkpoint(session, value: int) -> None:
        row = session.get(_SyncMetaRow, CHECKPOINT_KEY)
        if row is None:
            session.add(_SyncMetaRow(key=CHECKPOINT_KEY, value=value))
        else:
            row.value = value
