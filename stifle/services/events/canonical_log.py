"""Canonical, per-user event history.

The server's record of lock/unlock transitions. Rows are keyed by the
device-generated `client_id`, so resubmitting an event any number of times
leaves exactly one row. Ordering out of alternation (two LOCKs in a row) is
stored as-is; scoring decides what counts.
"""
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from stifle import db
from stifle.models import Event, now_ms


def get_by_client_id(user_id: int, client_id: str) -> Optional[Event]:
    return Event.query.filter_by(user_id=user_id, client_id=client_id).first()


def insert_if_absent(
    user_id: int,
    client_id: str,
    event_type: str,
    timestamp: int,
    source: str,
    created_at: Optional[int] = None,
) -> Tuple[str, bool]:
    """Insert an event unless `(user_id, client_id)` is already stored.

    Returns `(server_id, inserted)`. An existing row is returned untouched,
    even if the resubmitted copy differs. Each insert commits on its own so a
    concurrent round racing on the same id only loses its own row.
    """
    existing = get_by_client_id(user_id, client_id)
    if existing is not None:
        return existing.id, False

    event = Event(
        user_id=user_id,
        client_id=client_id,
        event_type=event_type,
        timestamp=timestamp,
        source=source,
        created_at=created_at if created_at is not None else now_ms(),
    )
    db.session.add(event)
    try:
        db.session.commit()
    except IntegrityError:
        # Another round inserted the same client id first
        db.session.rollback()
        existing = get_by_client_id(user_id, client_id)
        if existing is None:
            raise
        return existing.id, False
    return event.id, True


def latest_event(user_id: int) -> Optional[Event]:
    return (
        Event.query.filter_by(user_id=user_id)
        .order_by(Event.timestamp.desc(), Event.created_at.desc())
        .first()
    )


def events_in_range(user_id: int, start_ms: int, end_ms: int, event_type: Optional[str] = None) -> List[Event]:
    """Events with `start_ms <= timestamp < end_ms`, oldest first."""
    query = Event.query.filter(
        Event.user_id == user_id,
        Event.timestamp >= start_ms,
        Event.timestamp < end_ms,
    )
    if event_type is not None:
        query = query.filter(Event.event_type == event_type)
    return query.order_by(Event.timestamp.asc(), Event.created_at.asc()).all()


def latest_event_before(user_id: int, before_ms: int, event_type: Optional[str] = None) -> Optional[Event]:
    query = Event.query.filter(Event.user_id == user_id, Event.timestamp < before_ms)
    if event_type is not None:
        query = query.filter(Event.event_type == event_type)
    return (
        query.order_by(Event.timestamp.desc(), Event.created_at.desc())
        .first()
    )


def events_since(
    user_id: int,
    checkpoint_ms: int,
    exclude_client_ids: Iterable[str] = (),
    limit: int = 100,
) -> List[Event]:
    """Events stored at or after `checkpoint_ms` (server time).

    The comparison is inclusive so rows written in the same millisecond as
    the previous checkpoint are not skipped; clients drop ids they already
    hold.
    """
    query = Event.query.filter(
        Event.user_id == user_id,
        Event.created_at >= checkpoint_ms,
    )
    excluded = list(exclude_client_ids)
    if excluded:
        query = query.filter(Event.client_id.notin_(excluded))
    return (
        query.order_by(Event.created_at.asc(), Event.timestamp.asc(), Event.id.asc())
        .limit(limit)
        .all()
    )


def current_streak(user_id: int, at_ms: Optional[int] = None) -> Dict[str, object]:
    """Live streak state derived from the most recent event."""
    at_ms = now_ms() if at_ms is None else at_ms
    last = latest_event(user_id)
    if last is None or last.event_type != 'lock':
        return {'inStreak': False, 'streakStartedAt': None, 'currentStreakSeconds': 0}
    return {
        'inStreak': True,
        'streakStartedAt': last.timestamp,
        'currentStreakSeconds': max(0, (at_ms - last.timestamp) // 1000),
    }


def purge_older_than(cutoff_ms: int) -> int:
    """Delete events (all users) with a timestamp strictly before `cutoff_ms`."""
    deleted = Event.query.filter(Event.timestamp < cutoff_ms).delete(synchronize_session=False)
    db.session.commit()
    return deleted


def events_created_at(user_id: int, created_at: int, exclude_client_ids: Iterable[str] = ()) -> List[Event]:
    """Every event written by the sync round that ran at `created_at`."""
    query = Event.query.filter(Event.user_id == user_id, Event.created_at == created_at)
    excluded = list(exclude_client_ids)
    if excluded:
        query = query.filter(Event.client_id.notin_(excluded))
    return query.order_by(Event.timestamp.asc(), Event.id.asc()).all()
