from typing import List, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from stifle import db, socketio
from stifle.models import User, now_ms
from stifle.schemas import ConfirmedEvent, ServerEvent, SyncRequest, SyncResponse
from stifle.services.scoring.weekly import recalculate_weeks
from . import canonical_log

DAY_MS = 24 * 60 * 60 * 1000


def process_sync(user: User, request: SyncRequest, now: Optional[int] = None) -> SyncResponse:
    """Apply one sync round from a device and build its response.

    - Events already in the canonical log are confirmed with their stored id.
    - Unseen events older than SYNC_MAX_EVENT_AGE_DAYS are rejected.
    - Timestamps too far in the future are clamped to server time.
    - New events since `last_sync` are returned, minus the ones just sent.

    Raises ValueError when the batch exceeds SYNC_MAX_BATCH. Storage errors
    propagate to the caller.
    """
    cfg = current_app.config
    max_batch = int(cfg.get('SYNC_MAX_BATCH', 1000))
    if len(request.events) > max_batch:
        raise ValueError(f"Too many events in one request: {len(request.events)} (max {max_batch})")

    now = now_ms() if now is None else now
    max_age_ms = int(cfg.get('SYNC_MAX_EVENT_AGE_DAYS', 7)) * DAY_MS
    max_skew_ms = int(cfg.get('SYNC_MAX_CLOCK_SKEW_MS', 60_000))

    confirmed: List[ConfirmedEvent] = []
    rejected: List[str] = []
    earliest_inserted: Optional[int] = None

    for event in request.events:
        existing = canonical_log.get_by_client_id(user.id, event.id)
        if existing is not None:
            confirmed.append(ConfirmedEvent(client_id=event.id, server_id=existing.id))
            continue

        if event.timestamp < now - max_age_ms:
            current_app.logger.info(f"[sync-reject] user={user.id} event={event.id} reason=too_old")
            rejected.append(event.id)
            continue

        timestamp = event.timestamp
        if timestamp > now + max_skew_ms:
            current_app.logger.info(f"[sync-clamp] user={user.id} event={event.id} ts={timestamp} now={now}")
            timestamp = now

        server_id, inserted = canonical_log.insert_if_absent(
            user.id, event.id, event.event_type, timestamp, event.source, created_at=now,
        )
        confirmed.append(ConfirmedEvent(client_id=event.id, server_id=server_id))
        if inserted:
            earliest_inserted = timestamp if earliest_inserted is None else min(earliest_inserted, timestamp)

    new_events, server_time, has_more = _collect_new_events(user, request, now)

    if earliest_inserted is not None:
        current_app.logger.info(
            f"[sync] user={user.id} received={len(request.events)} confirmed={len(confirmed)} "
            f"rejected={len(rejected)} new_out={len(new_events)}"
        )
        _after_insert(user, earliest_inserted, now)

    return SyncResponse(
        confirmed=confirmed,
        new_events=new_events,
        rejected=rejected,
        server_time=server_time,
        has_more=has_more,
    )


def _collect_new_events(user: User, request: SyncRequest, now: int):
    """Events the device lacks, plus the checkpoint to hand back.

    A full page sets the checkpoint just past the last row's `created_at`,
    after pulling in every other row that shares it, so paging always moves
    forward. Otherwise the checkpoint trails `now` by
    SYNC_CHECKPOINT_OVERLAP_MS: `created_at` is stamped when a round starts,
    so a concurrent round that commits later still lands inside the next
    query. Devices ignore the ids they already hold.
    """
    cfg = current_app.config
    limit = int(cfg.get('SYNC_MAX_NEW_EVENTS', 100))
    overlap_ms = int(cfg.get('SYNC_CHECKPOINT_OVERLAP_MS', 300_000))
    sent_ids = [e.id for e in request.events]
    rows = canonical_log.events_since(user.id, request.last_sync, sent_ids, limit)

    server_time = max(0, now - overlap_ms)
    has_more = len(rows) >= limit
    if has_more:
        boundary = rows[-1].created_at
        seen = {r.id for r in rows}
        rows.extend(
            r for r in canonical_log.events_created_at(user.id, boundary, sent_ids)
            if r.id not in seen
        )
        server_time = boundary + 1

    new_events = [
        ServerEvent(
            id=r.client_id,
            server_id=r.id,
            event_type=r.event_type,
            timestamp=r.timestamp,
            source=r.source,
        )
        for r in rows
    ]
    return new_events, server_time, has_more


def _after_insert(user: User, earliest_inserted: int, now: int) -> None:
    # Scores are derived data; a failed recompute is retried on the next sync
    try:
        recalculate_weeks(user, earliest_inserted, now)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error(f"[score-error] user={user.id} error={exc}")

    socketio.emit(
        'streak_update',
        dict(canonical_log.current_streak(user.id, now), user_id=user.id),
        to=f"user:{user.id}",
        namespace='/ws',
    )
