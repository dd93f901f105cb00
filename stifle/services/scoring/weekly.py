import threading
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterator, List, Optional, Tuple

from flask import current_app
from sqlalchemy.exc import IntegrityError

from stifle import db, socketio
from stifle.models import User, WeeklyScore, now_ms
from stifle.services.events import canonical_log
from .points import calculate_streak_points, round_points
from .weeks import ms_to_datetime, week_bounds_ms, week_start_for_timezone


@dataclass(frozen=True)
class WeeklyTotals:
    total_points: float
    streak_count: int
    longest_streak_seconds: int


@dataclass(frozen=True)
class StreakPair:
    lock_timestamp: int
    unlock_timestamp: int
    points: float


# Striped: every (user_id, week_start) maps to one fixed lock, so concurrent
# recomputations of the same week upsert in turn
SCORE_LOCK_STRIPES = 64
_score_locks: Tuple[threading.Lock, ...] = tuple(threading.Lock() for _ in range(SCORE_LOCK_STRIPES))


def _lock_for(user_id: int, week_start: date) -> threading.Lock:
    return _score_locks[hash((user_id, week_start)) % SCORE_LOCK_STRIPES]


def pair_streaks(user_id: int, start_ms: int, end_ms: int) -> List[StreakPair]:
    """Pair every UNLOCK in [start_ms, end_ms) with its opening LOCK.

    An UNLOCK pairs with the most recent LOCK that has an earlier timestamp.
    That LOCK may sit before `start_ms`, so a streak crossing a week boundary
    belongs to the week of its UNLOCK. Unmatched UNLOCKs score zero.
    """
    previous = canonical_log.latest_event_before(user_id, start_ms, event_type='lock')
    last_lock = previous.timestamp if previous is not None else None
    # Latest lock strictly older than last_lock, for an unlock sharing last_lock's timestamp
    older_lock: Optional[int] = None

    pairs: List[StreakPair] = []
    for event in canonical_log.events_in_range(user_id, start_ms, end_ms):
        if event.event_type == 'lock':
            if last_lock is not None and last_lock < event.timestamp:
                older_lock = last_lock
            last_lock = event.timestamp
            continue
        lock_ts = last_lock if last_lock is not None and last_lock < event.timestamp else older_lock
        if lock_ts is None:
            current_app.logger.debug(
                f"[score-unpaired] user={user_id} unlock={event.client_id} ts={event.timestamp}"
            )
            continue
        pairs.append(StreakPair(
            lock_timestamp=lock_ts,
            unlock_timestamp=event.timestamp,
            points=calculate_streak_points(lock_ts, event.timestamp),
        ))
    return pairs


def calculate_weekly_score(user_id: int, week_start: date, tz_name: Optional[str] = None) -> WeeklyTotals:
    """Totals for one local week. Pure over the canonical log."""
    start_ms, end_ms = week_bounds_ms(week_start, tz_name)
    total = 0.0
    streak_count = 0
    longest_ms = 0
    for pair in pair_streaks(user_id, start_ms, end_ms):
        if pair.points <= 0:
            continue
        total += pair.points
        streak_count += 1
        longest_ms = max(longest_ms, pair.unlock_timestamp - pair.lock_timestamp)
    return WeeklyTotals(
        total_points=round_points(total),
        streak_count=streak_count,
        longest_streak_seconds=int(round(longest_ms / 1000)),
    )


def _write_score(user_id: int, week_start: date, totals: WeeklyTotals) -> WeeklyScore:
    row = WeeklyScore.query.filter_by(user_id=user_id, week_start=week_start).first()
    if row is None:
        row = WeeklyScore(user_id=user_id, week_start=week_start)
    row.total_points = Decimal(str(totals.total_points))
    row.streak_count = totals.streak_count
    row.longest_streak = totals.longest_streak_seconds
    row.calculated_at = now_ms()
    db.session.add(row)
    db.session.commit()
    return row


def update_weekly_score(user: User, week_start: Optional[date] = None, at: Optional[datetime] = None) -> WeeklyScore:
    """Recompute and upsert the WeeklyScore for `user` and `week_start`.

    Defaults to the week containing `at` (or now) in the user's timezone.
    Recomputing with an unchanged log overwrites the row with the same values.
    """
    if week_start is None:
        week_start = week_start_for_timezone(at or datetime.now(timezone.utc), user.timezone)

    with _lock_for(user.id, week_start):
        totals = calculate_weekly_score(user.id, week_start, user.timezone)
        try:
            row = _write_score(user.id, week_start, totals)
        except IntegrityError:
            # Another process inserted the row first; overwrite it
            db.session.rollback()
            row = _write_score(user.id, week_start, totals)

    current_app.logger.info(
        f"[score-update] user={user.id} week={week_start.isoformat()} "
        f"points={totals.total_points} streaks={totals.streak_count} longest={totals.longest_streak_seconds}s"
    )
    socketio.emit('score_update', row.to_dict(), to=f"user:{user.id}", namespace='/ws')
    return row


def weeks_between(from_ms: int, to_ms: int, tz_name: Optional[str]) -> Iterator[date]:
    """Local week starts from the week of `from_ms` through the week of `to_ms`."""
    week = week_start_for_timezone(ms_to_datetime(from_ms), tz_name)
    last = week_start_for_timezone(ms_to_datetime(to_ms), tz_name)
    while week <= last:
        yield week
        week += timedelta(days=7)


def recalculate_weeks(user: User, from_ms: int, to_ms: Optional[int] = None) -> List[WeeklyScore]:
    """Upsert every week touched by events from `from_ms` up to `to_ms` (now)."""
    to_ms = now_ms() if to_ms is None else to_ms
    if from_ms > to_ms:
        from_ms = to_ms
    return [update_weekly_score(user, week) for week in weeks_between(from_ms, to_ms, user.timezone)]


def get_weekly_score(user: User, week_start: date) -> Optional[WeeklyScore]:
    return WeeklyScore.query.filter_by(user_id=user.id, week_start=week_start).first()
