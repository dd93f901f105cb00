import pytest
from sqlalchemy.exc import IntegrityError

from conftest import MINUTE_MS
from stifle import db
from stifle.models import Event
from stifle.services.events import canonical_log

T = 1_790_000_000_000


def test_insert_if_absent_is_idempotent(user):
    server_id, inserted = canonical_log.insert_if_absent(user.id, 'c1', 'lock', T, 'automatic')
    assert inserted is True
    again, inserted = canonical_log.insert_if_absent(user.id, 'c1', 'unlock', T + 1, 'manual')
    assert inserted is False
    assert again == server_id
    row = Event.query.one()
    assert (row.event_type, row.timestamp, row.source) == ('lock', T, 'automatic')


def test_server_id_differs_from_client_id(user):
    server_id, _ = canonical_log.insert_if_absent(user.id, 'c1', 'lock', T, 'automatic')
    assert server_id != 'c1'
    assert Event.query.one().to_dict()['serverId'] == server_id


def test_events_since_is_inclusive_and_excludes_sent(user):
    canonical_log.insert_if_absent(user.id, 'a', 'lock', T, 'automatic', created_at=100)
    canonical_log.insert_if_absent(user.id, 'b', 'unlock', T + MINUTE_MS, 'automatic', created_at=200)
    canonical_log.insert_if_absent(user.id, 'c', 'lock', T + 2 * MINUTE_MS, 'automatic', created_at=200)

    assert [e.client_id for e in canonical_log.events_since(user.id, 200)] == ['b', 'c']
    assert [e.client_id for e in canonical_log.events_since(user.id, 0, ['b'])] == ['a', 'c']
    assert [e.client_id for e in canonical_log.events_since(user.id, 0, limit=1)] == ['a']
    assert canonical_log.events_since(user.id, 201) == []


def test_events_created_at(user):
    canonical_log.insert_if_absent(user.id, 'a', 'lock', T, 'automatic', created_at=100)
    canonical_log.insert_if_absent(user.id, 'b', 'unlock', T + MINUTE_MS, 'automatic', created_at=200)
    assert [e.client_id for e in canonical_log.events_created_at(user.id, 200)] == ['b']
    assert canonical_log.events_created_at(user.id, 200, ['b']) == []


def test_latest_event_before_and_range(user):
    canonical_log.insert_if_absent(user.id, 'a', 'lock', T, 'automatic')
    canonical_log.insert_if_absent(user.id, 'b', 'unlock', T + MINUTE_MS, 'automatic')
    assert canonical_log.latest_event_before(user.id, T + MINUTE_MS).client_id == 'a'
    assert canonical_log.latest_event_before(user.id, T) is None
    assert [e.client_id for e in canonical_log.events_in_range(user.id, T, T + 2 * MINUTE_MS, 'unlock')] == ['b']


def test_current_streak_follows_latest_event(user):
    assert canonical_log.current_streak(user.id, T)['inStreak'] is False
    canonical_log.insert_if_absent(user.id, 'a', 'lock', T, 'automatic')
    state = canonical_log.current_streak(user.id, T + 5 * MINUTE_MS)
    assert state == {'inStreak': True, 'streakStartedAt': T, 'currentStreakSeconds': 300}


def test_purge_older_than(user):
    canonical_log.insert_if_absent(user.id, 'a', 'lock', T, 'automatic')
    canonical_log.insert_if_absent(user.id, 'b', 'unlock', T + MINUTE_MS, 'automatic')
    assert canonical_log.purge_older_than(T + MINUTE_MS) == 1
    assert [e.client_id for e in Event.query.all()] == ['b']


def test_event_type_is_constrained(user):
    db.session.add(Event(user_id=user.id, client_id='x', event_type='nap', timestamp=T, source='automatic'))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()
